"""
Single-flight registry - один внешний вызов на ключ (user, resource)

Concurrent callers with the same key share one asyncio.Task. The key is
released only when that task settles, never when a caller goes away, so a
client navigating off a pending generation does not cancel it and the result
is still persisted by the task itself.
"""
import asyncio
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

from logging_config import get_logger

logger = get_logger(__name__)
T = TypeVar("T")


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: Dict[Hashable, asyncio.Task] = {}
        self._state_lock = asyncio.Lock()

    async def run(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Запустить fn() для ключа или присоединиться к уже идущему вызову.

        Cancelling the awaiting caller does not cancel the shared task.
        """
        async with self._state_lock:
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.create_task(fn())
                self._inflight[key] = task
                task.add_done_callback(lambda t, k=key: self._release(k, t))
                logger.debug("single_flight_started", key=str(key))
            else:
                logger.info("single_flight_joined", key=str(key))

        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("single_flight_failed", key=str(key), error=str(task.exception()))

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def drain(self) -> None:
        """Дождаться всех висящих вызовов (shutdown / tests)"""
        tasks = list(self._inflight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
