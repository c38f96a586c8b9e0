"""
Side channels - fire-and-forget вызовы
======================================
Topic memory sync after plan changes and the WhatsApp opt-in at signup.
Nothing here can fail or block the caller.
"""
import asyncio
from typing import Optional

from infrastructure.uow import UnitOfWork
from error_handler import best_effort, run_best_effort
from logging_config import get_logger

logger = get_logger(__name__)


class SideChannels:

    def __init__(self, collaborators, session_factory=None):
        self._collaborators = collaborators
        self._session_factory = session_factory
        self._tasks: set = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        # держим ссылку, иначе задачу может собрать GC
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule_topic_memory(self, plan_id: Optional[str] = None, goal_id: Optional[str] = None) -> asyncio.Task:
        logger.debug("topic_memory_scheduled", plan_id=plan_id, goal_id=goal_id)
        return self._spawn(self._sync_topic_memory(plan_id=plan_id, goal_id=goal_id))

    @best_effort("topic_memory_sync", default=False)
    async def _sync_topic_memory(self, plan_id=None, goal_id=None) -> bool:
        await self._collaborators.process_plan_topic_memory(plan_id=plan_id, goal_id=goal_id)
        logger.info("topic_memory_synced", plan_id=plan_id, goal_id=goal_id)
        return True

    def register_signup(self, user_id: str, is_new_user: bool) -> Optional[asyncio.Task]:
        """Opt-in только при регистрации, никогда при обычном логине"""
        if not is_new_user:
            logger.debug("whatsapp_optin_skipped", user_id=user_id)
            return None
        return self._spawn(
            run_best_effort(self._optin(user_id), "whatsapp_optin", default=False, user_id=user_id)
        )

    async def _optin(self, user_id: str) -> bool:
        await self._collaborators.whatsapp_optin(user_id)
        if self._session_factory is not None:
            async with UnitOfWork(self._session_factory) as uow:
                profile = await uow.profiles.get_or_create(uow.session, user_id)
                profile.whatsapp_opted_in = True
        logger.info("whatsapp_opted_in", user_id=user_id)
        return True

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
