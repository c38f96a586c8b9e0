"""
Best-effort execution
=====================
Side channels (topic memory, WhatsApp opt-in) must never fail the request
that triggered them. Failures are logged with the channel name and turned
into a default value; cancellation still propagates.
"""

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from logging_config import log_error

T = TypeVar('T')


async def run_best_effort(
    awaitable: Awaitable[T],
    channel: str,
    default: T = None,
    log_level: str = "WARNING",
    **context: Any,
) -> T:
    """
    Usage:
        ok = await run_best_effort(client.whatsapp_optin(user_id), "whatsapp_optin",
                                   default=False, user_id=user_id)
    """
    try:
        return await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log_error(e, {"channel": channel, **context}, log_level)
        return default


def best_effort(channel: str, default: Any = None, log_level: str = "WARNING"):
    """Decorator form of run_best_effort for coroutine methods"""
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await run_best_effort(
                func(*args, **kwargs), channel, default, log_level, function=func.__name__,
            )
        return wrapper
    return decorator
