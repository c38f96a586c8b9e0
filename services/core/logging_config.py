"""
Logging - structlog поверх stdlib logging
=========================================
Every record carries the request user (bound once per request through
contextvars), so service code logs only what is specific to the event.

Event names are snake_case verbs: plan_generated, summary_quota_exhausted,
collaborator_call, action_transition ...
"""

import logging
import sys
import time
from typing import Any
from datetime import datetime, timezone

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Args:
        level: DEBUG / INFO / WARNING / ERROR
        json_logs: JSON lines for log shipping, otherwise console renderer
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    # httpx пишет каждый запрос на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("plan_generated", goal_id=goal.id, attempts=plan.generation_attempts)
    """
    return structlog.get_logger(name)


def bind_request_context(user_id: str, **extra: Any) -> None:
    """Reset and bind per-request fields (user_id, route ...)"""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(user_id=user_id, **extra)


def log_action_transition(
    action_id: str,
    user_id: str,
    from_state: str,
    to_state: str,
    reason: str | None,
) -> None:
    """Every Action status change goes through here"""
    get_logger("action_transition").info(
        "action_transition",
        action_id=action_id,
        user_id=user_id,
        from_state=from_state,
        to_state=to_state,
        reason=reason,
        at=datetime.now(timezone.utc).isoformat(),
    )


def log_collaborator_call(function: str, started: float, ok: bool, **extra: Any) -> None:
    """started = time.monotonic() taken before the HTTP call"""
    duration_ms = round((time.monotonic() - started) * 1000, 1)
    logger = get_logger("collaborators")
    if ok:
        logger.info("collaborator_call", function=function, duration_ms=duration_ms, **extra)
    else:
        logger.warning("collaborator_call_failed", function=function, duration_ms=duration_ms, **extra)


def log_quota_decision(counter: str, row_id: str, granted: bool) -> None:
    # проигравший CAS - это не ошибка, просто лимит
    get_logger("quota").info(
        "quota_slot_granted" if granted else "quota_slot_refused",
        counter=counter,
        row_id=row_id,
    )


def log_error(error: Exception, context: dict | None = None, level: str = "ERROR") -> None:
    """Log an exception with its type, message and traceback"""
    logger = get_logger("errors")
    log_func = getattr(logger, level.lower(), logger.error)
    log_func(
        "error_occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        exc_info=error,
        **(context or {}),
    )


from lifecycle_config import LOG_LEVEL, LOG_JSON  # noqa: E402

setup_logging(level=LOG_LEVEL, json_logs=LOG_JSON)
