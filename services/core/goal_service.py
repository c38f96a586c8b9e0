"""
Goal Service - цели пользователя
================================
Ensure-goal fallback (idempotent upsert on user/axis/submission), execution
context resolution and goal activation under the "3 pillars" ceiling.
"""
from typing import Optional

from sqlalchemy.exc import IntegrityError

from models import Goal
from schemas import AxisSelection
from domain.goal_domain_service import GoalDomainService, GoalState, role_for_rank
from infrastructure.uow import UnitOfWork
from exceptions import (
    SubmissionNotFound,
    GoalNotFound,
    ExecutionContextMissing,
    GoalCeilingReached,
    ThemeAlreadyActive,
)
from lifecycle_config import MAX_ACTIVE_GOALS, RECOVERY_REDIRECT
from logging_config import get_logger

logger = get_logger(__name__)
_domain = GoalDomainService()


async def ensure_goal(uow: UnitOfWork, user_id: str, submission_id: str, axis: AxisSelection) -> Goal:
    """
    Вернуть цель (user, axis, submission), создав её при отсутствии.

    New goals are appended after the existing ones as pending.
    """
    session = uow.session
    goal = await uow.goals.find(session, user_id, axis.id, submission_id)
    if goal is not None:
        return goal

    existing = await uow.goals.list_for_submission(session, user_id, submission_id)
    goal = Goal(
        user_id=user_id,
        submission_id=submission_id,
        axis_id=axis.id,
        axis_title=axis.title,
        theme_id=axis.theme_id,
        priority_order=len(existing) + 1,
        role=role_for_rank(len(existing)),
        _status=GoalState.PENDING.value,
    )
    await uow.goals.save(session, goal)
    logger.info("goal_ensured", goal_id=goal.id, user_id=user_id, axis_id=axis.id)
    return goal


def activate_goal(goal: Goal, other_active_goals: list, reason: str) -> None:
    """Активировать цель, соблюдая потолок и правило одной темы"""
    if goal.status == GoalState.ACTIVE.value:
        return

    conflict = _domain.activation_conflict(goal, other_active_goals, MAX_ACTIVE_GOALS)
    if conflict is not None:
        kind, value = conflict
        if kind == "ceiling":
            raise GoalCeilingReached(goal.user_id, value, MAX_ACTIVE_GOALS)
        raise ThemeAlreadyActive(goal.theme_id, value.id)

    event = _domain.transition(goal, GoalState.ACTIVE, reason)
    logger.info("goal_transition", goal_id=event.goal_id, from_state=event.from_state, to_state=event.to_state, reason=event.reason)


def set_goal_status(goal: Goal, new_state: GoalState, reason: str) -> None:
    """Идемпотентная смена статуса без проверок потолка (pending / archived)"""
    if goal.status == new_state.value:
        return
    _domain.transition(goal, new_state, reason)


class GoalService:

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def ensure_goal(self, user_id: str, submission_id: str, axis: AxisSelection) -> Goal:
        """
        Idempotent: a concurrent insert of the same (user, axis, submission)
        loses on the unique constraint and re-reads the winner.
        """
        try:
            return await self._ensure_goal_once(user_id, submission_id, axis)
        except IntegrityError:
            logger.info("goal_ensure_conflict", user_id=user_id, axis_id=axis.id)
            return await self._ensure_goal_once(user_id, submission_id, axis)

    async def _ensure_goal_once(self, user_id: str, submission_id: str, axis: AxisSelection) -> Goal:
        async with UnitOfWork(self._session_factory) as uow:
            submission = await uow.submissions.get(uow.session, submission_id)
            if submission is None or submission.user_id != user_id:
                raise SubmissionNotFound(submission_id)
            return await ensure_goal(uow, user_id, submission_id, axis)

    async def list_goals(self, user_id: str, submission_id: str) -> list:
        async with UnitOfWork(self._session_factory) as uow:
            return await uow.goals.list_for_submission(uow.session, user_id, submission_id)

    async def resolve_execution_context(self, user_id: str, goal_id: Optional[str] = None) -> Goal:
        """
        Explicit goal first, then the most recent active goal of the user.

        Raises:
            GoalNotFound: explicit goal id does not belong to the user
            ExecutionContextMissing: nothing to fall back to (hard redirect)
        """
        async with UnitOfWork(self._session_factory) as uow:
            return await resolve_goal(uow, user_id, goal_id)


async def resolve_goal(uow: UnitOfWork, user_id: str, goal_id: Optional[str] = None) -> Goal:
    if goal_id:
        goal = await uow.goals.get(uow.session, goal_id)
        if goal is None or goal.user_id != user_id:
            raise GoalNotFound(goal_id)
        return goal

    goal = await uow.goals.latest_active(uow.session, user_id)
    if goal is None:
        logger.warning("execution_context_missing", user_id=user_id)
        raise ExecutionContextMissing(user_id, RECOVERY_REDIRECT)
    logger.info("execution_context_fallback", user_id=user_id, goal_id=goal.id)
    return goal
