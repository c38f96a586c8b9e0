"""
Priority Sorter
===============
Ranks 1..3 selected axes into Goals (first active, rest pending) through the
sort-priorities collaborator, quota-limited by submission.sorting_attempts.

Also owns the manual reorder (drag and drop), which never calls the sorter
and purges the submission's plan / action data so generation restarts clean.
"""
from typing import List

from models import Goal, utcnow
from schemas import AxisSelection, GoalView, RankResult
from domain.goal_domain_service import GoalState, TransitionReason, role_for_rank
from infrastructure.uow import UnitOfWork
from infrastructure.quota import consume_sorting_slot
from single_flight import SingleFlight
from goal_service import activate_goal, set_goal_status
from action_distributor import cleanup_submission_data
from exceptions import SubmissionNotFound, InvalidAxisSelection, GoalCeilingReached
from lifecycle_config import MAX_SELECTED_AXES, MAX_SORTING_ATTEMPTS, MAX_ACTIVE_GOALS, GOAL_ROLES
from logging_config import get_logger

logger = get_logger(__name__)


def _validate_axes(axes: List[AxisSelection]) -> None:
    ids = [a.id for a in axes]
    if not 1 <= len(ids) <= MAX_SELECTED_AXES:
        raise InvalidAxisSelection(f"Select between 1 and {MAX_SELECTED_AXES} axes", ids)
    if len(set(ids)) != len(ids):
        raise InvalidAxisSelection("Axes must be distinct", ids)


def _is_ranking_of(goals, requested: set) -> bool:
    """Goals form a finished ranking of exactly these axes (not ensure_goal placeholders)"""
    return bool(goals) and {g.axis_id for g in goals} == requested and all(g.ranked_at is not None for g in goals)


def _views(goals) -> List[GoalView]:
    return [GoalView.model_validate(g) for g in sorted(goals, key=lambda g: g.priority_order)]


class PrioritySorter:

    def __init__(self, session_factory, collaborators, single_flight: SingleFlight = None):
        self._session_factory = session_factory
        self._collaborators = collaborators
        self._single_flight = single_flight or SingleFlight()

    async def rank_axes(
        self,
        user_id: str,
        submission_id: str,
        axes: List[AxisSelection],
        refresh: bool = False,
    ) -> RankResult:
        _validate_axes(axes)
        requested = {a.id for a in axes}

        async with UnitOfWork(self._session_factory) as uow:
            submission = await self._load_submission(uow, user_id, submission_id)
            goals = await uow.goals.list_for_submission(uow.session, user_id, submission_id)
            attempts = submission.sorting_attempts

            # 1:1 cache hit - zero quota cost
            if not refresh and _is_ranking_of(goals, requested):
                logger.info("priority_cache_hit", submission_id=submission_id)
                return RankResult(goals=_views(goals), source="cache", sorting_attempts=attempts)

            if attempts >= MAX_SORTING_ATTEMPTS:
                return await self._fallback_order(uow, user_id, submission_id, axes, goals, attempts)

            await self._check_goal_ceiling(uow, user_id, submission_id)

        # запросы с другим набором осей не должны получить чужой результат
        key = ("sort", user_id, submission_id, frozenset(requested), refresh)
        return await self._single_flight.run(
            key, lambda: self._rank_with_sorter(user_id, submission_id, axes)
        )

    async def _rank_with_sorter(self, user_id, submission_id, axes: List[AxisSelection]) -> RankResult:
        by_id = {a.id: a for a in axes}
        response = await self._collaborators.sort_priorities([a.model_dump() for a in axes])

        ordered = []
        for item in response.sorted_axes:
            if item.original_id in by_id and item.original_id not in {a.id for a, _, _ in ordered}:
                ordered.append((by_id[item.original_id], item.role, item.reasoning))
        for axis in axes:
            # ось, которую сортировщик потерял, уходит в конец
            if axis.id not in {a.id for a, _, _ in ordered}:
                ordered.append((axis, None, None))

        async with UnitOfWork(self._session_factory) as uow:
            if not await consume_sorting_slot(uow.session, submission_id):
                submission = await uow.submissions.get(uow.session, submission_id)
                goals = await uow.goals.list_for_submission(uow.session, user_id, submission_id)
                return await self._fallback_order(
                    uow, user_id, submission_id, axes, goals, submission.sorting_attempts
                )

            goals = await self._persist_order(uow, user_id, submission_id, ordered)
            submission = await uow.submissions.get(uow.session, submission_id)
            logger.info(
                "priorities_ranked",
                submission_id=submission_id,
                order=[g.axis_id for g in goals],
                attempts=submission.sorting_attempts,
            )
            return RankResult(goals=_views(goals), source="sorter", sorting_attempts=submission.sorting_attempts)

    async def _fallback_order(self, uow, user_id, submission_id, axes, goals, attempts) -> RankResult:
        """Квота исчерпана: лучший доступный порядок без внешнего вызова"""
        logger.info("priority_quota_exhausted", submission_id=submission_id, attempts=attempts)
        if _is_ranking_of(goals, {a.id for a in axes}):
            return RankResult(goals=_views(goals), source="quota", sorting_attempts=attempts, quota_exhausted=True)

        # Keep the cached relative order, then the user's order for new axes
        cached_rank = {g.axis_id: g.priority_order for g in goals}
        ordered_axes = sorted(axes, key=lambda a: (a.id not in cached_rank, cached_rank.get(a.id, 0)))
        previous = {g.axis_id: g for g in goals}
        ordered = [
            (a, getattr(previous.get(a.id), "role", None), getattr(previous.get(a.id), "reasoning", None))
            for a in ordered_axes
        ]
        await self._check_goal_ceiling(uow, user_id, submission_id)
        persisted = await self._persist_order(uow, user_id, submission_id, ordered)
        return RankResult(goals=_views(persisted), source="quota", sorting_attempts=attempts, quota_exhausted=True)

    async def _persist_order(self, uow, user_id, submission_id, ordered: list) -> list:
        """
        Записать порядок как Goals: upsert по (user, axis, submission),
        удалить цели submission, которых больше нет в наборе.
        """
        session = uow.session
        existing = {g.axis_id: g for g in await uow.goals.list_for_submission(session, user_id, submission_id)}
        keep = {axis.id for axis, _, _ in ordered}

        stale_ids = [g.id for axis_id, g in existing.items() if axis_id not in keep]
        if stale_ids:
            await uow.actions.delete_for_goals(session, stale_ids)
            await uow.plans.delete_for_goals(session, stale_ids)
            await uow.goals.delete_many(session, stale_ids)
            logger.info("goals_removed_on_rerank", submission_id=submission_id, removed=len(stale_ids))

        ranked_at = utcnow()
        goals = []
        for index, (axis, role, reasoning) in enumerate(ordered):
            goal = existing.get(axis.id)
            if goal is None:
                goal = Goal(
                    user_id=user_id,
                    submission_id=submission_id,
                    axis_id=axis.id,
                    _status=GoalState.PENDING.value,
                )
                session.add(goal)
            goal.axis_title = axis.title or goal.axis_title
            goal.theme_id = axis.theme_id or goal.theme_id
            goal.priority_order = index + 1
            goal.role = role if role in GOAL_ROLES else role_for_rank(index)
            goal.reasoning = reasoning
            goal.ranked_at = ranked_at
            if index > 0:
                set_goal_status(goal, GoalState.PENDING, TransitionReason.RANKED_LATER.value)
            goals.append(goal)

        await session.flush()
        await self._activate_first(uow, goals[0], TransitionReason.RANKED_FIRST.value)
        await session.flush()
        return goals

    async def _activate_first(self, uow, goal, reason: str) -> None:
        active = await uow.goals.list_active(uow.session, goal.user_id, for_update=True)
        others = [g for g in active if g.id != goal.id]
        activate_goal(goal, others, reason)

    async def _check_goal_ceiling(self, uow, user_id, submission_id) -> None:
        """Проверить до внешнего вызова, чтобы не тратить квоту впустую"""
        active = await uow.goals.list_active(uow.session, user_id)
        outside = [g for g in active if g.submission_id != submission_id]
        if len(outside) >= MAX_ACTIVE_GOALS:
            raise GoalCeilingReached(user_id, len(outside), MAX_ACTIVE_GOALS)

    # -------------------------------------------------------------------------
    # Manual reorder
    # -------------------------------------------------------------------------

    async def reorder(self, user_id: str, submission_id: str, goal_ids: List[str]) -> List[GoalView]:
        """
        Drag and drop: rewrite priority_order / status, purge plan data.
        The sorter is not called and sorting_attempts is untouched.
        """
        async with UnitOfWork(self._session_factory) as uow:
            await self._load_submission(uow, user_id, submission_id)
            goals = await uow.goals.list_for_submission(uow.session, user_id, submission_id)
            by_id = {g.id: g for g in goals}
            if len(goal_ids) != len(set(goal_ids)) or set(goal_ids) != set(by_id):
                raise InvalidAxisSelection(
                    "Reorder must list every goal of the submission exactly once",
                    [by_id[g].axis_id for g in goal_ids if g in by_id],
                )

            ordered = [by_id[g] for g in goal_ids]
            ranked_at = utcnow()
            for index, goal in enumerate(ordered):
                goal.priority_order = index + 1
                goal.ranked_at = ranked_at
                if index > 0:
                    set_goal_status(goal, GoalState.PENDING, TransitionReason.MANUAL_REORDER.value)

            await cleanup_submission_data(uow, user_id, submission_id)
            await uow.session.flush()
            await self._activate_first(uow, ordered[0], TransitionReason.MANUAL_REORDER.value)
            await uow.session.flush()

            logger.info("goals_reordered", submission_id=submission_id, order=[g.axis_id for g in ordered])
            return _views(ordered)

    async def _load_submission(self, uow, user_id, submission_id):
        submission = await uow.submissions.get(uow.session, submission_id)
        if submission is None or submission.user_id != user_id:
            raise SubmissionNotFound(submission_id)
        return submission
