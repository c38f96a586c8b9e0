"""
Context Summary Cache
=====================
Per (user, axis) digest of a submission, cached on the Goal row.

Order of checks:
1. fresh cached summary -> returned as is (no call, no counter change)
2. summary_attempts >= cap -> last known summary or the limit placeholder
3. otherwise one external call per (user, axis) raced against a deadline;
   success consumes one slot via compare-and-set, timeout/failure consumes none
"""
import asyncio

from models import utcnow
from schemas import AxisSelection, SummaryResult
from domain.staleness import is_stale
from infrastructure.uow import UnitOfWork
from infrastructure.quota import consume_summary_slot
from single_flight import SingleFlight
from goal_service import GoalService
from exceptions import SubmissionNotFound, CollaboratorUnavailable
from lifecycle_config import MAX_SUMMARY_ATTEMPTS, SUMMARY_TIMEOUT_SECONDS, SUMMARY_LIMIT_PLACEHOLDER
from logging_config import get_logger

logger = get_logger(__name__)


class ContextSummaryService:

    def __init__(
        self,
        session_factory,
        collaborators,
        single_flight: SingleFlight = None,
        timeout: float = SUMMARY_TIMEOUT_SECONDS,
    ):
        self._session_factory = session_factory
        self._collaborators = collaborators
        self._single_flight = single_flight or SingleFlight()
        self._timeout = timeout
        self._goals = GoalService(session_factory)

    async def get_or_refresh_summary(self, user_id: str, axis: AxisSelection, submission_id: str) -> SummaryResult:
        goal = await self._goals.ensure_goal(user_id, submission_id, axis)

        cached = await self._cached_result(user_id, goal.id, submission_id)
        if cached is not None:
            return cached

        key = ("summary", user_id, submission_id, axis.id)
        return await self._single_flight.run(
            key, lambda: self._refresh(user_id, goal.id, axis, submission_id)
        )

    async def _cached_result(self, user_id, goal_id, submission_id):
        async with UnitOfWork(self._session_factory) as uow:
            submission = await uow.submissions.get(uow.session, submission_id)
            if submission is None or submission.user_id != user_id:
                raise SubmissionNotFound(submission_id)
            goal = await uow.goals.get(uow.session, goal_id)

            if goal.context_summary and not is_stale(goal.knowledge_generated_at, submission.updated_at):
                logger.debug("summary_cache_hit", goal_id=goal.id)
                return SummaryResult(
                    summary=goal.context_summary,
                    source="cache",
                    summary_attempts=goal.summary_attempts,
                )

            if goal.summary_attempts >= MAX_SUMMARY_ATTEMPTS:
                logger.info("summary_quota_exhausted", goal_id=goal.id, attempts=goal.summary_attempts)
                return SummaryResult(
                    summary=goal.context_summary or SUMMARY_LIMIT_PLACEHOLDER,
                    source="quota",
                    summary_attempts=goal.summary_attempts,
                )
        return None

    async def _refresh(self, user_id, goal_id, axis: AxisSelection, submission_id) -> SummaryResult:
        async with UnitOfWork(self._session_factory) as uow:
            submission = await uow.submissions.get(uow.session, submission_id)
            answers = dict(submission.answers or {})
            goal = await uow.goals.get(uow.session, goal_id)
            attempts = goal.summary_attempts

        # Stamp with the start time: answers saved during the call make it stale
        started_at = utcnow()
        try:
            response = await asyncio.wait_for(
                self._collaborators.summarize_context(answers, axis.model_dump()),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("summary_timeout", goal_id=goal_id, timeout=self._timeout)
            return SummaryResult(summary=None, source="unavailable", summary_attempts=attempts)
        except CollaboratorUnavailable as e:
            logger.warning("summary_unavailable", goal_id=goal_id, reason=e.details.get("reason"))
            return SummaryResult(summary=None, source="unavailable", summary_attempts=attempts)

        async with UnitOfWork(self._session_factory) as uow:
            won = await consume_summary_slot(uow.session, goal_id, response.summary, started_at)
            goal = await uow.goals.get(uow.session, goal_id)

        if not won:
            logger.info("summary_slot_lost", goal_id=goal_id, attempts=goal.summary_attempts)
            return SummaryResult(
                summary=goal.context_summary or SUMMARY_LIMIT_PLACEHOLDER,
                source="quota",
                summary_attempts=goal.summary_attempts,
            )

        logger.info("summary_generated", goal_id=goal_id, attempts=goal.summary_attempts)
        return SummaryResult(
            summary=response.summary,
            source="generated",
            summary_attempts=goal.summary_attempts,
            suggested_pacing=response.suggested_pacing,
            examples=response.examples,
        )
