"""
Submission Store - ответы анкеты
================================
A submission is mutable while in_progress (autosave bumps updated_at, which
is what invalidates cached context summaries) and frozen afterwards.
"""
from typing import Dict, Any

from models import Submission, utcnow
from domain.goal_domain_service import SubmissionState, can_transition_submission
from infrastructure.uow import UnitOfWork
from exceptions import SubmissionNotFound, SubmissionFrozen, InvalidStateTransition
from logging_config import get_logger

logger = get_logger(__name__)


class SubmissionStore:

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create(self, user_id: str, answers: Dict[str, Any] = None) -> Submission:
        async with UnitOfWork(self._session_factory) as uow:
            submission = Submission(
                user_id=user_id,
                answers=answers or {},
                _status=SubmissionState.IN_PROGRESS.value,
            )
            await uow.submissions.save(uow.session, submission)
            logger.info("submission_created", submission_id=submission.id, user_id=user_id)
            return submission

    async def get(self, user_id: str, submission_id: str) -> Submission:
        async with UnitOfWork(self._session_factory) as uow:
            return await self._load(uow, user_id, submission_id)

    async def save_answers(self, user_id: str, submission_id: str, answers: Dict[str, Any]) -> Submission:
        """Autosave: replaces the answers blob of an in-progress submission"""
        async with UnitOfWork(self._session_factory) as uow:
            submission = await self._load(uow, user_id, submission_id, for_update=True)
            if submission.status != SubmissionState.IN_PROGRESS.value:
                raise SubmissionFrozen(submission_id, submission.status)

            submission.answers = dict(answers)
            submission.updated_at = utcnow()
            await uow.session.flush()
            logger.info("submission_saved", submission_id=submission_id, keys=len(answers))
            return submission

    async def complete(self, user_id: str, submission_id: str) -> Submission:
        return await self._transition(user_id, submission_id, SubmissionState.COMPLETED)

    async def archive(self, user_id: str, submission_id: str) -> Submission:
        return await self._transition(user_id, submission_id, SubmissionState.ARCHIVED)

    async def _transition(self, user_id, submission_id, new_state: SubmissionState) -> Submission:
        async with UnitOfWork(self._session_factory) as uow:
            submission = await self._load(uow, user_id, submission_id, for_update=True)
            if submission.status == new_state.value:
                return submission
            if not can_transition_submission(submission.status, new_state.value):
                raise InvalidStateTransition(
                    "submission", submission_id, submission.status, new_state.value,
                    f"Submission cannot go from {submission.status} to {new_state.value}",
                )
            submission._status = new_state.value
            await uow.session.flush()
            logger.info("submission_transition", submission_id=submission_id, to_state=new_state.value)
            return submission

    async def _load(self, uow, user_id, submission_id, for_update: bool = False) -> Submission:
        if for_update:
            submission = await uow.submissions.get_for_update(uow.session, submission_id)
        else:
            submission = await uow.submissions.get(uow.session, submission_id)
        if submission is None or submission.user_id != user_id:
            raise SubmissionNotFound(submission_id)
        return submission
