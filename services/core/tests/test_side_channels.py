"""
SIDE CHANNELS / SUBMISSION STORE TESTS
"""
import asyncio

import pytest

from infrastructure.uow import UnitOfWork
from side_channels import SideChannels
from error_handler import best_effort, run_best_effort
from exceptions import SubmissionFrozen, SubmissionNotFound, InvalidStateTransition
from conftest import USER_ID

pytestmark = pytest.mark.asyncio(loop_scope="function")


class TestSignupOptin:

    async def test_new_user_opted_in(self, session_factory, collaborators):
        channels = SideChannels(collaborators, session_factory)

        task = channels.register_signup(USER_ID, is_new_user=True)
        await channels.drain()

        assert task is not None
        assert collaborators.optins == [USER_ID]
        async with UnitOfWork(session_factory) as uow:
            profile = await uow.profiles.get(uow.session, USER_ID)
        assert profile.whatsapp_opted_in

    async def test_login_never_opts_in(self, session_factory, collaborators):
        channels = SideChannels(collaborators, session_factory)

        assert channels.register_signup(USER_ID, is_new_user=False) is None
        await channels.drain()

        assert collaborators.calls["whatsapp-optin"] == 0

    async def test_optin_failure_is_swallowed(self, session_factory, collaborators):
        collaborators.failing.add("whatsapp-optin")
        channels = SideChannels(collaborators, session_factory)

        task = channels.register_signup(USER_ID, is_new_user=True)
        await channels.drain()

        assert task.result() is False
        async with UnitOfWork(session_factory) as uow:
            assert await uow.profiles.get(uow.session, USER_ID) is None


class TestTopicMemory:

    async def test_sync_runs_in_background(self, collaborators):
        channels = SideChannels(collaborators)

        task = channels.schedule_topic_memory(plan_id="p1")
        await channels.drain()

        assert task.result() is True
        assert collaborators.topic_memory == ["p1"]

    async def test_failure_never_reaches_caller(self, collaborators):
        collaborators.failing.add("process-plan-topic-memory")
        channels = SideChannels(collaborators)

        task = channels.schedule_topic_memory(goal_id="g1")
        await channels.drain()

        assert task.result() is False


class TestSubmissionStore:

    async def test_autosave_bumps_updated_at(self, services, submission):
        saved = await services.submissions.save_answers(USER_ID, submission.id, {"sleep_q1": "mieux"})

        assert saved.answers == {"sleep_q1": "mieux"}
        assert saved.updated_at >= submission.updated_at

    async def test_completed_submission_is_frozen(self, services, submission):
        completed = await services.submissions.complete(USER_ID, submission.id)
        assert completed.status == "completed"

        with pytest.raises(SubmissionFrozen):
            await services.submissions.save_answers(USER_ID, submission.id, {"late": True})

    async def test_complete_is_idempotent(self, services, submission):
        await services.submissions.complete(USER_ID, submission.id)
        again = await services.submissions.complete(USER_ID, submission.id)
        assert again.status == "completed"

    async def test_archived_cannot_complete(self, services, submission):
        await services.submissions.archive(USER_ID, submission.id)
        with pytest.raises(InvalidStateTransition):
            await services.submissions.complete(USER_ID, submission.id)

    async def test_owner_only(self, services, submission):
        with pytest.raises(SubmissionNotFound):
            await services.submissions.get("someone-else", submission.id)


class TestBestEffort:

    async def test_failure_becomes_default(self):
        async def boom():
            raise RuntimeError("edge down")

        assert await run_best_effort(boom(), "test_channel", default="fallback") == "fallback"

    async def test_decorated_method_returns_value(self):
        @best_effort("test_channel", default=False)
        async def sync_ok(x):
            return x * 2

        assert await sync_ok(21) == 42

    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(run_best_effort(slow(), "test_channel", default=False))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
