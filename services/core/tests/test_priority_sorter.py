"""
PRIORITY SORTER / GOAL SERVICE TESTS

Ranking through the sorter, the sorting quota, manual reorder and the
execution-context fallback.
"""
import asyncio

import pytest

from infrastructure.uow import UnitOfWork
from schemas import AxisSelection
from exceptions import InvalidAxisSelection, GoalCeilingReached, ExecutionContextMissing, GoalNotFound
from conftest import USER_ID, AXES

pytestmark = pytest.mark.asyncio(loop_scope="function")


async def _set_sorting_attempts(session_factory, submission_id, value):
    async with UnitOfWork(session_factory) as uow:
        submission = await uow.submissions.get(uow.session, submission_id)
        submission.sorting_attempts = value


class TestRankAxes:

    async def test_fresh_submission_three_axes(self, services, submission, collaborators):
        """Scenario B"""
        result = await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        assert collaborators.calls["sort-priorities"] == 1
        assert result.source == "sorter"
        assert result.sorting_attempts == 1
        assert [g.priority_order for g in result.goals] == [1, 2, 3]
        assert [g.status for g in result.goals] == ["active", "pending", "pending"]
        assert [g.role for g in result.goals] == ["foundation", "lever", "optimization"]
        assert [g.axis_id for g in result.goals] == ["sleep", "focus", "stress"]

    async def test_sorter_order_is_respected(self, services, submission, collaborators):
        collaborators.sorted_axes = [
            {"originalId": "stress", "role": "foundation", "reasoning": "urgent"},
            {"originalId": "unknown-axis"},
            {"originalId": "sleep", "role": "not-a-role"},
        ]

        result = await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        # unknown id dropped, forgotten axis appended, invalid role replaced by rank role
        assert [g.axis_id for g in result.goals] == ["stress", "sleep", "focus"]
        assert [g.role for g in result.goals] == ["foundation", "lever", "optimization"]
        assert result.goals[0].reasoning == "urgent"
        assert result.goals[0].status == "active"

    async def test_goals_from_summaries_still_go_through_sorter(self, services, submission, collaborators):
        """Summaries run first and create pending goals; ranking must still happen"""
        for axis in AXES:
            await services.summaries.get_or_refresh_summary(USER_ID, axis, submission.id)

        result = await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        assert result.source == "sorter"
        assert collaborators.calls["sort-priorities"] == 1
        assert [g.status for g in result.goals] == ["active", "pending", "pending"]
        assert len(await services.goals.list_goals(USER_ID, submission.id)) == 3
        again = await services.sorter.rank_axes(USER_ID, submission.id, AXES)
        assert again.source == "cache"

    async def test_goal_added_by_summary_breaks_cache(self, services, submission, collaborators):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES[:2])
        await services.summaries.get_or_refresh_summary(USER_ID, AXES[2], submission.id)

        result = await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        assert result.source == "sorter"
        assert collaborators.calls["sort-priorities"] == 2

    async def test_same_selection_is_cache_hit(self, services, submission, collaborators):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        result = await services.sorter.rank_axes(USER_ID, submission.id, list(reversed(AXES)))

        assert result.source == "cache"
        assert result.sorting_attempts == 1
        assert collaborators.calls["sort-priorities"] == 1

    async def test_refresh_calls_sorter_again(self, services, submission, collaborators):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        result = await services.sorter.rank_axes(USER_ID, submission.id, AXES, refresh=True)

        assert result.source == "sorter"
        assert result.sorting_attempts == 2
        assert collaborators.calls["sort-priorities"] == 2

    async def test_changed_selection_removes_dropped_goals(self, services, submission):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES[:2])

        result = await services.sorter.rank_axes(USER_ID, submission.id, [AXES[0], AXES[2]])

        assert [g.axis_id for g in result.goals] == ["sleep", "stress"]
        goals = await services.goals.list_goals(USER_ID, submission.id)
        assert {g.axis_id for g in goals} == {"sleep", "stress"}

    async def test_invalid_selection(self, services, submission, collaborators):
        with pytest.raises(InvalidAxisSelection):
            await services.sorter.rank_axes(USER_ID, submission.id, AXES + [AxisSelection(id="money")])
        with pytest.raises(InvalidAxisSelection):
            await services.sorter.rank_axes(USER_ID, submission.id, [AXES[0], AXES[0]])
        assert collaborators.calls["sort-priorities"] == 0


class TestSortingQuota:

    async def test_exhausted_quota_serves_cache_without_call(self, services, submission, session_factory, collaborators):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES)
        await _set_sorting_attempts(session_factory, submission.id, 3)

        result = await services.sorter.rank_axes(USER_ID, submission.id, AXES, refresh=True)

        assert result.source == "quota"
        assert result.quota_exhausted
        assert result.sorting_attempts == 3
        assert collaborators.calls["sort-priorities"] == 1

    async def test_exhausted_quota_new_axis_appended(self, services, submission, session_factory, collaborators):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES[:2])
        await _set_sorting_attempts(session_factory, submission.id, 3)

        result = await services.sorter.rank_axes(USER_ID, submission.id, [AXES[2], AXES[1]])

        assert [g.axis_id for g in result.goals] == ["focus", "stress"]
        assert result.goals[0].status == "active"
        assert collaborators.calls["sort-priorities"] == 1

    async def test_attempts_never_exceed_cap(self, services, submission, session_factory):
        for _ in range(5):
            result = await services.sorter.rank_axes(USER_ID, submission.id, AXES, refresh=True)
            assert result.sorting_attempts <= 3

        async with UnitOfWork(session_factory) as uow:
            stored = await uow.submissions.get(uow.session, submission.id)
        assert stored.sorting_attempts == 3


class TestSortingConcurrency:

    async def test_different_selections_do_not_share_a_call(self, services, submission, collaborators):
        collaborators.delay = 0.2

        first, second = await asyncio.gather(
            services.sorter.rank_axes(USER_ID, submission.id, AXES[:2]),
            services.sorter.rank_axes(USER_ID, submission.id, [AXES[2]], refresh=True),
        )

        assert [g.axis_id for g in first.goals] == ["sleep", "focus"]
        assert [g.axis_id for g in second.goals] == ["stress"]
        assert collaborators.calls["sort-priorities"] == 2

    async def test_same_selection_shares_one_call(self, services, submission, collaborators):
        collaborators.delay = 0.2

        results = await asyncio.gather(*[
            services.sorter.rank_axes(USER_ID, submission.id, AXES) for _ in range(3)
        ])

        assert collaborators.calls["sort-priorities"] == 1
        assert len({tuple(g.id for g in r.goals) for r in results}) == 1


class TestGoalCeiling:

    async def test_fourth_active_goal_rejected_before_sorter(self, services, collaborators):
        for axis in AXES:
            other = await services.submissions.create(USER_ID)
            await services.sorter.rank_axes(USER_ID, other.id, [axis])
        calls = collaborators.calls["sort-priorities"]

        fresh = await services.submissions.create(USER_ID)
        with pytest.raises(GoalCeilingReached):
            await services.sorter.rank_axes(USER_ID, fresh.id, [AxisSelection(id="money", theme_id="finance")])

        assert collaborators.calls["sort-priorities"] == calls


class TestReorder:

    async def test_manual_reorder_purges_plan_data(self, services, submission, session_factory, collaborators):
        """Scenario E"""
        ranked = await services.sorter.rank_axes(USER_ID, submission.id, AXES)
        first, second, third = [g.id for g in ranked.goals]
        await services.plans.generate_plan(USER_ID, first)
        await services.plans.validate_plan(USER_ID, first)

        goals = await services.sorter.reorder(USER_ID, submission.id, [third, first, second])

        assert [(g.id, g.priority_order, g.status) for g in goals] == [
            (third, 1, "active"), (first, 2, "pending"), (second, 3, "pending"),
        ]
        async with UnitOfWork(session_factory) as uow:
            assert await uow.plans.list_for_submission(uow.session, USER_ID, submission.id) == []
            assert await uow.actions.list_for_user(uow.session, USER_ID) == []
            stored = await uow.submissions.get(uow.session, submission.id)
        assert stored.sorting_attempts == 1
        assert collaborators.calls["sort-priorities"] == 1

        regenerated = await services.plans.generate_plan(USER_ID, first)
        assert regenerated.generation_attempts == 1

    async def test_reorder_requires_full_set(self, services, submission):
        ranked = await services.sorter.rank_axes(USER_ID, submission.id, AXES)
        with pytest.raises(InvalidAxisSelection):
            await services.sorter.reorder(USER_ID, submission.id, [ranked.goals[0].id])


class TestGoalService:

    async def test_concurrent_ensure_goal_creates_one_row(self, services, submission):
        goals = await asyncio.gather(*[
            services.goals.ensure_goal(USER_ID, submission.id, AXES[1]) for _ in range(3)
        ])

        assert len({g.id for g in goals}) == 1
        stored = await services.goals.list_goals(USER_ID, submission.id)
        assert len(stored) == 1

    async def test_ensure_goal_appends_after_existing(self, services, submission):
        await services.sorter.rank_axes(USER_ID, submission.id, AXES[:1])

        goal = await services.goals.ensure_goal(USER_ID, submission.id, AXES[2])

        assert goal.priority_order == 2
        assert goal.role == "lever"
        assert goal.status == "pending"

    async def test_execution_context_falls_back_to_active_goal(self, services, submission):
        ranked = await services.sorter.rank_axes(USER_ID, submission.id, AXES)

        goal = await services.goals.resolve_execution_context(USER_ID)

        assert goal.id == ranked.goals[0].id

    async def test_execution_context_missing_redirects(self, services):
        with pytest.raises(ExecutionContextMissing) as exc_info:
            await services.goals.resolve_execution_context(USER_ID)
        assert exc_info.value.details["redirect_to"] == "/dashboard"

    async def test_foreign_goal_id(self, services, submission):
        ranked = await services.sorter.rank_axes(USER_ID, submission.id, AXES[:1])
        with pytest.raises(GoalNotFound):
            await services.goals.resolve_execution_context("someone-else", ranked.goals[0].id)
