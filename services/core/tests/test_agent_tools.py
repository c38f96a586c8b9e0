"""
AGENT TOOL EXECUTOR TESTS

Каждый инструмент агента + мягкие ошибки (ToolResult ok=False вместо
исключений) + инварианты: потолок 3 активных действий, "murs avant toit".
"""
from datetime import date

import pytest

from infrastructure.uow import UnitOfWork
from agent_tools import ToolContext
from conftest import USER_ID

pytestmark = pytest.mark.asyncio(loop_scope="function")

TODAY = date(2026, 3, 2)


@pytest.fixture
def ctx():
    return ToolContext(user_id=USER_ID, today=TODAY)


@pytest.fixture
def confirmed():
    return ToolContext(user_id=USER_ID, today=TODAY, user_confirmed=True)


async def _action(session_factory, title):
    async with UnitOfWork(session_factory) as uow:
        for action in await uow.actions.list_for_user(uow.session, USER_ID):
            if action.title == title:
                return action
    return None


async def _events(session_factory, action_id):
    async with UnitOfWork(session_factory) as uow:
        return await uow.tracking.list_for_action(uow.session, action_id)


async def _active_count(session_factory):
    async with UnitOfWork(session_factory) as uow:
        return await uow.actions.count_active(uow.session, USER_ID)


async def _plan(session_factory, plan_id):
    async with UnitOfWork(session_factory) as uow:
        return await uow.plans.get(uow.session, plan_id)


class TestDispatch:

    async def test_unknown_tool(self, services, ctx):
        result = await services.tools.execute("delete_plan", {}, ctx)
        assert not result.ok
        assert result.code == "unknown_tool"

    async def test_invalid_arguments(self, services, ctx):
        result = await services.tools.execute("track_progress", {"operation": "multiply"}, ctx)
        assert not result.ok
        assert result.code == "invalid_arguments"
        assert any("target_name" in e for e in result.data["errors"])

    async def test_list_tools(self, services):
        assert len(services.tools.list_tools()) == 8


class TestTrackProgress:

    async def test_habit_check_in(self, services, validated_plan, session_factory, ctx):
        """Scenario C"""
        result = await services.tools.execute("track_progress", {
            "target_name": "Marche Matinale", "value": 1, "operation": "add", "status": "completed",
        }, ctx)

        assert result.ok
        assert result.data["delta"] == 1
        walk = await _action(session_factory, "Marche Matinale")
        assert walk.current_reps == 1
        assert walk.status == "active"
        assert walk.last_performed_at is not None
        events = await _events(session_factory, walk.id)
        assert len(events) == 1
        assert events[0].event_date == TODAY

    async def test_same_day_repeat_is_not_counted(self, services, validated_plan, session_factory, ctx):
        args = {"target_name": "marche matinale"}
        await services.tools.execute("track_progress", args, ctx)

        result = await services.tools.execute("track_progress", args, ctx)

        assert result.ok
        assert result.code == "already_tracked"
        walk = await _action(session_factory, "Marche Matinale")
        assert walk.current_reps == 1
        assert len(await _events(session_factory, walk.id)) == 1

    async def test_other_day_counts(self, services, validated_plan, session_factory, ctx):
        await services.tools.execute("track_progress", {"target_name": "Marche Matinale"}, ctx)
        await services.tools.execute("track_progress", {"target_name": "Marche Matinale", "date": "2026-03-03"}, ctx)

        walk = await _action(session_factory, "Marche Matinale")
        assert walk.current_reps == 2

    async def test_set_operation(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("track_progress", {
            "target_name": "Marche Matinale", "operation": "set", "value": 4,
        }, ctx)

        assert result.ok
        assert (await _action(session_factory, "Marche Matinale")).current_reps == 4

    async def test_mission_completes_then_refuses(self, services, validated_plan, session_factory, ctx):
        done = await services.tools.execute("track_progress", {"target_name": "Ranger la chambre"}, ctx)
        again = await services.tools.execute("track_progress", {"target_name": "Ranger la chambre"}, ctx)

        assert done.ok
        assert done.data["action"]["status"] == "completed"
        assert not again.ok
        assert again.code == "already_completed"

    async def test_missed_mission_can_recover(self, services, validated_plan, session_factory, ctx):
        missed = await services.tools.execute("track_progress", {
            "target_name": "Ranger la chambre", "status": "missed",
        }, ctx)
        assert missed.data["action"]["status"] == "missed"

        repeated = await services.tools.execute("track_progress", {
            "target_name": "Ranger la chambre", "status": "missed",
        }, ctx)
        assert repeated.code == "already_tracked"

        recovered = await services.tools.execute("track_progress", {
            "target_name": "Ranger la chambre", "date": "2026-03-03",
        }, ctx)
        assert recovered.data["action"]["status"] == "completed"

    async def test_pending_action_not_tracked(self, services, validated_plan, ctx):
        result = await services.tools.execute("track_progress", {"target_name": "Lecture du soir"}, ctx)
        assert not result.ok
        assert result.code == "not_active"

    async def test_unknown_target(self, services, validated_plan, ctx):
        result = await services.tools.execute("track_progress", {"target_name": "Yoga"}, ctx)
        assert not result.ok
        assert result.code == "target_not_found"

    async def test_ambiguous_target(self, services, validated_plan, ctx):
        result = await services.tools.execute("track_progress", {"target_name": "la"}, ctx)
        assert not result.ok
        assert result.code == "ambiguous_target"
        assert {"Ranger la chambre", "Planifier la semaine"} <= set(result.data["candidates"])


class TestCreateActions:

    async def test_create_habit_in_current_phase(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("create_simple_action", {
            "title": "Boire un verre d'eau", "type": "habitude", "targetReps": 3,
            "time_of_day": "morning", "scheduled_days": ["mon", "wed", "fri"],
        }, ctx)

        assert result.ok
        action = result.data["action"]
        assert (action["type"], action["quest_tier"], action["phase_index"]) == ("habit", "side", 0)
        assert action["status"] == "active"
        assert action["plan_action_key"].startswith("agent-")
        plan = await _plan(session_factory, validated_plan.plan.plan_id)
        titles = [a["title"] for a in plan.content["phases"][0]["actions"]]
        assert titles[-1] == "Boire un verre d'eau"

    async def test_created_action_survives_revalidation(self, services, validated_plan, ctx):
        await services.tools.execute("create_simple_action", {"title": "Appeler un ami", "type": "mission"}, ctx)

        revalidated = await services.plans.validate_plan(USER_ID)

        titles = [a.title for a in revalidated.actions]
        assert titles.count("Appeler un ami") == 1
        assert len(revalidated.actions) == 7
        assert all(a.status != "archived" for a in revalidated.actions)

    async def test_created_pending_when_ceiling_reached(self, services, validated_plan, session_factory, ctx):
        await services.tools.execute("create_simple_action", {"title": "Boire de l'eau", "type": "habit", "targetReps": 7}, ctx)

        result = await services.tools.execute("create_simple_action", {"title": "Étirements", "type": "habit", "targetReps": 2}, ctx)

        assert result.ok
        assert result.data["action"]["status"] == "pending"
        assert await _active_count(session_factory) == 3

    @pytest.mark.parametrize("arguments", [
        {"title": "Courir", "type": "habit", "targetReps": 9},
        {"title": "Appeler maman", "type": "mission", "targetReps": 2},
        {"title": "Courir", "type": "habit", "targetReps": 1, "scheduled_days": ["mon", "tue"]},
    ])
    async def test_inconsistent_fields(self, services, validated_plan, ctx, arguments):
        result = await services.tools.execute("create_simple_action", arguments, ctx)
        assert not result.ok
        assert result.code == "inconsistent_fields"

    async def test_duplicate_title_in_phase(self, services, validated_plan, ctx):
        result = await services.tools.execute("create_simple_action", {
            "title": "marche matinale", "type": "habit", "targetReps": 2,
        }, ctx)
        assert not result.ok
        assert result.code == "duplicate"

    async def test_requires_active_plan(self, services, ctx):
        result = await services.tools.execute("create_simple_action", {"title": "x", "type": "mission"}, ctx)
        assert not result.ok
        assert result.code == "no_active_plan"

    async def test_create_framework(self, services, validated_plan, ctx):
        result = await services.tools.execute("create_framework", {
            "title": "Mes valeurs",
            "frameworkDetails": {"type": "one_shot", "sections": [
                {"id": "v", "label": "Valeurs", "inputType": "categorized_list"},
                {"id": "n", "label": "Énergie", "inputType": "scale"},
            ]},
        }, ctx)

        assert result.ok
        assert result.data["action"]["type"] == "framework"

        tracked = await services.tools.execute("track_progress", {"target_name": "Mes valeurs"}, ctx)
        assert tracked.data["action"]["status"] == "completed"


class TestActivation:

    async def test_ceiling(self, services, validated_plan, session_factory, ctx):
        """Scenario D"""
        await services.tools.execute("create_simple_action", {"title": "Boire de l'eau", "type": "mission"}, ctx)
        assert await _active_count(session_factory) == 3

        result = await services.tools.execute("activate_plan_action", {"action_title_or_id": "Lecture du soir"}, ctx)

        assert not result.ok
        assert result.code == "ceiling_reached"
        assert await _active_count(session_factory) == 3

    async def test_phase_gating(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("activate_plan_action", {"action_title_or_id": "Planifier la semaine"}, ctx)

        assert not result.ok
        assert result.code == "phase_incomplete"
        assert "Marche Matinale" in result.data["remaining"]
        assert (await _action(session_factory, "Planifier la semaine")).status == "pending"

    async def test_next_phase_unlocks(self, services, validated_plan, session_factory, ctx):
        await services.tools.execute("track_progress", {"target_name": "Ranger la chambre"}, ctx)
        await services.tools.execute("archive_plan_action", {"action_title_or_id": "Marche Matinale"}, ctx)
        await services.tools.execute("archive_plan_action", {"action_title_or_id": "Lecture du soir"}, ctx)

        result = await services.tools.execute("activate_plan_action", {"action_title_or_id": "Planifier la semaine"}, ctx)

        assert result.ok
        plan = await _plan(session_factory, validated_plan.plan.plan_id)
        assert plan.current_phase == 2
        assert plan.content["phases"][1]["status"] == "active"

    async def test_activate_same_phase(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("activate_plan_action", {"action_title_or_id": "Lecture du soir"}, ctx)
        assert result.ok
        assert await _active_count(session_factory) == 3

    async def test_activate_non_pending(self, services, validated_plan, ctx):
        result = await services.tools.execute("activate_plan_action", {"action_title_or_id": "Marche Matinale"}, ctx)
        assert not result.ok
        assert result.code == "not_pending"


class TestArchiveAndDeactivate:

    async def test_archive_keeps_history(self, services, validated_plan, session_factory, ctx):
        await services.tools.execute("track_progress", {"target_name": "Marche Matinale"}, ctx)
        walk = await _action(session_factory, "Marche Matinale")

        result = await services.tools.execute("archive_plan_action", {
            "action_title_or_id": walk.id, "reason": "Trop froid le matin",
        }, ctx)

        assert result.ok
        archived = await _action(session_factory, "Marche Matinale")
        assert archived.status == "archived"
        assert archived.archive_reason == "Trop froid le matin"
        assert len(await _events(session_factory, walk.id)) == 1

        again = await services.tools.execute("track_progress", {"target_name": "Marche Matinale"}, ctx)
        assert again.code == "target_not_found"

    async def test_deactivate_frees_slot(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("deactivate_plan_action", {"action_title_or_id": "Marche Matinale"}, ctx)

        assert result.ok
        assert (await _action(session_factory, "Marche Matinale")).status == "pending"
        assert await _active_count(session_factory) == 1

    async def test_deactivate_requires_active(self, services, validated_plan, ctx):
        result = await services.tools.execute("deactivate_plan_action", {"action_title_or_id": "Lecture du soir"}, ctx)
        assert not result.ok
        assert result.code == "not_active"


class TestBreakDown:

    async def test_requires_confirmation(self, services, validated_plan, collaborators, ctx):
        result = await services.tools.execute("break_down_action", {"action_title_or_id": "Ranger la chambre"}, ctx)

        assert not result.ok
        assert result.code == "confirmation_required"
        assert collaborators.calls["break-down-action"] == 0

    async def test_micro_step_inserted_before_target(self, services, validated_plan, session_factory, confirmed):
        result = await services.tools.execute("break_down_action", {
            "action_title_or_id": "Ranger la chambre", "problem": "Trop de choses à trier",
        }, confirmed)

        assert result.ok
        step = result.data["micro_step"]
        assert (step["status"], step["phase_index"], step["quest_tier"]) == ("active", 0, "side")
        assert result.data["target"]["status"] == "pending"

        plan = await _plan(session_factory, validated_plan.plan.plan_id)
        titles = [a["title"] for a in plan.content["phases"][0]["actions"]]
        assert titles == ["Marche Matinale", step["title"], "Ranger la chambre", "Lecture du soir"]
        assert await _active_count(session_factory) == 2

        revalidated = await services.plans.validate_plan(USER_ID)
        phase0 = [a.title for a in revalidated.actions if a.phase_index == 0]
        assert phase0 == titles

    async def test_proposal_only(self, services, validated_plan, session_factory, confirmed):
        result = await services.tools.execute("break_down_action", {
            "action_title_or_id": "Ranger la chambre", "apply_to_plan": False,
        }, confirmed)

        assert result.ok
        assert result.code == "proposal"
        assert result.data["micro_step"]["title"] == "Poser les chaussures près de la porte"
        assert (await _action(session_factory, "Ranger la chambre")).status == "active"
        assert await _action(session_factory, "Poser les chaussures près de la porte") is None

    async def test_collaborator_failure(self, services, validated_plan, collaborators, confirmed):
        collaborators.failing.add("break-down-action")

        result = await services.tools.execute("break_down_action", {"action_title_or_id": "Ranger la chambre"}, confirmed)

        assert not result.ok
        assert result.code == "collaborator_unavailable"


class TestUpdateStructure:

    async def test_partial_update(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("update_action_structure", {
            "target_name": "Marche Matinale", "new_target_reps": 3, "new_scheduled_days": ["mon", "wed"],
        }, ctx)

        assert result.ok
        walk = await _action(session_factory, "Marche Matinale")
        assert (walk.target_reps, walk.scheduled_days, walk.description) == (3, ["mon", "wed"], None)

        revalidated = await services.plans.validate_plan(USER_ID)
        walk_view = next(a for a in revalidated.actions if a.title == "Marche Matinale")
        assert (walk_view.target_reps, walk_view.scheduled_days) == (3, ["mon", "wed"])

    async def test_target_clamped_with_note(self, services, validated_plan, ctx):
        result = await services.tools.execute("update_action_structure", {
            "target_name": "Marche Matinale", "new_target_reps": 12,
        }, ctx)

        assert result.ok
        assert result.data["action"]["target_reps"] == 7
        assert "adjusted" in result.message

    async def test_mission_keeps_single_rep(self, services, validated_plan, ctx):
        result = await services.tools.execute("update_action_structure", {
            "target_name": "Ranger la chambre", "new_target_reps": 4, "new_title": "Ranger le bureau",
        }, ctx)

        assert result.data["action"]["target_reps"] == 1
        assert result.data["action"]["title"] == "Ranger le bureau"

    async def test_days_exceeding_target_change_nothing(self, services, validated_plan, session_factory, ctx):
        result = await services.tools.execute("update_action_structure", {
            "target_name": "Marche Matinale", "new_title": "Marche",
            "new_scheduled_days": ["mon", "tue", "wed", "thu", "fri", "sat"],
        }, ctx)

        assert not result.ok
        assert result.code == "days_exceed_target"
        walk = await _action(session_factory, "Marche Matinale")
        assert walk.scheduled_days is None

    async def test_empty_days_clear_schedule(self, services, validated_plan, session_factory, ctx):
        await services.tools.execute("update_action_structure", {
            "target_name": "Marche Matinale", "new_scheduled_days": ["mon"],
        }, ctx)
        await services.tools.execute("update_action_structure", {
            "target_name": "Marche Matinale", "new_scheduled_days": [],
        }, ctx)

        assert (await _action(session_factory, "Marche Matinale")).scheduled_days is None


class TestCeilingInvariant:

    async def test_never_more_than_three_active(self, services, validated_plan, session_factory, ctx):
        calls = [
            ("create_simple_action", {"title": "A1", "type": "mission"}),
            ("create_simple_action", {"title": "A2", "type": "mission"}),
            ("activate_plan_action", {"action_title_or_id": "Lecture du soir"}),
            ("deactivate_plan_action", {"action_title_or_id": "A1"}),
            ("activate_plan_action", {"action_title_or_id": "Lecture du soir"}),
            ("activate_plan_action", {"action_title_or_id": "A2"}),
            ("archive_plan_action", {"action_title_or_id": "Lecture du soir"}),
            ("activate_plan_action", {"action_title_or_id": "A2"}),
        ]
        for tool, arguments in calls:
            await services.tools.execute(tool, arguments, ctx)
            assert await _active_count(session_factory) <= 3
