"""
Agent Tool Executor
===================
Runs one typed command per call against the user's plan / actions.

Контракт:
- каждый вызов атомарен (одна транзакция на мутацию)
- любая ошибка превращается в ToolResult(ok=False), агент продолжает диалог
- resolution (fuzzy name -> action) happens before any mutation
"""
import copy
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict

from pydantic import ValidationError

from models import Action, TrackingEvent, utcnow
from schemas import PlanActionSpec, ActionView
from domain.action_domain_service import ActionDomainService, ActionState, ActivationBlocked
from infrastructure.uow import UnitOfWork
from action_distributor import descriptive_fields, clamp_target_reps
from exceptions import BaseLifecycleException, CollaboratorUnavailable
from lifecycle_config import MAX_ACTIVE_ACTIONS, HABIT_MAX_TARGET_REPS, HABIT_MIN_TARGET_REPS
from logging_config import get_logger, log_error, log_action_transition
from agent_tools.commands import (
    parse_command,
    ToolContext,
    ToolResult,
    CreateSimpleAction,
    CreateFramework,
    TrackProgress,
    BreakDownAction,
    UpdateActionStructure,
    ActivatePlanAction,
    ArchivePlanAction,
    DeactivatePlanAction,
)
from agent_tools.target_resolver import resolve_target, normalize, pin_action_ids, locate_in_content
from agent_tools.tool_definitions import tool_definitions

logger = get_logger(__name__)

OPEN_STATES = ("pending", "active", "completed", "missed")

ToolHandler = Callable[[object, ToolContext], Awaitable[ToolResult]]


def _ok(tool: str, message: str, data: dict = None, code: str = "ok") -> ToolResult:
    return ToolResult(tool=tool, ok=True, code=code, message=message, data=data or {})


def _fail(tool: str, code: str, message: str, data: dict = None) -> ToolResult:
    return ToolResult(tool=tool, ok=False, code=code, message=message, data=data or {})


def _action_data(action) -> dict:
    return ActionView.model_validate(action).model_dump(mode="json")


def _unresolved(tool: str, query: str, resolution) -> ToolResult:
    if resolution.ambiguous:
        return _fail(
            tool, "ambiguous_target",
            f"Several actions match '{query}', ask the user which one they mean",
            {"candidates": [a.title for a in resolution.candidates]},
        )
    return _fail(
        tool, "target_not_found",
        f"No action matches '{query}'. Nothing was changed.",
        {"query": query},
    )


class AgentToolExecutor:
    """
    Usage:
        executor = AgentToolExecutor(AsyncSessionLocal, EdgeFunctionClient())
        result = await executor.execute("track_progress", {...}, ToolContext(user_id=...))
    """

    def __init__(self, session_factory, collaborators):
        self._session_factory = session_factory
        self._collaborators = collaborators
        self._domain = ActionDomainService()
        self._handlers: Dict[str, ToolHandler] = {}

        self.register("create_simple_action", self._create_simple_action)
        self.register("create_framework", self._create_framework)
        self.register("track_progress", self._track_progress)
        self.register("break_down_action", self._break_down_action)
        self.register("update_action_structure", self._update_action_structure)
        self.register("activate_plan_action", self._activate_plan_action)
        self.register("archive_plan_action", self._archive_plan_action)
        self.register("deactivate_plan_action", self._deactivate_plan_action)

    def register(self, name: str, fn: ToolHandler) -> None:
        self._handlers[name] = fn

    def list_tools(self) -> list:
        return [t for t in tool_definitions() if t["name"] in self._handlers]

    async def execute(self, tool_name: str, arguments: dict, ctx: ToolContext) -> ToolResult:
        handler = self._handlers.get(tool_name)
        if handler is None:
            return _fail(tool_name, "unknown_tool", f"Tool '{tool_name}' is not available")

        try:
            command = parse_command(tool_name, arguments)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.info("tool_arguments_rejected", tool=tool_name, errors=errors)
            return _fail(tool_name, "invalid_arguments", "Arguments rejected: " + "; ".join(errors), {"errors": errors})

        try:
            result = await handler(command, ctx)
        except BaseLifecycleException as e:
            logger.warning("tool_domain_error", tool=tool_name, code=type(e).__name__, user_id=ctx.user_id)
            return _fail(tool_name, type(e).__name__, e.message, e.details)
        except Exception as e:
            log_error(e, {"tool": tool_name, "user_id": ctx.user_id})
            return _fail(tool_name, "internal_error", "The action could not be completed, nothing was changed")

        logger.info("tool_executed", tool=tool_name, ok=result.ok, code=result.code, user_id=ctx.user_id)
        return result

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def _transition(self, action, new_state: ActionState, reason: str) -> None:
        event = self._domain.transition(action, new_state, reason)
        log_action_transition(event.action_id, action.user_id, event.from_state, event.to_state, event.reason)

    async def _insert_new_action(self, ctx: ToolContext, tool: str, spec: dict) -> ToolResult:
        """Append a new side-quest action to the current phase of the active plan"""
        async with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            plan = await uow.plans.get_active_for_user(session, ctx.user_id)
            if plan is None:
                return _fail(tool, "no_active_plan", "The user has no active plan to add this action to")

            content = pin_action_ids(copy.deepcopy(plan.content or {}))
            phases = content.setdefault("phases", [])
            if not phases:
                phases.append({"title": "Phase 1", "actions": []})
            phase_index = min(max(plan.current_phase or 1, 1), len(phases)) - 1
            phase_actions = phases[phase_index].setdefault("actions", [])

            if any(normalize(a.get("title")) == normalize(spec["title"]) for a in phase_actions):
                return _fail(
                    tool, "duplicate",
                    f"'{spec['title']}' already exists in the current phase",
                    {"phase_index": phase_index},
                )

            key = f"agent-{uuid.uuid4().hex[:12]}"
            spec = {"id": key, **spec}
            phase_actions.append(spec)
            plan.content = content

            active_count = await uow.actions.count_active(session, ctx.user_id, for_update=True)
            status = ActionState.ACTIVE if active_count < MAX_ACTIVE_ACTIONS else ActionState.PENDING

            action = Action(
                user_id=ctx.user_id,
                plan_id=plan.id,
                goal_id=plan.goal_id,
                submission_id=plan.submission_id,
                plan_action_key=key,
                _status=status.value,
                current_reps=0,
                **descriptive_fields(PlanActionSpec.model_validate(spec), phase_index, len(phase_actions) - 1),
            )
            await uow.actions.save(session, action)

            placement = "active" if status == ActionState.ACTIVE else "pending (3 actions already active)"
            return _ok(tool, f"'{action.title}' created as {placement}", {"action": _action_data(action)})

    # -------------------------------------------------------------------------
    # create_simple_action / create_framework
    # -------------------------------------------------------------------------

    async def _create_simple_action(self, cmd: CreateSimpleAction, ctx: ToolContext) -> ToolResult:
        if cmd.type == "habit" and not HABIT_MIN_TARGET_REPS <= cmd.target_reps <= HABIT_MAX_TARGET_REPS:
            return _fail(
                cmd.tool, "inconsistent_fields",
                f"A habit targets between {HABIT_MIN_TARGET_REPS} and {HABIT_MAX_TARGET_REPS} repetitions per week",
                {"targetReps": cmd.target_reps},
            )
        if cmd.type == "mission" and cmd.target_reps != 1:
            return _fail(cmd.tool, "inconsistent_fields", "A mission is done once (targetReps must be 1)",
                         {"targetReps": cmd.target_reps})
        if cmd.scheduled_days and len(set(cmd.scheduled_days)) > cmd.target_reps:
            return _fail(cmd.tool, "inconsistent_fields", "More scheduled days than weekly repetitions",
                         {"scheduled_days": cmd.scheduled_days, "targetReps": cmd.target_reps})

        spec = {
            "type": cmd.type,
            "title": cmd.title.strip(),
            "description": cmd.description,
            "questType": "side",
            "targetReps": cmd.target_reps,
            "tips": cmd.tips,
            "time_of_day": cmd.time_of_day,
            "tracking_type": "boolean",
        }
        if cmd.scheduled_days:
            spec["scheduled_days"] = list(dict.fromkeys(cmd.scheduled_days))
        return await self._insert_new_action(ctx, cmd.tool, spec)

    async def _create_framework(self, cmd: CreateFramework, ctx: ToolContext) -> ToolResult:
        spec = {
            "type": "framework",
            "title": cmd.title.strip(),
            "description": cmd.description,
            "questType": "side",
            "targetReps": cmd.target_reps,
            "time_of_day": cmd.time_of_day,
            "tracking_type": "boolean",
            "frameworkDetails": cmd.framework_details.model_dump(by_alias=True, exclude_none=True),
        }
        return await self._insert_new_action(ctx, cmd.tool, spec)

    # -------------------------------------------------------------------------
    # track_progress
    # -------------------------------------------------------------------------

    async def _track_progress(self, cmd: TrackProgress, ctx: ToolContext) -> ToolResult:
        event_date = cmd.event_date or ctx.today or datetime.now(timezone.utc).date()

        async with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            actions = await uow.actions.list_for_user(session, ctx.user_id, statuses=OPEN_STATES)
            resolution = resolve_target(actions, cmd.target_name)
            if not resolution.found:
                return _unresolved(cmd.tool, cmd.target_name, resolution)
            action = resolution.action

            if action.status == ActionState.PENDING.value:
                return _fail(cmd.tool, "not_active", f"'{action.title}' is not active yet, activate it first",
                             {"action_id": action.id})
            if action.status == ActionState.COMPLETED.value:
                return _fail(cmd.tool, "already_completed", f"'{action.title}' is already completed",
                             {"action_id": action.id})

            same_day = [e for e in await uow.tracking.list_for_action(session, action.id) if e.event_date == event_date]
            outcome = self._domain.apply_progress(
                action,
                cmd.value,
                cmd.operation,
                cmd.status,
                done_today=any(e.reported_status != "missed" and e.delta > 0 for e in same_day),
                missed_today=any(e.reported_status == "missed" for e in same_day),
            )
            if outcome.duplicate:
                return _ok(cmd.tool, f"'{action.title}' was already recorded for {event_date.isoformat()}",
                           {"action": _action_data(action)}, code="already_tracked")

            previous = action.status
            if outcome.new_state == ActionState.ACTIVE and previous != ActionState.ACTIVE.value:
                active_count = await uow.actions.count_active(session, ctx.user_id, for_update=True)
                if active_count >= MAX_ACTIVE_ACTIONS:
                    return _fail(cmd.tool, "ceiling_reached",
                                 f"{active_count} actions are already active (maximum {MAX_ACTIVE_ACTIONS})",
                                 {"active_count": active_count})
            if outcome.new_state.value != previous or previous == ActionState.ACTIVE.value:
                self._transition(action, outcome.new_state, f"track_progress:{cmd.status}")

            action.current_reps = outcome.reps_after
            if outcome.delta > 0:
                action.last_performed_at = utcnow()

            await uow.tracking.append(session, TrackingEvent(
                user_id=ctx.user_id,
                action_id=action.id,
                operation=cmd.operation,
                value=cmd.value,
                delta=outcome.delta,
                reported_status=cmd.status,
                resulting_status=outcome.new_state.value,
                reps_after=outcome.reps_after,
                event_date=event_date,
            ))

            return _ok(
                cmd.tool,
                f"'{action.title}': {outcome.reps_after}/{action.target_reps} ({outcome.new_state.value})",
                {"action": _action_data(action), "delta": outcome.delta},
            )

    # -------------------------------------------------------------------------
    # break_down_action
    # -------------------------------------------------------------------------

    async def _break_down_action(self, cmd: BreakDownAction, ctx: ToolContext) -> ToolResult:
        if not ctx.user_confirmed:
            return _fail(
                cmd.tool, "confirmation_required",
                "Ask the user whether they want this action broken down into a smaller step before calling this tool",
            )

        async with UnitOfWork(self._session_factory) as uow:
            plan = await uow.plans.get_active_for_user(uow.session, ctx.user_id)
            if plan is None:
                return _fail(cmd.tool, "no_active_plan", "The user has no active plan")
            actions = [
                a for a in await uow.actions.list_for_plan(uow.session, plan.id)
                if a.status != ActionState.ARCHIVED.value
            ]
            resolution = resolve_target(actions, cmd.action_title_or_id)
            if not resolution.found:
                return _unresolved(cmd.tool, cmd.action_title_or_id, resolution)
            target = resolution.action
            snapshot = {
                "id": target.id,
                "title": target.title,
                "description": target.description,
                "type": target.type,
                "target_reps": target.target_reps,
            }
            plan_id, plan_content, submission_id = plan.id, copy.deepcopy(plan.content), plan.submission_id

        try:
            step = await self._collaborators.break_down_action(snapshot, cmd.problem, plan_content, submission_id)
        except CollaboratorUnavailable as e:
            return _fail(cmd.tool, "collaborator_unavailable", e.message, e.details)

        proposal = {
            "type": step.type,
            "title": step.title.strip(),
            "description": step.description,
            "tips": step.tips,
            "questType": "side",
            "targetReps": clamp_target_reps(step.type, step.target_reps),
            "tracking_type": "boolean",
        }
        if not cmd.apply_to_plan:
            return _ok(cmd.tool, f"Proposed micro-step: '{proposal['title']}'",
                       {"micro_step": proposal, "target": snapshot}, code="proposal")

        async with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            plan = await uow.plans.get(session, plan_id)
            target = await uow.actions.get(session, snapshot["id"])
            if plan is None or target is None or target.status == ActionState.ARCHIVED.value:
                return _fail(cmd.tool, "target_not_found", "The action changed in the meantime, nothing was applied")

            content = pin_action_ids(copy.deepcopy(plan.content or {}))
            location = locate_in_content(content, target.plan_action_key)
            phase_index, position = location if location else (target.phase_index, target.position)
            phase_actions = content["phases"][phase_index].setdefault("actions", [])

            if any(normalize(a.get("title")) == normalize(proposal["title"]) for a in phase_actions):
                return _fail(cmd.tool, "duplicate", f"'{proposal['title']}' already exists in this phase")

            # Micro-step goes right before the action it unblocks
            key = f"step-{uuid.uuid4().hex[:12]}"
            spec = {"id": key, **proposal, "time_of_day": target.time_of_day}
            phase_actions.insert(position, spec)
            plan.content = content

            for row in await uow.actions.list_for_plan(session, plan.id):
                if row.phase_index == phase_index and row.position >= position:
                    row.position += 1

            if target.status == ActionState.ACTIVE.value:
                self._transition(target, ActionState.PENDING, "Paused until its micro-step is done")
                status = ActionState.ACTIVE
            else:
                active_count = await uow.actions.count_active(session, ctx.user_id, for_update=True)
                status = ActionState.ACTIVE if active_count < MAX_ACTIVE_ACTIONS else ActionState.PENDING

            micro = Action(
                user_id=ctx.user_id,
                plan_id=plan.id,
                goal_id=plan.goal_id,
                submission_id=plan.submission_id,
                plan_action_key=key,
                _status=status.value,
                current_reps=0,
                **descriptive_fields(PlanActionSpec.model_validate(spec), phase_index, position),
            )
            await uow.actions.save(session, micro)

            return _ok(
                cmd.tool,
                f"Micro-step '{micro.title}' added before '{target.title}'",
                {"micro_step": _action_data(micro), "target": _action_data(target)},
            )

    # -------------------------------------------------------------------------
    # update_action_structure
    # -------------------------------------------------------------------------

    async def _update_action_structure(self, cmd: UpdateActionStructure, ctx: ToolContext) -> ToolResult:
        async with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            actions = await uow.actions.list_for_user(session, ctx.user_id, statuses=OPEN_STATES)
            resolution = resolve_target(actions, cmd.target_name)
            if not resolution.found:
                return _unresolved(cmd.tool, cmd.target_name, resolution)
            action = resolution.action

            notes = []
            target_reps = action.target_reps
            if cmd.new_target_reps is not None:
                if action.type == "mission":
                    notes.append("missions keep a single repetition")
                else:
                    target_reps = clamp_target_reps(action.type, cmd.new_target_reps)
                    if target_reps != cmd.new_target_reps:
                        notes.append(f"target adjusted to {target_reps}")

            scheduled_days = action.scheduled_days
            if cmd.new_scheduled_days is not None:
                scheduled_days = list(dict.fromkeys(cmd.new_scheduled_days)) or None
                if scheduled_days and action.type == "habit" and len(scheduled_days) > target_reps:
                    return _fail(
                        cmd.tool, "days_exceed_target",
                        f"{len(scheduled_days)} days for {target_reps} repetitions per week: "
                        "ask the user which day to remove. Nothing was changed.",
                        {"scheduled_days": scheduled_days, "target_reps": target_reps},
                    )

            if cmd.new_title is not None and cmd.new_title.strip():
                action.title = cmd.new_title.strip()
            if cmd.new_description is not None:
                action.description = cmd.new_description
            action.target_reps = target_reps
            action.scheduled_days = scheduled_days

            # зеркалим в контент, иначе следующий distribute откатит правку
            plan = await uow.plans.get(session, action.plan_id)
            if plan is not None and plan.content:
                content = pin_action_ids(copy.deepcopy(plan.content))
                location = locate_in_content(content, action.plan_action_key)
                if location is not None:
                    spec = content["phases"][location[0]]["actions"][location[1]]
                    spec["title"] = action.title
                    spec["description"] = action.description
                    spec["targetReps"] = action.target_reps
                    spec["scheduled_days"] = action.scheduled_days
                    plan.content = content

            await session.flush()
            message = f"'{action.title}' updated"
            if notes:
                message += " (" + "; ".join(notes) + ")"
            return _ok(cmd.tool, message, {"action": _action_data(action)})

    # -------------------------------------------------------------------------
    # activate / archive / deactivate
    # -------------------------------------------------------------------------

    async def _activate_plan_action(self, cmd: ActivatePlanAction, ctx: ToolContext) -> ToolResult:
        async with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            plan = await uow.plans.get_active_for_user(session, ctx.user_id)
            if plan is None:
                return _fail(cmd.tool, "no_active_plan", "The user has no active plan")

            actions = await uow.actions.list_for_plan(session, plan.id)
            candidates = [a for a in actions if a.status != ActionState.ARCHIVED.value]
            resolution = resolve_target(candidates, cmd.action_title_or_id)
            if not resolution.found:
                return _unresolved(cmd.tool, cmd.action_title_or_id, resolution)
            action = resolution.action

            earlier = [a for a in actions if a.phase_index < action.phase_index]
            active_count = await uow.actions.count_active(session, ctx.user_id, for_update=True)
            try:
                self._domain.check_activation(action, earlier, active_count, MAX_ACTIVE_ACTIONS)
            except ActivationBlocked as blocked:
                logger.info("activation_blocked", action_id=action.id, reason=blocked.block.value)
                return _fail(cmd.tool, blocked.block.value, str(blocked), blocked.details)

            self._transition(action, ActionState.ACTIVE, "activate_plan_action")

            # Unlock the phase in the content and move current_phase forward
            content = copy.deepcopy(plan.content or {})
            phases = content.get("phases") or []
            if action.phase_index < len(phases) and phases[action.phase_index].get("status") != "active":
                phases[action.phase_index]["status"] = "active"
                plan.content = content
            plan.current_phase = max(plan.current_phase or 1, action.phase_index + 1)

            return _ok(cmd.tool, f"'{action.title}' is now active", {"action": _action_data(action)})

    async def _archive_plan_action(self, cmd: ArchivePlanAction, ctx: ToolContext) -> ToolResult:
        async with UnitOfWork(self._session_factory) as uow:
            actions = await uow.actions.list_for_user(uow.session, ctx.user_id, statuses=OPEN_STATES)
            resolution = resolve_target(actions, cmd.action_title_or_id)
            if not resolution.found:
                return _unresolved(cmd.tool, cmd.action_title_or_id, resolution)
            action = resolution.action

            self._transition(action, ActionState.ARCHIVED, cmd.reason or "archive_plan_action")
            action.archive_reason = cmd.reason
            return _ok(cmd.tool, f"'{action.title}' archived, its history is kept", {"action": _action_data(action)})

    async def _deactivate_plan_action(self, cmd: DeactivatePlanAction, ctx: ToolContext) -> ToolResult:
        async with UnitOfWork(self._session_factory) as uow:
            actions = await uow.actions.list_for_user(uow.session, ctx.user_id, statuses=OPEN_STATES)
            resolution = resolve_target(actions, cmd.action_title_or_id)
            if not resolution.found:
                return _unresolved(cmd.tool, cmd.action_title_or_id, resolution)
            action = resolution.action

            if action.status != ActionState.ACTIVE.value:
                return _fail(cmd.tool, "not_active", f"'{action.title}' is {action.status}, not active",
                             {"action_id": action.id})

            self._transition(action, ActionState.PENDING, "deactivate_plan_action")
            return _ok(cmd.tool, f"'{action.title}' paused, a slot is free", {"action": _action_data(action)})
