"""
Action Distributor
==================
Materializes plan content into trackable Action rows.

Identity of a row inside a plan: the explicit action id from the content, or
"p{phase}-a{position}" when the generator gave none. Re-running with the same
content is a no-op; re-running with edited content updates descriptive fields
in place and never resets progress counters.
"""
from typing import Dict, Any

from models import Action
from schemas import PlanContent, PlanActionSpec
from domain.action_domain_service import ActionDomainService, ActionState
from infrastructure.uow import UnitOfWork
from lifecycle_config import (
    MAX_ACTIVE_ACTIONS,
    HABIT_MIN_TARGET_REPS,
    HABIT_MAX_TARGET_REPS,
    MISSION_TARGET_REPS,
    TIMES_OF_DAY,
    DEFAULT_TIME_OF_DAY,
)
from logging_config import get_logger, log_action_transition

logger = get_logger(__name__)
_domain = ActionDomainService()

REMOVED_FROM_PLAN = "Removed from plan content"


def action_key(spec: PlanActionSpec, phase_index: int, position: int) -> str:
    if spec.id:
        return str(spec.id)
    return f"p{phase_index}-a{position}"


def clamp_target_reps(action_type: str, target_reps) -> int:
    """habit: 1..7 per week, mission: always 1, framework: >= 1"""
    if action_type == "mission":
        return MISSION_TARGET_REPS
    reps = int(target_reps or 1)
    if action_type == "habit":
        return max(HABIT_MIN_TARGET_REPS, min(HABIT_MAX_TARGET_REPS, reps))
    return max(1, reps)


def normalize_time_of_day(value) -> str:
    if value in TIMES_OF_DAY:
        return value
    return DEFAULT_TIME_OF_DAY


def descriptive_fields(spec: PlanActionSpec, phase_index: int, position: int) -> Dict[str, Any]:
    """Поля, которые контент плана вправе перезаписать"""
    return {
        "phase_index": phase_index,
        "position": position,
        "type": spec.type,
        "title": spec.title,
        "description": spec.description,
        "rationale": spec.rationale,
        "tips": spec.tips,
        "quest_tier": spec.quest_type,
        "time_of_day": normalize_time_of_day(spec.time_of_day),
        "scheduled_days": spec.scheduled_days or None,
        "target_reps": clamp_target_reps(spec.type, spec.target_reps),
        "tracking_type": spec.tracking_type or "boolean",
        "framework_details": (
            spec.framework_details.model_dump(by_alias=True, exclude_none=True)
            if spec.framework_details else None
        ),
    }


async def distribute(uow: UnitOfWork, user_id: str, plan_id: str, submission_id: str, plan_content: Dict[str, Any]) -> list:
    """
    Upsert one Action per content action; returns the plan's rows in order.

    New rows start active only in the first phase, only for main quests and
    only while the user has fewer than MAX_ACTIVE_ACTIONS active actions.
    """
    session = uow.session
    content = PlanContent.model_validate(plan_content or {})
    plan = await uow.plans.get(session, plan_id)

    existing = {a.plan_action_key: a for a in await uow.actions.list_for_plan(session, plan_id)}
    active_count = await uow.actions.count_active(session, user_id, for_update=True)

    seen = set()
    created = updated = 0
    for phase_index, phase in enumerate(content.phases):
        for position, spec in enumerate(phase.actions):
            key = action_key(spec, phase_index, position)
            if key in seen:
                logger.warning("distributor_duplicate_key", plan_id=plan_id, key=key)
                continue
            seen.add(key)

            fields = descriptive_fields(spec, phase_index, position)
            action = existing.get(key)
            if action is not None:
                for name, value in fields.items():
                    setattr(action, name, value)
                updated += 1
                continue

            eligible = phase_index == 0 and spec.quest_type == "main"
            status = ActionState.PENDING
            if eligible and active_count < MAX_ACTIVE_ACTIONS:
                status = ActionState.ACTIVE
                active_count += 1

            action = Action(
                user_id=user_id,
                plan_id=plan_id,
                goal_id=plan.goal_id if plan else None,
                submission_id=submission_id,
                plan_action_key=key,
                _status=status.value,
                current_reps=0,
                **fields,
            )
            session.add(action)
            created += 1

    archived = 0
    for key, action in existing.items():
        if key in seen or action.status == ActionState.ARCHIVED.value:
            continue
        event = _domain.transition(action, ActionState.ARCHIVED, REMOVED_FROM_PLAN)
        action.archive_reason = REMOVED_FROM_PLAN
        log_action_transition(action.id, user_id, event.from_state, event.to_state, event.reason)
        archived += 1

    await session.flush()
    logger.info(
        "actions_distributed",
        plan_id=plan_id,
        created=created,
        updated=updated,
        archived=archived,
        active_count=active_count,
    )
    return await uow.actions.list_for_plan(session, plan_id)


async def cleanup_submission_data(uow: UnitOfWork, user_id: str, submission_id: str) -> dict:
    """Удалить планы, действия и их трекинг для submission (перед перегенерацией)"""
    session = uow.session
    actions = await uow.actions.delete_for_submission(session, user_id, submission_id)
    plans = await uow.plans.delete_for_submission(session, user_id, submission_id)
    logger.info("submission_data_cleaned", submission_id=submission_id, plans=plans, actions=actions)
    return {"plans": plans, "actions": actions}


class ActionDistributor:

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def distribute(self, user_id: str, plan_id: str, submission_id: str, plan_content: Dict[str, Any]) -> list:
        async with UnitOfWork(self._session_factory) as uow:
            return await distribute(uow, user_id, plan_id, submission_id, plan_content)
