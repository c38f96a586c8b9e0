"""
Action Domain Service - state machine действий
==============================================
Pure logic: the transition table, the activation guard ("walls before roof"
plus the active-action ceiling) and progress arithmetic for check-ins.
"""
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class ActionState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    MISSED = "missed"
    ARCHIVED = "archived"


class ActivationBlock(Enum):
    """Причины отказа в активации - понятные пользователю"""
    NOT_PENDING = "not_pending"
    PHASE_INCOMPLETE = "phase_incomplete"
    CEILING_REACHED = "ceiling_reached"


# Единственный источник правды о легальных переходах
ACTION_TRANSITIONS = {
    ActionState.PENDING: {ActionState.ACTIVE, ActionState.ARCHIVED},
    ActionState.ACTIVE: {
        ActionState.ACTIVE,        # re-tracked
        ActionState.COMPLETED,
        ActionState.MISSED,
        ActionState.ARCHIVED,
        ActionState.PENDING,       # deactivate_plan_action
    },
    ActionState.COMPLETED: {ActionState.ARCHIVED},
    ActionState.MISSED: {ActionState.ACTIVE, ActionState.COMPLETED, ActionState.ARCHIVED},
    ActionState.ARCHIVED: set(),
}

# Статусы, которые закрывают действие для проверки предыдущей фазы
PHASE_RESOLVED_STATES = {ActionState.COMPLETED, ActionState.ARCHIVED}


@dataclass
class ActionTransitioned:
    """Domain event"""
    action_id: str
    from_state: str
    to_state: str
    reason: str
    timestamp: str


class ActivationBlocked(ValueError):
    def __init__(self, block: ActivationBlock, message: str, details: dict = None):
        self.block = block
        self.details = details or {}
        super().__init__(message)


@dataclass
class ProgressOutcome:
    """Result of applying one check-in to an action's counters"""
    delta: int
    reps_after: int
    new_state: ActionState
    duplicate: bool = False


class ActionDomainService:
    """
    Чистая доменная логика действий.

    НЕ делает: commit/flush, async, логирование.
    """

    TERMINAL_STATES = {ActionState.ARCHIVED}

    def can_transition(self, from_state: str, to_state: str) -> bool:
        return ActionState(to_state) in ACTION_TRANSITIONS[ActionState(from_state)]

    def transition(self, action, new_state, reason: Optional[str] = None) -> ActionTransitioned:
        """
        Raises:
            ValueError: переход не разрешён таблицей
        """
        old_state = action._status
        new_state = ActionState(new_state)

        if ActionState(old_state) in self.TERMINAL_STATES:
            raise ValueError(f"Cannot transition from terminal state '{old_state}'")

        if not self.can_transition(old_state, new_state.value):
            allowed = sorted(s.value for s in ACTION_TRANSITIONS[ActionState(old_state)])
            raise ValueError(
                f"Transition '{old_state}' -> '{new_state.value}' not allowed. Allowed: {allowed}"
            )

        action._status = new_state.value

        return ActionTransitioned(
            action_id=str(action.id),
            from_state=old_state,
            to_state=new_state.value,
            reason=reason or "State transition",
            timestamp=datetime.now(timezone.utc).isoformat()
        )

    def check_activation(self, action, earlier_phase_actions: list, active_count: int, ceiling: int) -> None:
        """
        "Murs avant toit": активировать можно только pending-действие,
        если все действия предыдущих фаз закрыты и есть свободный слот.

        Raises:
            ActivationBlocked
        """
        if action._status != ActionState.PENDING.value:
            raise ActivationBlocked(
                ActivationBlock.NOT_PENDING,
                f"'{action.title}' is {action._status}, only pending actions can be activated",
                {"status": action._status},
            )

        unresolved = [
            a for a in earlier_phase_actions
            if ActionState(a._status) not in PHASE_RESOLVED_STATES
        ]
        if unresolved:
            raise ActivationBlocked(
                ActivationBlock.PHASE_INCOMPLETE,
                f"{len(unresolved)} action(s) of an earlier phase must be completed first",
                {"remaining": [a.title for a in unresolved]},
            )

        if active_count >= ceiling:
            raise ActivationBlocked(
                ActivationBlock.CEILING_REACHED,
                f"{active_count} actions are already active (maximum {ceiling}); archive or pause one first",
                {"active_count": active_count, "ceiling": ceiling},
            )

    def apply_progress(
        self,
        action,
        value: int,
        operation: str,
        reported_status: str,
        done_today: bool = False,
        missed_today: bool = False,
    ) -> ProgressOutcome:
        """
        Вычислить новые счётчики и статус для check-in (без мутаций).

        - boolean tracking: "add" counts once per day
        - a repeated "missed" on the same day is a no-op
        - missions reaching their target complete, a missed mission is missed
        - habits stay active (weekly counters)
        """
        current = action.current_reps or 0
        current_state = ActionState(action._status)

        if reported_status == "missed":
            if missed_today:
                return ProgressOutcome(0, current, current_state, duplicate=True)
            if action.type == "mission":
                return ProgressOutcome(0, current, ActionState.MISSED)
            return ProgressOutcome(0, current, ActionState.ACTIVE)

        if operation == "set":
            reps_after = max(0, value)
        elif action.tracking_type == "boolean":
            if done_today:
                return ProgressOutcome(0, current, current_state, duplicate=True)
            reps_after = current + 1
        else:
            reps_after = max(0, current + value)

        new_state = ActionState.ACTIVE
        if action.type == "mission" and reps_after >= (action.target_reps or 1):
            new_state = ActionState.COMPLETED
        elif action.type == "framework" and reported_status == "completed":
            details = action.framework_details or {}
            if details.get("type", "one_shot") == "one_shot":
                new_state = ActionState.COMPLETED

        return ProgressOutcome(reps_after - current, reps_after, new_state)
