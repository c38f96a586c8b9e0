"""
Goal Domain Service - Чистый доменный слой
=========================================
Никаких session, commit, async, логов, side-effects.
Только бизнес-логика и инварианты для Goal / Plan / Submission.
"""
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class GoalState(Enum):
    """Все возможные состояния цели"""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class PlanState(Enum):
    PENDING = "pending"
    ACTIVE = "active"


class SubmissionState(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class GoalRole(Enum):
    FOUNDATION = "foundation"
    LEVER = "lever"
    OPTIMIZATION = "optimization"


class TransitionReason(Enum):
    """Типичные причины переходов"""
    RANKED_FIRST = "Ranked first by priority sorter"
    RANKED_LATER = "Ranked after the first axis"
    MANUAL_REORDER = "Manual reorder"
    PLAN_VALIDATED = "Plan validated by user"


@dataclass
class GoalTransitioned:
    """Domain event - событие перехода состояния"""
    goal_id: str
    from_state: str
    to_state: str
    reason: str
    timestamp: str


# Разрешённые переходы
GOAL_TRANSITIONS = {
    GoalState.PENDING: {GoalState.ACTIVE, GoalState.ARCHIVED},
    GoalState.ACTIVE: {GoalState.PENDING, GoalState.COMPLETED, GoalState.ARCHIVED},
    GoalState.COMPLETED: {GoalState.ARCHIVED},
    GoalState.ARCHIVED: set(),
}

SUBMISSION_TRANSITIONS = {
    SubmissionState.IN_PROGRESS: {SubmissionState.COMPLETED, SubmissionState.ARCHIVED},
    SubmissionState.COMPLETED: {SubmissionState.ARCHIVED},
    SubmissionState.ARCHIVED: set(),
}


def role_for_rank(index: int) -> str:
    """Роль по позиции, когда сортировщик не вернул свою"""
    roles = list(GoalRole)
    return roles[min(index, len(roles) - 1)].value


def can_transition_submission(from_state: str, to_state: str) -> bool:
    return SubmissionState(to_state) in SUBMISSION_TRANSITIONS[SubmissionState(from_state)]


class GoalDomainService:
    """
    ЧИСТАЯ доменная логика для переходов состояния цели.

    Responsibilities:
    - Валидация переходов (инварианты)
    - Проверка потолков активации ("3 pillars", одна активная цель на тему)
    - Генерация domain events

    НЕ делает:
    - commit/flush
    - async операции
    - логирование
    """

    TERMINAL_STATES = {GoalState.ARCHIVED}

    def transition(
        self,
        goal,
        new_state: GoalState,
        reason: Optional[str] = None
    ) -> GoalTransitioned:
        """
        ЕДИНСТВЕННЫЙ способ изменить состояние цели.

        Raises:
            ValueError: При нарушении инвариантов
        """
        if not hasattr(goal, '_status'):
            raise ValueError("Goal must have _status attribute")

        old_state = goal._status
        new_state = GoalState(new_state)

        if old_state == new_state.value:
            raise ValueError(f"No-op transition forbidden: goal already in '{old_state}' state")

        if GoalState(old_state) in self.TERMINAL_STATES:
            raise ValueError(f"Cannot transition from terminal state '{old_state}'")

        if new_state not in GOAL_TRANSITIONS[GoalState(old_state)]:
            allowed = sorted(s.value for s in GOAL_TRANSITIONS[GoalState(old_state)])
            raise ValueError(
                f"Transition '{old_state}' -> '{new_state.value}' not allowed. Allowed: {allowed}"
            )

        goal._status = new_state.value

        return GoalTransitioned(
            goal_id=str(goal.id),
            from_state=old_state,
            to_state=new_state.value,
            reason=reason or "State transition",
            timestamp=datetime.now(timezone.utc).isoformat()
        )

    def activation_conflict(self, goal, other_active_goals: list, ceiling: int) -> Optional[tuple]:
        """
        Проверить, можно ли активировать цель.

        Args:
            goal: цель-кандидат
            other_active_goals: остальные активные цели пользователя
            ceiling: максимум активных целей

        Returns:
            None если можно, иначе ("ceiling", count) или ("theme", conflicting_goal)
        """
        if len(other_active_goals) >= ceiling:
            return ("ceiling", len(other_active_goals))

        if goal.theme_id:
            for other in other_active_goals:
                if other.submission_id == goal.submission_id and other.theme_id == goal.theme_id:
                    return ("theme", other)

        return None
