"""
Domain Exceptions for the Lifecycle Orchestrator

Иерархия исключений для бизнес-логики целей, планов и действий.
Все исключения наследуются от BaseLifecycleException.

Quota exhaustion is NOT an exception: services return the cached artifact
with a quota_exhausted flag instead.
"""


class BaseLifecycleException(Exception):
    """Базовое исключение для всех ошибок бизнес-логики"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Сериализация в словарь для API response"""
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# Lookup
# =============================================================================

class SubmissionNotFound(BaseLifecycleException):
    def __init__(self, submission_id: str):
        super().__init__(
            message="Submission does not exist",
            details={"submission_id": submission_id}
        )


class GoalNotFound(BaseLifecycleException):
    def __init__(self, goal_id: str):
        super().__init__(
            message="Goal does not exist",
            details={"goal_id": goal_id}
        )


class PlanNotFound(BaseLifecycleException):
    def __init__(self, goal_id: str = None, plan_id: str = None):
        super().__init__(
            message="Plan does not exist",
            details={"goal_id": goal_id, "plan_id": plan_id}
        )


class ExecutionContextMissing(BaseLifecycleException):
    """Ни текущая ось, ни активная цель не найдены - экран должен уйти в recovery"""

    def __init__(self, user_id: str, redirect_to: str):
        super().__init__(
            message="No goal could be resolved for this screen",
            details={"user_id": user_id, "redirect_to": redirect_to}
        )


# =============================================================================
# Input / state
# =============================================================================

class SubmissionFrozen(BaseLifecycleException):
    """Ответы можно менять только пока submission in_progress"""

    def __init__(self, submission_id: str, status: str):
        super().__init__(
            message="Submission is no longer editable",
            details={"submission_id": submission_id, "status": status}
        )


class InvalidAxisSelection(BaseLifecycleException):
    def __init__(self, reason: str, axis_ids: list = None):
        super().__init__(
            message=reason,
            details={"axis_ids": axis_ids or []}
        )


class RefineRequiresFeedback(BaseLifecycleException):
    def __init__(self, goal_id: str):
        super().__init__(
            message="Refining a plan requires non-empty feedback",
            details={"goal_id": goal_id}
        )


class InvalidStateTransition(BaseLifecycleException):
    """Переход не разрешён таблицей переходов"""

    def __init__(self, entity: str, entity_id: str, from_state: str, to_state: str, reason: str):
        super().__init__(
            message=reason,
            details={
                "entity": entity,
                "entity_id": entity_id,
                "from_state": from_state,
                "to_state": to_state
            }
        )


# =============================================================================
# Ceilings
# =============================================================================

class GoalCeilingReached(BaseLifecycleException):
    def __init__(self, user_id: str, active_goals: int, ceiling: int):
        super().__init__(
            message=f"You already have {active_goals} active goals (maximum {ceiling})",
            details={"user_id": user_id, "active_goals": active_goals, "ceiling": ceiling}
        )


class ThemeAlreadyActive(BaseLifecycleException):
    def __init__(self, theme_id: str, goal_id: str):
        super().__init__(
            message="Another goal of this theme is already active",
            details={"theme_id": theme_id, "active_goal_id": goal_id}
        )


# =============================================================================
# External collaborators
# =============================================================================

class CollaboratorUnavailable(BaseLifecycleException):
    """Внешний вызов упал или вернул мусор - квота не расходуется"""

    def __init__(self, function_name: str, reason: str):
        super().__init__(
            message="External service is unavailable, please retry",
            details={"function": function_name, "reason": reason}
        )


class InvariantViolation(BaseLifecycleException):
    """Нарушение инварианта системы (критическая ошибка)"""

    def __init__(self, invariant: str, entity_id: str = None):
        super().__init__(
            message=f"System invariant violated: {invariant}",
            details={"entity_id": entity_id, "invariant": invariant}
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    SubmissionNotFound: 404,
    GoalNotFound: 404,
    PlanNotFound: 404,
    ExecutionContextMissing: 409,
    SubmissionFrozen: 409,
    InvalidAxisSelection: 400,
    RefineRequiresFeedback: 400,
    InvalidStateTransition: 409,
    GoalCeilingReached: 409,
    ThemeAlreadyActive: 409,
    CollaboratorUnavailable: 502,
    InvariantViolation: 500,
}
