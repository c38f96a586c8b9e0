# Infrastructure Layer
from .uow import (
    UnitOfWork,
    SubmissionRepository,
    GoalRepository,
    PlanRepository,
    ActionRepository,
    TrackingRepository,
    ProfileRepository,
)
from .quota import (
    consume_slot,
    consume_generation_slot,
    consume_summary_slot,
    consume_sorting_slot,
)
