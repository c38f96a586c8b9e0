from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Literal, Optional, List, Dict, Any
from datetime import date


# =============================================================================
# PLAN CONTENT (shape produced by generate-plan)
# =============================================================================

class FrameworkSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    input_type: Literal["text", "textarea", "scale", "list", "categorized_list"] = Field(alias="inputType")
    placeholder: Optional[str] = None


class FrameworkDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["one_shot", "recurring"] = "one_shot"
    intro: Optional[str] = None
    sections: List[FrameworkSection] = Field(min_length=1)

    @field_validator("sections")
    @classmethod
    def unique_section_ids(cls, sections):
        ids = [s.id for s in sections]
        if len(ids) != len(set(ids)):
            raise ValueError("section ids must be unique")
        return sections


class PlanActionSpec(BaseModel):
    """One action as written inside plan content"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    type: Literal["habit", "mission", "framework"] = "mission"
    title: str
    description: Optional[str] = None
    quest_type: Literal["main", "side"] = Field("side", alias="questType")
    target_reps: Optional[int] = Field(None, alias="targetReps")
    tips: Optional[Any] = None
    rationale: Optional[str] = None
    tracking_type: Optional[Literal["boolean", "counter"]] = None
    time_of_day: Optional[str] = None
    scheduled_days: Optional[List[str]] = None
    framework_details: Optional[FrameworkDetails] = Field(None, alias="frameworkDetails")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        # генератор пишет "habitude"
        if isinstance(value, str) and value.lower() in ("habitude", "habit"):
            return "habit"
        return value


class PlanPhase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str = ""
    subtitle: Optional[str] = None
    rationale: Optional[str] = None
    status: Optional[str] = None
    actions: List[PlanActionSpec] = Field(default_factory=list)


class PlanContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    strategy: Optional[str] = None
    estimated_duration: Optional[str] = Field(None, alias="estimatedDuration")
    phases: List[PlanPhase] = Field(default_factory=list)


class PlanInputs(BaseModel):
    why: Optional[str] = None
    blockers: Optional[str] = None
    context: Optional[str] = None
    pacing: Optional[str] = None


# =============================================================================
# CATALOG REFERENCES
# =============================================================================

class AxisSelection(BaseModel):
    id: str
    title: Optional[str] = None
    theme_id: Optional[str] = None
    problems: List[Any] = Field(default_factory=list)


# =============================================================================
# COLLABORATOR RESPONSES
# =============================================================================

class SummaryResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str
    suggested_pacing: Optional[Dict[str, Any]] = None
    examples: Optional[Dict[str, Any]] = None


class SortedAxis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_id: str = Field(alias="originalId")
    role: Optional[str] = None
    reasoning: Optional[str] = None


class SortPrioritiesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sorted_axes: List[SortedAxis] = Field(alias="sortedAxes")


class MicroStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str
    description: Optional[str] = None
    tips: Optional[Any] = None
    type: Literal["habit", "mission"] = "mission"
    target_reps: int = Field(1, alias="targetReps")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if isinstance(value, str) and value.lower() in ("habitude", "habit"):
            return "habit"
        return "mission"


# =============================================================================
# SERVICE RESULTS
# =============================================================================

class SummaryResult(BaseModel):
    summary: Optional[str] = None
    source: Literal["cache", "generated", "quota", "unavailable"]
    summary_attempts: int
    suggested_pacing: Optional[Dict[str, Any]] = None
    examples: Optional[Dict[str, Any]] = None


class GoalView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    axis_id: str
    axis_title: Optional[str] = None
    theme_id: Optional[str] = None
    submission_id: str
    priority_order: int
    status: str
    role: Optional[str] = None
    reasoning: Optional[str] = None


class RankResult(BaseModel):
    goals: List[GoalView]
    source: Literal["cache", "sorter", "quota"]
    sorting_attempts: int
    quota_exhausted: bool = False


class PlanResult(BaseModel):
    plan_id: str
    goal_id: str
    status: str
    content: Optional[Dict[str, Any]] = None
    generation_attempts: int
    quota_exhausted: bool = False


class ActionView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    plan_action_key: str
    phase_index: int
    type: str
    title: str
    description: Optional[str] = None
    quest_tier: str
    time_of_day: str
    scheduled_days: Optional[List[str]] = None
    target_reps: int
    current_reps: int
    status: str
    archive_reason: Optional[str] = None


# =============================================================================
# API REQUESTS
# =============================================================================

class SaveAnswersRequest(BaseModel):
    answers: Dict[str, Any]


class RankAxesRequest(BaseModel):
    submission_id: str
    axes: List[AxisSelection] = Field(min_length=1)
    refresh: bool = False


class ReorderGoalsRequest(BaseModel):
    submission_id: str
    goal_ids: List[str] = Field(min_length=1)


class SummaryRequest(BaseModel):
    submission_id: str
    axis: AxisSelection


class GeneratePlanRequest(BaseModel):
    goal_id: Optional[str] = None
    inputs: PlanInputs = Field(default_factory=PlanInputs)
    birth_date: Optional[date] = None
    gender: Optional[str] = None


class RefinePlanRequest(BaseModel):
    goal_id: Optional[str] = None
    feedback: str
    answers: Optional[Dict[str, Any]] = None


class ValidatePlanRequest(BaseModel):
    goal_id: Optional[str] = None


class SignupRequest(BaseModel):
    is_new_user: bool = False


class ValidatedPlan(BaseModel):
    plan: PlanResult
    actions: List[ActionView]
