"""
Agent tool commands - tagged union вместо строкового dispatch
=============================================================
Every tool call is parsed into exactly one command model, discriminated by
its "tool" field, before anything touches the database.
"""
import datetime as dt
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from schemas import FrameworkDetails

Weekday = Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
TimeOfDay = Literal["morning", "afternoon", "evening", "night", "any_time"]


class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateSimpleAction(_Command):
    """Create a habit (weekly repetitions) or a one-off mission"""
    tool: Literal["create_simple_action"] = "create_simple_action"
    title: str = Field(min_length=1)
    description: str = ""
    type: Literal["habit", "mission"]
    target_reps: int = Field(1, alias="targetReps")
    tips: Optional[str] = None
    time_of_day: TimeOfDay = "any_time"
    scheduled_days: Optional[List[Weekday]] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if isinstance(value, str) and value.lower() == "habitude":
            return "habit"
        return value


class CreateFramework(_Command):
    """Create a worksheet action made of typed input sections"""
    tool: Literal["create_framework"] = "create_framework"
    title: str = Field(min_length=1)
    description: str = ""
    target_reps: int = Field(1, ge=1, alias="targetReps")
    time_of_day: TimeOfDay = "any_time"
    framework_details: FrameworkDetails = Field(alias="frameworkDetails")


class TrackProgress(_Command):
    """Record progress on an action for a given day (default: today)"""
    tool: Literal["track_progress"] = "track_progress"
    target_name: str = Field(min_length=1)
    value: int = 1
    operation: Literal["add", "set"] = "add"
    status: Literal["completed", "missed", "partial"] = "completed"
    event_date: Optional[dt.date] = Field(None, alias="date")


class BreakDownAction(_Command):
    """Generate one micro-step for an action the user is stuck on"""
    tool: Literal["break_down_action"] = "break_down_action"
    action_title_or_id: str = Field(min_length=1)
    problem: str = ""
    apply_to_plan: bool = True


class UpdateActionStructure(_Command):
    """
    Partial update. None leaves a field untouched; an empty scheduled-days
    list clears the schedule.
    """
    tool: Literal["update_action_structure"] = "update_action_structure"
    target_name: str = Field(min_length=1)
    new_title: Optional[str] = None
    new_description: Optional[str] = None
    new_target_reps: Optional[int] = None
    new_scheduled_days: Optional[List[Weekday]] = None


class ActivatePlanAction(_Command):
    tool: Literal["activate_plan_action"] = "activate_plan_action"
    action_title_or_id: str = Field(min_length=1)


class ArchivePlanAction(_Command):
    tool: Literal["archive_plan_action"] = "archive_plan_action"
    action_title_or_id: str = Field(min_length=1)
    reason: Optional[str] = None


class DeactivatePlanAction(_Command):
    """Put an active action back to pending, freeing a slot"""
    tool: Literal["deactivate_plan_action"] = "deactivate_plan_action"
    action_title_or_id: str = Field(min_length=1)


ToolCommand = Annotated[
    Union[
        CreateSimpleAction,
        CreateFramework,
        TrackProgress,
        BreakDownAction,
        UpdateActionStructure,
        ActivatePlanAction,
        ArchivePlanAction,
        DeactivatePlanAction,
    ],
    Field(discriminator="tool"),
]

COMMAND_MODELS = (
    CreateSimpleAction,
    CreateFramework,
    TrackProgress,
    BreakDownAction,
    UpdateActionStructure,
    ActivatePlanAction,
    ArchivePlanAction,
    DeactivatePlanAction,
)

TOOL_NAMES = tuple(m.model_fields["tool"].default for m in COMMAND_MODELS)

_adapter = TypeAdapter(ToolCommand)


def parse_command(tool_name: str, arguments: Dict[str, Any]) -> ToolCommand:
    """
    Raises:
        pydantic.ValidationError: unknown tool or malformed arguments
    """
    return _adapter.validate_python({**(arguments or {}), "tool": tool_name})


class ToolContext(BaseModel):
    """Что известно о разговоре в момент вызова"""
    user_id: str
    user_confirmed: bool = False
    today: Optional[dt.date] = None


class ToolResult(BaseModel):
    tool: str
    ok: bool
    code: str = "ok"
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
