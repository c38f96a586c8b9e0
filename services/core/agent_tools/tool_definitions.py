"""
Tool catalogue for function calling.

Parameters are derived from the command models so the schema the model sees
and the validation the executor applies cannot drift apart.
"""
from agent_tools.commands import COMMAND_MODELS

TOOL_DESCRIPTIONS = {
    "create_simple_action": (
        "Create a new habit (repeated N times per week, 1 to 7) or a one-off mission "
        "in the current phase of the user's plan."
    ),
    "create_framework": (
        "Create a writing / reflection worksheet made of typed sections "
        "(text, textarea, scale, list, categorized_list), one_shot or recurring."
    ),
    "track_progress": (
        "Record progress on an existing action: add to or set its counter, or mark it "
        "completed / missed / partial for a date (default today)."
    ),
    "break_down_action": (
        "Generate one smaller first step for an action the user is stuck on. "
        "Only call after the user explicitly agreed."
    ),
    "update_action_structure": (
        "Change the title, description, weekly target or scheduled days of an action. "
        "Omitted fields are untouched, an empty scheduled_days list clears the schedule."
    ),
    "activate_plan_action": (
        "Activate a pending action of the plan. Refused while an earlier phase is "
        "unfinished or when 3 actions are already active."
    ),
    "archive_plan_action": "Archive an action the user gives up on. Its history is kept.",
    "deactivate_plan_action": "Put an active action back to pending to free a slot.",
}


def tool_definitions() -> list:
    definitions = []
    for model in COMMAND_MODELS:
        name = model.model_fields["tool"].default
        schema = model.model_json_schema(by_alias=True)
        schema.get("properties", {}).pop("tool", None)
        if "required" in schema:
            schema["required"] = [r for r in schema["required"] if r != "tool"]
        schema.pop("title", None)
        definitions.append({
            "name": name,
            "description": TOOL_DESCRIPTIONS[name],
            "parameters": schema,
        })
    return definitions
