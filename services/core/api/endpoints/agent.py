"""
Agent tools API + direct user check-ins

Tool calls always answer 200 with a ToolResult: failures are data for the
agent loop, not HTTP errors.
"""
from typing import Any, Dict, Optional
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from agent_tools import ToolContext, ToolResult
from api.dependencies import Services, get_services, get_user_id

router = APIRouter(tags=["agent"])


class ToolCallRequest(BaseModel):
    arguments: Dict[str, Any] = Field(default_factory=dict)
    user_confirmed: bool = False


class CheckInRequest(BaseModel):
    value: int = 1
    operation: str = "add"
    status: str = "completed"
    on_date: Optional[date] = Field(None, alias="date")


@router.get("/agent/tools")
async def list_tools(services: Services = Depends(get_services)):
    return {"tools": services.tools.list_tools()}


@router.post("/agent/tools/{tool_name}", response_model=ToolResult)
async def call_tool(
    tool_name: str,
    payload: ToolCallRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    ctx = ToolContext(user_id=user_id, user_confirmed=payload.user_confirmed)
    return await services.tools.execute(tool_name, payload.arguments, ctx)


@router.post("/actions/{action_id}/check-in", response_model=ToolResult)
async def check_in(
    action_id: str,
    payload: CheckInRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """Чек-ин пользователя идёт тем же путём, что и track_progress агента"""
    arguments = {
        "target_name": action_id,
        "value": payload.value,
        "operation": payload.operation,
        "status": payload.status,
    }
    if payload.on_date is not None:
        arguments["date"] = payload.on_date.isoformat()
    ctx = ToolContext(user_id=user_id)
    return await services.tools.execute("track_progress", arguments, ctx)
