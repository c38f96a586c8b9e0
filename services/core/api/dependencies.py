"""
API dependencies - контейнер сервисов и текущий пользователь
"""
from dataclasses import dataclass
from typing import Any

from fastapi import Header, HTTPException, Request

from submission_store import SubmissionStore
from goal_service import GoalService
from context_summary_service import ContextSummaryService
from priority_sorter import PrioritySorter
from plan_generator import PlanGenerator
from side_channels import SideChannels
from single_flight import SingleFlight
from agent_tools import AgentToolExecutor
from logging_config import bind_request_context


@dataclass
class Services:
    submissions: SubmissionStore
    goals: GoalService
    summaries: ContextSummaryService
    sorter: PrioritySorter
    plans: PlanGenerator
    tools: AgentToolExecutor
    side_channels: SideChannels
    single_flight: SingleFlight
    collaborators: Any


def build_services(session_factory, collaborators) -> Services:
    """One shared single-flight registry per process"""
    single_flight = SingleFlight()
    side_channels = SideChannels(collaborators, session_factory)
    return Services(
        submissions=SubmissionStore(session_factory),
        goals=GoalService(session_factory),
        summaries=ContextSummaryService(session_factory, collaborators, single_flight),
        sorter=PrioritySorter(session_factory, collaborators, single_flight),
        plans=PlanGenerator(session_factory, collaborators, side_channels, single_flight),
        tools=AgentToolExecutor(session_factory, collaborators),
        side_channels=side_channels,
        single_flight=single_flight,
        collaborators=collaborators,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return services


async def get_user_id(request: Request, x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Аутентификация снаружи: gateway кладёт id пользователя в заголовок"""
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user")
    user_id = x_user_id.strip()
    bind_request_context(user_id, route=request.url.path)
    return user_id
