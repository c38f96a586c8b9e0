"""
Goals API Endpoints Module
Ranking, manual reorder and execution context
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from schemas import RankAxesRequest, ReorderGoalsRequest, RankResult, GoalView
from exceptions import BaseLifecycleException
from api.dependencies import Services, get_services, get_user_id
from api.errors import map_exception_to_http

router = APIRouter(prefix="/goals", tags=["goals"])


@router.post("/rank", response_model=RankResult)
async def rank_axes(
    payload: RankAxesRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """Ранжирует 1-3 оси; при исчерпанной квоте отдаёт лучший кэш"""
    try:
        return await services.sorter.rank_axes(user_id, payload.submission_id, payload.axes, payload.refresh)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.post("/reorder", response_model=list[GoalView])
async def reorder_goals(
    payload: ReorderGoalsRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return await services.sorter.reorder(user_id, payload.submission_id, payload.goal_ids)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.get("", response_model=list[GoalView])
async def list_goals(
    submission_id: str = Query(...),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    goals = await services.goals.list_goals(user_id, submission_id)
    return [GoalView.model_validate(g) for g in goals]


@router.get("/context", response_model=GoalView)
async def execution_context(
    goal_id: Optional[str] = Query(None),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """409 с redirect_to, если ни одной цели не найдено"""
    try:
        return GoalView.model_validate(await services.goals.resolve_execution_context(user_id, goal_id))
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)
