"""
Plans API - generate / refine / validate
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from schemas import GeneratePlanRequest, RefinePlanRequest, ValidatePlanRequest, PlanResult, ValidatedPlan
from exceptions import BaseLifecycleException
from api.dependencies import Services, get_services, get_user_id
from api.errors import map_exception_to_http

router = APIRouter(prefix="/plans", tags=["plans"])


@router.post("/generate", response_model=PlanResult)
async def generate_plan(
    payload: GeneratePlanRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """
    Full generation. quota_exhausted=true means the stored plan was returned
    without calling the generator.
    """
    try:
        return await services.plans.generate_plan(
            user_id,
            goal_id=payload.goal_id,
            inputs=payload.inputs,
            mode="create",
            birth_date=payload.birth_date,
            gender=payload.gender,
        )
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.post("/refine", response_model=PlanResult)
async def refine_plan(
    payload: RefinePlanRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return await services.plans.refine_plan(user_id, payload.goal_id, payload.feedback, payload.answers)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.post("/validate", response_model=ValidatedPlan)
async def validate_plan(
    payload: ValidatePlanRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return await services.plans.validate_plan(user_id, payload.goal_id)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.get("", response_model=PlanResult)
async def get_plan(
    goal_id: Optional[str] = Query(None),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return await services.plans.get_plan(user_id, goal_id)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)
