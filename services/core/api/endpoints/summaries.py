"""Context summary API"""
from fastapi import APIRouter, Depends

from schemas import SummaryRequest, SummaryResult
from exceptions import BaseLifecycleException
from api.dependencies import Services, get_services, get_user_id
from api.errors import map_exception_to_http

router = APIRouter(tags=["summaries"])


@router.post("/summaries", response_model=SummaryResult)
async def get_or_refresh_summary(
    payload: SummaryRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return await services.summaries.get_or_refresh_summary(user_id, payload.axis, payload.submission_id)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)
