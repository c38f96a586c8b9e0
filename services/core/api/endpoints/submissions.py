"""
Submissions API - ответы анкеты и регистрация
"""
from fastapi import APIRouter, Depends

from schemas import SaveAnswersRequest, SignupRequest
from exceptions import BaseLifecycleException
from api.dependencies import Services, get_services, get_user_id
from api.errors import map_exception_to_http

router = APIRouter(tags=["submissions"])


def _submission_payload(submission) -> dict:
    return {
        "id": submission.id,
        "status": submission.status,
        "answers": submission.answers,
        "sorting_attempts": submission.sorting_attempts,
        "updated_at": submission.updated_at.isoformat() if submission.updated_at else None,
    }


@router.post("/submissions", status_code=201)
async def create_submission(
    payload: SaveAnswersRequest = None,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    submission = await services.submissions.create(user_id, payload.answers if payload else None)
    return _submission_payload(submission)


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return _submission_payload(await services.submissions.get(user_id, submission_id))
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.put("/submissions/{submission_id}/answers")
async def save_answers(
    submission_id: str,
    payload: SaveAnswersRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """Autosave; 409 once the submission is completed"""
    try:
        submission = await services.submissions.save_answers(user_id, submission_id, payload.answers)
        return _submission_payload(submission)
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.post("/submissions/{submission_id}/complete")
async def complete_submission(
    submission_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    try:
        return _submission_payload(await services.submissions.complete(user_id, submission_id))
    except BaseLifecycleException as e:
        raise map_exception_to_http(e)


@router.post("/signup", status_code=202)
async def signup(
    payload: SignupRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """WhatsApp opt-in fires only for a brand new account"""
    task = services.side_channels.register_signup(user_id, payload.is_new_user)
    return {"whatsapp_optin_scheduled": task is not None}
