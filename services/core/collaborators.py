"""
External collaborators - edge functions behind one HTTP client
==============================================================
summarize-context, sort-priorities, generate-plan, break-down-action,
process-plan-topic-memory, whatsapp-optin.

Every failure (transport, non-2xx, non-JSON, {"error": ...}, bad shape)
surfaces as CollaboratorUnavailable so callers never spend quota on it.
"""
import time
from typing import Optional, Dict, Any, List
import httpx
from pydantic import ValidationError

from lifecycle_config import EDGE_FUNCTIONS_URL, EDGE_FUNCTIONS_KEY, COLLABORATOR_TIMEOUT_SECONDS
from exceptions import CollaboratorUnavailable
from schemas import SummaryResponse, SortPrioritiesResponse, PlanContent, MicroStep
from logging_config import get_logger, log_collaborator_call

logger = get_logger(__name__)


class EdgeFunctionClient:
    """
    Async JSON-over-HTTP client for the coaching edge functions.

    Usage:
        client = EdgeFunctionClient()
        summary = await client.summarize_context(responses, axis)
    """

    def __init__(
        self,
        base_url: str = EDGE_FUNCTIONS_URL,
        api_key: str = EDGE_FUNCTIONS_KEY,
        timeout: float = COLLABORATOR_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def invoke(self, function_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST {base_url}/{function_name} и вернуть JSON тело"""
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        started = time.monotonic()
        try:
            response = await self._get_client().post(
                f"{self.base_url}/{function_name}",
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            log_collaborator_call(function_name, started, ok=False, error=type(e).__name__)
            raise CollaboratorUnavailable(function_name, f"transport error: {type(e).__name__}") from e

        if response.status_code >= 400:
            log_collaborator_call(function_name, started, ok=False, status_code=response.status_code)
            raise CollaboratorUnavailable(function_name, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            log_collaborator_call(function_name, started, ok=False, error="not_json")
            raise CollaboratorUnavailable(function_name, "response is not JSON") from e

        if not isinstance(body, dict):
            log_collaborator_call(function_name, started, ok=False, error="not_object")
            raise CollaboratorUnavailable(function_name, "response is not a JSON object")
        if body.get("error"):
            log_collaborator_call(function_name, started, ok=False, error="error_field")
            raise CollaboratorUnavailable(function_name, str(body["error"]))

        log_collaborator_call(function_name, started, ok=True)
        return body

    # -------------------------------------------------------------------------
    # Typed calls
    # -------------------------------------------------------------------------

    async def summarize_context(self, responses: Dict[str, Any], axis: Dict[str, Any]) -> SummaryResponse:
        body = await self.invoke("summarize-context", {"responses": responses, "currentAxis": axis})
        return _parse("summarize-context", SummaryResponse, body)

    async def sort_priorities(self, axes: List[Dict[str, Any]]) -> SortPrioritiesResponse:
        body = await self.invoke("sort-priorities", {"axes": axes})
        return _parse("sort-priorities", SortPrioritiesResponse, body)

    async def generate_plan(
        self,
        inputs: Dict[str, Any],
        axis: Dict[str, Any],
        user_id: str,
        mode: str = "create",
        current_plan: Optional[Dict[str, Any]] = None,
        feedback: Optional[str] = None,
        answers: Optional[Dict[str, Any]] = None,
        user_profile: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Returns validated plan content as a plain dict (extra keys kept)"""
        payload = {
            "inputs": inputs,
            "currentAxis": axis,
            "userId": user_id,
            "mode": mode,
        }
        if current_plan is not None:
            payload["currentPlan"] = current_plan
        if feedback is not None:
            payload["feedback"] = feedback
        if answers is not None:
            payload["answers"] = answers
        if user_profile is not None:
            payload["userProfile"] = user_profile

        body = await self.invoke("generate-plan", payload)
        content = _parse("generate-plan", PlanContent, body)
        if not content.phases:
            raise CollaboratorUnavailable("generate-plan", "plan has no phases")
        return body

    async def break_down_action(
        self,
        action: Dict[str, Any],
        problem: str,
        plan_content: Optional[Dict[str, Any]],
        submission_id: Optional[str],
    ) -> MicroStep:
        body = await self.invoke("break-down-action", {
            "action": action,
            "problem": problem,
            "plan": plan_content,
            "submissionId": submission_id,
        })
        step = body.get("new_action", body)
        return _parse("break-down-action", MicroStep, step)

    async def process_plan_topic_memory(self, plan_id: Optional[str] = None, goal_id: Optional[str] = None) -> None:
        payload = {"plan_id": plan_id} if plan_id else {"goal_id": goal_id}
        await self.invoke("process-plan-topic-memory", payload)

    async def whatsapp_optin(self, user_id: str) -> None:
        await self.invoke("whatsapp-optin", {"userId": user_id})


def _parse(function_name: str, model, body):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        logger.warning("collaborator_bad_payload", function=function_name, errors=e.error_count())
        raise CollaboratorUnavailable(function_name, "unexpected response shape") from e
