"""
Client for the remote wizard endpoints.

    POST {api_base_url}/api/tickets/wizard/step1|step2|step3   per-step checkpoint
    POST {api_base_url}/api/tickets/wizard/complete            finalize → ticketId

Requests carry the wizard session id in `x-session-id` and, when a token
provider is configured, a bearer token obtained right before the call (the auth
coordinator's ensure_valid_token refreshes it when close to expiry).

Transport and HTTP failures are converted to StepSaveError / SubmissionError
carrying the server's message when one is available.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from tracker.config import settings
from tracker.errors import StepSaveError, SubmissionError
from tracker.wizard.schemas import STEP_ENDPOINTS, TicketSubmission, WizardStep

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class WizardApi(Protocol):
    async def save_step(self, step: WizardStep, payload: dict, session_id: Optional[str] = None) -> None: ...

    async def finalize(self, submission: TicketSubmission) -> str: ...


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull the human message out of either envelope the server may return."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return fallback


class HttpWizardApi:
    """
    httpx implementation of WizardApi.

    Usage:
        api = HttpWizardApi(token_provider=coordinator.ensure_valid_token)
        await api.save_step(WizardStep.basic_info, {...}, session_id=store.session_id)
        ticket_id = await api.finalize(store.build_submission())
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token_provider = token_provider
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.http_timeout

    async def _headers(self, session_id: Optional[str]) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if session_id:
            headers["x-session-id"] = session_id
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {await self.token_provider()}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any], session_id: Optional[str]) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url, transport=self.transport, timeout=self.timeout
        ) as client:
            return await client.post(path, json=payload, headers=await self._headers(session_id))

    async def save_step(self, step: WizardStep, payload: dict, session_id: Optional[str] = None) -> None:
        step = WizardStep(step)
        endpoint = STEP_ENDPOINTS.get(step)
        if endpoint is None:
            raise ValueError(f"Step '{step.value}' has no checkpoint endpoint")

        try:
            response = await self._post(f"/api/tickets/wizard/{endpoint}", payload, session_id)
        except httpx.HTTPError as exc:
            logger.warning("Step save transport error step=%s: %s", step.value, type(exc).__name__)
            raise StepSaveError(step.value) from exc

        if response.status_code >= 400:
            logger.warning("Step save rejected step=%s status=%d", step.value, response.status_code)
            raise StepSaveError(
                step.value,
                _error_message(response, "Failed to save your progress. Please try again."),
            )
        logger.info("Step saved step=%s session_id=%s", step.value, session_id)

    async def finalize(self, submission: TicketSubmission) -> str:
        try:
            response = await self._post(
                "/api/tickets/wizard/complete",
                submission.model_dump(mode="json"),
                submission.session_id,
            )
        except httpx.HTTPError as exc:
            logger.warning("Finalize transport error: %s", type(exc).__name__)
            raise SubmissionError() from exc

        if response.status_code >= 400:
            logger.warning("Finalize rejected status=%d", response.status_code)
            raise SubmissionError(_error_message(response, "Failed to submit ticket. Please try again."))

        ticket_id = response.json().get("ticketId")
        if not ticket_id:
            raise SubmissionError("Ticket was not created. Please try again.")
        return ticket_id
