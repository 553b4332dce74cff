"""WorkflowTrigger — fire the external download workflow via its webhook."""

from __future__ import annotations

import logging
import time
from typing import Protocol

import httpx

from core.errors import ExternalServiceError
from core.settings import TRIGGER_TIMEOUT
from scheduler.models import TriggerResult, WorkflowPayload

logger = logging.getLogger(__name__)

# Keys the workflow may use to report its own execution id
_ID_KEYS = ("executionId", "execution_id")


class Trigger(Protocol):
    async def trigger(self, target: str, payload: WorkflowPayload) -> TriggerResult: ...


class WorkflowTrigger:
    """POST the payload to the webhook and interpret the response.

    Never raises for remote failures: timeouts, non-2xx responses and
    network errors come back as ``TriggerResult(success=False)``.
    """

    def __init__(
        self,
        timeout: float = TRIGGER_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout
        self._transport = transport

    async def trigger(self, target: str, payload: WorkflowPayload) -> TriggerResult:
        try:
            response = await self._post(target, payload)
        except ExternalServiceError as e:
            logger.warning(
                "Workflow trigger failed",
                extra={"target": target, "error": str(e), "status_code": e.status_code},
            )
            return TriggerResult(success=False, error=str(e), status_code=e.status_code)

        execution_id = _extract_execution_id(response)
        synthesized = execution_id is None
        if synthesized:
            execution_id = f"wf_{int(time.time() * 1000)}"
        return TriggerResult(
            success=True,
            external_execution_id=execution_id,
            id_synthesized=synthesized,
            status_code=response.status_code,
        )

    async def _post(self, target: str, payload: WorkflowPayload) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(target, json=payload.model_dump(mode="json"))
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Workflow trigger timed out after {self._timeout:g}s") from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Workflow trigger request failed: {e}") from e

        if not response.is_success:
            raise ExternalServiceError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response


def _extract_execution_id(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for key in _ID_KEYS:
        value = body.get(key)
        if value not in (None, ""):
            return str(value)
    return None
