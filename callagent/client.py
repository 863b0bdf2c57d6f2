"""HTTP client for the call agent core, used by the UI layer and schedulers.

Retries live here, never in the state machine: transport errors and
retryable statuses (409 concurrent update, 5xx) are retried with
exponential backoff (1s, 2s, 4s by default). 400/404 are returned to the
caller straight away since repeating them can't help.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from callagent.config import settings

log = logging.getLogger("callagent.client")

RETRYABLE_STATUSES = frozenset({409, 500, 502, 503, 504})


class CallAgentClientError(Exception):
    """A request to the core failed for good."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CallAgentClient:
    """Async client for the conversation endpoints.

    Usage::

        async with CallAgentClient("http://localhost:8080") as client:
            call = await client.handle_call("agent-1", client_phone="+15551234567")
            reply = await client.process_call_message(call["sessionId"], "John Smith")
    """

    def __init__(
        self,
        base_url: str | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._max_retries = settings.client_max_retries if max_retries is None else max_retries
        self._base_delay = (
            settings.client_retry_base_delay if retry_base_delay is None else retry_base_delay
        )
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.call_agent_url,
            timeout=settings.client_timeout if timeout is None else timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "CallAgentClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return self._base_delay * (2 ** attempt)

    # ── Endpoints ─────────────────────────────────────────────

    async def process_call_message(
        self,
        session_id: str,
        message: str,
        is_interruption: bool = False,
        audio_level: Optional[float] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sessionId": session_id,
            "message": message,
            "isInterruption": is_interruption,
        }
        if audio_level is not None:
            payload["audioLevel"] = audio_level
        return await self._request("POST", "/process-call-message", json=payload)

    async def handle_call(
        self, agent_id: str, client_phone: str = "", session_id: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"agentId": agent_id, "clientPhone": client_phone}
        if session_id:
            payload["sessionId"] = session_id
        return await self._request("POST", "/handle-call", json=payload)

    async def get_session(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/sessions/{session_id}")

    async def get_readiness(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/sessions/{session_id}/readiness")

    # ── Internal ──────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                if attempt >= self._max_retries:
                    raise CallAgentClientError(f"{method} {path} failed: {e}") from e
                log.warning("%s %s transport error (%s), retrying", method, path, e)
            else:
                if response.status_code < 400:
                    return response.json()
                error = _error_text(response)
                if (
                    response.status_code not in RETRYABLE_STATUSES
                    or attempt >= self._max_retries
                ):
                    raise CallAgentClientError(error, status_code=response.status_code)
                log.warning("%s %s returned %d (%s), retrying",
                            method, path, response.status_code, error)

            delay = self.backoff_delay(attempt)
            attempt += 1
            await self._sleep(delay)


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return f"HTTP {response.status_code}"
