# src/charge_monitor/backend.py
"""REST client for the charging backend."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
import structlog

from charge_monitor.models import (
    SessionDetail,
    SessionSnapshot,
    StopResult,
    normalize_transaction_id,
)

log = structlog.get_logger()


class BackendError(Exception):
    """A backend call failed (transport, HTTP, or backend-reported error)."""


class AuthenticationError(BackendError):
    """The backend rejected the bearer token (HTTP 401)."""


class BackendClient:
    """Customer API client.

    Serves the monitor as both its PollSource (fetch_active_session,
    fetch_session_detail) and its StopCommand (stop_charging).

    Usage:
        async with BackendClient(base_url, token=token) as client:
            snapshot = await client.fetch_active_session()
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token or None
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform a request and return the decoded JSON body.

        Raises:
            AuthenticationError: On HTTP 401
            BackendError: On transport errors, timeouts, non-JSON or malformed bodies
        """
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, json=payload, headers=self._headers()
            ) as resp:
                if resp.status == 401:
                    raise AuthenticationError("Session expired. Please log in again.")
                content_type = resp.headers.get("Content-Type", "")
                if "application/json" not in content_type:
                    text = await resp.text()
                    raise BackendError(f"Server returned non-JSON response: {text[:100]}")
                try:
                    data = await resp.json()
                except ValueError as e:
                    raise BackendError(f"Server returned malformed JSON from {path}") from e
        except asyncio.TimeoutError as e:
            # Before ClientError: aiohttp's timeout errors subclass both
            raise BackendError(f"{method} {path} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

        if not isinstance(data, dict):
            raise BackendError(f"Unexpected response shape from {path}")
        log.debug("backend_response", method=method, path=path, status=resp.status)
        return data

    async def fetch_active_session(self) -> SessionSnapshot | None:
        """Fetch the customer's live session.

        Returns:
            The session snapshot, or None if the backend reports no active session

        Raises:
            BackendError: If the request fails or the backend reports failure
        """
        data = await self._request("GET", "/charging/active-session")
        if not data.get("success"):
            raise BackendError(data.get("error") or "Failed to fetch active session")
        session = data.get("session")
        if not session:
            return None
        try:
            return SessionSnapshot.from_api(session)
        except ValueError as e:
            raise BackendError(str(e)) from e

    async def fetch_session_detail(self, session_id: str) -> SessionDetail:
        """Fetch settlement figures (refund, billed amount) for a session.

        Raises:
            BackendError: If the request fails or the backend reports failure
        """
        data = await self._request("GET", f"/sessions/{session_id}")
        session = data.get("session")
        if not data.get("success") or not isinstance(session, dict):
            raise BackendError(data.get("error") or f"Session {session_id} not found")
        return SessionDetail.from_api(session_id, session)

    async def stop_charging(
        self,
        device_id: str,
        connector_id: int,
        transaction_id: str | None = None,
    ) -> StopResult:
        """Ask the backend to stop charging on a connector.

        A backend-reported failure is returned as ``StopResult(success=False)``
        rather than raised, so callers can show the backend's message.

        Raises:
            BackendError: On transport failure (the stop may or may not have landed)
        """
        body: dict[str, Any] = {"deviceId": device_id, "connectorId": connector_id}
        transaction_id = normalize_transaction_id(transaction_id)
        if transaction_id is not None:
            body["transactionId"] = transaction_id

        log.info("stop_requested", device_id=device_id, connector_id=connector_id)
        data = await self._request("POST", "/charging/stop", body)
        result = StopResult.from_api(data)
        log.info(
            "stop_response",
            success=result.success,
            stop_success=result.stop_success,
            error=result.error,
        )
        return result
