"""
Async HTTP client for the staff-session RPC surface.

Error bodies are turned back into the session error taxonomy so callers
handle the same exceptions as the service raises.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..session.errors import error_from_dict

logger = logging.getLogger(__name__)


class SessionClient:
    """Thin wrapper over httpx.AsyncClient, one method per RPC."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize session client.

        Args:
            api_url: Base URL of the stafflock API
            api_key: Sent as X-API-Key
            token: Sent as a bearer token (takes precedence over api_key)
            timeout: Per-request timeout in seconds
            transport: Custom transport (tests use httpx.MockTransport)
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif api_key:
            headers["X-API-Key"] = api_key

        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(path, json=payload)
        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        # FastAPI's own errors (422, 503 from dependencies) carry "detail"
        if "detail" in body and "error" not in body:
            body = {"message": str(body["detail"])}

        error = error_from_dict(response.status_code, body)
        logger.debug(f"POST {path} failed with {response.status_code}: {error.message}")
        raise error

    async def start(self, password: str, device_id: str) -> Dict[str, Any]:
        """
        Raises:
            SessionConflict: another device owns the session
        """
        return await self._post("/staff/session/start", {"password": password, "deviceId": device_id})

    async def check(self, device_id: str) -> Dict[str, Any]:
        return await self._post("/staff/session/check", {"deviceId": device_id})

    async def end(self, password: str) -> Dict[str, Any]:
        return await self._post("/staff/session/end", {"password": password})

    async def end_all(self, password: str) -> Dict[str, Any]:
        return await self._post("/staff/session/end-all", {"password": password})

    async def transfer(self, password: str, new_device_id: str) -> Dict[str, Any]:
        return await self._post(
            "/staff/session/transfer", {"password": password, "newDeviceId": new_device_id}
        )
