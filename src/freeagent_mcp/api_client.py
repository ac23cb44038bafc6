from __future__ import annotations

from typing import Any

import httpx

from freeagent_mcp.config import PRODUCTION_API, SANDBOX_API


class FreeAgentApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"FreeAgent API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class FreeAgentApiClient:
    """Minimal authenticated client for the FreeAgent v2 REST API."""

    def __init__(
        self,
        access_token: str,
        use_sandbox: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self.base_url = (SANDBOX_API if use_sandbox else PRODUCTION_API) + "/v2"
        self._timeout = timeout
        self._transport = transport

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self._timeout,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Accept": "application/json",
            },
        ) as client:
            response = await client.get(path, params=params)

        if response.status_code == 401:
            raise FreeAgentApiError(401, "FreeAgent rejected the access token; reauthorize")
        if not response.is_success:
            raise FreeAgentApiError(response.status_code, response.text)
        return response.json()


def format_error_for_llm(exc: Exception) -> str:
    if isinstance(exc, FreeAgentApiError):
        return f"ERROR: {exc.message} (HTTP {exc.status_code})"
    if isinstance(exc, httpx.HTTPError):
        return f"ERROR: Could not reach FreeAgent: {exc}"
    return f"ERROR: {exc}"
