from __future__ import annotations

import httpx
from pydantic import BaseModel, ValidationError

from freeagent_mcp.audit import get_logger, truncate_for_log
from freeagent_mcp.errors import (
    UpstreamError,
    UpstreamRefreshFailed,
    UpstreamTokenExchangeFailed,
)

logger = get_logger("upstream")

DEFAULT_EXPIRES_IN = 3600


class UpstreamTokens(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None


class FreeAgentOAuthClient:
    """The proxy acting as an OAuth client of FreeAgent.

    Token requests are form encoded with HTTP Basic client authentication.
    A failed request is terminal for that attempt; nothing is retried.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        callback_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self._timeout = timeout
        self._transport = transport

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.base_url}/v2/approve_app"

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}/v2/token_endpoint"

    def authorization_url(self, state: str) -> str:
        """Consent page URL. ``state`` round-trips back to our callback unchanged."""
        return str(
            httpx.URL(
                self.authorize_endpoint,
                params={
                    "client_id": self.client_id,
                    "response_type": "code",
                    "redirect_uri": self.callback_url,
                    "state": state,
                },
            )
        )

    async def exchange_code(self, code: str) -> UpstreamTokens:
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.callback_url,
            },
            UpstreamTokenExchangeFailed,
        )

    async def refresh(self, refresh_token: str) -> UpstreamTokens:
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            UpstreamRefreshFailed,
        )

    async def _token_request(
        self, form: dict[str, str], failure: type[UpstreamError]
    ) -> UpstreamTokens:
        grant_type = form["grant_type"]
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            ) as client:
                response = await client.post(
                    self.token_endpoint,
                    data=form,
                    auth=(self.client_id, self._client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.error("upstream_token_request_error", grant_type=grant_type, error=str(exc))
            raise failure(f"FreeAgent token endpoint unreachable: {exc}", 0, "") from exc

        if not response.is_success:
            logger.error(
                "upstream_token_request_rejected",
                grant_type=grant_type,
                status=response.status_code,
                body=truncate_for_log(response.text),
            )
            raise failure(
                f"FreeAgent {grant_type} request failed: {response.status_code} {response.text}",
                response.status_code,
                response.text,
            )

        try:
            return UpstreamTokens.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.error("upstream_token_response_malformed", grant_type=grant_type)
            raise failure(
                "FreeAgent returned an unreadable token response",
                response.status_code,
                response.text,
            ) from exc
