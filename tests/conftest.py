from __future__ import annotations

from urllib.parse import parse_qsl

import httpx
import pytest
from pydantic import AnyUrl

from mcp.server.auth.provider import AuthorizationParams
from mcp.shared.auth import OAuthClientInformationFull

from freeagent_mcp.config import Settings
from freeagent_mcp.oauth_provider import FreeAgentOAuthProvider, pkce_s256

SECRET = "test-signing-secret"
CODE_VERIFIER = "verifier-0123456789-0123456789-0123456789-abcdef"
CALLER_REDIRECT = "http://localhost/callback"


class FakeFreeAgent:
    """Stand-in for FreeAgent's token endpoint, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []
        self.issued = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        self.issued += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"fa-access-{self.issued}",
                "refresh_token": "fa-refresh-1",
                "expires_in": 3600,
                "token_type": "bearer",
            },
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def form(self, index: int = -1) -> dict[str, str]:
        return dict(parse_qsl(self.requests[index].content.decode()))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        freeagent_client_id="fa-client",
        freeagent_client_secret="fa-secret",
        jwt_secret=SECRET,
        base_url="https://mcp.example.com",
    )


@pytest.fixture
def freeagent():
    return FakeFreeAgent()


@pytest.fixture
def provider(settings, freeagent):
    return FreeAgentOAuthProvider(settings, transport=freeagent.transport)


def make_client(client_id: str = "client-A") -> OAuthClientInformationFull:
    return OAuthClientInformationFull(
        client_id=client_id,
        client_name="Test Client",
        redirect_uris=[AnyUrl(CALLER_REDIRECT)],
        grant_types=["authorization_code", "refresh_token"],
        response_types=["code"],
        token_endpoint_auth_method="none",
        scope="freeagent",
    )


@pytest.fixture
def client(provider):
    return provider.clients.register(make_client())


def auth_params(client_id: str, state: str | None = "test-state") -> AuthorizationParams:
    return AuthorizationParams(
        client_id=client_id,
        redirect_uri=AnyUrl(CALLER_REDIRECT),
        redirect_uri_provided_explicitly=True,
        state=state,
        scopes=["freeagent"],
        code_challenge=pkce_s256(CODE_VERIFIER),
        code_challenge_method="S256",
    )


async def authorized_code(
    provider: FreeAgentOAuthProvider,
    client: OAuthClientInformationFull,
    upstream_code: str = "up-code-1",
) -> str:
    """Run /authorize and the FreeAgent callback, returning the proxy code."""
    upstream_url = httpx.URL(await provider.authorize(client, auth_params(client.client_id)))
    proxy_code = upstream_url.params["state"]
    provider.handle_callback(proxy_code, upstream_code)
    return proxy_code
