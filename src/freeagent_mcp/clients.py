"""Registered-client directory.

Clients register dynamically and live only in process memory, so a cold
start forgets them while the MCP client still holds a valid refresh
token. Rather than failing those requests, a lookup miss synthesizes a
placeholder that only satisfies the SDK's structural checks. The
placeholder is never a trust boundary: refresh re-derives the client
identity from the signed refresh token, and only a lookup that is not
FOUND lets it restore the real metadata embedded in that token.

Placeholders are built per lookup and never stored, so unknown client ids
presented to the token endpoint do not grow the directory.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from mcp.shared.auth import OAuthClientInformationFull

from freeagent_mcp.audit import get_logger
from freeagent_mcp.tokens import FREEAGENT_SCOPE

PLACEHOLDER_CLIENT_NAME = "Claude Desktop (Recovered)"

# Fields copied into refresh tokens. client_secret is deliberately absent.
EMBEDDED_CLIENT_FIELDS = {
    "client_id",
    "client_name",
    "redirect_uris",
    "grant_types",
    "response_types",
    "token_endpoint_auth_method",
    "scope",
}

logger = get_logger("clients")


class LookupStatus(str, Enum):
    FOUND = "found"
    RECONSTRUCTED = "reconstructed"
    MISSING = "missing"


@dataclass(frozen=True)
class ClientLookup:
    status: LookupStatus
    client: OAuthClientInformationFull | None = None

    @property
    def trusted(self) -> bool:
        return self.status is LookupStatus.FOUND


def placeholder_client(client_id: str) -> OAuthClientInformationFull:
    # model_construct: validation would reject the empty redirect_uris list
    return OAuthClientInformationFull.model_construct(
        client_id=client_id,
        client_name=PLACEHOLDER_CLIENT_NAME,
        redirect_uris=[],
        grant_types=["refresh_token", "authorization_code"],
        response_types=["code"],
        token_endpoint_auth_method="none",
        scope=FREEAGENT_SCOPE,
    )


def client_metadata(client: OAuthClientInformationFull) -> dict[str, Any]:
    """Serializable subset of ``client`` suitable for embedding in a refresh token."""
    return client.model_dump(mode="json", include=EMBEDDED_CLIENT_FIELDS, exclude_none=True)


class ClientDirectory:
    def __init__(self, reconstruct_missing: bool = True) -> None:
        self._reconstruct_missing = reconstruct_missing
        self._clients: dict[str, OAuthClientInformationFull] = {}

    def lookup(self, client_id: str) -> ClientLookup:
        client = self._clients.get(client_id)
        if client is not None:
            return ClientLookup(LookupStatus.FOUND, client)

        if not self._reconstruct_missing:
            return ClientLookup(LookupStatus.MISSING)

        logger.warning("client_placeholder_created", client_id=client_id)
        return ClientLookup(LookupStatus.RECONSTRUCTED, placeholder_client(client_id))

    def get(self, client_id: str) -> OAuthClientInformationFull | None:
        return self.lookup(client_id).client

    def register(self, client: OAuthClientInformationFull) -> OAuthClientInformationFull:
        if client.client_id is None:
            raise ValueError("client_id must be assigned before registration")
        self._clients[client.client_id] = client
        return client

    def restore(self, metadata: dict[str, Any]) -> OAuthClientInformationFull | None:
        try:
            client = OAuthClientInformationFull.model_validate(metadata)
        except ValidationError as exc:
            logger.warning(
                "client_restore_failed",
                client_id=metadata.get("client_id"),
                error=str(exc),
            )
            return None
        logger.info("client_restored_from_refresh_token", client_id=client.client_id)
        return self.register(client)

    def clear(self) -> None:
        self._clients.clear()

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)
