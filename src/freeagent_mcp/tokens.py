"""Signed token codec.

Access and refresh tokens handed to MCP clients are HS256 JWTs that carry
the FreeAgent credentials themselves. Nothing is stored server-side: a
valid signature is the only authority needed to use a token, so the
proxy keeps working after a cold start or on a different instance as
long as every instance shares the signing secret.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

import jwt
from pydantic import BaseModel, ValidationError

from freeagent_mcp.errors import TokenExpired, TokenInvalid

JWT_ALGORITHM = "HS256"
FREEAGENT_SCOPE = "freeagent"

# Claim names inside the JWT payload
_CLAIM_NAMES = {
    "kind": "type",
    "client_id": "client_id",
    "scopes": "scopes",
    "upstream_access_token": "fa_access_token",
    "upstream_refresh_token": "fa_refresh_token",
    "client_metadata": "client_metadata",
    "issued_at": "iat",
    "expires_at": "exp",
}


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenPayload(BaseModel):
    """Claims supplied by the caller when minting a token."""

    client_id: str
    scopes: list[str] = [FREEAGENT_SCOPE]
    upstream_access_token: str | None = None
    upstream_refresh_token: str | None = None
    # Registered client metadata, embedded in refresh tokens only
    client_metadata: dict[str, Any] | None = None


class TokenClaims(TokenPayload):
    """Claims recovered from a verified token."""

    kind: TokenKind
    issued_at: int
    expires_at: int

    def payload(self) -> TokenPayload:
        return TokenPayload.model_validate(
            self.model_dump(include=set(TokenPayload.model_fields))
        )


def encode(
    claims: TokenPayload,
    kind: TokenKind,
    secret: str,
    ttl: int,
    now: float | None = None,
) -> str:
    """Sign ``claims`` into a token valid for ``ttl`` seconds from ``now``."""
    if kind is TokenKind.ACCESS and not claims.upstream_access_token:
        raise ValueError("access tokens must embed the upstream access token")
    if kind is TokenKind.REFRESH and not claims.upstream_refresh_token:
        raise ValueError("refresh tokens must embed the upstream refresh token")

    issued_at = int(time.time() if now is None else now)
    values = claims.model_dump(exclude_none=True)
    values.update(
        kind=kind.value,
        scopes=sorted(set(claims.scopes)),
        issued_at=issued_at,
        expires_at=issued_at + ttl,
    )
    return jwt.encode(
        {_CLAIM_NAMES[name]: value for name, value in values.items()},
        secret,
        algorithm=JWT_ALGORITHM,
    )


def decode(
    token: str,
    secret: str,
    kind: TokenKind | None = None,
    now: float | None = None,
) -> TokenClaims:
    """Verify signature and expiry, then return the claims.

    ``iat`` is informational only: instances share no clock, so a token
    minted by a peer running slightly ahead must still verify.

    Raises TokenExpired when only the expiry check failed and TokenInvalid
    for everything else, including a kind other than ``kind``. Expiry is
    checked last so a forged or malformed token is never reported as
    merely expired.
    """
    try:
        raw = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={
                "require": ["exp", "iat", "type", "client_id"],
                "verify_exp": False,
                "verify_iat": False,
            },
        )
    except jwt.InvalidTokenError as exc:
        raise TokenInvalid(f"Invalid token: {exc}") from exc

    try:
        claims = TokenClaims.model_validate(
            {name: raw[claim] for name, claim in _CLAIM_NAMES.items() if claim in raw}
        )
    except ValidationError as exc:
        raise TokenInvalid("Malformed token claims") from exc

    if kind is not None and claims.kind is not kind:
        raise TokenInvalid(f"Expected a {kind.value} token, got {claims.kind.value}")
    if claims.kind is TokenKind.ACCESS and not claims.upstream_access_token:
        raise TokenInvalid("Access token carries no upstream credentials")
    if claims.kind is TokenKind.REFRESH and not claims.upstream_refresh_token:
        raise TokenInvalid("Refresh token carries no upstream credentials")

    if (time.time() if now is None else now) >= claims.expires_at:
        raise TokenExpired("Token has expired")
    return claims
