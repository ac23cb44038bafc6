"""Failure taxonomy for the FreeAgent OAuth proxy.

Every error carries an OAuth ``error`` code and a human readable
``description`` so the HTTP layer can turn it into a compliant response
without inspecting the exception type.
"""

from __future__ import annotations


class FreeAgentOAuthError(Exception):
    error = "server_error"

    def __init__(self, description: str) -> None:
        super().__init__(description)
        self.description = description


class ConfigurationError(FreeAgentOAuthError):
    """Required secrets are missing. Raised at startup, before serving."""


class InvalidGrant(FreeAgentOAuthError):
    """Bad, expired or mismatched authorization code or refresh token."""

    error = "invalid_grant"


class UnknownCode(FreeAgentOAuthError):
    """The proxy code is not in the ephemeral store (expired, replayed, cold start)."""

    error = "invalid_grant"

    def __init__(self, description: str = "Authorization session expired, please retry") -> None:
        super().__init__(description)


class UpstreamCodeMissing(FreeAgentOAuthError):
    error = "invalid_grant"

    def __init__(
        self,
        description: str = "Authorization has not been completed with FreeAgent yet",
    ) -> None:
        super().__init__(description)


class TokenInvalid(FreeAgentOAuthError):
    """Bad signature, malformed structure or wrong token kind."""

    error = "invalid_token"


class TokenExpired(TokenInvalid):
    """Signature is fine but the token is past ``expires_at``."""


class UpstreamError(FreeAgentOAuthError):
    """FreeAgent rejected a token request. ``body`` is the verbatim response."""

    error = "invalid_grant"

    def __init__(self, description: str, status_code: int, body: str) -> None:
        super().__init__(description)
        self.status_code = status_code
        self.body = body


class UpstreamTokenExchangeFailed(UpstreamError):
    pass


class UpstreamRefreshFailed(UpstreamError):
    pass
