from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from freeagent_mcp.errors import UnknownCode, UpstreamCodeMissing


@dataclass
class AuthorizationContext:
    """Pending authorization, keyed by the proxy code handed to the MCP client."""

    proxy_code: str
    pkce_challenge: str
    client_id: str
    redirect_uri: str
    state: str | None
    expires_at: float
    redirect_uri_provided_explicitly: bool = True
    scopes: list[str] = field(default_factory=list)
    upstream_code: str | None = None


class AuthSessionStore:
    """Short-lived in-process map of proxy code -> AuthorizationContext.

    Not durable: after a cold start it is simply empty, and every caller
    must treat a miss as "restart the authorization flow". Entries older
    than ``ttl_seconds`` are dropped when read; nothing sweeps them.
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._contexts: dict[str, AuthorizationContext] = {}

    def create(
        self,
        pkce_challenge: str,
        client_id: str,
        redirect_uri: str,
        state: str | None = None,
        *,
        redirect_uri_provided_explicitly: bool = True,
        scopes: list[str] | None = None,
    ) -> str:
        code = secrets.token_urlsafe(32)
        self._contexts[code] = AuthorizationContext(
            proxy_code=code,
            pkce_challenge=pkce_challenge,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
            expires_at=self._clock() + self._ttl,
            redirect_uri_provided_explicitly=redirect_uri_provided_explicitly,
            scopes=list(scopes or []),
        )
        return code

    def get(self, proxy_code: str) -> AuthorizationContext | None:
        context = self._contexts.get(proxy_code)
        if context is None:
            return None
        if self._clock() >= context.expires_at:
            self._contexts.pop(proxy_code, None)
            return None
        return context

    def attach_upstream_code(self, proxy_code: str, upstream_code: str) -> AuthorizationContext:
        context = self.get(proxy_code)
        if context is None:
            raise UnknownCode()
        context.upstream_code = upstream_code
        return context

    def consume(self, proxy_code: str) -> AuthorizationContext:
        context = self.get(proxy_code)
        if context is None:
            raise UnknownCode()
        if context.upstream_code is None:
            raise UpstreamCodeMissing()
        # pop() rather than del: a concurrent consume may have won already
        if self._contexts.pop(proxy_code, None) is None:
            raise UnknownCode()
        return context

    def discard(self, proxy_code: str) -> None:
        self._contexts.pop(proxy_code, None)

    def clear(self) -> None:
        self._contexts.clear()

    def __len__(self) -> int:
        return len(self._contexts)
