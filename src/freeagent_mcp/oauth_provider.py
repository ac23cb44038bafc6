"""Stateless OAuth 2.0 authorization server that proxies to FreeAgent.

Implements the MCP SDK's OAuthAuthorizationServerProvider protocol:
- Dynamic Client Registration, with placeholder recovery after a cold start
- Authorization redirects to FreeAgent's consent page; the proxy code rides
  along as the upstream ``state`` and comes back on /oauth/callback
- Access and refresh tokens are signed JWTs embedding the FreeAgent tokens,
  so no token is ever stored server-side
- PKCE is verified by the SDK token endpoint and again by ``exchange_code``
  whenever a verifier is supplied

Revocation is accepted but does nothing: a signed token stays valid until
it expires.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass

import httpx
from pydantic import AnyUrl

from mcp.server.auth.provider import (
    AccessToken,
    AuthorizationCode,
    AuthorizationParams,
    AuthorizeError,
    RefreshToken,
    TokenError,
    construct_redirect_uri,
)
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken

from freeagent_mcp import tokens
from freeagent_mcp.audit import get_logger, redact
from freeagent_mcp.clients import ClientDirectory, client_metadata
from freeagent_mcp.config import Settings, get_signing_secret
from freeagent_mcp.errors import (
    FreeAgentOAuthError,
    InvalidGrant,
    TokenExpired,
    TokenInvalid,
    UnknownCode,
    UpstreamCodeMissing,
)
from freeagent_mcp.sessions import AuthSessionStore
from freeagent_mcp.tokens import FREEAGENT_SCOPE, TokenKind, TokenPayload
from freeagent_mcp.upstream import DEFAULT_EXPIRES_IN, FreeAgentOAuthClient, UpstreamTokens

logger = get_logger("oauth")


@dataclass(frozen=True)
class CallbackResult:
    redirect_uri: str
    code: str
    state: str | None


def pkce_s256(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def _token_error(exc: FreeAgentOAuthError) -> TokenError:
    return TokenError(error="invalid_grant", error_description=exc.description)


class FreeAgentOAuthProvider:
    """OAuth proxy between MCP clients and FreeAgent."""

    def __init__(
        self,
        settings: Settings,
        *,
        sessions: AuthSessionStore | None = None,
        clients: ClientDirectory | None = None,
        upstream: FreeAgentOAuthClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings.require_upstream_credentials()
        self._settings = settings
        self._secret = get_signing_secret(settings)
        self.sessions = sessions or AuthSessionStore(settings.auth_code_ttl_seconds)
        self.clients = clients or ClientDirectory()
        self.upstream = upstream or FreeAgentOAuthClient(
            client_id=settings.freeagent_client_id,
            client_secret=settings.freeagent_client_secret,
            base_url=settings.upstream_base,
            callback_url=settings.callback_url,
            timeout=settings.upstream_timeout_seconds,
            transport=transport,
        )

    # -- client registration ------------------------------------------------

    async def get_client(self, client_id: str) -> OAuthClientInformationFull | None:
        return self.clients.get(client_id)

    async def register_client(self, client_info: OAuthClientInformationFull) -> None:
        # client_id and client_secret are assigned by the SDK registration handler
        self.clients.register(client_info)
        logger.info(
            "client_registered",
            client_id=client_info.client_id,
            client_name=client_info.client_name,
        )

    # -- authorization ------------------------------------------------------

    async def authorize(
        self,
        client: OAuthClientInformationFull,
        params: AuthorizationParams,
    ) -> str:
        """Remember the caller's PKCE context and send the user to FreeAgent."""
        proxy_code = None
        try:
            proxy_code = self.sessions.create(
                params.code_challenge,
                client.client_id,
                str(params.redirect_uri),
                params.state,
                redirect_uri_provided_explicitly=params.redirect_uri_provided_explicitly,
                scopes=params.scopes or [FREEAGENT_SCOPE],
            )
            upstream_url = self.upstream.authorization_url(state=proxy_code)
        except Exception as exc:
            if proxy_code is not None:
                self.sessions.discard(proxy_code)
            logger.exception("authorize_failed", client_id=client.client_id)
            return self._authorize_error_redirect(params, exc)

        logger.info("authorize_redirect", client_id=client.client_id)
        return upstream_url

    def _authorize_error_redirect(self, params: AuthorizationParams, exc: Exception) -> str:
        description = f"Authorization failed: {exc}"
        try:
            return construct_redirect_uri(
                str(params.redirect_uri),
                error="server_error",
                error_description=description,
                state=params.state,
            )
        except ValueError as redirect_exc:
            raise AuthorizeError(error="server_error", error_description=description) from redirect_exc

    def handle_callback(self, proxy_code: str, upstream_code: str) -> CallbackResult:
        """Attach FreeAgent's code to the pending authorization.

        Raises UnknownCode when the session is gone (expiry, replay or a
        cold start between the redirect and the callback).
        """
        context = self.sessions.attach_upstream_code(proxy_code, upstream_code)
        logger.info("upstream_callback_received", client_id=context.client_id)
        return CallbackResult(
            redirect_uri=context.redirect_uri,
            code=proxy_code,
            state=context.state,
        )

    def callback_error_redirect(
        self, proxy_code: str | None, error: str, description: str | None
    ) -> str | None:
        """Redirect back to the caller with FreeAgent's error, if the caller is known."""
        context = self.sessions.get(proxy_code) if proxy_code else None
        if context is None:
            return None
        return construct_redirect_uri(
            context.redirect_uri,
            error=error,
            error_description=description,
            state=context.state,
        )

    # -- authorization code grant -------------------------------------------

    async def load_authorization_code(
        self,
        client: OAuthClientInformationFull,
        authorization_code: str,
    ) -> AuthorizationCode | None:
        context = self.sessions.get(authorization_code)
        if context is None or context.client_id != client.client_id:
            return None
        return AuthorizationCode(
            code=authorization_code,
            scopes=context.scopes,
            expires_at=context.expires_at,
            client_id=context.client_id,
            code_challenge=context.pkce_challenge,
            redirect_uri=AnyUrl(context.redirect_uri),
            redirect_uri_provided_explicitly=context.redirect_uri_provided_explicitly,
        )

    async def exchange_authorization_code(
        self,
        client: OAuthClientInformationFull,
        authorization_code: AuthorizationCode,
    ) -> OAuthToken:
        try:
            return await self.exchange_code(client, authorization_code.code)
        except FreeAgentOAuthError as exc:
            raise _token_error(exc) from exc

    async def exchange_code(
        self,
        client: OAuthClientInformationFull,
        proxy_code: str,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
    ) -> OAuthToken:
        """Trade a proxy code for signed tokens wrapping FreeAgent's tokens.

        The authorization context is consumed before FreeAgent is called, so
        each proxy code gets exactly one attempt even if the upstream fails.
        """
        try:
            context = self.sessions.consume(proxy_code)
        except (UnknownCode, UpstreamCodeMissing) as exc:
            logger.warning(
                "authorization_code_rejected",
                client_id=client.client_id,
                code=redact(proxy_code),
                reason=exc.description,
            )
            raise InvalidGrant(exc.description) from exc

        if context.client_id != client.client_id:
            raise InvalidGrant("Authorization code was issued to another client")
        if code_verifier is not None and not hmac.compare_digest(
            pkce_s256(code_verifier), context.pkce_challenge
        ):
            raise InvalidGrant("Incorrect code_verifier")
        if redirect_uri is not None and redirect_uri != context.redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")

        upstream = await self.upstream.exchange_code(context.upstream_code)

        access_token, expires_in = self._mint_access_token(client.client_id, upstream)
        refresh_token = None
        if upstream.refresh_token:
            refresh_token = tokens.encode(
                TokenPayload(
                    client_id=client.client_id,
                    upstream_refresh_token=upstream.refresh_token,
                    client_metadata=client_metadata(client),
                ),
                TokenKind.REFRESH,
                self._secret,
                self._settings.refresh_token_ttl_seconds,
            )
        else:
            logger.warning("upstream_refresh_token_missing", client_id=client.client_id)

        return OAuthToken(
            access_token=access_token,
            token_type="Bearer",
            expires_in=expires_in,
            refresh_token=refresh_token,
            scope=FREEAGENT_SCOPE,
        )

    # -- refresh token grant ------------------------------------------------

    def _validate_refresh_token(self, client_id: str, refresh_token: str) -> tokens.TokenClaims:
        try:
            claims = tokens.decode(refresh_token, self._secret, TokenKind.REFRESH)
        except TokenInvalid as exc:
            logger.warning(
                "refresh_token_rejected",
                client_id=client_id,
                token=redact(refresh_token),
                reason=exc.description,
            )
            raise InvalidGrant(f"Invalid refresh token: {exc.description}") from exc

        # Trust comes from the signed claims, never from the directory entry
        if claims.client_id != client_id:
            logger.error(
                "refresh_token_client_mismatch",
                expected_client_id=client_id,
                actual_client_id=claims.client_id,
            )
            raise InvalidGrant("Invalid refresh token - client mismatch")

        metadata = claims.client_metadata
        if (
            not self.clients.lookup(claims.client_id).trusted
            and metadata
            and metadata.get("client_id") == claims.client_id
        ):
            self.clients.restore(metadata)
        return claims

    async def load_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: str,
    ) -> RefreshToken | None:
        try:
            claims = self._validate_refresh_token(client.client_id, refresh_token)
        except InvalidGrant:
            return None
        return RefreshToken(
            token=refresh_token,
            client_id=claims.client_id,
            scopes=claims.scopes,
            expires_at=claims.expires_at,
        )

    async def exchange_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: RefreshToken,
        scopes: list[str],
    ) -> OAuthToken:
        try:
            return await self.refresh(client, refresh_token.token)
        except FreeAgentOAuthError as exc:
            raise _token_error(exc) from exc

    async def refresh(
        self,
        client: OAuthClientInformationFull,
        refresh_token: str,
    ) -> OAuthToken:
        """Mint a new access token from FreeAgent's refreshed credentials.

        The refresh token itself is handed back unchanged: it still wraps the
        same upstream refresh token, and rotating it would need server state.
        """
        claims = self._validate_refresh_token(client.client_id, refresh_token)
        upstream = await self.upstream.refresh(claims.upstream_refresh_token)
        if not upstream.refresh_token:
            upstream = upstream.model_copy(update={"refresh_token": claims.upstream_refresh_token})

        access_token, expires_in = self._mint_access_token(claims.client_id, upstream)
        return OAuthToken(
            access_token=access_token,
            token_type="Bearer",
            expires_in=expires_in,
            refresh_token=refresh_token,
            scope=FREEAGENT_SCOPE,
        )

    def _mint_access_token(self, client_id: str, upstream: UpstreamTokens) -> tuple[str, int]:
        override = self._settings.mcp_token_expiry_seconds
        expires_in = override or upstream.expires_in or DEFAULT_EXPIRES_IN
        token = tokens.encode(
            TokenPayload(
                client_id=client_id,
                upstream_access_token=upstream.access_token,
                upstream_refresh_token=upstream.refresh_token,
            ),
            TokenKind.ACCESS,
            self._secret,
            expires_in,
        )
        logger.info(
            "access_token_minted",
            client_id=client_id,
            expires_in=expires_in,
            expiry_override=override is not None,
        )
        return token, expires_in

    # -- resource requests --------------------------------------------------

    def verify_access_token(self, token: str) -> AccessToken:
        """Raises TokenExpired (caller may refresh) or TokenInvalid (reject)."""
        claims = tokens.decode(token, self._secret, TokenKind.ACCESS)
        return AccessToken(
            token=token,
            client_id=claims.client_id,
            scopes=claims.scopes,
            expires_at=claims.expires_at,
        )

    async def load_access_token(self, token: str) -> AccessToken | None:
        try:
            return self.verify_access_token(token)
        except TokenExpired:
            logger.info("access_token_expired", token=redact(token))
            return None
        except TokenInvalid as exc:
            logger.warning("access_token_rejected", token=redact(token), reason=exc.description)
            return None

    def upstream_access_token(self, token: str) -> str:
        """FreeAgent access token embedded in a verified MCP access token."""
        claims = tokens.decode(token, self._secret, TokenKind.ACCESS)
        return claims.upstream_access_token

    async def revoke_token(
        self,
        token: AccessToken | RefreshToken,
    ) -> None:
        # No denylist: the token stays valid until it expires
        logger.info("revocation_ignored", client_id=token.client_id)
