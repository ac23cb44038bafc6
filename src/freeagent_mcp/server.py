"""FreeAgent MCP Server entry point."""

from __future__ import annotations

import html

import httpx
import uvicorn
from dotenv import load_dotenv
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from mcp.server.auth.provider import construct_redirect_uri
from mcp.server.auth.settings import AuthSettings, ClientRegistrationOptions, RevocationOptions
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from freeagent_mcp.audit import get_logger, setup_logging
from freeagent_mcp.config import CALLBACK_PATH, get_settings
from freeagent_mcp.errors import UnknownCode
from freeagent_mcp.oauth_provider import FreeAgentOAuthProvider
from freeagent_mcp.tokens import FREEAGENT_SCOPE
from freeagent_mcp.tools import register_all_tools

VERSION = "0.1.0"


def error_page(status_code: int, title: str, detail: str) -> HTMLResponse:
    body = (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title></head><body>"
        f"<h1>{html.escape(title)}</h1><p>{html.escape(detail)}</p>"
        "</body></html>"
    )
    return HTMLResponse(body, status_code=status_code)


def create_app(upstream_transport: httpx.AsyncBaseTransport | None = None) -> tuple:
    """Create and configure the MCP server application."""
    load_dotenv()
    settings = get_settings()

    setup_logging(settings.log_dir, settings.log_level, settings.max_log_size_mb)
    logger = get_logger("server")
    logger.info("server_starting", host=settings.host, port=settings.port)

    # Raises ConfigurationError before anything is served
    provider = FreeAgentOAuthProvider(settings, transport=upstream_transport)

    auth_settings = AuthSettings(
        issuer_url=settings.public_url,
        resource_server_url=settings.public_url + "/mcp",
        client_registration_options=ClientRegistrationOptions(
            enabled=True,
            valid_scopes=[FREEAGENT_SCOPE],
            default_scopes=[FREEAGENT_SCOPE],
        ),
        revocation_options=RevocationOptions(enabled=True),
        required_scopes=[FREEAGENT_SCOPE],
    )

    # Host header differs per deployment URL, so DNS rebinding protection is off
    mcp = FastMCP(
        name="freeagent-mcp-server",
        instructions=(
            "This server provides access to the user's FreeAgent accounting "
            "data. The user authorizes with their own FreeAgent account."
        ),
        host=settings.host,
        port=settings.port,
        auth_server_provider=provider,
        auth=auth_settings,
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=False,
        ),
    )

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "server": "freeagent-mcp-server",
            "version": VERSION,
            "sandbox": settings.freeagent_use_sandbox,
        })

    @mcp.custom_route(CALLBACK_PATH, methods=["GET"])
    async def oauth_callback(request: Request) -> Response:
        """FreeAgent redirects here; ``state`` carries our proxy code."""
        params = request.query_params
        proxy_code = params.get("state")

        upstream_error = params.get("error")
        if upstream_error:
            logger.warning("upstream_authorization_error", error=upstream_error)
            redirect = provider.callback_error_redirect(
                proxy_code, upstream_error, params.get("error_description")
            )
            if redirect is not None:
                return RedirectResponse(redirect, status_code=302)
            return error_page(
                400,
                "FreeAgent authorization failed",
                params.get("error_description") or upstream_error,
            )

        upstream_code = params.get("code")
        if not proxy_code or not upstream_code:
            return error_page(
                400,
                "Invalid callback",
                "The FreeAgent callback is missing its code or state parameter.",
            )

        try:
            result = provider.handle_callback(proxy_code, upstream_code)
        except UnknownCode:
            logger.warning("callback_session_expired")
            return error_page(
                400,
                "Authorization session expired",
                "Your authorization session expired, please retry connecting to FreeAgent.",
            )

        return RedirectResponse(
            construct_redirect_uri(result.redirect_uri, code=result.code, state=result.state),
            status_code=302,
        )

    register_all_tools(mcp, settings, provider)

    # Build the Starlette app (includes OAuth routes + auth middleware)
    app = mcp.streamable_http_app()

    logger.info(
        "server_configured",
        public_url=settings.public_url,
        callback_url=settings.callback_url,
        sandbox=settings.freeagent_use_sandbox,
    )

    return app, settings


def main() -> None:
    """Entry point for the server."""
    app, settings = create_app()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
