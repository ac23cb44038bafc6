from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP

    from freeagent_mcp.config import Settings
    from freeagent_mcp.oauth_provider import FreeAgentOAuthProvider


def register(
    mcp: FastMCP,
    settings: Settings,
    provider: FreeAgentOAuthProvider,
) -> None:

    @mcp.tool()
    async def freeagent_get_company() -> str:
        """Get the FreeAgent company the current user authorized.

        Returns the company name, type, currency and accounting dates.
        """
        from mcp.server.auth.middleware.auth_context import get_access_token

        from freeagent_mcp.api_client import FreeAgentApiClient, format_error_for_llm
        from freeagent_mcp.audit import get_logger
        from freeagent_mcp.errors import TokenInvalid

        access = get_access_token()
        if access is None:
            return "ERROR: Not authenticated with FreeAgent"
        try:
            upstream_token = provider.upstream_access_token(access.token)
        except TokenInvalid as exc:
            return f"ERROR: {exc.description}"

        client = FreeAgentApiClient(
            upstream_token,
            use_sandbox=settings.freeagent_use_sandbox,
            timeout=settings.upstream_timeout_seconds,
        )
        try:
            data = await client.get("/company")
        except Exception as exc:
            get_logger("freeagent_get_company").warning("tool_failed", error=str(exc))
            return format_error_for_llm(exc)

        company = data.get("company", {})
        lines = [f"# {company.get('name', 'Unknown company')}"]
        for label, key in (
            ("Type", "type"),
            ("Currency", "currency"),
            ("Company start date", "company_start_date"),
            ("First accounting year end", "first_accounting_year_end"),
            ("URL", "url"),
        ):
            if company.get(key):
                lines.append(f"- {label}: {company[key]}")
        return "\n".join(lines)
