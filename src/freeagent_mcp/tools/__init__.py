from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP

    from freeagent_mcp.config import Settings
    from freeagent_mcp.oauth_provider import FreeAgentOAuthProvider


def register_all_tools(
    mcp: FastMCP,
    settings: Settings,
    provider: FreeAgentOAuthProvider,
) -> None:
    """Register all MCP tools with the server."""
    from freeagent_mcp.tools.company import register as reg_company

    reg_company(mcp, settings, provider)
