"""Microsoft Graph API access for Outlook MCP server."""

from outlook_mcp.graph.client import NEXT_LINK, GraphClient, parse_retry_after

__all__ = [
    "GraphClient",
    "parse_retry_after",
    "NEXT_LINK",
]
