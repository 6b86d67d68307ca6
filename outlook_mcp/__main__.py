"""Entry point for Outlook MCP Server."""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv


def configure_logging() -> None:
    """Configure logging to stderr (STDIO-safe).

    Sends all logs to stderr so they don't interfere with MCP's
    STDIO transport which uses stdout for JSON-RPC messages.

    Respects LOG_LEVEL env var (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = logging.getLevelNamesMapping().get(log_level_str, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # Reduce noise from HTTP libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point.

    Loads environment, validates configuration, and starts the MCP server
    with the appropriate transport (stdio or http).
    """
    # Load .env file if present
    load_dotenv()

    # Configure logging first
    configure_logging()
    logger = logging.getLogger(__name__)

    from outlook_mcp.config import Settings
    from outlook_mcp.utils.errors import ConfigurationError

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        logger.error("Environment validation failed. Exiting.")
        sys.exit(1)

    from outlook_mcp.context import build_context
    from outlook_mcp.server import create_server

    ctx = build_context(settings)
    mcp = create_server(ctx)

    # Select transport based on environment
    transport = os.getenv("TRANSPORT", "stdio").lower()

    match transport:
        case "sse" | "http":
            host = os.getenv("HOST", "127.0.0.1")
            port = int(os.getenv("PORT", "8000"))
            logger.info(
                "Starting Outlook MCP Server with SSE transport on %s:%d", host, port
            )
            import uvicorn

            uvicorn.run(mcp.sse_app(), host=host, port=port, log_level="info")
        case "streamable-http":
            logger.info("Starting Outlook MCP Server with streamable-http transport")
            mcp.run(transport="streamable-http")
        case _:
            logger.info("Starting Outlook MCP Server with STDIO transport")
            mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
