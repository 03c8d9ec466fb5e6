# Dataverse FetchXML MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the Dataverse FetchXML MCP server.

This is the script behind the ``dataverse-mcp`` console command.

It:

- configures logging on stderr (stdout carries the MCP protocol),
- creates a FastMCP server,
- registers all Dataverse tools, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from ..config import DataverseConfig, LogLevel
from ..tools import register_all_tools


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    cfg = DataverseConfig.from_env()
    logging.basicConfig(
        level=logging.INFO if cfg.log_level is LogLevel.DEBUG else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mcp = FastMCP("dataverse-mcp")

    # Register core MCP tools (ping, retrieve_rows, retrieve_count, …)
    register_all_tools(mcp)

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()
