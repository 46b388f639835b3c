"""Utility script to exercise the Redmine MCP Streamable HTTP endpoint."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any

import mcp
from mcp.client.streamable_http import streamablehttp_client


async def call_show_issue(mcp_url: str, issue_id: int, include: str | None) -> dict[str, Any]:
    arguments: dict[str, Any] = {"id": issue_id}
    if include:
        arguments["include"] = include
    async with streamablehttp_client(mcp_url) as (reader, writer, _):
        async with mcp.ClientSession(reader, writer) as session:
            await session.initialize()
            response = await session.call_tool("redmine.issues.show", arguments)
            return response.model_dump()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Fetch a Redmine issue through the MCP Streamable HTTP endpoint.")
    parser.add_argument("issue_id", type=int, help="Redmine issue to fetch.")
    parser.add_argument(
        "--mcp-url",
        default="http://localhost:8000/mcp",
        help="MCP Streamable HTTP endpoint to target.",
    )
    parser.add_argument("--include", help="Comma-separated related data, e.g. journals,children.")
    args = parser.parse_args()

    result = await call_show_issue(args.mcp_url, args.issue_id, args.include)
    print(result)


if __name__ == "__main__":
    asyncio.run(main())
