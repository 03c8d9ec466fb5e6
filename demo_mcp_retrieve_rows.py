# demo_mcp_retrieve_rows.py
# Version: v1
#
# Demo: run a FetchXML query through the MCP-style retrieve_rows task.
#
# Usage (bash):
#
#   export DATAVERSE_MOCK_MODE=1        # or DATAVERSE_URL + credentials
#   python demo_mcp_retrieve_rows.py accounts

import asyncio
import sys
from typing import Any, Dict, List

from dataverse_mcp.tools import tasks

DEFAULT_FETCHXML = (
    '<fetch><entity name="account">'
    '<attribute name="name"/><attribute name="revenue"/>'
    "</entity></fetch>"
)


async def main() -> None:
    entity_set = sys.argv[1] if len(sys.argv) > 1 else "accounts"
    fetchxml = sys.argv[2] if len(sys.argv) > 2 else DEFAULT_FETCHXML

    print(f"Calling MCP task: retrieve_rows({entity_set!r}, ...)")
    result: Dict[str, Any] = await tasks.retrieve_rows(entity_set, fetchxml)

    rows: List[Dict[str, Any]] = result.get("rows", [])
    meta = result.get("meta", {})
    print(f"Rows: {meta.get('returned_rows')} of {meta.get('total_rows')} in {meta.get('elapsed_ms')} ms")
    print(f"Columns: {result.get('columns')}")

    for row in rows:
        print(f"- {row}")

    if result.get("truncated"):
        print("(truncated, raise DATAVERSE_MAX_ROWS_RETURNED to see more)")


if __name__ == "__main__":
    asyncio.run(main())
