# demo_mcp_retrieve_count.py
# Version: v1
#
# Demo: count the records matched by a FetchXML query.
#
# Usage (bash):
#
#   export DATAVERSE_MOCK_MODE=1
#   python demo_mcp_retrieve_count.py contacts

import asyncio
import sys
from typing import Any, Dict

from dataverse_mcp.tools import tasks


async def main() -> None:
    entity_set = sys.argv[1] if len(sys.argv) > 1 else "contacts"
    logical_name = entity_set[:-1] if entity_set.endswith("s") else entity_set
    fetchxml = sys.argv[2] if len(sys.argv) > 2 else f'<fetch><entity name="{logical_name}"/></fetch>'

    print(f"Calling MCP task: retrieve_count({entity_set!r}, ...)")
    result: Dict[str, Any] = await tasks.retrieve_count(entity_set, fetchxml)

    print(f"Count: {result.get('count')}  ({result['meta']['elapsed_ms']} ms)")


if __name__ == "__main__":
    asyncio.run(main())
