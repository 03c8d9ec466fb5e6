# demo_mcp_list_entities.py
# Version: v1
#
# Demo: list table definitions, then the columns of one table.
#
# Usage (bash):
#
#   export DATAVERSE_MOCK_MODE=1
#   python demo_mcp_list_entities.py account

import asyncio
import sys
from typing import Any, Dict, List

from dataverse_mcp.tools import tasks


async def main() -> None:
    print("Calling MCP task: list_entities()")
    result: Dict[str, Any] = await tasks.list_entities()

    entities: List[Dict[str, Any]] = result.get("entities", [])
    print(f"Tables returned: {len(entities)}")
    for e in entities:
        print(f"- {e['logical_name']} (set={e['entity_set_name']}, id={e['primary_id_attribute']})")

    if len(sys.argv) < 2:
        return

    logical_name = sys.argv[1]
    print(f"\nCalling MCP task: list_attributes({logical_name!r})")
    attrs = await tasks.list_attributes(logical_name)
    for a in attrs.get("attributes", []):
        print(f"- {a['logical_name']}: {a['attribute_type']}")


if __name__ == "__main__":
    asyncio.run(main())
