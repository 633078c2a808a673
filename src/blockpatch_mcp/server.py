"""MCP Server for structural patch operations.

This module implements the Model Context Protocol (MCP) server that registers
and routes the BlockPatch tools.

Tools provided:
    1. scan_file - Show the segment keys (BLOCK_MAP) of a file
    2. apply_block_diff - Apply RTDIFF/1 segment operations (supports dry_run)
    3. apply_edit_blocks - Apply legacy EDIT SEARCH/REPLACE blocks (supports dry_run)
    4. validate_content - Validate proposed content before writing it
"""

import asyncio
import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .tools import apply, scan, validate

server = Server("blockpatch-mcp")

_PATCH_PROPERTIES = {
    "root": {
        "type": "string",
        "description": "Project root that paths in the response are relative to",
    },
    "response": {
        "type": "string",
        "description": "Agent output containing the change instructions",
    },
    "dry_run": {
        "type": "boolean",
        "description": "Stage and validate without writing (default: false)",
        "default": False,
    },
    "allowed_files": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Optional allow-list of relative paths; prefix NEW: for files to create",
    },
}


@server.list_tools()  # type: ignore[misc,no-untyped-call]
async def list_tools() -> list[Tool]:
    """List the BlockPatch tools with their schemas.

    Returns:
        List of Tool objects with proper input schemas
    """
    return [
        Tool(
            name="scan_file",
            description="""Show the segment map of a brace-delimited source file (read-only).

Returns a BLOCK_MAP listing every addressable segment key (preamble, fn:name,
class:Name, class:Name#method, gap:n) with its line range. Use these keys in
RTDIFF/1 operations.""",
            inputSchema={
                "type": "object",
                "properties": {
                    "file_path": {"type": "string", "description": "Path to the file to scan"},
                },
                "required": ["file_path"],
            },
        ),
        Tool(
            name="apply_block_diff",
            description="""Apply RTDIFF/1 segment-addressed operations.

FORMAT:
RTDIFF/1

BLOCK_REPLACE: src/app.ts :: fn:main
---
<complete new content of the segment>
---

BLOCK_INSERT_AFTER: src/app.ts :: class:Server
---
<new code>
---

BLOCK_DELETE: src/app.ts :: fn:unused

PREAMBLE_REPLACE: src/app.ts
---
<new imports>
---

FILE: blocks create new files. Every file is validated (bracket balance, leaked
markers, duplicate imports, class structure); any failure writes nothing.""",
            inputSchema={
                "type": "object",
                "properties": _PATCH_PROPERTIES,
                "required": ["root", "response"],
            },
        ),
        Tool(
            name="apply_edit_blocks",
            description="""Apply legacy SEARCH/REPLACE edits.

FORMAT:
EDIT: src/config.ts
<<<< SEARCH
const PORT = 8000;
>>>> REPLACE
const PORT = 9000;
====

SEARCH text is matched exactly first, then ignoring whitespace differences.
Any unmatched SEARCH or validation failure writes nothing.""",
            inputSchema={
                "type": "object",
                "properties": _PATCH_PROPERTIES,
                "required": ["root", "response"],
            },
        ),
        Tool(
            name="validate_content",
            description="Validate proposed file content before writing it (read-only)",
            inputSchema={
                "type": "object",
                "properties": {
                    "file_path": {
                        "type": "string",
                        "description": "Path the content is meant for",
                    },
                    "new_content": {
                        "type": "string",
                        "description": "Proposed complete file content",
                    },
                },
                "required": ["file_path", "new_content"],
            },
        ),
    ]


@server.call_tool()  # type: ignore[misc]
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Route tool calls to appropriate implementations.

    Args:
        name: Name of the tool to call
        arguments: Dictionary of tool arguments

    Returns:
        List containing a single TextContent with JSON-formatted result

    Raises:
        ValueError: If tool name is unknown
    """
    if name == "scan_file":
        result = scan.scan_file(arguments["file_path"])
    elif name == "apply_block_diff":
        result = apply.apply_block_diff(
            arguments["root"],
            arguments["response"],
            arguments.get("dry_run", False),
            arguments.get("allowed_files"),
        )
    elif name == "apply_edit_blocks":
        result = apply.apply_edit_blocks(
            arguments["root"],
            arguments["response"],
            arguments.get("dry_run", False),
            arguments.get("allowed_files"),
        )
    elif name == "validate_content":
        result = validate.validate_content(arguments["file_path"], arguments["new_content"])
    else:
        raise ValueError(f"Unknown tool: {name}")

    return [TextContent(type="text", text=json.dumps(result, indent=2))]


async def main() -> None:
    """Run the MCP server using stdio transport."""
    from mcp.server.stdio import stdio_server

    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
