"""CLI entry point for the blockpatch-mcp server.

This module enables running the server as a Python module:
    python -m blockpatch_mcp

The server communicates via stdio transport.
"""

import asyncio

from .server import main

if __name__ == "__main__":
    asyncio.run(main())
