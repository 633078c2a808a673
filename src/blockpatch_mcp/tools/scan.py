"""Scan file tool - show an agent the segment keys of a file.

The block map is what an agent needs before it can write RTDIFF/1
operations: every key it may address, with line ranges and labels.
"""

from pathlib import Path
from typing import Any, Dict

from ..scanner import generate_block_map, scan_blocks
from ..utils import read_text_file


def scan_file(file_path: str) -> Dict[str, Any]:
    """Scan a file into keyed segments (read-only).

    Args:
        file_path: Path to the file to scan

    Returns:
        Dict on success:
            {
                "success": True,
                "file_path": str,
                "block_map": str,
                "segments": [{"key", "kind", "start_line", "end_line", ...}],
                "preamble_end_line": int
            }

        Dict on failure:
            {
                "success": False,
                "file_path": str,
                "error": str,
                "error_type": str
            }

    Example:
        >>> result = scan_file("src/app.ts")
        >>> print(result["block_map"])
        [BLOCK_MAP] src/app.ts
          preamble (1-3): imports + top-level code
          fn:main (5-12): function main
    """
    path = Path(file_path)
    content, error = read_text_file(path)
    if error:
        return {"success": False, "file_path": str(path), **error}

    scan = scan_blocks(content)
    return {
        "success": True,
        "file_path": str(path),
        "block_map": generate_block_map(file_path, scan.segments),
        "segments": [segment.model_dump(mode="json") for segment in scan.segments],
        "preamble_end_line": scan.preamble_end_line,
    }
