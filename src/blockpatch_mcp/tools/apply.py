"""Apply tools - apply agent output in either instruction format.

Both tools run the same stage / validate / commit workflow; they differ only
in which format the response is parsed as. Supports dry_run for checking a
response without touching the disk.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import ErrorType
from ..workflows import PatchFormat, apply_agent_output


def _check_root(root: str) -> Optional[Dict[str, Any]]:
    root_path = Path(root)
    if not root_path.is_dir():
        return {
            "success": False,
            "error": f"Project root is not a directory: {root}",
            "error_type": ErrorType.FILE_NOT_FOUND.value,
        }
    return None


def apply_edit_blocks(
    root: str,
    response: str,
    dry_run: bool = False,
    allowed_files: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Apply legacy ``EDIT:`` SEARCH/REPLACE blocks and ``FILE:`` blocks.

    WARNING: This WILL modify files under ``root`` (unless dry_run=True).
    Either every staged file is written or none is.

    Args:
        root: Project root that paths in the response are relative to
        response: Agent output containing EDIT and/or FILE blocks
        dry_run: Stage and validate without writing (default: False)
        allowed_files: Optional allow-list of relative paths

    Returns:
        Dict on success:
            {
                "success": True,
                "format": "legacy",
                "files": [paths],
                "written": [paths],
                "created": [paths],
                "rejected": [...],
                "message": str
            }

        Dict on failure:
            {
                "success": False,
                "format": "legacy",
                "error": str,
                "error_type": str,
                "apply_errors": [...],
                "reports": [...],
                "written": []
            }

    Example:
        >>> response = "EDIT: src/config.ts\\n<<<< SEARCH\\nconst PORT = 8000;\\n>>>> REPLACE\\nconst PORT = 9000;\\n===="
        >>> apply_edit_blocks("/project", response)["written"]
        ['src/config.ts']
    """
    root_error = _check_root(root)
    if root_error:
        return root_error
    return apply_agent_output(root, response, allowed_files, dry_run, PatchFormat.LEGACY)


def apply_block_diff(
    root: str,
    response: str,
    dry_run: bool = False,
    allowed_files: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Apply RTDIFF/1 segment operations and ``FILE:`` blocks.

    Segment keys are resolved against a fresh scan of each file; one unknown
    key rejects that file (and so the batch) with the list of valid keys.

    Args:
        root: Project root that paths in the response are relative to
        response: Agent output in RTDIFF/1 format
        dry_run: Stage and validate without writing (default: False)
        allowed_files: Optional allow-list of relative paths

    Returns:
        Same shape as :func:`apply_edit_blocks`, with "format": "rtdiff"
    """
    root_error = _check_root(root)
    if root_error:
        return root_error
    return apply_agent_output(root, response, allowed_files, dry_run, PatchFormat.RTDIFF)
