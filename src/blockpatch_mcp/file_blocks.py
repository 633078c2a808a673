"""New-file blocks and scope filtering.

Agents create files with a ``FILE: <path>`` line followed by a fenced code
block holding the complete content. Before anything reaches the disk, the
paths an agent touched are checked against an optional allow-list; entries
prefixed with ``NEW:`` allow a file that does not exist yet.
"""

import re
from typing import List, Optional, Tuple

from .models import NewFileBlock

FILE_BLOCK_RE = re.compile(r"^FILE:\s*([^\n]+?)\s*\n\s*```(\w*)\n(.*?)```", re.DOTALL | re.MULTILINE)


def parse_code_blocks(response: str) -> List[NewFileBlock]:
    """Extract ``FILE:`` blocks from an agent response.

    Blocks whose content is blank are discarded.

    Args:
        response: Raw agent output

    Returns:
        NewFileBlock per non-empty block, in order of appearance
    """
    files: List[NewFileBlock] = []
    for match in FILE_BLOCK_RE.finditer(response):
        content = match.group(3)
        if not content.strip():
            continue
        files.append(
            NewFileBlock(
                path=match.group(1).strip(),
                content=content,
                language=match.group(2) or "text",
            )
        )
    return files


def normalize_scope_path(path: str) -> str:
    """Trim, use forward slashes and drop a leading ``./``."""
    normalized = path.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_path_allowed(file_path: str, allowed_files: List[str]) -> bool:
    """Check a path against an allow-list (``NEW:`` prefixes are ignored)."""
    normalized = normalize_scope_path(file_path)
    for allowed in allowed_files:
        if allowed[:4].upper() == "NEW:":
            allowed = allowed[4:]
        if normalize_scope_path(allowed) == normalized:
            return True
    return False


def filter_by_scope(
    paths: List[str], allowed_files: Optional[List[str]] = None
) -> Tuple[List[str], List[str]]:
    """Split paths into (allowed, rejected).

    An empty or missing allow-list allows everything.
    """
    if not allowed_files:
        return list(paths), []

    allowed: List[str] = []
    rejected: List[str] = []
    for path in paths:
        if is_path_allowed(path, allowed_files):
            allowed.append(path)
        else:
            rejected.append(path)
    return allowed, rejected
