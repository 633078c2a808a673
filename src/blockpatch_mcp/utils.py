"""File safety and I/O helpers for the BlockPatch MCP Server.

Every path an agent names goes through these checks before its content is
read or replaced: it must stay under the project root, be a regular text file
(or not exist yet), and be small enough to patch in memory.
"""

import os
import platform
import re
import shutil
from pathlib import Path
from re import Match
from typing import Any, Dict, Optional, Tuple

from .models import ErrorType

# Safety limits
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MIN_FREE_SPACE = 100 * 1024 * 1024  # 100MB
BINARY_CHECK_BYTES = 8192
NON_TEXT_THRESHOLD = 0.3  # 30% non-text chars = binary


def _error(message: str, error_type: ErrorType) -> Dict[str, Any]:
    return {"error": message, "error_type": error_type.value}


def validate_file_safety(file_path: Path, check_space: bool = False) -> Optional[Dict[str, Any]]:
    """Check that an existing file is safe to read and patch.

    Checks, in order:
        1. Not a symlink
        2. File exists and is a regular file
        3. Not a binary file
        4. No larger than MAX_FILE_SIZE
        5. Enough free disk space for a rewrite (if check_space=True)

    Args:
        file_path: File to check
        check_space: Also require MIN_FREE_SPACE plus 110% of the file size

    Returns:
        None if every check passes, otherwise a dict with 'error' and
        'error_type'

    Example:
        >>> error = validate_file_safety(Path("src/app.ts"), check_space=True)
        >>> if error:
        ...     return {"success": False, **error}
    """
    if file_path.is_symlink():
        return _error(f"Symlinks are not allowed (security policy): {file_path}", ErrorType.SYMLINK_ERROR)

    if not file_path.exists():
        return _error(f"File not found: {file_path}", ErrorType.FILE_NOT_FOUND)

    if not file_path.is_file():
        return _error(f"Not a regular file: {file_path}", ErrorType.IO_ERROR)

    if is_binary_file(file_path):
        return _error(f"Binary files are not supported: {file_path}", ErrorType.BINARY_FILE)

    try:
        file_size = file_path.stat().st_size
    except OSError as e:
        return _error(f"Cannot stat file: {str(e)}", ErrorType.IO_ERROR)

    if file_size > MAX_FILE_SIZE:
        return _error(
            f"File too large: {file_size} bytes (max: {MAX_FILE_SIZE})", ErrorType.RESOURCE_LIMIT
        )

    if check_space:
        return check_disk_space(file_path.parent, file_size)

    return None


def check_disk_space(directory: Path, needed_bytes: int) -> Optional[Dict[str, Any]]:
    """Require MIN_FREE_SPACE and 110% of ``needed_bytes`` free in ``directory``."""
    try:
        free_space = shutil.disk_usage(directory).free
    except OSError as e:
        return _error(f"Cannot check disk space: {str(e)}", ErrorType.IO_ERROR)

    if free_space < MIN_FREE_SPACE:
        return _error(
            f"Insufficient disk space: {free_space} bytes free (minimum: {MIN_FREE_SPACE})",
            ErrorType.DISK_SPACE_ERROR,
        )

    safety_margin = int(needed_bytes * 1.1)
    if free_space < safety_margin:
        return _error(
            f"Insufficient disk space for operation: {free_space} bytes free, {safety_margin} needed",
            ErrorType.DISK_SPACE_ERROR,
        )
    return None


def is_binary_file(file_path: Path, check_bytes: int = BINARY_CHECK_BYTES) -> bool:
    """Guess whether a file is binary from its first ``check_bytes`` bytes.

    A null byte means binary; valid UTF-8 means text; otherwise more than
    NON_TEXT_THRESHOLD non-printable bytes means binary. Unreadable files
    count as binary.
    """
    try:
        with open(file_path, "rb") as f:
            chunk = f.read(check_bytes)
    except OSError:
        return True

    if not chunk:
        return False
    if b"\x00" in chunk:
        return True

    try:
        chunk.decode("utf-8")
        return False
    except UnicodeDecodeError:
        # a multi-byte character may be cut at the chunk boundary
        pass

    text_chars = bytes(range(32, 127)) + b"\n\r\t\b"
    non_text = sum(1 for byte in chunk if byte not in text_chars)
    return (non_text / len(chunk)) > NON_TEXT_THRESHOLD


def check_path_traversal(file_path: str, base_dir: str) -> Optional[Dict[str, Any]]:
    """Check that a path stays inside ``base_dir``.

    Relative paths are resolved against ``base_dir``, so ``src/../x.ts`` is
    fine and ``../../etc/passwd`` is not.

    Returns:
        None if the path is safe, otherwise a dict with 'error' and
        'error_type' (scope_violation)

    Example:
        >>> check_path_traversal("../../etc/passwd", "/home/user/project")["error_type"]
        'scope_violation'
    """
    try:
        abs_base = Path(base_dir).resolve()
        abs_file = (abs_base / file_path).resolve()
    except (OSError, RuntimeError) as e:
        return _error(f"Invalid path: {str(e)}", ErrorType.IO_ERROR)

    try:
        abs_file.relative_to(abs_base)
    except ValueError:
        return _error(f"Path escapes the project root: {file_path}", ErrorType.SCOPE_VIOLATION)
    return None


def read_text_file(file_path: Path) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Read a UTF-8 text file after the safety checks.

    Returns:
        (content, None) on success, (None, error dict) otherwise
    """
    safety_error = validate_file_safety(file_path)
    if safety_error:
        return None, safety_error

    try:
        return file_path.read_text(encoding="utf-8"), None
    except UnicodeDecodeError as e:
        return None, _error(f"File is not valid UTF-8: {str(e)}", ErrorType.ENCODING_ERROR)
    except PermissionError as e:
        return None, _error(f"Permission denied: {str(e)}", ErrorType.PERMISSION_DENIED)
    except OSError as e:
        return None, _error(f"I/O error reading file: {str(e)}", ErrorType.IO_ERROR)


def atomic_file_replace(source: Path, target: Path) -> None:
    """Move ``source`` over ``target`` with a single rename.

    On Windows the target is removed first, which is not atomic.

    Raises:
        OSError: If the rename fails
    """
    if platform.system() == "Windows" and target.exists():
        target.unlink()
    source.rename(target)


def atomic_write_text(target: Path, content: str) -> None:
    """Write ``content`` to a temp file beside ``target``, then rename it over.

    Missing parent directories are created. Readers see either the old or the
    new content, never a partial write.

    Raises:
        OSError: If writing or renaming fails (the temp file is removed)
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.parent / f".{target.name}.tmp.{os.getpid()}"
    try:
        temp_path.write_text(content, encoding="utf-8")
        atomic_file_replace(temp_path, target)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def sanitize_error_message(message: str, max_content_length: int = 50) -> str:
    """Strip file content and absolute paths from a message leaving the process.

    Long single-quoted strings become ``'[CONTENT]'`` and absolute paths are
    cut down to their final component.

    Example:
        >>> sanitize_error_message("No match for '" + "x" * 60 + "' in /srv/app/src/a.ts")
        "No match for '[CONTENT]' in a.ts"
    """

    def replace_long_quotes(match: Match[str]) -> str:
        if len(match.group(1)) > max_content_length:
            return "'[CONTENT]'"
        return match.group(0)

    sanitized = re.sub(r"'([^'\n]*)'", replace_long_quotes, message)
    sanitized = re.sub(r"(?<![\w.])/(?:[^/\s]+/)+([^/\s]+)", r"\1", sanitized)
    sanitized = re.sub(r"[A-Za-z]:\\(?:[^\\:\s]+\\)+([^\\:\s]+)", r"\1", sanitized)
    return sanitized
