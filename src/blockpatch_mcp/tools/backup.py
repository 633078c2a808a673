"""Backup and restore for files about to be rewritten.

Before a batch is committed, every existing target gets a timestamped copy
next to it (``app.ts.backup.20250117_143052``). If any write in the batch
fails, the copies are restored so the project is left as it was.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from ..models import ErrorType
from ..utils import atomic_file_replace, check_disk_space, validate_file_safety

logger = logging.getLogger(__name__)


def backup_file(file_path: str) -> Dict[str, Any]:
    """Create a timestamped backup copy of a file.

    The copy sits in the same directory and keeps the file's metadata. When a
    backup with the same timestamp already exists (two backups in one
    second), a ``_n`` counter is appended.

    Args:
        file_path: File to back up

    Returns:
        Success: {"success": True, "original_file": ..., "backup_file": ...,
        "backup_size": int}
        Failure: {"success": False, "original_file": ..., "error": ...,
        "error_type": ...}

    Example:
        >>> result = backup_file("src/app.ts")
        >>> result["backup_file"]
        '/project/src/app.ts.backup.20250117_143052'
    """
    path = Path(file_path)
    original_file_str = str(path.resolve())

    safety_error = validate_file_safety(path, check_space=True)
    if safety_error:
        return {"success": False, "original_file": original_file_str, **safety_error}

    if not os.access(path.parent, os.W_OK):
        return {
            "success": False,
            "original_file": original_file_str,
            "error": f"No write permission in directory: {path.parent}",
            "error_type": ErrorType.PERMISSION_DENIED.value,
        }

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = Path(f"{path}.backup.{timestamp}")
    counter = 1
    while backup_path.exists():
        backup_path = Path(f"{path}.backup.{timestamp}_{counter}")
        counter += 1

    try:
        shutil.copy2(path, backup_path)
    except PermissionError as e:
        return {
            "success": False,
            "original_file": original_file_str,
            "error": f"Permission denied: {str(e)}",
            "error_type": ErrorType.PERMISSION_DENIED.value,
        }
    except OSError as e:
        error_msg = str(e).lower()
        error_type = (
            ErrorType.DISK_SPACE_ERROR
            if "no space" in error_msg or "disk full" in error_msg
            else ErrorType.IO_ERROR
        )
        return {
            "success": False,
            "original_file": original_file_str,
            "error": f"I/O error during backup: {str(e)}",
            "error_type": error_type.value,
        }

    logger.debug(f"Backed up {path} to {backup_path.name}")
    return {
        "success": True,
        "original_file": original_file_str,
        "backup_file": str(backup_path.resolve()),
        "backup_size": backup_path.stat().st_size,
    }


def restore_backup(backup_file: str, target_file: str) -> Dict[str, Any]:
    """Restore a file from its backup.

    The backup is copied to a temp file beside the target and renamed over
    it, so the target is never half-written.

    Args:
        backup_file: Backup to restore from
        target_file: File to restore over (created if missing)

    Returns:
        Success: {"success": True, "backup_file": ..., "restored_to": ...}
        Failure: {"success": False, "backup_file": ..., "error": ...,
        "error_type": ...}
    """
    backup_path = Path(backup_file)

    if not backup_path.is_file():
        return {
            "success": False,
            "backup_file": backup_file,
            "error": f"Backup file not found: {backup_file}",
            "error_type": ErrorType.FILE_NOT_FOUND.value,
        }

    target_path = Path(target_file)
    if target_path.is_symlink():
        return {
            "success": False,
            "backup_file": backup_file,
            "error": f"Target is a symlink (security policy): {target_file}",
            "error_type": ErrorType.SYMLINK_ERROR.value,
        }

    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return {
            "success": False,
            "backup_file": backup_file,
            "error": f"Cannot create parent directory: {str(e)}",
            "error_type": ErrorType.IO_ERROR.value,
        }

    space_error = check_disk_space(target_path.parent, backup_path.stat().st_size)
    if space_error:
        return {"success": False, "backup_file": backup_file, **space_error}

    temp_path = target_path.parent / f".{target_path.name}.tmp.{os.getpid()}"
    try:
        shutil.copy2(backup_path, temp_path)
        atomic_file_replace(temp_path, target_path)
    except PermissionError as e:
        return {
            "success": False,
            "backup_file": backup_file,
            "error": f"Permission denied during restore: {str(e)}",
            "error_type": ErrorType.PERMISSION_DENIED.value,
        }
    except OSError as e:
        return {
            "success": False,
            "backup_file": backup_file,
            "error": f"I/O error during restore: {str(e)}",
            "error_type": ErrorType.IO_ERROR.value,
        }
    finally:
        if temp_path.exists():
            temp_path.unlink()

    logger.info(f"Restored {target_path} from {backup_path.name}")
    return {
        "success": True,
        "backup_file": str(backup_path.resolve()),
        "restored_to": str(target_path.resolve()),
    }
