"""Stage, validate and commit agent output as one all-or-nothing batch.

The workflow has three phases:
    1. Stage: parse the response, resolve every target under the project
       root, read it once, scan it and apply the instructions in memory
    2. Validate: run the validation pipeline on every staged file
    3. Commit: back up existing targets, write every file atomically and
       restore all backups if any write fails

A single apply error or failing report blocks the whole batch; nothing is
written in that case.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .block_diff import (
    apply_block_operations,
    group_operations_by_file,
    is_block_diff_response,
    parse_block_diff,
)
from .edit_parser import apply_edits, parse_agent_output
from .file_blocks import filter_by_scope
from .models import ErrorType, NewFileBlock, Segment
from .scanner import scan_blocks
from .tools.backup import backup_file, restore_backup
from .utils import atomic_write_text, check_path_traversal, read_text_file, sanitize_error_message
from .validation import format_validation_report, validate_all

logger = logging.getLogger(__name__)


class PatchFormat(str, Enum):
    """Instruction formats an agent response can use."""

    RTDIFF = "rtdiff"
    LEGACY = "legacy"


def detect_format(response: str) -> PatchFormat:
    """RTDIFF when the response has RTDIFF/1 operations, legacy otherwise."""
    return PatchFormat.RTDIFF if is_block_diff_response(response) else PatchFormat.LEGACY


def _apply_error(path: str, error: str, error_type: Any) -> Dict[str, Any]:
    if isinstance(error_type, ErrorType):
        error_type = error_type.value
    return {"path": path, "error": sanitize_error_message(error), "error_type": error_type}


def stage_agent_output(
    root: str,
    response: str,
    allowed_files: Optional[List[str]] = None,
    patch_format: Optional[PatchFormat] = None,
) -> Dict[str, Any]:
    """Apply an agent response in memory and validate the result.

    Nothing is written. Paths outside ``allowed_files`` (when given) or
    outside ``root`` are dropped and listed under ``rejected``; they do not
    block the remaining files.

    Args:
        root: Project root that every path is relative to
        response: Raw agent output
        allowed_files: Optional allow-list (``NEW:`` entries allowed)
        patch_format: Force a format instead of detecting it

    Returns:
        {
            "format": "rtdiff" | "legacy",
            "staged": {path: new_content},
            "before_segments": {path: List[Segment]},
            "reports": List[ValidationReport],
            "apply_errors": [{"path", "error", "error_type"}],
            "rejected": [{"path", "error", "error_type"}],
            "passed": bool
        }
    """
    root_path = Path(root)
    patch_format = patch_format or detect_format(response)

    # path -> edits (legacy) or block operations (rtdiff)
    modifications: Dict[str, List[Any]] = {}
    new_files: List[NewFileBlock] = []

    if patch_format is PatchFormat.RTDIFF:
        parsed_diff = parse_block_diff(response)
        for path, ops in group_operations_by_file(parsed_diff.operations).items():
            modifications[path] = ops
        new_files = parsed_diff.new_files
    else:
        agent_output = parse_agent_output(response)
        for parsed_edit in agent_output.edits:
            modifications[parsed_edit.path] = parsed_edit.edits
        new_files = agent_output.files

    all_paths = list(dict.fromkeys(list(modifications) + [block.path for block in new_files]))
    in_scope, out_of_scope = filter_by_scope(all_paths, allowed_files)

    rejected: List[Dict[str, Any]] = []
    for path in out_of_scope:
        logger.warning(f"Dropping out-of-scope file: {path}")
        rejected.append(
            _apply_error(path, f"File not in allowed scope: {path}", ErrorType.SCOPE_VIOLATION)
        )

    targets: List[str] = []
    for path in in_scope:
        traversal_error = check_path_traversal(path, root)
        if traversal_error:
            logger.warning(f"Dropping file outside project root: {path}")
            rejected.append(_apply_error(path, traversal_error["error"], traversal_error["error_type"]))
        else:
            targets.append(path)

    staged: Dict[str, str] = {}
    before_segments: Dict[str, List[Segment]] = {}
    apply_errors: List[Dict[str, Any]] = []
    new_file_content = {block.path: block.content for block in new_files}

    for path in targets:
        target = root_path / path

        if path in new_file_content:
            if target.exists():
                current, read_error = read_text_file(target)
                if read_error:
                    apply_errors.append(_apply_error(path, read_error["error"], read_error["error_type"]))
                    continue
                before_segments[path] = scan_blocks(current).segments
            staged[path] = new_file_content[path]
            continue

        current, read_error = read_text_file(target)
        if read_error:
            apply_errors.append(_apply_error(path, read_error["error"], read_error["error_type"]))
            continue

        segments = scan_blocks(current).segments
        if patch_format is PatchFormat.RTDIFF:
            result = apply_block_operations(current, modifications[path], segments)
            if not result.success:
                apply_errors.append(_apply_error(path, result.error, result.error_type))
                continue
            new_content = result.content
        else:
            edit_result = apply_edits(current, modifications[path], path)
            if not edit_result.success:
                apply_errors.append(
                    _apply_error(path, "\n".join(edit_result.errors), ErrorType.SEARCH_NOT_FOUND)
                )
                continue
            new_content = edit_result.content

        before_segments[path] = segments
        staged[path] = new_content

    reports = validate_all(staged, before_segments)
    passed = not apply_errors and all(report.passed for report in reports)

    logger.info(
        f"Staged {len(staged)} file(s) from {patch_format.value} output: "
        f"{len(apply_errors)} apply error(s), {len(rejected)} rejected, "
        f"validation {'passed' if passed else 'failed'}"
    )

    return {
        "format": patch_format.value,
        "staged": staged,
        "before_segments": before_segments,
        "reports": reports,
        "apply_errors": apply_errors,
        "rejected": rejected,
        "passed": passed,
    }


def commit_staged(root: str, staged: Dict[str, str]) -> Dict[str, Any]:
    """Write staged files atomically as one batch (all-or-nothing).

    Existing targets are backed up first. If any backup or write fails,
    every file already written is restored from its backup (or removed, if
    it was newly created) and the batch is reported as rolled back. Backups
    are deleted after a successful commit.

    Args:
        root: Project root
        staged: Path to new content, as produced by stage_agent_output

    Returns:
        Success: {"success": True, "written": [paths], "created": [paths]}
        Failure: {"success": False, "phase": "backup" | "write",
        "failed_at": path, "error": str, "error_type": str, "rolled_back": bool}
    """
    root_path = Path(root)
    backups: Dict[str, str] = {}

    logger.info(f"Creating backups for {len(staged)} staged file(s)")
    for path in staged:
        target = root_path / path
        if not target.exists():
            continue
        backup_result = backup_file(str(target))
        if not backup_result["success"]:
            logger.error(f"Backup failed for {path}: {backup_result['error']}")
            _discard_backups(backups)
            return {
                "success": False,
                "phase": "backup",
                "failed_at": path,
                "error": sanitize_error_message(backup_result["error"]),
                "error_type": backup_result["error_type"],
                "rolled_back": False,
            }
        backups[path] = backup_result["backup_file"]

    written: List[str] = []
    created: List[str] = []
    for path, content in staged.items():
        target = root_path / path
        is_new = not target.exists()
        try:
            atomic_write_text(target, content)
        except OSError as e:
            logger.error(f"Write failed for {path}, rolling back {len(written)} file(s)")
            rolled_back = _roll_back(root_path, written, created, backups)
            _discard_backups(backups)
            return {
                "success": False,
                "phase": "write",
                "failed_at": path,
                "error": sanitize_error_message(f"I/O error writing {path}: {str(e)}"),
                "error_type": ErrorType.IO_ERROR.value,
                "rolled_back": rolled_back,
            }
        written.append(path)
        if is_new:
            created.append(path)

    _discard_backups(backups)
    logger.info(f"Wrote {len(written)} file(s) ({len(created)} new)")
    return {"success": True, "written": written, "created": created}


def _roll_back(
    root_path: Path, written: List[str], created: List[str], backups: Dict[str, str]
) -> bool:
    """Undo the writes of a failed batch. Returns False if anything could not be undone."""
    clean = True
    for path in written:
        if path in created:
            try:
                (root_path / path).unlink()
            except OSError as e:
                logger.error(f"CRITICAL: Cannot remove new file {path}: {e}")
                clean = False
            continue
        restore_result = restore_backup(backups[path], str(root_path / path))
        if not restore_result["success"]:
            logger.error(f"CRITICAL: Cannot restore {path}: {restore_result['error']}")
            clean = False
    return clean


def _discard_backups(backups: Dict[str, str]) -> None:
    for backup_path in backups.values():
        try:
            Path(backup_path).unlink()
        except OSError as e:
            logger.warning(f"Could not delete backup {backup_path}: {e}")


def apply_agent_output(
    root: str,
    response: str,
    allowed_files: Optional[List[str]] = None,
    dry_run: bool = False,
    patch_format: Optional[PatchFormat] = None,
) -> Dict[str, Any]:
    """Stage, validate and (unless ``dry_run``) commit an agent response.

    Args:
        root: Project root
        response: Raw agent output
        allowed_files: Optional allow-list of relative paths
        dry_run: Stage and validate only
        patch_format: Force a format instead of detecting it

    Returns:
        Success: {"success": True, "format", "files": [paths], "written":
        [paths], "created": [paths], "rejected": [...], "message": str}
        Failure: {"success": False, "format", "error": str, "error_type":
        str, "apply_errors": [...], "reports": [dict], "rejected": [...],
        "written": []}

    Example:
        >>> result = apply_agent_output("/project", response, dry_run=True)
        >>> if not result["success"]:
        ...     print(result["error"])
    """
    stage = stage_agent_output(root, response, allowed_files, patch_format)
    reports = stage["reports"]
    base = {"format": stage["format"], "rejected": stage["rejected"]}

    if not stage["passed"]:
        lines: List[str] = []
        if stage["apply_errors"]:
            lines.append(f"{len(stage['apply_errors'])} file(s) could not be patched:")
            for failure in stage["apply_errors"]:
                lines.append(f"  {failure['path']}: {failure['error']}")
        report_text = format_validation_report(reports)
        if report_text:
            lines.append(report_text)
        elif lines:
            lines.append("0 files written.")

        error_type = (
            stage["apply_errors"][0]["error_type"]
            if stage["apply_errors"]
            else ErrorType.VALIDATION_FAILED.value
        )
        return {
            **base,
            "success": False,
            "error": "\n".join(lines),
            "error_type": error_type,
            "apply_errors": stage["apply_errors"],
            "reports": [report.model_dump(mode="json") for report in reports],
            "written": [],
        }

    files = list(stage["staged"])
    if not files:
        return {
            **base,
            "success": True,
            "files": [],
            "written": [],
            "created": [],
            "message": "No file changes found in agent output",
        }

    if dry_run:
        return {
            **base,
            "success": True,
            "files": files,
            "written": [],
            "created": [],
            "message": f"{len(files)} file(s) can be written (dry run)",
        }

    commit = commit_staged(root, stage["staged"])
    if not commit["success"]:
        return {**base, **commit, "written": []}

    return {
        **base,
        "success": True,
        "files": files,
        "written": commit["written"],
        "created": commit["created"],
        "message": f"{len(commit['written'])} file(s) written",
    }
