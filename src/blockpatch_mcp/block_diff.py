"""Segment-addressed patch format (RTDIFF/1) - parser and executor.

Operations address segments by key instead of quoting their text:

    RTDIFF/1

    BLOCK_REPLACE: src/utils/writer.ts :: fn:writeFiles
    ---
    export async function writeFiles(files: FileChange[]): Promise<void> {
      ...
    }
    ---

    BLOCK_INSERT_AFTER: src/utils/writer.ts :: fn:writeFiles
    ---
    export function summarize(): string { return ""; }
    ---

    BLOCK_DELETE: src/utils/writer.ts :: fn:legacyWrite

    PREAMBLE_REPLACE: src/utils/writer.ts
    ---
    import { mkdir } from "node:fs/promises";
    ---

``FILE:`` blocks for paths that no operation targets are returned as new
files. Operations for one file are applied bottom-to-top against the segment
map computed from the file's current content.
"""

import logging
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .file_blocks import parse_code_blocks
from .models import BlockOperation, BlockOpType, ErrorType, ParsedBlockDiff, PatchResult, Segment
from .scanner import find_segment

logger = logging.getLogger(__name__)

RTDIFF_HEADER_RE = re.compile(r"^RTDIFF/1\s*$")
BLOCK_OP_RE = re.compile(r"^(BLOCK_REPLACE|BLOCK_INSERT_AFTER|BLOCK_DELETE)\s*:\s*(.+?)\s*::\s*(.+)$")
PREAMBLE_OP_RE = re.compile(r"^PREAMBLE_REPLACE\s*:\s*(.+)$")
CONTENT_DELIMITER_RE = re.compile(r"^-{3,}$")

BLOCK_OP_LINE_RE = re.compile(r"^(?:BLOCK_REPLACE|BLOCK_INSERT_AFTER|BLOCK_DELETE)\s*:", re.MULTILINE)
PREAMBLE_OP_LINE_RE = re.compile(r"^PREAMBLE_REPLACE\s*:", re.MULTILINE)
LEGACY_EDIT_LINE_RE = re.compile(r"^EDIT:\s+\S", re.MULTILINE)


class _State(Enum):
    IDLE = "idle"
    EXPECTING_CONTENT = "expecting_content"
    IN_CONTENT = "in_content"


def parse_block_diff(response: str) -> ParsedBlockDiff:
    """Parse an RTDIFF/1 response.

    Args:
        response: Raw agent output

    Returns:
        ParsedBlockDiff with operations in encounter order and FILE blocks
        for paths that no operation targets
    """
    operations: List[BlockOperation] = []
    state = _State.IDLE
    pending: Optional[Tuple[BlockOpType, str, str]] = None
    content_lines: List[str] = []

    for line in response.split("\n"):
        if state is _State.IDLE:
            if RTDIFF_HEADER_RE.match(line.strip()):
                continue

            block_match = BLOCK_OP_RE.match(line)
            if block_match:
                op_type = BlockOpType(block_match.group(1))
                file_path = block_match.group(2).strip()
                segment_key = block_match.group(3).strip()
                if op_type is BlockOpType.BLOCK_DELETE:
                    operations.append(
                        BlockOperation(type=op_type, file_path=file_path, segment_key=segment_key)
                    )
                else:
                    pending = (op_type, file_path, segment_key)
                    state = _State.EXPECTING_CONTENT
                continue

            preamble_match = PREAMBLE_OP_RE.match(line)
            if preamble_match:
                pending = (BlockOpType.PREAMBLE_REPLACE, preamble_match.group(1).strip(), "preamble")
                state = _State.EXPECTING_CONTENT

        elif state is _State.EXPECTING_CONTENT:
            if CONTENT_DELIMITER_RE.match(line.strip()):
                content_lines = []
                state = _State.IN_CONTENT
            elif line.strip():
                pending = None
                state = _State.IDLE

        elif state is _State.IN_CONTENT:
            if CONTENT_DELIMITER_RE.match(line.strip()):
                op_type, file_path, segment_key = pending
                operations.append(
                    BlockOperation(
                        type=op_type,
                        file_path=file_path,
                        segment_key=segment_key,
                        content="\n".join(content_lines),
                    )
                )
                pending = None
                state = _State.IDLE
            else:
                content_lines.append(line)

    op_paths = {op.file_path for op in operations}
    new_files = [block for block in parse_code_blocks(response) if block.path not in op_paths]
    return ParsedBlockDiff(operations=operations, new_files=new_files)


def group_operations_by_file(operations: List[BlockOperation]) -> Dict[str, List[BlockOperation]]:
    """Group operations by target path, keeping encounter order."""
    grouped: Dict[str, List[BlockOperation]] = {}
    for op in operations:
        grouped.setdefault(op.file_path, []).append(op)
    return grouped


def _replaces_range(op: BlockOperation) -> bool:
    return op.type is not BlockOpType.BLOCK_INSERT_AFTER


def _anchor(op: BlockOperation, segment: Segment) -> int:
    """Position an operation acts on, in half lines.

    Ranged operations act at their first line, insertions just below the
    segment's last line, so an insertion after an enclosing class still
    runs before edits to the methods inside it.
    """
    if _replaces_range(op):
        return 2 * segment.start_line
    return 2 * segment.end_line + 1


def _find_conflict(
    resolved: List[Tuple[BlockOperation, Segment]]
) -> Optional[Tuple[Segment, Segment]]:
    """Return two segments whose operations touch overlapping lines, if any.

    Replaced or deleted ranges must be disjoint, and an insertion point may
    not fall strictly inside a replaced range.
    """
    ranged = [seg for op, seg in resolved if _replaces_range(op)]
    for i, first in enumerate(ranged):
        for second in ranged[i + 1:]:
            if first.start_line <= second.end_line and second.start_line <= first.end_line:
                return first, second
    for op, anchor in resolved:
        if _replaces_range(op):
            continue
        for seg in ranged:
            if seg.start_line <= anchor.end_line < seg.end_line:
                return seg, anchor
    return None


def apply_block_operations(
    content: str, operations: List[BlockOperation], segments: List[Segment]
) -> PatchResult:
    """Apply one file's block operations.

    Every segment key is resolved before anything is applied; one unknown key
    rejects the whole file, because all line ranges were computed from a
    segment map that no longer matches the instructions. Valid operations are
    applied from the bottom of the file up so earlier ranges stay valid.

    Args:
        content: Current file content the segments were scanned from
        operations: Operations for this file
        segments: Segments from ``scan_blocks(content)``

    Returns:
        PatchResult with the new content, or an error naming the problem
    """
    path = operations[0].file_path if operations else ""
    if not operations:
        return PatchResult(path=path, success=True, content=content)

    resolved: List[Tuple[BlockOperation, Segment]] = []
    for op in operations:
        segment = find_segment(segments, op.segment_key)
        if segment is None:
            available = ", ".join(seg.key for seg in segments)
            logger.warning(f"Unknown segment '{op.segment_key}' for {op.file_path}")
            return PatchResult(
                path=op.file_path,
                success=False,
                error=(
                    f'PatchTargetError: segment "{op.segment_key}" not found in {op.file_path}. '
                    f"Available segments: {available}"
                ),
                error_type=ErrorType.PATCH_TARGET_ERROR,
            )
        resolved.append((op, segment))

    conflict = _find_conflict(resolved)
    if conflict is not None:
        first, second = conflict
        return PatchResult(
            path=path,
            success=False,
            error=(
                f'PatchConflictError: operations on "{first.key}" ({first.start_line}-{first.end_line}) '
                f'and "{second.key}" ({second.start_line}-{second.end_line}) overlap in {path}'
            ),
            error_type=ErrorType.PATCH_CONFLICT,
        )

    # Bottom-to-top; repeated insertions after one segment run in reverse so
    # they land in encounter order.
    ordered = sorted(
        enumerate(resolved),
        key=lambda item: (_anchor(*item[1]), item[0]),
        reverse=True,
    )

    lines = content.split("\n")
    for _, (op, segment) in ordered:
        before = lines[: segment.start_line - 1]
        after = lines[segment.end_line:]
        if op.type is BlockOpType.BLOCK_DELETE:
            lines = before + after
        elif op.type is BlockOpType.BLOCK_INSERT_AFTER:
            lines = lines[: segment.end_line] + [""] + op.content.split("\n") + after
        else:
            lines = before + op.content.split("\n") + after

    logger.debug(f"Applied {len(operations)} block operations to {path}")
    return PatchResult(path=path, success=True, content="\n".join(lines))


def is_block_diff_response(response: str) -> bool:
    """True when a response contains RTDIFF/1 operations or header."""
    first_line = response.strip().split("\n")[0] if response.strip() else ""
    return bool(
        BLOCK_OP_LINE_RE.search(response)
        or PREAMBLE_OP_LINE_RE.search(response)
        or RTDIFF_HEADER_RE.match(first_line)
    )


def is_legacy_edit_response(response: str) -> bool:
    """True when a response contains a line-leading ``EDIT:`` header."""
    return bool(LEGACY_EDIT_LINE_RE.search(response))
