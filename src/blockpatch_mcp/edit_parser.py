"""Legacy SEARCH/REPLACE edit format - parser and applier.

Format (one or more triples per header, one or more headers per response):

    EDIT: src/config.ts
    <<<< SEARCH
    const PORT = 8000;
    >>>> REPLACE
    const PORT = 9000;
    ====

An empty REPLACE section deletes the matched text. Edits for a file are
applied in order against the progressively modified text; a file with any
unmatched SEARCH is rejected as a whole.
"""

import logging
import re
from enum import Enum
from typing import Dict, List

from .file_blocks import parse_code_blocks
from .fuzzy import fuzzy_find
from .models import AgentOutput, EditApplyResult, EditOperation, ParsedEdit

logger = logging.getLogger(__name__)

EDIT_HEADER_RE = re.compile(r"^EDIT:\s*(.+)$")
SEARCH_START_RE = re.compile(r"^<{3,4}\s*SEARCH\s*$")
REPLACE_START_RE = re.compile(r"^>{3,4}\s*REPLACE\s*$")
BLOCK_END_RE = re.compile(r"^={3,6}$")

# Lines of an unmatched SEARCH quoted in the error message
PREVIEW_LINES = 3


class _State(Enum):
    IDLE = "idle"
    EDIT_HEADER = "edit_header"
    EXPECTING_SEARCH = "expecting_search"
    IN_SEARCH = "in_search"
    IN_REPLACE = "in_replace"


def parse_edit_blocks(response: str) -> List[ParsedEdit]:
    """Parse ``EDIT:`` blocks from an agent response.

    Anything that does not follow the grammar drops the parser back to idle
    without raising; an unterminated triple at the end is discarded.

    Args:
        response: Raw agent output

    Returns:
        One ParsedEdit per path in order of first appearance, each holding
        its edits in encounter order
    """
    edit_map: Dict[str, List[EditOperation]] = {}
    state = _State.IDLE
    current_path = ""
    search_lines: List[str] = []
    replace_lines: List[str] = []

    for line in response.split("\n"):
        if state is _State.IDLE:
            header = EDIT_HEADER_RE.match(line)
            if header:
                current_path = header.group(1).strip()
                state = _State.EDIT_HEADER

        elif state in (_State.EDIT_HEADER, _State.EXPECTING_SEARCH):
            if SEARCH_START_RE.match(line):
                search_lines = []
                state = _State.IN_SEARCH
            elif not line.strip():
                continue
            elif state is _State.EXPECTING_SEARCH and EDIT_HEADER_RE.match(line):
                current_path = EDIT_HEADER_RE.match(line).group(1).strip()
                state = _State.EDIT_HEADER
            else:
                state = _State.IDLE

        elif state is _State.IN_SEARCH:
            if REPLACE_START_RE.match(line):
                replace_lines = []
                state = _State.IN_REPLACE
            else:
                search_lines.append(line)

        elif state is _State.IN_REPLACE:
            if BLOCK_END_RE.match(line):
                edit_map.setdefault(current_path, []).append(
                    EditOperation(search="\n".join(search_lines), replace="\n".join(replace_lines))
                )
                state = _State.EXPECTING_SEARCH
            else:
                replace_lines.append(line)

    return [ParsedEdit(path=path, edits=edits) for path, edits in edit_map.items()]


def apply_edits(original_content: str, edits: List[EditOperation], file_path: str) -> EditApplyResult:
    """Apply legacy edits sequentially to file content.

    Each SEARCH is first looked up verbatim (first occurrence); only when
    that fails is a whitespace-normalized match tried, and the replacement is
    spliced into the original formatting around the matched span. A blank
    SEARCH fails instead of matching at offset 0.

    Args:
        original_content: Current file content
        edits: Edits in application order
        file_path: Path used in error messages

    Returns:
        EditApplyResult; ``success`` is False when any edit failed, with the
        0-based indexes in ``failed_edits`` and one message per failure

    Example:
        >>> result = apply_edits("a = 1\\n", [EditOperation(search="a = 1", replace="a = 2")], "x.js")
        >>> result.success, result.content
        (True, 'a = 2\\n')
    """
    content = original_content
    failed_edits: List[int] = []
    errors: List[str] = []

    for index, edit in enumerate(edits):
        if not edit.search.strip():
            failed_edits.append(index)
            errors.append(f"Edit {index + 1}: empty SEARCH for {file_path}; nothing to anchor the replacement to")
            continue

        position = content.find(edit.search)
        if position != -1:
            content = content[:position] + edit.replace + content[position + len(edit.search):]
            continue

        span = fuzzy_find(content, edit.search)
        if span is not None:
            start, end = span
            logger.debug(f"Edit {index + 1} for {file_path} matched after whitespace normalization")
            content = content[:start] + edit.replace + content[end:]
            continue

        failed_edits.append(index)
        preview = "\n".join(edit.search.split("\n")[:PREVIEW_LINES])
        errors.append(f"Edit {index + 1}: SEARCH not found in {file_path}:\n  {preview}")

    if failed_edits:
        logger.warning(f"{len(failed_edits)} of {len(edits)} edits failed for {file_path}")

    return EditApplyResult(
        path=file_path,
        success=not failed_edits,
        content=content,
        failed_edits=failed_edits or None,
        errors=errors or None,
    )


def parse_agent_output(response: str) -> AgentOutput:
    """Parse both ``EDIT:`` and ``FILE:`` blocks from a response.

    A path that has EDIT blocks is never also created from a FILE block.
    """
    edits = parse_edit_blocks(response)
    edit_paths = {edit.path for edit in edits}
    files = [block for block in parse_code_blocks(response) if block.path not in edit_paths]
    return AgentOutput(files=files, edits=edits)
