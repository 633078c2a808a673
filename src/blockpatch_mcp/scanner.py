"""Segment scanner - partition brace-delimited source into keyed line ranges.

The scanner walks a file line by line with the string/comment aware lexer and
recognizes block starts by pattern, not by grammar. It produces a flat list of
segments:

    preamble              everything before the first named block
    fn:name               top-level function, bound arrow/function value,
                          interface, enum or multi-line type alias
    class:Name            a whole class block
    class:Name#method     a method inside a class (nested in the class range)
    gap:n                 non-blank top-level code between named blocks

Example:
    >>> result = scan_blocks(source)
    >>> print(generate_block_map("src/app.ts", result.segments))
    [BLOCK_MAP] src/app.ts
      preamble (1-3): imports + top-level code
      fn:main (4-20): function main
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional

from .lexer import LexedLine, LexState, lex_line
from .models import ScanResult, Segment, SegmentKind

logger = logging.getLogger(__name__)


class DetectedBlock(NamedTuple):
    """A block start recognized on a single line."""

    kind: SegmentKind
    name: str
    class_name: Optional[str] = None


# --- Block start patterns ---

# export default function name( / export default class Name
EXPORT_DEFAULT_RE = re.compile(
    r"^export\s+default\s+(?:abstract\s+)?(?:async\s+)?(function|class)\b\s*\*?\s*(\w*)"
)

# class Name, export class Name, export abstract class Name
CLASS_RE = re.compile(r"^(?:export\s+)?(?:declare\s+)?(?:abstract\s+)?class\s+(\w+)")

# function name(, export async function name<T>(, function* gen(
FUNCTION_RE = re.compile(
    r"^(?:export\s+)?(?:declare\s+)?(?:async\s+)?function(?:\s*\*\s*|\s+)(\w+)\s*(?:<[^>]*>)?\s*\("
)

# export const name = ..., const name: Type = ...
BOUND_VALUE_RE = re.compile(r"^(export\s+)?(?:const|let|var)\s+(\w+)\s*(?::[^=]+)?\s*=\s*")

FUNCTION_VALUE_RE = re.compile(r"^(?:async\s+)?function\b")

INTERFACE_RE = re.compile(r"^(?:export\s+)?(?:declare\s+)?interface\s+(\w+)")

ENUM_RE = re.compile(r"^(?:export\s+)?(?:declare\s+)?(?:const\s+)?enum\s+(\w+)")

TYPE_RE = re.compile(r"^(?:export\s+)?type\s+(\w+)\s*(?:<[^>]*>)?\s*=")

CONSTRUCTOR_RE = re.compile(r"^(?:(?:public|private|protected)\s+)?constructor\s*\(")

# name(, async name(, get name(, static *gen(, private override name<T>(
METHOD_RE = re.compile(
    r"^(?:(?:static|private|public|protected|readonly|abstract|override|declare)\s+)*"
    r"(?:async\s+)?(?:(?:get|set)\s+)?(?:\*\s*)?(\w+)\s*(?:<[^>]*>)?\s*\("
)

# Words that start statements, never method declarations
NON_METHOD_NAMES = frozenset(
    {
        "if", "else", "for", "while", "do", "switch", "case", "return", "throw",
        "try", "catch", "finally", "new", "delete", "typeof", "void", "await",
        "yield", "import", "export", "const", "let", "var", "function", "super",
        "this", "with",
    }
)


# --- Matchers (tried top to bottom) ---


def _match_export_default(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = EXPORT_DEFAULT_RE.match(line)
    if not match:
        return None
    name = match.group(2)
    if not name or name in ("extends", "implements"):
        name = "default"
    if match.group(1) == "class":
        return DetectedBlock(SegmentKind.CLASS, name)
    return DetectedBlock(SegmentKind.FUNCTION, name)


def _match_class(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = CLASS_RE.match(line)
    return DetectedBlock(SegmentKind.CLASS, match.group(1)) if match else None


def _match_function(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = FUNCTION_RE.match(line)
    return DetectedBlock(SegmentKind.FUNCTION, match.group(1)) if match else None


def _match_bound_function(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    """Variable bound to a function-like value.

    Exported bindings count when the value opens a call, block or arrow;
    plain bindings only when the value is an arrow or a function expression,
    so ``const CONFIG = { ... }`` stays top-level code.
    """
    match = BOUND_VALUE_RE.match(line)
    if not match:
        return None
    rest = line[match.end():]
    if match.group(1):
        function_like = "=>" in rest or "{" in rest or "(" in rest
    else:
        function_like = "=>" in rest or bool(FUNCTION_VALUE_RE.match(rest))
    return DetectedBlock(SegmentKind.FUNCTION, match.group(2)) if function_like else None


def _match_interface(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = INTERFACE_RE.match(line)
    return DetectedBlock(SegmentKind.FUNCTION, match.group(1)) if match else None


def _match_enum(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = ENUM_RE.match(line)
    return DetectedBlock(SegmentKind.FUNCTION, match.group(1)) if match else None


def _match_type_alias(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = TYPE_RE.match(line)
    if match and ("{" in line or "(" in line):
        return DetectedBlock(SegmentKind.FUNCTION, match.group(1))
    return None


def _match_constructor(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    if CONSTRUCTOR_RE.match(line):
        return DetectedBlock(SegmentKind.CLASS_METHOD, "constructor", class_name)
    return None


def _match_method(line: str, class_name: Optional[str]) -> Optional[DetectedBlock]:
    match = METHOD_RE.match(line)
    if match and match.group(1) not in NON_METHOD_NAMES:
        return DetectedBlock(SegmentKind.CLASS_METHOD, match.group(1), class_name)
    return None


Matcher = Callable[[str, Optional[str]], Optional[DetectedBlock]]

TOP_LEVEL_MATCHERS: List[Matcher] = [
    _match_export_default,
    _match_class,
    _match_function,
    _match_bound_function,
    _match_interface,
    _match_enum,
    _match_type_alias,
]

CLASS_BODY_MATCHERS: List[Matcher] = [
    _match_constructor,
    _match_method,
]


def detect_block_start(
    trimmed_line: str, depth: int, class_name: Optional[str], class_depth: int = 0
) -> Optional[DetectedBlock]:
    """Recognize a block start on a trimmed line of active code.

    Args:
        trimmed_line: Line text with surrounding whitespace removed
        depth: Brace depth at the start of the line
        class_name: Name of the class currently open, if any
        class_depth: Depth at which that class was entered

    Returns:
        The first matcher's DetectedBlock, or None
    """
    if depth == 0:
        matchers = TOP_LEVEL_MATCHERS
    elif class_name is not None and depth == class_depth + 1:
        matchers = CLASS_BODY_MATCHERS
    else:
        return None

    for matcher in matchers:
        detected = matcher(trimmed_line, class_name)
        if detected is not None:
            return detected
    return None


@dataclass
class _OpenBlock:
    key: str
    detected: DetectedBlock
    start_line: int
    entry_depth: int
    opened: bool = False

    def closes_on(self, lexed: LexedLine) -> bool:
        """Whether the block ends on the line just lexed.

        A block ends once depth is back at its entry depth after having
        risen above it. A header statement that ends with ``;`` before any
        brace opened (overload, abstract method, brace-less arrow) ends on
        that line.
        """
        if lexed.peak_depth > self.entry_depth:
            self.opened = True
        if lexed.state.depth > self.entry_depth:
            return False
        if self.opened:
            return True
        return lexed.code.rstrip().endswith(";")


def _has_content(lines: List[str]) -> bool:
    return any(line.strip() for line in lines)


def _last_content_line(lines: List[str], start: int, end: int) -> int:
    """Last non-blank line in ``start..end`` (1-based), never before ``start``."""
    while end > start and not lines[end - 1].strip():
        end -= 1
    return end


def scan_blocks(content: str) -> ScanResult:
    """Scan source text into an ordered list of keyed segments.

    Never raises: unrecognized or malformed code simply yields no named
    segment and ends up in the preamble or a gap.

    Args:
        content: Complete file content

    Returns:
        ScanResult with segments sorted by start line and the last preamble
        line (0 when there is no preamble)

    Example:
        >>> result = scan_blocks('import x from "x";\\n\\nfunction run() {\\n}\\n')
        >>> [s.key for s in result.segments]
        ['preamble', 'fn:run']
    """
    lines = content.split("\n")
    segments: List[Segment] = []
    key_counts: Dict[str, int] = {}

    state = LexState()
    open_class: Optional[_OpenBlock] = None
    open_block: Optional[_OpenBlock] = None

    preamble_end = 0
    first_named_seen = False
    last_named_end = 0
    gap_counter = 0

    def unique_key(key: str) -> str:
        count = key_counts.get(key, 0) + 1
        key_counts[key] = count
        return key if count == 1 else f"{key}~{count}"

    def emit(block: _OpenBlock, end_line: int) -> None:
        segments.append(
            Segment(
                key=block.key,
                kind=block.detected.kind,
                start_line=block.start_line,
                end_line=end_line,
                name=block.detected.name,
                class_name=block.detected.class_name,
            )
        )

    def emit_gap(start: int, end: int) -> None:
        nonlocal gap_counter
        if end >= start and _has_content(lines[start - 1 : end]):
            gap_counter += 1
            segments.append(
                Segment(key=f"gap:{gap_counter}", kind=SegmentKind.GAP, start_line=start, end_line=end)
            )

    def emit_preamble_or_gap(line_no: int) -> None:
        nonlocal first_named_seen, preamble_end
        if first_named_seen:
            if last_named_end > 0:
                emit_gap(last_named_end + 1, line_no - 1)
            return
        first_named_seen = True
        if line_no > 1 and _has_content(lines[: line_no - 1]):
            preamble_end = line_no - 1
            segments.append(
                Segment(
                    key="preamble",
                    kind=SegmentKind.PREAMBLE,
                    start_line=1,
                    end_line=preamble_end,
                )
            )

    for index, line in enumerate(lines):
        line_no = index + 1
        trimmed = line.strip()
        class_name = open_class.detected.name if open_class else None
        class_depth = open_class.entry_depth if open_class else 0

        if (
            trimmed
            and state.in_code
            and open_block is not None
            and not open_block.opened
            and state.depth == open_block.entry_depth
            and detect_block_start(trimmed, state.depth, class_name, class_depth) is not None
        ):
            # header with no brace and no ';' ends before the next block start
            end_line = _last_content_line(lines, open_block.start_line, line_no - 1)
            emit(open_block, end_line)
            if open_block.detected.kind is not SegmentKind.CLASS_METHOD:
                last_named_end = end_line
            open_block = None

        if trimmed and state.in_code and open_block is None:
            detected = detect_block_start(trimmed, state.depth, class_name, class_depth)

            if detected is None:
                pass
            elif detected.kind is SegmentKind.CLASS_METHOD:
                if open_class is not None:
                    key = unique_key(f"{open_class.key}#{detected.name}")
                    open_block = _OpenBlock(key, detected, line_no, state.depth)
            elif open_class is None:
                emit_preamble_or_gap(line_no)
                if detected.kind is SegmentKind.CLASS:
                    key = unique_key(f"class:{detected.name}")
                    open_class = _OpenBlock(key, detected, line_no, state.depth)
                else:
                    key = unique_key(f"fn:{detected.name}")
                    open_block = _OpenBlock(key, detected, line_no, state.depth)

        lexed = lex_line(state, line)
        state = lexed.state

        if open_block is not None and open_block.closes_on(lexed):
            emit(open_block, line_no)
            if open_block.detected.kind is not SegmentKind.CLASS_METHOD:
                last_named_end = line_no
            open_block = None

        if open_class is not None and open_class.closes_on(lexed):
            if open_block is not None:
                # method left open by malformed code ends with its class
                emit(open_block, line_no)
                open_block = None
            emit(open_class, line_no)
            last_named_end = line_no
            open_class = None

    last_line = len(lines)
    if open_block is not None:
        emit(open_block, last_line)
        last_named_end = last_line
    if open_class is not None:
        emit(open_class, last_line)
        last_named_end = last_line

    if first_named_seen:
        emit_gap(last_named_end + 1, last_line)
    elif _has_content(lines):
        preamble_end = last_line
        segments.append(
            Segment(key="preamble", kind=SegmentKind.PREAMBLE, start_line=1, end_line=last_line)
        )

    segments.sort(key=lambda s: (s.start_line, -s.end_line))
    logger.debug(f"Scanned {last_line} lines into {len(segments)} segments")
    return ScanResult(segments=segments, preamble_end_line=preamble_end)


def find_segment(segments: List[Segment], key: str) -> Optional[Segment]:
    """Return the segment with ``key``, or None."""
    for segment in segments:
        if segment.key == key:
            return segment
    return None


_LABELS = {
    SegmentKind.PREAMBLE: "imports + top-level code",
    SegmentKind.FUNCTION: "function",
    SegmentKind.CLASS: "class",
    SegmentKind.CLASS_METHOD: "method",
    SegmentKind.GAP: "top-level code",
}


def generate_block_map(file_path: str, segments: List[Segment]) -> str:
    """Render segments as a BLOCK_MAP listing for an agent prompt.

    Args:
        file_path: Path shown in the header line
        segments: Segments from :func:`scan_blocks`

    Returns:
        ``[BLOCK_MAP] <path>`` followed by ``  <key> (<start>-<end>): <label>``
        per segment
    """
    lines = [f"[BLOCK_MAP] {file_path}"]
    for seg in segments:
        label = _LABELS[seg.kind]
        if seg.name and seg.kind in (SegmentKind.FUNCTION, SegmentKind.CLASS, SegmentKind.CLASS_METHOD):
            label = f"{label} {seg.name}"
        lines.append(f"  {seg.key} ({seg.start_line}-{seg.end_line}): {label}")
    return "\n".join(lines)
