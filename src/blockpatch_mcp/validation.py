"""Validation pipeline - check proposed file content before it is written.

Four independent checks run on every staged file:
    1. Bracket balance (string/comment aware, whole file)
    2. Artifact detection (leaked edit markers, merge conflict markers)
    3. Duplicate import detection
    4. Structural integrity against the pre-change segments (when given)

Every file gets a full report; nothing short-circuits, so a caller can show
all problems at once. The pipeline is pure: it reads only the text it is
given and never decides whether to retry or to write.
"""

import logging
import re
from typing import Dict, List, Optional

from .lexer import LexState, lex_line
from .models import IssueKind, Segment, SegmentKind, ValidationIssue, ValidationReport
from .scanner import scan_blocks

logger = logging.getLogger(__name__)

BRACKET_PAIRS = [
    ("(", ")", "parentheses"),
    ("[", "]", "brackets"),
    ("{", "}", "braces"),
]


def check_bracket_balance(content: str) -> List[ValidationIssue]:
    """Check that ``()``, ``[]`` and ``{}`` balance across the whole file.

    Brackets inside string literals and comments are ignored.

    Args:
        content: Proposed file content

    Returns:
        One whole-file issue per unbalanced pair
    """
    counts = {ch: 0 for pair in BRACKET_PAIRS for ch in pair[:2]}
    state = LexState()
    for line in content.split("\n"):
        lexed = lex_line(state, line)
        state = lexed.state
        for ch in lexed.code:
            if ch in counts:
                counts[ch] += 1

    issues: List[ValidationIssue] = []
    for opener, closer, name in BRACKET_PAIRS:
        opened = counts[opener]
        closed = counts[closer]
        diff = opened - closed
        if diff == 0:
            continue
        which = f"{diff} unclosed '{opener}'" if diff > 0 else f"{-diff} extra '{closer}'"
        issues.append(
            ValidationIssue(
                kind=IssueKind.BRACKET_BALANCE,
                message=f"Unbalanced {name}: {which} ({opened} opened, {closed} closed)",
                line=0,
                snippet=f"{opener}: {opened}, {closer}: {closed}",
            )
        )
    return issues


# Line-anchored patterns that never appear in finished code; the first match
# labels the line
ARTIFACT_PATTERNS = [
    (re.compile(r"^<{3,7}\s*SEARCH\s*$"), "Leaked <<<< SEARCH marker"),
    (re.compile(r"^>{3,7}\s*REPLACE\s*$"), "Leaked >>>> REPLACE marker"),
    (re.compile(r"^<{7}\s"), "Merge conflict marker (<<<<<<<)"),
    (re.compile(r"^>{7}\s"), "Merge conflict marker (>>>>>>>)"),
    (re.compile(r"^={7}$"), "Merge conflict marker (=======)"),
    (re.compile(r"^={3,7}$"), "Leaked ==== block separator"),
    (re.compile(r"^EDIT:\s+\S"), "Leaked EDIT: directive in code"),
]


def detect_artifacts(content: str) -> List[ValidationIssue]:
    """Detect leaked edit markers and merge conflict markers.

    Patterns only match at the start of a line, so the same text inside a
    string literal mid-line is not reported.

    Args:
        content: Proposed file content

    Returns:
        One issue per matching line, with the 1-based line number
    """
    issues: List[ValidationIssue] = []
    for index, line in enumerate(content.split("\n")):
        for pattern, label in ARTIFACT_PATTERNS:
            if pattern.match(line):
                issues.append(
                    ValidationIssue(
                        kind=IssueKind.ARTIFACT_DETECTION,
                        message=label,
                        line=index + 1,
                        snippet=line.strip(),
                    )
                )
                break
    return issues


IMPORT_PATTERNS = [
    re.compile(r"^import\s.*\bfrom\s"),
    re.compile(r"^import\s.*\brequire\("),
    re.compile(r"^import\s+[\"']"),
    re.compile(r"^(?:const|let|var)\s+.+=\s*require\("),
    re.compile(r"^#\s*include\s"),
]


def _is_import(line: str) -> bool:
    return any(pattern.match(line) for pattern in IMPORT_PATTERNS)


def detect_duplicate_imports(content: str) -> List[ValidationIssue]:
    """Detect import statements that repeat an earlier one.

    Only top-level lines in active code count, so a ``require()`` bound inside
    two different functions is not a duplicate. Statements are compared with
    whitespace runs collapsed.

    Returns:
        One issue per repeat, citing the first occurrence's line
    """
    issues: List[ValidationIssue] = []
    seen: Dict[str, int] = {}
    state = LexState()

    for index, raw in enumerate(content.split("\n")):
        top_level = state.in_code and state.depth == 0
        state = lex_line(state, raw).state
        line = raw.strip()
        if not top_level or not _is_import(line):
            continue
        normalized = " ".join(line.split())
        if normalized in seen:
            issues.append(
                ValidationIssue(
                    kind=IssueKind.DUPLICATE_IMPORT,
                    message=f"Duplicate import (first seen line {seen[normalized]})",
                    line=index + 1,
                    snippet=line,
                )
            )
        else:
            seen[normalized] = index + 1
    return issues


def validate_structural_integrity(
    before_segments: List[Segment], after_content: str
) -> List[ValidationIssue]:
    """Guard class structure across a rewrite.

    Flags classes that no longer exist and class methods that were turned
    into standalone top-level functions of the same name ("identity
    demotion"). A method that simply disappears is a deletion and is
    allowed; methods of a class that is already reported missing are not
    reported again.

    Args:
        before_segments: Segments of the file before the change
        after_content: Proposed content

    Returns:
        Structural integrity issues (whole-file, line 0)
    """
    issues: List[ValidationIssue] = []
    after_segments = scan_blocks(after_content).segments

    after_classes = {s.name for s in after_segments if s.kind is SegmentKind.CLASS}
    after_methods = {
        (s.class_name, s.name) for s in after_segments if s.kind is SegmentKind.CLASS_METHOD
    }
    after_functions = {s.name for s in after_segments if s.kind is SegmentKind.FUNCTION}

    for cls in before_segments:
        if cls.kind is SegmentKind.CLASS and cls.name not in after_classes:
            issues.append(
                ValidationIssue(
                    kind=IssueKind.STRUCTURAL_INTEGRITY,
                    message=f"Class '{cls.name}' was removed - structural violation",
                    line=0,
                    snippet=f"Before: class {cls.name} (lines {cls.start_line}-{cls.end_line})",
                )
            )

    for method in before_segments:
        if method.kind is not SegmentKind.CLASS_METHOD:
            continue
        if method.class_name not in after_classes:
            continue
        if (method.class_name, method.name) in after_methods:
            continue
        if method.name in after_functions:
            issues.append(
                ValidationIssue(
                    kind=IssueKind.STRUCTURAL_INTEGRITY,
                    message=(
                        f"Class method '{method.class_name}#{method.name}' was demoted to "
                        "standalone function - identity demotion"
                    ),
                    line=0,
                    snippet=(
                        f"Before: class_method {method.class_name}#{method.name}, "
                        f"After: standalone fn:{method.name}"
                    ),
                )
            )

    return issues


def validate_staged_file(
    path: str, content: str, before_segments: Optional[List[Segment]] = None
) -> ValidationReport:
    """Run every check on one staged file.

    The structural check runs only when ``before_segments`` is non-empty.
    """
    issues = check_bracket_balance(content) + detect_artifacts(content) + detect_duplicate_imports(
        content
    )
    if before_segments:
        issues += validate_structural_integrity(before_segments, content)

    report = ValidationReport(path=path, issues=issues)
    if not report.passed:
        logger.debug(f"{path}: {len(issues)} validation issue(s)")
    return report


def validate_all(
    staged: Dict[str, str], before_segments_map: Optional[Dict[str, List[Segment]]] = None
) -> List[ValidationReport]:
    """Validate every staged file.

    Args:
        staged: Path to proposed content
        before_segments_map: Path to pre-change segments, for the
            structural integrity check

    Returns:
        One report per staged file, in input order, including passing files
    """
    before_segments_map = before_segments_map or {}
    return [
        validate_staged_file(path, content, before_segments_map.get(path))
        for path, content in staged.items()
    ]


def format_validation_report(reports: List[ValidationReport]) -> str:
    """Render failed reports as plain text (empty string when all passed)."""
    failed = [report for report in reports if not report.passed]
    if not failed:
        return ""

    lines = ["", f"  VALIDATION FAILED - {len(failed)} file(s) have issues:", ""]
    for report in failed:
        lines.append(f"  {report.path} ({len(report.issues)} issue(s)):")
        for issue in report.issues:
            line_info = f" (line {issue.line})" if issue.line > 0 else ""
            lines.append(f"    {issue.kind.value}{line_info}: {issue.message}")
            if issue.snippet:
                lines.append(f"      > {issue.snippet}")
        lines.append("")
    lines.append("  0 files written. Fix the agent output or try again.")
    lines.append("")
    return "\n".join(lines)
