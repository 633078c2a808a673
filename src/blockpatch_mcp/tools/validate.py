"""Validate content tool - run the validation pipeline on proposed content.

CRITICAL: Return value semantics
    - success=True when the content passes every check
    - success=False when any check reports an issue (the report lists them)
    - error_type is always set when success=False
"""

from pathlib import Path
from typing import Any, Dict

from ..models import ErrorType
from ..scanner import scan_blocks
from ..utils import read_text_file
from ..validation import format_validation_report, validate_staged_file


def validate_content(file_path: str, new_content: str) -> Dict[str, Any]:
    """Validate proposed content for a file (read-only).

    When the file exists, its current segments are used for the structural
    integrity check; for a new path only the content checks run.

    Args:
        file_path: Path the content is meant for
        new_content: Proposed complete file content

    Returns:
        Dict:
            {
                "success": bool,
                "file_path": str,
                "passed": bool,
                "issues": [{"kind", "message", "line", "snippet"}],
                "report": str,          # only when issues were found
                "error_type": str       # only when success=False
            }

    Example:
        >>> result = validate_content("src/app.ts", "function a() {\\n")
        >>> result["issues"][0]["kind"]
        'bracket_balance'
    """
    path = Path(file_path)
    before_segments = None

    if path.exists() or path.is_symlink():
        current, error = read_text_file(path)
        if error:
            return {"success": False, "file_path": str(path), **error}
        before_segments = scan_blocks(current).segments

    report = validate_staged_file(file_path, new_content, before_segments)
    result: Dict[str, Any] = {
        "success": report.passed,
        "file_path": str(path),
        "passed": report.passed,
        "issues": [issue.model_dump(mode="json") for issue in report.issues],
    }
    if not report.passed:
        result["report"] = format_validation_report([report])
        result["error_type"] = ErrorType.VALIDATION_FAILED.value
    return result
