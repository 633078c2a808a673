"""Data models for the BlockPatch MCP Server.

This module defines the Pydantic models shared by the segment scanner, the two
patch formats and the validation pipeline. Every model is plain data: values
are created per patch attempt and discarded once the caller has consumed them.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, model_validator


class ErrorType(str, Enum):
    """Standard error types reported in tool and workflow results.

    File Errors (8):
        FILE_NOT_FOUND: File doesn't exist
        PERMISSION_DENIED: Cannot read/write file
        ENCODING_ERROR: File is not valid UTF-8
        IO_ERROR: General I/O error
        SYMLINK_ERROR: Target is a symlink (security policy)
        BINARY_FILE: Target is a binary file (not supported)
        DISK_SPACE_ERROR: Insufficient disk space
        RESOURCE_LIMIT: File too large

    Engine Errors (5):
        SEARCH_NOT_FOUND: A legacy SEARCH block matched nothing
        PATCH_TARGET_ERROR: A segment key does not exist in the file
        PATCH_CONFLICT: Two block operations touch overlapping lines
        VALIDATION_FAILED: Proposed content failed the validation pipeline
        SCOPE_VIOLATION: Target path is outside the allowed set or root
    """

    # File errors
    FILE_NOT_FOUND = "file_not_found"
    PERMISSION_DENIED = "permission_denied"
    ENCODING_ERROR = "encoding_error"
    IO_ERROR = "io_error"
    SYMLINK_ERROR = "symlink_error"
    BINARY_FILE = "binary_file"
    DISK_SPACE_ERROR = "disk_space_error"
    RESOURCE_LIMIT = "resource_limit"

    # Engine errors
    SEARCH_NOT_FOUND = "search_not_found"
    PATCH_TARGET_ERROR = "patch_target_error"
    PATCH_CONFLICT = "patch_conflict"
    VALIDATION_FAILED = "validation_failed"
    SCOPE_VIOLATION = "scope_violation"


class SegmentKind(str, Enum):
    """Structural kind of a scanned segment."""

    PREAMBLE = "preamble"
    FUNCTION = "function"
    CLASS = "class"
    CLASS_METHOD = "class_method"
    GAP = "gap"


class Segment(BaseModel):
    """A keyed line range of a source file.

    Attributes:
        key: Unique key within the file (``preamble``, ``fn:name``,
            ``class:Name``, ``class:Name#method`` or ``gap:n``)
        kind: Structural kind
        start_line: First line, 1-indexed
        end_line: Last line, 1-indexed and inclusive
        name: Declared name (functions, classes, methods)
        class_name: Owning class (methods only)
    """

    key: str = Field(..., min_length=1, description="Unique segment key")
    kind: SegmentKind = Field(..., description="Structural kind")
    start_line: int = Field(..., ge=1, description="First line (1-indexed)")
    end_line: int = Field(..., ge=1, description="Last line (inclusive)")
    name: Optional[str] = Field(None, description="Declared name")
    class_name: Optional[str] = Field(None, description="Owning class name")

    @model_validator(mode="after")
    def _check_range(self) -> "Segment":
        if self.end_line < self.start_line:
            raise ValueError(
                f"end_line ({self.end_line}) precedes start_line ({self.start_line})"
            )
        return self


class ScanResult(BaseModel):
    """Scanner output: segments ordered by start line."""

    segments: List[Segment] = Field(default_factory=list)
    preamble_end_line: int = Field(0, ge=0, description="Last preamble line (0 = none)")


class EditOperation(BaseModel):
    """One SEARCH/REPLACE pair of the legacy edit format."""

    search: str
    replace: str


class ParsedEdit(BaseModel):
    """All legacy edits addressed to one file, in encounter order."""

    path: str
    edits: List[EditOperation] = Field(default_factory=list)


class EditApplyResult(BaseModel):
    """Outcome of applying a file's legacy edits.

    ``content`` carries the text with every matched edit applied so failures
    can be diagnosed; it must never be written when ``success`` is False.
    """

    path: str
    success: bool
    content: Optional[str] = None
    failed_edits: Optional[List[int]] = None
    errors: Optional[List[str]] = None


class BlockOpType(str, Enum):
    """Operation types of the segment-addressed (RTDIFF/1) format."""

    BLOCK_REPLACE = "BLOCK_REPLACE"
    BLOCK_INSERT_AFTER = "BLOCK_INSERT_AFTER"
    BLOCK_DELETE = "BLOCK_DELETE"
    PREAMBLE_REPLACE = "PREAMBLE_REPLACE"


class BlockOperation(BaseModel):
    """A single block operation addressed by segment key."""

    type: BlockOpType
    file_path: str
    segment_key: str
    content: Optional[str] = None

    @model_validator(mode="after")
    def _check_content(self) -> "BlockOperation":
        if self.type != BlockOpType.BLOCK_DELETE and self.content is None:
            raise ValueError(f"{self.type.value} for '{self.segment_key}' requires content")
        return self


class NewFileBlock(BaseModel):
    """A ``FILE: path`` block carrying complete content for a new file."""

    path: str
    content: str
    language: str = "text"


class ParsedBlockDiff(BaseModel):
    """Parser output for an RTDIFF/1 response."""

    operations: List[BlockOperation] = Field(default_factory=list)
    new_files: List[NewFileBlock] = Field(default_factory=list)


class AgentOutput(BaseModel):
    """Parser output for a legacy response: new files plus EDIT blocks."""

    files: List[NewFileBlock] = Field(default_factory=list)
    edits: List[ParsedEdit] = Field(default_factory=list)


class PatchResult(BaseModel):
    """Outcome of applying a file's block operations."""

    path: str
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None


class IssueKind(str, Enum):
    """Categories reported by the validation pipeline."""

    BRACKET_BALANCE = "bracket_balance"
    ARTIFACT_DETECTION = "artifact_detection"
    DUPLICATE_IMPORT = "duplicate_import"
    STRUCTURAL_INTEGRITY = "structural_integrity"


class ValidationIssue(BaseModel):
    """One problem found in proposed file content.

    Attributes:
        kind: Issue category
        message: Human readable description
        line: 1-based line number, or 0 for whole-file issues
        snippet: Offending text or a short summary
    """

    kind: IssueKind
    message: str
    line: int = Field(0, ge=0, description="Line number (0 = whole file)")
    snippet: str = ""


class ValidationReport(BaseModel):
    """All issues found for one staged file."""

    path: str
    issues: List[ValidationIssue] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def passed(self) -> bool:
        return not self.issues
