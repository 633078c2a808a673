"""Integration tests for the stage / validate / commit workflow.

This module runs whole agent responses through workflows.py against a
temporary project tree:
1. Legacy and RTDIFF/1 responses applied end to end
2. Validation failures and patch errors blocking the whole batch
3. Scope and project-root filtering
4. Commit rollback when a write fails mid-batch
"""

import pytest

from blockpatch_mcp import workflows
from blockpatch_mcp.workflows import (
    PatchFormat,
    apply_agent_output,
    commit_staged,
    detect_format,
    stage_agent_output,
)

APP_TS = """import { Logger } from "./logger";

export class App {
  start() {
    return "started";
  }
}

export function main(): void {
  new App().start();
}
"""

UTIL_TS = """export function add(a: number, b: number): number {
  return a + b;
}
"""


@pytest.fixture
def project(tmp_path):
    """A small project with two source files."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "app.ts").write_text(APP_TS)
    (src / "util.ts").write_text(UTIL_TS)
    return tmp_path


def backups_in(directory):
    return [p.name for p in directory.rglob("*") if ".backup." in p.name]


# ============================================================================
# Format detection
# ============================================================================


class TestDetectFormat:
    """Format detection from the response text."""

    def test_rtdiff_header(self):
        """An RTDIFF/1 header selects the block format."""
        assert detect_format("RTDIFF/1\n\nFILE: a.ts\n```ts\nx\n```") is PatchFormat.RTDIFF

    def test_block_operation_without_header(self):
        """A block operation line alone selects the block format."""
        assert detect_format("BLOCK_DELETE: a.ts :: fn:x\n") is PatchFormat.RTDIFF

    def test_legacy(self):
        """EDIT blocks select the legacy format."""
        assert detect_format("EDIT: a.ts\n<<<< SEARCH\na\n>>>> REPLACE\nb\n====") is PatchFormat.LEGACY

    def test_plain_text_is_legacy(self):
        """Anything else falls back to legacy."""
        assert detect_format("No changes.") is PatchFormat.LEGACY


# ============================================================================
# Legacy responses
# ============================================================================


class TestLegacyWorkflow:
    """EDIT and FILE blocks applied end to end."""

    def test_edit_and_new_file(self, project):
        """An edit and a new file are written together."""
        response = (
            "EDIT: src/util.ts\n<<<< SEARCH\n  return a + b;\n>>>> REPLACE\n  return b + a;\n====\n\n"
            "FILE: src/lib/new.ts\n```typescript\nexport const answer = 42;\n```\n"
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is True
        assert result["format"] == "legacy"
        assert result["written"] == ["src/util.ts", "src/lib/new.ts"]
        assert result["created"] == ["src/lib/new.ts"]
        assert result["message"] == "2 file(s) written"
        assert "return b + a;" in (project / "src" / "util.ts").read_text()
        assert (project / "src" / "lib" / "new.ts").read_text() == "export const answer = 42;\n"

    def test_backups_removed_after_commit(self, project):
        """Backups are cleaned up after a successful commit."""
        response = "EDIT: src/util.ts\n<<<< SEARCH\n  return a + b;\n>>>> REPLACE\n  return b + a;\n====\n"
        assert apply_agent_output(str(project), response)["success"] is True
        assert backups_in(project) == []

    def test_one_failed_search_blocks_every_file(self, project):
        """A failed SEARCH in one file stops the whole batch."""
        response = (
            "EDIT: src/util.ts\n<<<< SEARCH\n  return a + b;\n>>>> REPLACE\n  return b + a;\n====\n\n"
            "EDIT: src/app.ts\n<<<< SEARCH\nthis line is not there\n>>>> REPLACE\nx\n====\n"
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is False
        assert result["error_type"] == "search_not_found"
        assert [failure["path"] for failure in result["apply_errors"]] == ["src/app.ts"]
        assert "1 file(s) could not be patched:" in result["error"]
        assert (project / "src" / "util.ts").read_text() == UTIL_TS

    def test_clean_and_unbalanced_files(self, project):
        """One good file and one broken file: nothing is written."""
        response = (
            "FILE: src/clean.ts\n```ts\nexport function ok() {\n  return 1;\n}\n```\n\n"
            "FILE: src/broken.ts\n```ts\nexport function broken() {\n  return 1;\n```\n"
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is False
        assert result["error_type"] == "validation_failed"
        assert [report["path"] for report in result["reports"]] == ["src/clean.ts", "src/broken.ts"]
        assert result["reports"][0]["passed"] is True
        assert result["reports"][1]["passed"] is False
        assert "VALIDATION FAILED - 1 file(s) have issues" in result["error"]
        assert result["written"] == []
        assert not (project / "src" / "clean.ts").exists()
        assert not (project / "src" / "broken.ts").exists()

    def test_fuzzy_edit_through_workflow(self, project):
        """A whitespace-normalized match is applied end to end."""
        response = "EDIT: src/util.ts\n<<<< SEARCH\nreturn   a + b;\n>>>> REPLACE\nreturn a - b;\n====\n"

        result = apply_agent_output(str(project), response)

        assert result["success"] is True
        assert "  return a - b;" in (project / "src" / "util.ts").read_text()

    def test_missing_target_file(self, project):
        """An edit for a missing file is reported as file_not_found."""
        response = "EDIT: src/missing.ts\n<<<< SEARCH\na\n>>>> REPLACE\nb\n====\n"
        result = apply_agent_output(str(project), response)
        assert result["success"] is False
        assert result["error_type"] == "file_not_found"


# ============================================================================
# RTDIFF/1 responses
# ============================================================================


class TestBlockDiffWorkflow:
    """RTDIFF/1 operations applied end to end."""

    def test_replace_and_insert(self, project):
        """Replace and insert in one file land together."""
        response = (
            "RTDIFF/1\n\n"
            "BLOCK_REPLACE: src/util.ts :: fn:add\n---\n"
            "export function add(a: number, b: number): number {\n  return b + a;\n}\n---\n\n"
            "BLOCK_INSERT_AFTER: src/util.ts :: fn:add\n---\n"
            "export function sub(a: number, b: number): number {\n  return a - b;\n}\n---\n"
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is True
        assert result["format"] == "rtdiff"
        assert (project / "src" / "util.ts").read_text() == (
            "export function add(a: number, b: number): number {\n  return b + a;\n}\n\n"
            "export function sub(a: number, b: number): number {\n  return a - b;\n}\n"
        )

    def test_preamble_replace(self, project):
        """The preamble is swapped and the class kept."""
        response = (
            "RTDIFF/1\n\nPREAMBLE_REPLACE: src/app.ts\n---\n"
            'import { Logger } from "./logger";\nimport { Config } from "./config";\n\n---\n'
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is True
        content = (project / "src" / "app.ts").read_text()
        assert content.startswith('import { Logger } from "./logger";\nimport { Config } from "./config";\n\nexport class App')

    def test_unknown_segment_blocks_batch(self, project):
        """An unknown key in one file stops the whole batch."""
        response = (
            "RTDIFF/1\n\n"
            "BLOCK_DELETE: src/util.ts :: fn:add\n\n"
            "BLOCK_DELETE: src/app.ts :: fn:doesNotExist\n"
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is False
        assert result["error_type"] == "patch_target_error"
        assert 'segment "fn:doesNotExist" not found in src/app.ts' in result["error"]
        assert (project / "src" / "util.ts").read_text() == UTIL_TS

    def test_method_demotion_rejected(self, project):
        """Moving a method out of its class fails validation."""
        response = (
            "RTDIFF/1\n\n"
            "BLOCK_DELETE: src/app.ts :: class:App#start\n\n"
            "BLOCK_INSERT_AFTER: src/app.ts :: fn:main\n---\n"
            "function start() {\n  return \"started\";\n}\n---\n"
        )

        result = apply_agent_output(str(project), response)

        assert result["success"] is False
        assert result["error_type"] == "validation_failed"
        assert "App#start" in result["error"]
        assert (project / "src" / "app.ts").read_text() == APP_TS

    def test_file_block_for_existing_file_checks_structure(self, project):
        """Overwriting a file with FILE still checks its classes."""
        response = "RTDIFF/1\n\nFILE: src/app.ts\n```ts\nexport function main(): void {\n}\n```\n"

        result = apply_agent_output(str(project), response)

        assert result["success"] is False
        assert "Class 'App' was removed" in result["error"]

    def test_dry_run_writes_nothing(self, project):
        """Dry run validates but leaves the project untouched."""
        response = "RTDIFF/1\n\nBLOCK_DELETE: src/util.ts :: fn:add\n"

        result = apply_agent_output(str(project), response, dry_run=True)

        assert result["success"] is True
        assert result["files"] == ["src/util.ts"]
        assert (project / "src" / "util.ts").read_text() == UTIL_TS


# ============================================================================
# Scope filtering
# ============================================================================


class TestScope:
    """Out-of-scope and root-escaping paths are dropped, not fatal."""

    def test_out_of_scope_file_dropped(self, project):
        """Out-of-scope files are rejected while the rest is written."""
        response = (
            "EDIT: src/util.ts\n<<<< SEARCH\n  return a + b;\n>>>> REPLACE\n  return b + a;\n====\n\n"
            "FILE: src/evil.ts\n```ts\nexport const evil = true;\n```\n"
        )

        result = apply_agent_output(str(project), response, allowed_files=["src/util.ts"])

        assert result["success"] is True
        assert result["written"] == ["src/util.ts"]
        assert [r["path"] for r in result["rejected"]] == ["src/evil.ts"]
        assert result["rejected"][0]["error_type"] == "scope_violation"
        assert not (project / "src" / "evil.ts").exists()

    def test_new_prefix_allows_creation(self, project):
        """NEW: in the scope allows a file to be created."""
        response = "FILE: src/fresh.ts\n```ts\nexport const fresh = 1;\n```\n"
        result = apply_agent_output(str(project), response, allowed_files=["NEW:src/fresh.ts"])
        assert result["created"] == ["src/fresh.ts"]

    def test_root_escape_dropped(self, project):
        """A path escaping the root is rejected and never written."""
        response = "FILE: ../outside.ts\n```ts\nexport const x = 1;\n```\n"

        result = apply_agent_output(str(project), response)

        assert result["success"] is True
        assert result["written"] == []
        assert result["rejected"][0]["error_type"] == "scope_violation"
        assert not (project.parent / "outside.ts").exists()


# ============================================================================
# Staging and commit
# ============================================================================


class TestStageAndCommit:
    """Staging and committing as separate steps."""

    def test_stage_does_not_write(self, project):
        """Staging returns the content and segments without writing."""
        response = "RTDIFF/1\n\nBLOCK_DELETE: src/util.ts :: fn:add\n"

        stage = stage_agent_output(str(project), response)

        assert stage["passed"] is True
        assert stage["staged"] == {"src/util.ts": ""}
        assert [s.key for s in stage["before_segments"]["src/util.ts"]] == ["fn:add"]
        assert (project / "src" / "util.ts").read_text() == UTIL_TS

    def test_forced_format(self, project):
        """A forced format overrides detection."""
        response = "EDIT: src/util.ts\n<<<< SEARCH\n  return a + b;\n>>>> REPLACE\n  return 0;\n====\n"
        stage = stage_agent_output(str(project), response, patch_format=PatchFormat.RTDIFF)
        assert stage["format"] == "rtdiff"
        assert stage["staged"] == {}

    def test_commit_rolls_back_on_write_failure(self, project, monkeypatch):
        """A failed write restores written files and removes created ones."""
        real_write = workflows.atomic_write_text

        def failing_write(target, content):
            if target.name == "util.ts":
                raise OSError("No space left on device")
            real_write(target, content)

        monkeypatch.setattr(workflows, "atomic_write_text", failing_write)
        staged = {
            "src/app.ts": "// rewritten\n",
            "src/created.ts": "export {};\n",
            "src/util.ts": "// rewritten\n",
        }

        result = commit_staged(str(project), staged)

        assert result["success"] is False
        assert result["phase"] == "write"
        assert result["failed_at"] == "src/util.ts"
        assert result["error_type"] == "io_error"
        assert result["rolled_back"] is True
        assert (project / "src" / "app.ts").read_text() == APP_TS
        assert (project / "src" / "util.ts").read_text() == UTIL_TS
        assert not (project / "src" / "created.ts").exists()
        assert backups_in(project) == []

    def test_commit_reports_backup_failure(self, project, monkeypatch):
        """A backup failure aborts before anything is written."""
        monkeypatch.setattr(
            workflows,
            "backup_file",
            lambda path: {"success": False, "error": "disk full", "error_type": "disk_space_error"},
        )

        result = commit_staged(str(project), {"src/util.ts": "x\n"})

        assert result["success"] is False
        assert result["phase"] == "backup"
        assert result["error_type"] == "disk_space_error"
        assert (project / "src" / "util.ts").read_text() == UTIL_TS

    def test_no_changes(self, project):
        """A response without changes is a successful no-op."""
        result = apply_agent_output(str(project), "Looks good to me.")
        assert result["success"] is True
        assert result["files"] == []
