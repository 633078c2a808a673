"""Tests for whitespace-normalized matching."""

import pytest

from blockpatch_mcp.fuzzy import NormalizedText, fuzzy_find, normalize_whitespace


class TestNormalizeWhitespace:
    """normalize_whitespace function."""

    def test_trims_lines_and_collapses_runs(self):
        """Each line is trimmed and inner whitespace runs become one space."""
        assert normalize_whitespace("  a   b  \n\tc\t d") == "a b\nc d"

    def test_keeps_line_structure(self):
        """Line breaks survive normalization, blank lines included."""
        assert normalize_whitespace("a\n\n  \nb") == "a\n\n\nb"


class TestNormalizedText:
    """Offset table between normalized and original text."""

    def test_text_matches_normalize_whitespace(self):
        """NormalizedText.text equals normalize_whitespace output."""
        original = "  if (x)   {\n\t\treturn  1;\n  }\n"
        assert NormalizedText(original).text == normalize_whitespace(original)

    def test_offsets_point_at_source_characters(self):
        """Each normalized character maps back to a source character."""
        original = "  ab  c"
        normalized = NormalizedText(original)
        assert normalized.text == "ab c"
        assert [original[i] for i in normalized.offsets] == ["a", "b", " ", "c"]

    def test_newline_offsets(self):
        """Newlines map back to the original newline."""
        original = "a  \n  b"
        normalized = NormalizedText(original)
        assert normalized.text == "a\nb"
        assert original[normalized.offsets[1]] == "\n"
        assert original[normalized.offsets[2]] == "b"

    def test_original_span(self):
        """A normalized match maps back to the original spelling."""
        original = "x = [  1,   2 ];"
        normalized = NormalizedText(original)
        start = normalized.find("1, 2")
        span = normalized.original_span(start, start + len("1, 2"))
        assert original[span[0]:span[1]] == "1,   2"

    def test_original_span_rejects_empty(self):
        """An empty span raises ValueError."""
        with pytest.raises(ValueError):
            NormalizedText("abc").original_span(1, 1)

    def test_original_span_rejects_out_of_range(self):
        """A span past the end raises ValueError."""
        with pytest.raises(ValueError):
            NormalizedText("abc").original_span(0, 10)

    def test_normalized_index(self):
        """Original offsets inside a whitespace run map to one normalized index."""
        original = "a    b"
        normalized = NormalizedText(original)
        assert normalized.normalized_index(0) == 0
        assert normalized.normalized_index(3) == 1
        assert normalized.normalized_index(5) == 2


class TestFuzzyFind:
    """fuzzy_find function."""

    def test_extra_internal_whitespace(self):
        """Extra spaces inside a line still match."""
        content = "  const   x = 1;\n  const   y = 2;\n"
        span = fuzzy_find(content, "const x = 1;")
        assert span is not None
        assert content[span[0]:span[1]] == "const   x = 1;"

    def test_different_indentation_multiline(self):
        """A multi-line SEARCH matches despite different indentation."""
        content = "function f() {\n    if (a) {\n        go();\n    }\n}\n"
        span = fuzzy_find(content, "if (a) {\n  go();\n}")
        assert content[span[0]:span[1]] == "if (a) {\n        go();\n    }"

    def test_surrounding_indentation_preserved(self):
        """The span excludes leading indentation and the trailing newline."""
        content = "    call( a );\n"
        start, end = fuzzy_find(content, "call( a );")
        assert content[:start] == "    "
        assert content[end:] == "\n"

    def test_not_found(self):
        """Different text does not match."""
        assert fuzzy_find("const a = 1;", "const b = 1;") is None

    def test_blank_search(self):
        """A whitespace-only SEARCH never matches."""
        assert fuzzy_find("anything", "   \n  ") is None

    def test_first_occurrence_wins(self):
        """The first normalized occurrence is returned."""
        content = "x  = 1;\nx = 1;\n"
        assert fuzzy_find(content, "x = 1;") == (0, 7)
