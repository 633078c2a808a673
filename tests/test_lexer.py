"""Tests for the string/comment aware line lexer."""

from blockpatch_mcp.lexer import LexState, QuoteMode, lex_line


def lex_all(text):
    state = LexState()
    results = []
    for line in text.split("\n"):
        lexed = lex_line(state, line)
        results.append(lexed)
        state = lexed.state
    return results


class TestDepth:
    """Brace depth tracking."""

    def test_open_and_close_on_one_line(self):
        """Depth returns to zero but the peak is recorded."""
        lexed = lex_line(LexState(), "function f() { return 1; }")
        assert lexed.state.depth == 0
        assert lexed.peak_depth == 1

    def test_depth_carries_across_lines(self):
        """Depth is carried from one line to the next."""
        results = lex_all("if (a) {\n  if (b) {\n  }\n}")
        assert [r.state.depth for r in results] == [1, 2, 1, 0]

    def test_initial_state(self):
        """A fresh state is at depth zero in active code."""
        state = LexState()
        assert state.depth == 0
        assert state.in_code is True


class TestStrings:
    """Braces inside string literals are ignored."""

    def test_double_quoted(self):
        """Braces in a double-quoted string are ignored and stripped from code."""
        lexed = lex_line(LexState(), 'const a = "{ not a brace }";')
        assert lexed.state.depth == 0
        assert "{" not in lexed.code

    def test_single_quoted(self):
        """Braces in a single-quoted string are ignored."""
        lexed = lex_line(LexState(), "const b = '{';")
        assert lexed.state.depth == 0

    def test_escaped_quote_does_not_close(self):
        """An escaped quote keeps the string open."""
        lexed = lex_line(LexState(), 'const s = "a \\" { b";')
        assert lexed.state.depth == 0
        assert lexed.state.quote is QuoteMode.NONE

    def test_template_spans_lines(self):
        """A template literal stays open across lines."""
        results = lex_all("const t = `line {\nstill { inside`;\n{")
        assert results[0].state.quote is QuoteMode.TEMPLATE
        assert results[1].state.quote is QuoteMode.NONE
        assert results[2].state.depth == 1

    def test_trailing_backslash_escape_ends_with_line(self):
        """A line-continuation backslash does not escape the next line's first char."""
        results = lex_all("const s = 'abc\\\n'; {")
        assert results[0].state.escaped is False
        assert results[1].state.quote is QuoteMode.NONE
        assert results[1].state.depth == 1


class TestComments:
    """Braces inside comments are ignored."""

    def test_line_comment(self):
        """A line comment is dropped from the code text."""
        lexed = lex_line(LexState(), "x = 1; // {")
        assert lexed.state.depth == 0
        assert lexed.code.strip() == "x = 1;"

    def test_block_comment_on_one_line(self):
        """Code after a closed block comment still counts."""
        lexed = lex_line(LexState(), "/* { */ {")
        assert lexed.state.depth == 1

    def test_block_comment_spans_lines(self):
        """A block comment stays open until its terminator."""
        results = lex_all("/* start {\n still { \n end */ }")
        assert results[0].state.in_block_comment is True
        assert results[0].state.in_code is False
        assert results[2].state.in_block_comment is False
        assert results[2].state.depth == -1

    def test_comment_markers_inside_strings(self):
        """// inside a string is not a comment."""
        lexed = lex_line(LexState(), 'const url = "http://x"; {')
        assert lexed.state.depth == 1
