"""String- and comment-aware line lexer for brace-delimited source text.

The lexer does not tokenize. It only tracks enough state to tell active code
apart from string literals and comments, and to keep a running ``{}`` depth.
State is an immutable record threaded through :func:`lex_line`, so scanning a
file is a fold over its lines and two files never share anything.

Rules:
    - ``'``, ``"`` and backtick open a string that the same character closes
    - inside a string a backslash escapes the next character; a trailing
      backslash escapes the newline and the string stays open
    - ``//`` ends the line, ``/* ... */`` may span lines
    - outside strings and comments ``{`` and ``}`` move the depth
"""

from enum import Enum
from typing import NamedTuple


class QuoteMode(str, Enum):
    """Which string literal, if any, the lexer is inside."""

    NONE = "none"
    SINGLE = "single"
    DOUBLE = "double"
    TEMPLATE = "template"


_OPENING_QUOTES = {
    "'": QuoteMode.SINGLE,
    '"': QuoteMode.DOUBLE,
    "`": QuoteMode.TEMPLATE,
}

_CLOSING_QUOTE = {
    QuoteMode.SINGLE: "'",
    QuoteMode.DOUBLE: '"',
    QuoteMode.TEMPLATE: "`",
}


class LexState(NamedTuple):
    """Lexer state carried from one line to the next."""

    depth: int = 0
    quote: QuoteMode = QuoteMode.NONE
    in_block_comment: bool = False
    escaped: bool = False

    @property
    def in_code(self) -> bool:
        """True when the next character would be read as active code."""
        return self.quote is QuoteMode.NONE and not self.in_block_comment


class LexedLine(NamedTuple):
    """Result of lexing one line."""

    state: LexState
    code: str
    peak_depth: int


def lex_line(state: LexState, line: str) -> LexedLine:
    """Advance ``state`` over one line.

    Args:
        state: State at the start of the line
        line: Line text without its trailing newline

    Returns:
        LexedLine with the state after the line, the active code characters
        of the line (strings and comments removed) and the highest depth
        reached anywhere on the line.
    """
    depth, quote, in_block_comment, escaped = state
    peak = depth
    code = []
    i = 0
    n = len(line)

    while i < n:
        ch = line[i]
        nxt = line[i + 1] if i + 1 < n else ""

        if escaped:
            escaped = False
        elif quote is not QuoteMode.NONE:
            if ch == "\\":
                escaped = True
            elif ch == _CLOSING_QUOTE[quote]:
                quote = QuoteMode.NONE
        elif in_block_comment:
            if ch == "*" and nxt == "/":
                in_block_comment = False
                i += 1
        elif ch == "/" and nxt == "/":
            break
        elif ch == "/" and nxt == "*":
            in_block_comment = True
            i += 1
        elif ch in _OPENING_QUOTES:
            quote = _OPENING_QUOTES[ch]
        else:
            code.append(ch)
            if ch == "{":
                depth += 1
                peak = max(peak, depth)
            elif ch == "}":
                depth -= 1
        i += 1

    # a pending escape consumed the newline
    return LexedLine(LexState(depth, quote, in_block_comment, False), "".join(code), peak)
