"""Whitespace-normalized text with a mapping back to original offsets.

Fuzzy matching searches a normalized copy of the file (each line trimmed,
internal whitespace runs collapsed to one space), but the replacement must be
spliced into the untouched original. :class:`NormalizedText` keeps, for every
normalized character, the offset of the original character it came from, so
a match span can be translated in either direction without re-walking the two
strings in lock-step.
"""

import bisect
from typing import List, Optional, Tuple


def normalize_whitespace(text: str) -> str:
    """Trim each line and collapse whitespace runs to a single space."""
    return "\n".join(" ".join(line.split()) for line in text.split("\n"))


class NormalizedText:
    """Normalized form of a text plus a per-character offset table.

    Attributes:
        original: The source text
        text: The normalized text (equal to ``normalize_whitespace(original)``)
        offsets: ``offsets[i]`` is the original index of ``text[i]``; a
            collapsed whitespace run maps to its first character
    """

    def __init__(self, original: str):
        self.original = original
        chars: List[str] = []
        offsets: List[int] = []

        line_start = 0
        for line_index, line in enumerate(original.split("\n")):
            if line_index > 0:
                # the newline that ended the previous line
                chars.append("\n")
                offsets.append(line_start - 1)

            stripped = line.strip()
            if stripped:
                begin = line_start + line.index(stripped[0])
                end = begin + len(stripped)
                pos = begin
                while pos < end:
                    ch = original[pos]
                    if ch.isspace():
                        chars.append(" ")
                        offsets.append(pos)
                        while pos < end and original[pos].isspace():
                            pos += 1
                    else:
                        chars.append(ch)
                        offsets.append(pos)
                        pos += 1

            line_start += len(line) + 1

        self.text = "".join(chars)
        self.offsets = offsets

    def find(self, pattern: str, start: int = 0) -> int:
        """Find a normalized ``pattern`` in the normalized text (-1 if absent)."""
        return self.text.find(pattern, start)

    def original_span(self, start: int, end: int) -> Tuple[int, int]:
        """Map a normalized span ``[start, end)`` to an original span.

        The original span starts at the first matched character's source and
        ends right after the last matched character's source, so whitespace
        inside the match is covered while indentation and trailing spaces
        around it are left in place.

        Raises:
            ValueError: If the span is empty or out of range
        """
        if not 0 <= start < end <= len(self.text):
            raise ValueError(f"Invalid normalized span [{start}, {end})")
        return self.offsets[start], self.offsets[end - 1] + 1

    def normalized_index(self, original_index: int) -> int:
        """Map an original offset to the index of the normalized character
        that covers it (the nearest one at or before it)."""
        if not self.offsets:
            return 0
        position = bisect.bisect_right(self.offsets, original_index) - 1
        return max(position, 0)


def fuzzy_find(content: str, search: str) -> Optional[Tuple[int, int]]:
    """Locate ``search`` in ``content`` ignoring whitespace differences.

    Args:
        content: Text to search in
        search: Text to look for

    Returns:
        ``(start, end)`` offsets into ``content`` or None when the normalized
        pattern is empty or not present

    Example:
        >>> fuzzy_find("if (x)  {\\n    go();\\n}", "if (x) {\\n  go();")
        (0, 19)
    """
    pattern = normalize_whitespace(search)
    if not pattern:
        return None
    normalized = NormalizedText(content)
    index = normalized.find(pattern)
    if index == -1:
        return None
    return normalized.original_span(index, index + len(pattern))
