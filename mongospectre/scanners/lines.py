"""
Logical line reconstruction.

Multi-line calls are rebuilt by concatenating physical lines until the
parenthesis balance returns to zero. This is deliberately not a parser:
it trades accuracy for robustness, and languages whose calls are not
parenthesized (block-indented DSLs) are not joined at all.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

from mongospectre.languages import SourceLanguage

if TYPE_CHECKING:
    from typing import Iterable, Type

logger = logging.getLogger(__name__)

DEFAULT_MAX_JOIN_LINES = 10


class LogicalLine(NamedTuple):
    """A joined line and the 1-based number of its first physical line."""

    line: int
    text: str


def paren_balance(line: str, language: Type[SourceLanguage] = SourceLanguage) -> int:
    """
    Net count of "(" minus ")" on one physical line.

    Parentheses inside string literals and after a line comment marker are
    ignored. Backslash escapes a quote except inside verbatim strings.

    Args:
        line: Physical source line.
        language: Lexical rules for the file's language.

    Returns:
        Balance; positive when the line leaves calls open.
    """
    balance = 0
    quote = ""
    verbatim = False
    escaped = False
    i = 0
    n = len(line)

    while i < n:
        c = line[i]
        if quote:
            if verbatim:
                if c == quote:
                    quote = ""
            elif escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == quote:
                quote = ""
            i += 1
            continue

        if any(line.startswith(marker, i) for marker in language.line_comments):
            break

        if c in "\"'`":
            quote = c
            verbatim = c in language.verbatim_quotes or (
                c == '"'
                and bool(language.verbatim_prefix)
                and i > 0
                and line[i - 1] == language.verbatim_prefix
            )
        elif c == "(":
            balance += 1
        elif c == ")":
            balance -= 1
        i += 1

    return balance


def join_continuation_lines(
    lines: Iterable[str],
    language: Type[SourceLanguage] = SourceLanguage,
    max_lines: int = DEFAULT_MAX_JOIN_LINES,
) -> list[LogicalLine]:
    """
    Join physical lines into logical lines by parenthesis balance.

    A logical line ends when the running balance drops to zero or below,
    or when max_lines physical lines have been joined; in the latter case
    the buffer is flushed and joining restarts with the next line.

    Args:
        lines: Physical lines without trailing newlines.
        language: Lexical rules for the file's language.
        max_lines: Cap on physical lines per logical line.

    Returns:
        Logical lines, each numbered by its first physical line.
    """
    out: list[LogicalLine] = []
    buf: list[str] = []
    start = 0
    balance = 0

    for number, text in enumerate(lines, start=1):
        if not buf:
            start = number
            balance = 0
        buf.append(text.strip() if buf else text)
        balance += paren_balance(text, language)
        if balance <= 0 or len(buf) >= max_lines:
            out.append(LogicalLine(start, " ".join(buf)))
            buf = []

    if buf:
        out.append(LogicalLine(start, " ".join(buf)))
    return out
