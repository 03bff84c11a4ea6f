"""Identity markers and shared line-matching helpers.

A task line carries its stable identity in a trailing HTML comment::

    - [ ] Ship release <!-- kb:id=ab12cd34 -->
    - [ ] Review PR <!-- kb:id=0f9e8d7c kb:col=In+Progress -->

The optional ``kb:col`` field records the card's column (spaces encoded as
``+``) so placement can be recovered if the sidecar store is lost.

Everything here is pure string manipulation used by both the parser and the
two sync directions.
"""

from __future__ import annotations

import re

__all__ = [
    "CHECKBOX_PATTERN",
    "MARKER_PATTERN",
    "TASK_PATTERN",
    "decode_column",
    "encode_column",
    "format_marker",
    "inject_card_id",
    "marker_fields",
    "marker_id",
    "normalize_task_text",
    "normalize_title",
    "preview",
    "set_column_hint",
    "split_eol",
    "strip_marker",
]

# Checkbox list item: indent, "- [ ]" / "- [x]" / "- [X]", whitespace, title
TASK_PATTERN = re.compile(r"^(\s*)- \[([ xX])\]\s+(.*)")

# Same shape split around the mark character, for in-place flips
CHECKBOX_PATTERN = re.compile(r"^(\s*- \[)([ xX])(\]\s.*)$", re.DOTALL)

# Loose id charset so malformed ids can be located and replaced
MARKER_PATTERN = re.compile(r"<!--\s*kb:id=([A-Za-z0-9_-]+)(?:\s+kb:col=(\S+?))?\s*-->")

_WHITESPACE_RUN = re.compile(r"\s+")
_CHECKBOX_PREFIX = re.compile(r"^\s*- \[[ xX]\]\s*")


def encode_column(column: str) -> str:
    """Encode a column name for the marker (spaces become ``+``)."""
    return column.replace(" ", "+")


def decode_column(value: str) -> str:
    """Decode a marker column hint back to a column name."""
    return value.replace("+", " ")


def format_marker(card_id: str, column: str | None = None) -> str:
    """Render a marker comment.

    Examples:
        >>> format_marker("ab12cd34")
        '<!-- kb:id=ab12cd34 -->'
        >>> format_marker("ab12cd34", "In Progress")
        '<!-- kb:id=ab12cd34 kb:col=In+Progress -->'

    """
    if column:
        return f"<!-- kb:id={card_id} kb:col={encode_column(column)} -->"
    return f"<!-- kb:id={card_id} -->"


def marker_fields(text: str) -> tuple[str | None, str | None]:
    """Extract ``(card_id, column)`` from the first marker in ``text``.

    Returns:
        Tuple of card id and decoded column hint, each None when absent.

    """
    match = MARKER_PATTERN.search(text)
    if not match:
        return None, None
    column = decode_column(match.group(2)) if match.group(2) else None
    return match.group(1), column


def marker_id(text: str) -> str | None:
    """Return the card id carried by ``text``, or None."""
    return marker_fields(text)[0]


def strip_marker(text: str) -> str:
    """Remove every marker from ``text`` and trim surrounding whitespace."""
    return MARKER_PATTERN.sub("", text).strip()


def split_eol(line: str) -> tuple[str, str]:
    """Split a trailing carriage return off a line produced by ``split("\\n")``."""
    if line.endswith("\r"):
        return line[:-1], "\r"
    return line, ""


def inject_card_id(line: str, card_id: str) -> str:
    """Stamp ``card_id`` into ``line``.

    An existing marker has its id replaced (column hint kept); otherwise a new
    marker is appended after the line's text.
    """
    body, eol = split_eol(line)
    match = MARKER_PATTERN.search(body)
    if match:
        column = decode_column(match.group(2)) if match.group(2) else None
        body = body[: match.start()] + format_marker(card_id, column) + body[match.end() :]
        return body + eol
    return f"{body.rstrip()} {format_marker(card_id)}{eol}"


def set_column_hint(line: str, column: str) -> str:
    """Inject or replace the ``kb:col`` field of the marker on ``line``.

    The identity portion is left untouched. Lines without a marker are
    returned unchanged; callers check ``marker_id`` first.
    """
    match = MARKER_PATTERN.search(line)
    if not match:
        return line
    return line[: match.start()] + format_marker(match.group(1), column) + line[match.end() :]


def normalize_title(title: str) -> str:
    """Trim, case-fold and collapse internal whitespace of a title."""
    return _WHITESPACE_RUN.sub(" ", title.strip()).casefold()


def normalize_task_text(line: str) -> str:
    """Normalise a task line for fuzzy comparison.

    Drops the checkbox prefix and any marker, then applies normalize_title(),
    so ``- [x] Buy  Milk`` and ``- [ ] buy milk <!-- kb:id=... -->`` compare
    equal.
    """
    body, _ = split_eol(line)
    return normalize_title(strip_marker(_CHECKBOX_PREFIX.sub("", body, count=1)))


def preview(text: str | None, limit: int = 60) -> str:
    """Truncate ``text`` for error messages."""
    if text is None:
        return "<none>"
    text = text.rstrip("\r")
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
