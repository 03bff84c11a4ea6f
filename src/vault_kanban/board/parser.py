"""Markdown task extraction.

Turns board file text into an ordered list of ParsedTask records. The parser
is a single top-to-bottom scan with two pieces of state:

- whether we are inside a YAML frontmatter block (only honoured before the
  first task line, toggled by a line that is exactly ``---``),
- the task currently open for sub-item collection.

It never fails: lines it does not understand are simply not tasks.

Public API:
    - ParsedTask: One checkbox line with its derived fields
    - parse_tasks: Extract tasks from file text
    - extract_urls: Markdown-link targets, then bare URLs, de-duplicated
    - detect_priority: First configured priority whose emoji appears
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from vault_kanban.board.markers import TASK_PATTERN, marker_fields, strip_marker
from vault_kanban.core.config import DEFAULT_PRIORITIES, PriorityDef

logger = logging.getLogger(__name__)

__all__ = [
    "ParsedTask",
    "detect_priority",
    "extract_urls",
    "parse_tasks",
]

_BARE_URL_PATTERN = re.compile(r"https?://[^\s)\]]+")
_MD_LINK_PATTERN = re.compile(r"\[([^\]]*)\]\((https?://[^)]+)\)")
_WHITESPACE_RUN = re.compile(r"\s{2,}")

FRONTMATTER_FENCE = "---"


@dataclass
class ParsedTask:
    """A checkbox line extracted from a board file.

    Attributes:
        title: Display title, marker and priority emoji removed.
        raw_line: The full original line text.
        line_number: 1-based line number in the file.
        is_done: Whether the checkbox is ticked.
        priority: Detected priority id, or None.
        urls: Link targets found in the title.
        sub_items: Stripped text of indented lines following the task.
        card_id: Stable ID from an embedded marker, or None.
        column_hint: Column name from the marker's ``kb:col`` field, or None.

    """

    title: str
    raw_line: str
    line_number: int
    is_done: bool
    priority: str | None = None
    urls: list[str] = field(default_factory=list)
    sub_items: list[str] = field(default_factory=list)
    card_id: str | None = None
    column_hint: str | None = None


def extract_urls(text: str) -> list[str]:
    """Collect markdown-link targets, then bare URLs not already collected.

    Examples:
        >>> extract_urls("See [docs](https://a.example/x) and https://b.example")
        ['https://a.example/x', 'https://b.example']

    """
    urls: list[str] = []
    for match in _MD_LINK_PATTERN.finditer(text):
        if match.group(2) not in urls:
            urls.append(match.group(2))
    for match in _BARE_URL_PATTERN.finditer(text):
        if match.group(0) not in urls:
            urls.append(match.group(0))
    return urls


def detect_priority(text: str, priorities: Sequence[PriorityDef]) -> PriorityDef | None:
    """Return the first configured priority whose emoji occurs in ``text``."""
    for priority in priorities:
        if priority.emoji in text:
            return priority
    return None


def _build_task(line: str, line_number: int, priorities: Sequence[PriorityDef]) -> ParsedTask | None:
    match = TASK_PATTERN.match(line)
    if not match:
        return None

    title_text = match.group(3).rstrip()
    card_id, column_hint = marker_fields(title_text)
    title = strip_marker(title_text)

    priority = detect_priority(title, priorities)
    if priority is not None:
        title = _WHITESPACE_RUN.sub(" ", title.replace(priority.emoji, "")).strip()

    return ParsedTask(
        title=title,
        raw_line=line,
        line_number=line_number,
        is_done=match.group(2).lower() == "x",
        priority=priority.id if priority else None,
        urls=extract_urls(title),
        card_id=card_id,
        column_hint=column_hint,
    )


def parse_tasks(
    content: str,
    priorities: Sequence[PriorityDef] = DEFAULT_PRIORITIES,
) -> list[ParsedTask]:
    """Extract checkbox tasks from markdown text.

    Args:
        content: Full file text.
        priorities: Board priority definitions, in precedence order.

    Returns:
        Tasks in file order. Empty for empty or task-free input.

    """
    tasks: list[ParsedTask] = []
    current: ParsedTask | None = None
    in_frontmatter = False
    found_task = False

    for index, line in enumerate(content.split("\n")):
        stripped = line.strip()

        if stripped == FRONTMATTER_FENCE and not found_task:
            in_frontmatter = not in_frontmatter
            continue

        task = _build_task(line, index + 1, priorities)

        if in_frontmatter:
            if task is None:
                continue
            # Unterminated frontmatter: a task line ends it
            logger.debug("Task on line %d closed unterminated frontmatter", index + 1)
            in_frontmatter = False

        if task is not None:
            if current is not None:
                tasks.append(current)
            current = task
            found_task = True
            continue

        if current is None or not stripped:
            continue

        if line.startswith("\t") or line.startswith("  "):
            current.sub_items.append(stripped)
        else:
            tasks.append(current)
            current = None

    if current is not None:
        tasks.append(current)
    return tasks
