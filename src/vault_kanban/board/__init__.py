"""Board file parsing and identity.

Public API:
    - ParsedTask: One checkbox line with its derived fields
    - parse_tasks: Extract tasks from markdown text
    - mint_card_id / allocate_unique_id: New stable IDs
    - compute_fingerprint: Legacy ID for unmarked lines
    - Marker helpers: format_marker, inject_card_id, set_column_hint, marker_id
"""

from .identity import (
    allocate_unique_id,
    compute_fingerprint,
    content_hash,
    is_valid_card_id,
    line_fingerprint,
    mint_card_id,
)
from .markers import (
    format_marker,
    inject_card_id,
    marker_fields,
    marker_id,
    normalize_task_text,
    normalize_title,
    set_column_hint,
    strip_marker,
)
from .parser import ParsedTask, detect_priority, extract_urls, parse_tasks

__all__ = [
    "ParsedTask",
    "allocate_unique_id",
    "compute_fingerprint",
    "content_hash",
    "detect_priority",
    "extract_urls",
    "format_marker",
    "inject_card_id",
    "is_valid_card_id",
    "line_fingerprint",
    "marker_fields",
    "marker_id",
    "mint_card_id",
    "normalize_task_text",
    "normalize_title",
    "parse_tasks",
    "set_column_hint",
    "strip_marker",
]
