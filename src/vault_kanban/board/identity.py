"""Stable card identifiers.

Cards are identified by 8 lowercase-hex characters. New IDs come from the
operating system's secure random source; when that is unavailable a hash of
a timestamp and ``random`` output is used instead. Lines written before
markers existed are re-identified by a legacy fingerprint derived from their
normalised title and board.
"""

from __future__ import annotations

import hashlib
import logging
import random
import re
import secrets
import time
from collections.abc import Callable

from vault_kanban.board.markers import normalize_title

logger = logging.getLogger(__name__)

__all__ = [
    "CARD_ID_LENGTH",
    "MAX_MINT_ATTEMPTS",
    "allocate_unique_id",
    "compute_fingerprint",
    "content_hash",
    "is_valid_card_id",
    "line_fingerprint",
    "mint_card_id",
]

CARD_ID_LENGTH = 8
MAX_MINT_ATTEMPTS = 10

_CARD_ID_PATTERN = re.compile(r"[0-9a-f]{8}")

ByteSource = Callable[[int], bytes]


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def is_valid_card_id(card_id: str) -> bool:
    """Return True when ``card_id`` is 8 lowercase hex characters."""
    return _CARD_ID_PATTERN.fullmatch(card_id) is not None


def mint_card_id(byte_source: ByteSource = secrets.token_bytes) -> str:
    """Generate a random 8-hex-character card ID.

    Args:
        byte_source: Callable returning ``n`` random bytes. Injectable so the
            fallback branch can be exercised in tests.

    Returns:
        Lowercase hex string of length 8.

    """
    try:
        return byte_source(CARD_ID_LENGTH // 2).hex()
    except (OSError, NotImplementedError) as e:
        logger.warning("Secure random unavailable (%s), using hash-based ID", e)
        seed = f"{time.time_ns()}-{random.random()}"
        return _sha256_hex(seed)[:CARD_ID_LENGTH]


def allocate_unique_id(
    is_used: Callable[[str], bool],
    minter: Callable[[], str] = mint_card_id,
    max_attempts: int = MAX_MINT_ATTEMPTS,
) -> str:
    """Mint IDs until one is not taken.

    Args:
        is_used: Predicate returning True for IDs already claimed or stored.
        minter: ID generator.
        max_attempts: Attempts before falling back to a wall-clock hash.

    Returns:
        An ID for which ``is_used`` returned False, or the wall-clock fallback
        which is accepted without checking.

    """
    for _ in range(max_attempts):
        candidate = minter()
        if not is_used(candidate):
            return candidate
    logger.warning("No unused ID after %d attempts, falling back to clock hash", max_attempts)
    return _sha256_hex(str(time.time_ns()))[:CARD_ID_LENGTH]


def compute_fingerprint(title: str, board_id: str, occurrence: int = 0) -> str:
    """Legacy ID for an unmarked task line.

    Uses title + board (not line position) so reordering lines keeps IDs.
    Repeated titles get a ``|dupN`` suffix for the N-th repeat.

    Examples:
        >>> compute_fingerprint("Buy milk", "b1") == compute_fingerprint("  buy   MILK ", "b1")
        True

    """
    normalized = normalize_title(title)
    key = f"{normalized}|{board_id}"
    if occurrence:
        key = f"{key}|dup{occurrence}"
    return _sha256_hex(key)[:CARD_ID_LENGTH]


def line_fingerprint(raw_line: str) -> str:
    """Short hash of a raw line, stored to spot unrelated-field edits."""
    return _sha256_hex(raw_line)[:16]


def content_hash(content: str) -> str:
    """Full SHA-256 hex digest of file content, used for sync state."""
    return _sha256_hex(content)
