"""SQLite-backed sidecar store.

One ``cards`` table holds every board's records; ``sync_state`` keeps the last
reconciled content hash per board file. The connection runs in autocommit
mode and ``transaction()`` wraps multi-statement work in BEGIN/COMMIT so a
failed reconcile pass rolls back cleanly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from vault_kanban.core.exceptions import StoreError
from vault_kanban.core.timing import format_backup_stamp, utc_now_naive

from .models import Card, SyncState

logger = logging.getLogger(__name__)

__all__ = ["MEMORY", "SqliteCardStore", "backup_database"]

MEMORY = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    board_id TEXT NOT NULL,
    column_name TEXT NOT NULL DEFAULT 'Backlog',
    position INTEGER NOT NULL DEFAULT 0,
    title TEXT NOT NULL,
    raw_line TEXT NOT NULL,
    line_number INTEGER NOT NULL,
    is_done INTEGER NOT NULL DEFAULT 0,
    priority TEXT,
    labels TEXT NOT NULL DEFAULT '[]',
    due_date TEXT,
    sub_items TEXT NOT NULL DEFAULT '[]',
    description TEXT NOT NULL DEFAULT '',
    source_fingerprint TEXT,
    seq_id INTEGER,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS sync_state (
    file_path TEXT PRIMARY KEY,
    file_hash TEXT NOT NULL,
    last_synced TEXT
);

CREATE INDEX IF NOT EXISTS idx_cards_board_position ON cards(board_id, position);
CREATE INDEX IF NOT EXISTS idx_cards_board_column ON cards(board_id, column_name);
CREATE UNIQUE INDEX IF NOT EXISTS idx_cards_board_seq ON cards(board_id, seq_id);
"""

_CARD_COLUMNS = (
    "id, board_id, column_name, position, title, raw_line, line_number, is_done, "
    "priority, labels, due_date, sub_items, description, source_fingerprint, seq_id, "
    "created_at, updated_at"
)


def _dump_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _load_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _load_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed JSON list column: %r", raw[:40])
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _row_to_card(row: sqlite3.Row) -> Card:
    return Card(
        id=row["id"],
        board_id=row["board_id"],
        column=row["column_name"],
        position=row["position"],
        title=row["title"],
        raw_line=row["raw_line"],
        line_number=row["line_number"],
        is_done=bool(row["is_done"]),
        priority=row["priority"],
        labels=_load_list(row["labels"]),
        due_date=row["due_date"],
        sub_items=_load_list(row["sub_items"]),
        description=row["description"] or "",
        source_fingerprint=row["source_fingerprint"],
        seq_id=row["seq_id"],
        created_at=_load_dt(row["created_at"]),
        updated_at=_load_dt(row["updated_at"]),
    )


def _card_params(card: Card) -> tuple[Any, ...]:
    return (
        card.id,
        card.board_id,
        card.column,
        card.position,
        card.title,
        card.raw_line,
        card.line_number,
        int(card.is_done),
        card.priority,
        json.dumps(card.labels, ensure_ascii=False),
        card.due_date,
        json.dumps(card.sub_items, ensure_ascii=False),
        card.description,
        card.source_fingerprint,
        card.seq_id,
        _dump_dt(card.created_at),
        _dump_dt(card.updated_at),
    )


class SqliteCardStore:
    """CardStore implementation on top of sqlite3.

    Args:
        db_path: Database file, or ``":memory:"`` for an isolated store.

    Raises:
        StoreError: If the database cannot be opened or initialised.

    """

    def __init__(self, db_path: Path | str = MEMORY) -> None:
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._tx_depth = 0
        try:
            if self.db_path != MEMORY:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.db_path,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            if self.db_path != MEMORY:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to open card store at {self.db_path}: {e}") from e
        logger.debug("Opened card store: %s", self.db_path)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SqliteCardStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group statements atomically; nested calls join the outer transaction."""
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return
            self._execute("BEGIN")
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                self._execute("ROLLBACK")
                raise
            else:
                try:
                    self._execute("COMMIT")
                except StoreError:
                    if self._conn.in_transaction:
                        self._execute("ROLLBACK")
                    raise
            finally:
                self._tx_depth = 0

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params))
            except sqlite3.Error as e:
                raise StoreError(f"Card store query failed: {e}") from e

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    def get_card(self, card_id: str) -> Card | None:
        row = self._execute(f"SELECT {_CARD_COLUMNS} FROM cards WHERE id = ?", (card_id,)).fetchone()
        return _row_to_card(row) if row else None

    def list_cards(self, board_id: str | None = None) -> list[Card]:
        if board_id is None:
            rows = self._execute(
                f"SELECT {_CARD_COLUMNS} FROM cards ORDER BY board_id, position"
            ).fetchall()
        else:
            rows = self._execute(
                f"SELECT {_CARD_COLUMNS} FROM cards WHERE board_id = ? ORDER BY position, seq_id",
                (board_id,),
            ).fetchall()
        return [_row_to_card(row) for row in rows]

    def all_card_ids(self) -> set[str]:
        return {row["id"] for row in self._execute("SELECT id FROM cards").fetchall()}

    def insert_card(self, card: Card) -> None:
        now = utc_now_naive()
        card = card.model_copy(
            update={"created_at": card.created_at or now, "updated_at": card.updated_at or now}
        )
        self._execute(
            f"INSERT INTO cards ({_CARD_COLUMNS}) VALUES ({', '.join('?' * 17)})",
            _card_params(card),
        )

    def update_card(self, card: Card) -> None:
        self._execute(
            """
            UPDATE cards SET
                board_id = ?, column_name = ?, position = ?, title = ?, raw_line = ?,
                line_number = ?, is_done = ?, priority = ?, labels = ?, due_date = ?,
                sub_items = ?, description = ?, source_fingerprint = ?, seq_id = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                card.board_id,
                card.column,
                card.position,
                card.title,
                card.raw_line,
                card.line_number,
                int(card.is_done),
                card.priority,
                json.dumps(card.labels, ensure_ascii=False),
                card.due_date,
                json.dumps(card.sub_items, ensure_ascii=False),
                card.description,
                card.source_fingerprint,
                card.seq_id,
                _dump_dt(utc_now_naive()),
                card.id,
            ),
        )

    def update_card_line(self, card_id: str, raw_line: str, line_number: int) -> None:
        self._execute(
            "UPDATE cards SET raw_line = ?, line_number = ?, updated_at = ? WHERE id = ?",
            (raw_line, line_number, _dump_dt(utc_now_naive()), card_id),
        )

    def delete_cards(self, card_ids: Iterable[str]) -> int:
        ids = list(card_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" * len(ids))
        cursor = self._execute(f"DELETE FROM cards WHERE id IN ({placeholders})", ids)
        return cursor.rowcount

    def max_seq_id(self, board_id: str) -> int:
        row = self._execute(
            "SELECT COALESCE(MAX(seq_id), 0) AS max_seq FROM cards WHERE board_id = ?",
            (board_id,),
        ).fetchone()
        return int(row["max_seq"])

    def next_position(self, board_id: str, column: str) -> int:
        row = self._execute(
            "SELECT COALESCE(MAX(position) + 1, 0) AS next_pos FROM cards "
            "WHERE board_id = ? AND column_name = ?",
            (board_id, column),
        ).fetchone()
        return int(row["next_pos"])

    # -------------------------------------------------------------------------
    # Sync state
    # -------------------------------------------------------------------------

    def get_sync_state(self, file_path: str) -> SyncState | None:
        row = self._execute(
            "SELECT file_path, file_hash, last_synced FROM sync_state WHERE file_path = ?",
            (file_path,),
        ).fetchone()
        if row is None:
            return None
        return SyncState(
            file_path=row["file_path"],
            file_hash=row["file_hash"],
            last_synced=_load_dt(row["last_synced"]),
        )

    def set_sync_state(self, file_path: str, file_hash: str) -> None:
        self._execute(
            "INSERT OR REPLACE INTO sync_state (file_path, file_hash, last_synced) VALUES (?, ?, ?)",
            (file_path, file_hash, _dump_dt(utc_now_naive())),
        )

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    def backup(self, dest: Path) -> Path:
        """Copy the whole database to ``dest`` using the sqlite backup API."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            target = sqlite3.connect(str(dest))
            try:
                self._conn.backup(target)
            except sqlite3.Error as e:
                raise StoreError(f"Backup to {dest} failed: {e}") from e
            finally:
                target.close()
        logger.info("Card store backed up to %s", dest)
        return dest


def backup_database(store: SqliteCardStore, backup_dir: Path, keep: int = 3) -> Path:
    """Write a timestamped backup and prune all but the newest ``keep``.

    Args:
        store: Open store to back up.
        backup_dir: Directory receiving ``kanban.backup-<stamp>.db`` files.
        keep: Number of backups to retain.

    Returns:
        Path of the new backup file.

    """
    dest = backup_dir / f"kanban.backup-{format_backup_stamp()}.db"
    store.backup(dest)
    backups = sorted(backup_dir.glob("kanban.backup-*.db"), reverse=True)
    for old in backups[keep:]:
        try:
            old.unlink()
            logger.debug("Pruned old backup %s", old.name)
        except OSError as e:
            logger.warning("Could not prune backup %s: %s", old, e)
    return dest
