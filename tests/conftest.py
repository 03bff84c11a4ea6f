"""Pytest configuration and fixtures for vault-kanban tests."""

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from vault_kanban.core.config import BoardConfig, Config
from vault_kanban.store import SqliteCardStore


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Iterator[None]:
    """Reset config singleton before and after each test."""
    from vault_kanban.core.config import _reset_config

    _reset_config()
    yield
    _reset_config()


@pytest.fixture(autouse=True)
def reset_clock() -> Iterator[None]:
    """Restore the real clock after tests that pin it."""
    from vault_kanban.core import timing

    yield
    timing.reset_clock()


@pytest.fixture(autouse=True)
def clear_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's VAULT_ROOT / VAULT_KANBAN_DB out of tests."""
    monkeypatch.delenv("VAULT_ROOT", raising=False)
    monkeypatch.delenv("VAULT_KANBAN_DB", raising=False)


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    """Empty vault directory."""
    root = tmp_path / "vault"
    (root / "Boards").mkdir(parents=True)
    return root


@pytest.fixture
def board() -> BoardConfig:
    """Board stored at Boards/work.md with default columns and priorities."""
    return BoardConfig(id="work", name="Work", file="Boards/work.md")


@pytest.fixture
def other_board() -> BoardConfig:
    """Second board for cross-board tests."""
    return BoardConfig(id="home", name="Home", file="Boards/home.md")


@pytest.fixture
def config(vault: Path, tmp_path: Path, board: BoardConfig, other_board: BoardConfig) -> Config:
    """Config pointing at the temp vault with two boards."""
    return Config(
        vault_root=vault,
        database_path=tmp_path / "db" / "kanban.db",
        boards=[board, other_board],
    )


@pytest.fixture
def store() -> Iterator[SqliteCardStore]:
    """Isolated in-memory card store."""
    s = SqliteCardStore()
    yield s
    s.close()


class LockedOnCommit:
    """Connection wrapper whose COMMIT fails like a locked database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if sql == "COMMIT":
            raise sqlite3.OperationalError("database is locked")
        return self._conn.execute(sql, params)

    def __getattr__(self, name: str) -> object:
        return getattr(self._conn, name)


@pytest.fixture
def locked_commit(store: SqliteCardStore) -> Iterator[sqlite3.Connection]:
    """Make COMMIT on the store fail; yields the real connection."""
    conn = store._conn
    store._conn = LockedOnCommit(conn)
    yield conn
    store._conn = conn


@pytest.fixture
def board_file(vault: Path, board: BoardConfig) -> Path:
    """Path of the work board's markdown file (not created)."""
    return board.source_path(vault)


@pytest.fixture
def sequential_ids() -> "SequentialMinter":
    """Deterministic card ID generator: 00000001, 00000002, ..."""
    return SequentialMinter()


class SequentialMinter:
    """Callable producing predictable 8-hex IDs."""

    def __init__(self, start: int = 1) -> None:
        self.next = start

    def __call__(self) -> str:
        value = f"{self.next:08x}"
        self.next += 1
        return value
