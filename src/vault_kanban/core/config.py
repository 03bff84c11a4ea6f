"""Configuration models and loading for vault-kanban.

Boards, their columns and their priority definitions are owned by a YAML
configuration file and are read-only to the sync engine. Pydantic validates
the file; the ``VAULT_ROOT`` and ``VAULT_KANBAN_DB`` environment variables
override the vault root and database path for container deployments.

Example config::

    vault_root: ~/Vault
    database_path: ~/.vault-kanban/kanban.db
    boards:
      - id: work
        name: Work
        file: Tasks/Work.md
        columns: [Backlog, In Progress, Done]
        done_columns: [Done]

"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from vault_kanban.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_COLUMNS",
    "DEFAULT_PRIORITIES",
    "DONE_COLUMN",
    "ENV_DB_PATH",
    "ENV_VAULT_ROOT",
    "GLOBAL_CONFIG_PATH",
    "MAX_CONFIG_SIZE",
    "BoardConfig",
    "Config",
    "PriorityDef",
    "get_config",
    "load_config",
]

GLOBAL_CONFIG_PATH = Path.home() / ".vault-kanban" / "config.yaml"
DEFAULT_DB_PATH = Path.home() / ".vault-kanban" / "kanban.db"
ENV_VAULT_ROOT = "VAULT_ROOT"
ENV_DB_PATH = "VAULT_KANBAN_DB"

# Config files are small; anything larger is almost certainly the wrong file
MAX_CONFIG_SIZE = 1_048_576

# The literal "Done" column is always treated as a done column
DONE_COLUMN = "Done"
DEFAULT_COLUMNS: tuple[str, ...] = ("Backlog", "In Progress", DONE_COLUMN)


class PriorityDef(BaseModel):
    """A priority level recognised by its emoji glyph in task lines.

    Attributes:
        id: Stable identifier stored on cards (e.g. "urgent").
        emoji: Glyph searched for in task titles.
        label: Display label.
        color: Optional display color, unused by the sync engine.

    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    emoji: str = Field(min_length=1)
    label: str
    color: str | None = None


DEFAULT_PRIORITIES: tuple[PriorityDef, ...] = (
    PriorityDef(id="urgent", emoji="🔺", label="Urgent", color="#ef4444"),
    PriorityDef(id="high", emoji="⏫", label="High", color="#f59e0b"),
)


class BoardConfig(BaseModel):
    """One board: a markdown file plus its column and priority setup.

    Attributes:
        id: Board identifier, part of legacy fingerprints.
        name: Display name.
        file: Path of the markdown file relative to the vault root.
        columns: Ordered column names; the first is the backlog column.
        done_columns: Extra column names counted as "done" besides ``Done``.
        priorities: Ordered priority definitions; first match wins.

    """

    id: str = Field(min_length=1)
    name: str
    file: str = Field(min_length=1)
    columns: list[str] = Field(default_factory=lambda: list(DEFAULT_COLUMNS))
    done_columns: list[str] = Field(default_factory=list)
    priorities: list[PriorityDef] = Field(default_factory=lambda: list(DEFAULT_PRIORITIES))

    @field_validator("file")
    @classmethod
    def _file_inside_vault(cls, value: str) -> str:
        path = Path(value)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"board file must be vault-relative: {value}")
        return value

    def is_done_column(self, column: str) -> bool:
        """Return True if cards in ``column`` count as done (case-sensitive)."""
        return column == DONE_COLUMN or column in self.done_columns

    @property
    def done_column(self) -> str:
        """Column a card lands in when it becomes done."""
        for column in self.columns:
            if self.is_done_column(column):
                return column
        return DONE_COLUMN

    @property
    def backlog_column(self) -> str:
        """Column a card lands in when it is new or becomes undone."""
        return self.columns[0] if self.columns else DEFAULT_COLUMNS[0]

    @property
    def emojis(self) -> list[str]:
        """All configured priority glyphs in definition order."""
        return [p.emoji for p in self.priorities]

    def priority_by_id(self, priority_id: str) -> PriorityDef | None:
        """Look up a priority definition by id."""
        for priority in self.priorities:
            if priority.id == priority_id:
                return priority
        return None

    def source_path(self, vault_root: Path) -> Path:
        """Absolute path of this board's markdown file."""
        return vault_root / self.file


class Config(BaseModel):
    """Top-level configuration.

    Attributes:
        vault_root: Root directory holding all board files.
        database_path: SQLite sidecar store location.
        boards: Configured boards.
        default_columns: Columns given to boards that do not list their own.

    """

    vault_root: Path
    database_path: Path = DEFAULT_DB_PATH
    boards: list[BoardConfig] = Field(default_factory=list)
    default_columns: list[str] = Field(default_factory=lambda: list(DEFAULT_COLUMNS))

    @field_validator("vault_root", "database_path", mode="after")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("boards")
    @classmethod
    def _unique_board_ids(cls, value: list[BoardConfig]) -> list[BoardConfig]:
        seen: set[str] = set()
        for board in value:
            if board.id in seen:
                raise ValueError(f"duplicate board id: {board.id}")
            seen.add(board.id)
        return value

    @model_validator(mode="after")
    def _apply_default_columns(self) -> Config:
        self.boards = [
            board
            if "columns" in board.model_fields_set
            else board.model_copy(update={"columns": list(self.default_columns)})
            for board in self.boards
        ]
        return self

    def get_board(self, board_id: str) -> BoardConfig | None:
        """Return the board with ``board_id`` or None."""
        for board in self.boards:
            if board.id == board_id:
                return board
        return None


# Module-level singleton, populated by load_config()
_config: Config | None = None


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        size = path.stat().st_size
    except OSError as e:
        raise ConfigError(f"Cannot stat config file {path}: {e}") from e
    if size > MAX_CONFIG_SIZE:
        raise ConfigError(f"Config file too large ({size} bytes): {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")
    return data


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    vault_root = os.environ.get(ENV_VAULT_ROOT)
    if vault_root:
        logger.debug("Vault root overridden by %s: %s", ENV_VAULT_ROOT, vault_root)
        data["vault_root"] = vault_root
    db_path = os.environ.get(ENV_DB_PATH)
    if db_path:
        logger.debug("Database path overridden by %s: %s", ENV_DB_PATH, db_path)
        data["database_path"] = db_path
    return data


def load_config(path: Path | None = None) -> Config:
    """Load, validate and cache configuration from a YAML file.

    Args:
        path: Config file path, defaults to GLOBAL_CONFIG_PATH.

    Returns:
        Validated Config instance (also stored as the singleton).

    Raises:
        ConfigError: If the file is missing, too large, malformed or invalid.

    """
    global _config
    config_path = path if path is not None else GLOBAL_CONFIG_PATH
    data = _apply_env_overrides(_read_yaml(config_path))
    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e
    logger.debug("Loaded %d boards from %s", len(config.boards), config_path)
    _config = config
    return config


def get_config() -> Config:
    """Return the loaded configuration.

    Raises:
        ConfigError: If load_config() has not been called.

    """
    if _config is None:
        raise ConfigError("Config not loaded. Call load_config() first.")
    return _config


def _reset_config() -> None:
    """Clear the singleton (test isolation)."""
    global _config
    _config = None
