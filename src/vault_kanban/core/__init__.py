"""Core module for vault-kanban configuration and utilities.

This module provides:
- Configuration models and singleton access via get_config()
- File-based configuration loading via load_config()
- Custom exception hierarchy with VaultKanbanError as base
"""

from vault_kanban.core.config import (
    DEFAULT_COLUMNS,
    DEFAULT_PRIORITIES,
    DONE_COLUMN,
    GLOBAL_CONFIG_PATH,
    MAX_CONFIG_SIZE,
    BoardConfig,
    Config,
    PriorityDef,
    get_config,
    load_config,
)
from vault_kanban.core.exceptions import (
    BoardReadError,
    CardNotFoundError,
    ConfigError,
    LineLocateError,
    MissingMarkerError,
    NotACheckboxError,
    SafetyAbort,
    StampWriteError,
    StoreError,
    UnknownPriorityError,
    VaultKanbanError,
    WriteBackError,
)

__all__ = [
    # Config constants
    "DEFAULT_COLUMNS",
    "DEFAULT_PRIORITIES",
    "DONE_COLUMN",
    "GLOBAL_CONFIG_PATH",
    "MAX_CONFIG_SIZE",
    # Config models
    "BoardConfig",
    "Config",
    "PriorityDef",
    # Config functions
    "get_config",
    "load_config",
    # Exceptions
    "BoardReadError",
    "CardNotFoundError",
    "ConfigError",
    "LineLocateError",
    "MissingMarkerError",
    "NotACheckboxError",
    "SafetyAbort",
    "StampWriteError",
    "StoreError",
    "UnknownPriorityError",
    "VaultKanbanError",
    "WriteBackError",
]
