"""vault-kanban - keep a markdown task list and its sidecar card store in sync."""

from importlib.metadata import version

try:
    __version__ = version("vault-kanban")
except Exception:
    __version__ = "0.0.0-dev"
