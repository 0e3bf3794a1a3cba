"""Pane adapter implementations."""

from .base import CommandExecHistory, PaneAdapter, parse_completion, sanitize_command
from .tmux_adapter import TmuxAdapter


def create_pane_adapter(name: str = "tmux") -> PaneAdapter:
    normalized = name.strip().lower()
    if normalized == "tmux":
        return TmuxAdapter()
    msg = f"Unsupported pane adapter: {name}"
    raise ValueError(msg)


__all__ = [
    "CommandExecHistory",
    "PaneAdapter",
    "TmuxAdapter",
    "create_pane_adapter",
    "parse_completion",
    "sanitize_command",
]
