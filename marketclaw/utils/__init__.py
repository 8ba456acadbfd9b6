"""Utility functions for marketclaw."""

from marketclaw.utils.helpers import ensure_dir, get_workspace_path, now_ms

__all__ = [
    "ensure_dir",
    "get_workspace_path",
    "now_ms",
]
