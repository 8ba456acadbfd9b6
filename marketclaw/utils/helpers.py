"""Path and clock helpers."""

import time
from pathlib import Path


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing, return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_workspace_path(workspace: str | Path | None = None) -> Path:
    """Resolve the workspace directory, defaulting to ~/.marketclaw/workspace."""
    if workspace:
        path = Path(workspace).expanduser()
    else:
        path = Path.home() / ".marketclaw" / "workspace"
    return ensure_dir(path)
