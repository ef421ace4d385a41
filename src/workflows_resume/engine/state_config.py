"""State directory configuration.

Each working directory gets its own state directory, keyed by a hash of
the path, so several server instances started from the same project share
pause records and execution logs:

    ~/.workflows/states/<hash-of-cwd>/
      paused.db        # Pause store (paused_executions table)
      executions.db    # Execution log store (executions + stats tables)

WORKFLOWS_STATE_DIR replaces ~/.workflows/states as the root.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path


class StateConfig:
    """Resolves on-disk locations for durable engine state."""

    @staticmethod
    def get_state_dir() -> Path:
        """Get (and create) the state directory for the current working directory.

        Example:
            >>> StateConfig.get_state_dir()
            Path('/home/user/.workflows/states/a1b2c3d4e5f6a7b8')
        """
        cwd_hash = hashlib.sha256(str(Path.cwd()).encode()).hexdigest()[:16]

        root = os.getenv("WORKFLOWS_STATE_DIR")
        base = Path(root).expanduser() if root else Path.home() / ".workflows" / "states"
        state_dir = base / cwd_hash
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir

    @staticmethod
    def get_paused_db_path() -> Path:
        return StateConfig.get_state_dir() / "paused.db"

    @staticmethod
    def get_executions_db_path() -> Path:
        return StateConfig.get_state_dir() / "executions.db"


__all__ = ["StateConfig"]
