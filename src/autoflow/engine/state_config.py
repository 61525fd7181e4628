"""State directory configuration.

Each project (working directory) gets its own state directory, keyed by a
hash of the CWD, so engines started from the same directory share one
database. Both locations can be overridden through the environment.

Architecture:
    ~/.autoflow/
      states/
        <hash-of-cwd>/
          autoflow.db       # workflows, workspaces, runs, settings
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

STATE_DIR_ENV = "AUTOFLOW_STATE_DIR"
DB_PATH_ENV = "AUTOFLOW_DB_PATH"
DB_FILENAME = "autoflow.db"


class StateConfig:
    """State directory configuration for the engine.

    Example:
        # Project A: /home/user/project-a
        StateConfig.get_state_dir()
        # Returns: ~/.autoflow/states/a1b2c3d4e5f6a7b8/

        # Override
        AUTOFLOW_DB_PATH=/srv/autoflow/runs.db
    """

    @staticmethod
    def get_state_dir() -> Path:
        """Get (and create) the state directory.

        Returns:
            ``$AUTOFLOW_STATE_DIR`` if set, else ``~/.autoflow/states/<sha256(cwd)[:16]>``
        """
        override = os.environ.get(STATE_DIR_ENV)
        if override:
            state_dir = Path(override).expanduser()
        else:
            cwd_hash = hashlib.sha256(str(Path.cwd()).encode()).hexdigest()[:16]
            state_dir = Path.home() / ".autoflow" / "states" / cwd_hash

        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir

    @staticmethod
    def get_db_path() -> Path:
        """Get SQLite database path (``$AUTOFLOW_DB_PATH`` or ``<state dir>/autoflow.db``)."""
        override = os.environ.get(DB_PATH_ENV)
        if override:
            db_path = Path(override).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            return db_path
        return StateConfig.get_state_dir() / DB_FILENAME


__all__ = ["StateConfig"]
