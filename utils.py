"""
Filesystem helpers shared by the CLI, storage layer and tests.

Relative paths in config.yaml are anchored at the project root, never at
the current working directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = "data"
DEFAULT_DB_FILENAME = "budget.db"

CONNECTION_ENV_VAR = "BUDGET_DB_CONNECTION_STRING"


def project_path(value: str | Path) -> Path:
    """Return ``value`` as an absolute path, anchoring relative ones at the project root."""
    path = Path(value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def _make_dir(directory: Path, purpose: str) -> Path:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Cannot create %s '%s': %s", purpose, directory, exc)
        raise
    return directory


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Data directory named by ``database.data_dir`` (not created)."""
    db_config = (config or {}).get("database", {})
    return project_path(db_config.get("data_dir", DEFAULT_DATA_DIR))


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Create the data directory if needed and return it."""
    return _make_dir(get_data_dir(config), "data directory")


def sqlite_file(connection_string: str) -> Optional[Path]:
    """
    Database file behind a SQLite connection string.

    Returns:
        Absolute path of the file, or None for in-memory databases and
        other backends.
    """
    url = make_url(connection_string)
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return None
    return project_path(url.database)


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Pick the database connection string.

    Order of precedence:
        1. BUDGET_DB_CONNECTION_STRING environment variable
        2. config['database']['connection_string']
        3. SQLite file ``database.path`` inside the data directory

    The directory holding a SQLite file is created on the way.
    """
    db_config = (config or {}).get("database", {})
    connection_string = os.environ.get(CONNECTION_ENV_VAR) or db_config.get("connection_string")

    if not connection_string:
        db_path = Path(db_config.get("path", DEFAULT_DB_FILENAME))
        if not db_path.is_absolute():
            db_path = ensure_data_dir(config) / db_path
        connection_string = f"sqlite:///{db_path.as_posix()}"

    db_file = sqlite_file(connection_string)
    if db_file is not None:
        _make_dir(db_file.parent, "database directory")
    return connection_string


def resolve_log_path(log_path: str) -> Path:
    """Absolute log file path; its directory is created if missing."""
    resolved = project_path(log_path)
    _make_dir(resolved.parent, "log directory")
    return resolved
