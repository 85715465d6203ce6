import os
from pathlib import Path

"""Global constants and path definitions for Git Air.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the git markers the scanner and watcher rely on.
"""

# --- Identity ---
APP_NAME = "git-air"
"""str: The human-readable application name (also the logger name)."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-air"
"""Path: The directory for runtime state data (logs, pid file)."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-air"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Git Markers ---
MARKER_DIR = ".git"
"""str: The directory name identifying a working tree root."""

SUBMODULE_MANIFEST = ".gitmodules"
"""str: The top-level file declaring submodule references."""

# --- Defaults ---
DEFAULT_EXCLUDES = [
    "node_modules",
    "*.log",
    "*.tmp",
    ".DS_Store",
    "vendor",
    "target",
    "build",
]
"""list[str]: Base-name glob patterns that are never scanned, watched or committed on."""

DEFAULT_COMMIT_MESSAGE = "auto commit"
"""str: Commit message prefix; the repository name and a timestamp are appended."""

SHUTDOWN_GRACE = 30.0
"""float: Seconds to wait for in-flight cycles to finish during shutdown."""
