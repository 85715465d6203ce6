"""Git Air: Automatic commit, push, and pull for every repository under a directory.

This package provides the repository scanner, the per-repository sync workers,
the orchestrator that keeps one worker per discovered working tree, and the
command-line interface that runs it as a background daemon.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    git_wrapper,
    scanner,
    watcher,
    worker,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "git_wrapper",
    "scanner",
    "watcher",
    "worker",
]
