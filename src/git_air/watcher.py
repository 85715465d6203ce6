"""Filesystem change detection scoped to managed repositories.

A single watchdog observer carries one recursive watch per repository. Raw
events are mapped to the repository that owns them (longest matching root),
filtered against the exclusion patterns, and handed to that repository's
callback, which only arms a debounce deadline inside its worker.
"""

import logging
import os
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from .constants import APP_NAME, MARKER_DIR
from .scanner import is_excluded

logger = logging.getLogger(APP_NAME)

RELEVANT_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
)


class _RepositoryEventHandler(FileSystemEventHandler):
    """Forwards watchdog events to the detector's dispatch."""

    def __init__(self, detector: "ChangeDetector"):
        super().__init__()
        self._detector = detector

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in RELEVANT_EVENTS:
            return
        # A directory mtime change only echoes a child event.
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return
        self._detector.dispatch(os.fsdecode(event.src_path), event.event_type)
        dest_path = getattr(event, "dest_path", "")
        if event.event_type == EVENT_TYPE_MOVED and dest_path:
            self._detector.dispatch(os.fsdecode(dest_path), event.event_type)


class ChangeDetector:
    """Routes filesystem events to the repository that owns them.

    Attributes:
        exclude (list[str]): Base-name glob patterns whose events are dropped.
    """

    def __init__(self, exclude: Iterable[str], observer: BaseObserver | None = None):
        self.exclude = list(exclude)
        self._observer = observer if observer is not None else Observer()
        self._handler = _RepositoryEventHandler(self)
        self._lock = threading.Lock()
        self._targets: dict[Path, Callable[[], None]] = {}
        self._watches: dict[Path, ObservedWatch] = {}
        self._running = False

    def start(self) -> None:
        """Starts the observer thread."""
        if self._running:
            return
        self._observer.start()
        self._running = True
        logger.debug("Change detector started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stops the observer thread and waits for it to exit."""
        if not self._running:
            return
        self._observer.stop()
        self._observer.join(timeout)
        self._running = False
        logger.debug("Change detector stopped")

    def watch(self, path: Path, on_change: Callable[[], None]) -> None:
        """Routes events below `path` to `on_change`.

        If the OS refuses the watch (e.g. inotify limits), the repository is
        still tracked and falls back to its periodic commit timer.
        """
        with self._lock:
            self._targets[path] = on_change
        try:
            watch = self._observer.schedule(self._handler, str(path), recursive=True)
        except OSError as e:
            logger.warning(
                f"WATCH ERROR {path.name}: {e}. Relying on the periodic timer."
            )
            return
        with self._lock:
            self._watches[path] = watch

    def unwatch(self, path: Path) -> None:
        """Stops routing events for `path` and removes its OS watch."""
        with self._lock:
            self._targets.pop(path, None)
            watch = self._watches.pop(path, None)
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
        except (KeyError, OSError) as e:
            logger.debug(f"Failed to unschedule watch for {path}: {e}")

    def watched_paths(self) -> list[Path]:
        with self._lock:
            return list(self._targets)

    def owner_of(self, path: Path) -> Path | None:
        """Returns the deepest registered repository root containing `path`."""
        with self._lock:
            candidates = [root for root in self._targets if path.is_relative_to(root)]
        if not candidates:
            return None
        return max(candidates, key=lambda root: len(root.parts))

    def is_ignored(self, path: Path, root: Path) -> bool:
        """Checks every component between `root` and `path` against the exclusions."""
        for part in path.relative_to(root).parts:
            if part == MARKER_DIR or is_excluded(part, self.exclude):
                return True
        return False

    def dispatch(self, path: str | Path, op: str) -> bool:
        """Delivers one raw event to the owning repository's callback.

        Args:
            path (str | Path): The path the event refers to.
            op (str): The event kind (created, modified, deleted, moved).

        Returns:
            bool: True if a repository was notified, False if the event was dropped.
        """
        event_path = Path(path)
        owner = self.owner_of(event_path)
        if owner is None:
            logger.debug(f"Dropped {op} event outside managed repositories: {event_path}")
            return False
        if self.is_ignored(event_path, owner):
            return False

        with self._lock:
            callback = self._targets.get(owner)
        if callback is None:
            return False

        logger.debug(f"EVENT {owner.name}: {op} {event_path}")
        callback()
        return True
