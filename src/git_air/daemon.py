import atexit
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from . import scanner
from .config import Config
from .constants import (
    APP_NAME,
    LOG_FILE,
    MARKER_DIR,
    PID_FILE,
    SHUTDOWN_GRACE,
    STATE_DIR,
)
from .scanner import RepositoryDescriptor
from .watcher import ChangeDetector
from .worker import CommitResult, PullResult, SyncWorker

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


@dataclass
class RepositoryStatus:
    """One row of the status report."""

    name: str
    path: Path
    remote_count: int
    active: bool


@dataclass
class SyncStatus:
    """Snapshot of the registry for reporting.

    Attributes:
        total_repositories (int): Repositories currently registered.
        active_workers (int): Workers whose thread is running.
        repositories (list[RepositoryStatus]): Per-repository details.
    """

    total_repositories: int = 0
    active_workers: int = 0
    repositories: list[RepositoryStatus] = field(default_factory=list)


class Orchestrator:
    """Registry of managed repositories and their workers.

    The path-to-worker map is the only state shared between the rescan loop
    and status reporting; every access to it holds `_lock`. Workers share
    nothing with each other.
    """

    def __init__(
        self,
        config: Config,
        scan_paths: Sequence[Path | str] | None = None,
        detector: ChangeDetector | None = None,
        worker_factory: Callable[[RepositoryDescriptor, Config], SyncWorker] = SyncWorker,
    ):
        self.config = config
        paths = scan_paths if scan_paths is not None else config.core.scan_paths
        self.scan_paths = [Path(p) for p in paths]
        self.detector = detector
        self._worker_factory = worker_factory
        self._lock = threading.Lock()
        self._repositories: dict[Path, RepositoryDescriptor] = {}
        self._workers: dict[Path, SyncWorker] = {}
        self._closed = False

    def reconcile(
        self, discovered: Iterable[RepositoryDescriptor]
    ) -> list[RepositoryDescriptor]:
        """Starts a worker for every repository not yet registered.

        Known repositories keep their running worker; only their remotes and
        multi-module flag are refreshed.

        Args:
            discovered (Iterable[RepositoryDescriptor]): The latest scan result.

        Returns:
            list[RepositoryDescriptor]: The repositories that got a new worker.
        """
        pending: list[tuple[RepositoryDescriptor, SyncWorker]] = []
        max_repos = self.config.daemon.max_repos
        with self._lock:
            if self._closed:
                return []

            for desc in discovered:
                known = self._repositories.get(desc.path)
                if known is not None:
                    known.remotes = desc.remotes
                    known.is_multi_module = desc.is_multi_module
                    continue

                if len(self._repositories) >= max_repos:
                    logger.warning(
                        f"LIMIT {desc.path}: max_repos ({max_repos}) reached. Not managed."
                    )
                    continue

                try:
                    worker = self._worker_factory(desc, self.config)
                except ValueError as e:
                    logger.warning(f"SKIPPED {desc.path}: {e}")
                    continue

                self._repositories[desc.path] = desc
                self._workers[desc.path] = worker
                pending.append((desc, worker))

        # Thread start and recursive watch setup happen outside the lock.
        for desc, worker in pending:
            worker.start()
            if self.detector is not None:
                self.detector.watch(desc.path, worker.notify_change)
            logger.info(
                f"NEW {desc.name}: {len(desc.remotes)} remote(s)"
                f"{', multi-module' if desc.is_multi_module else ''}."
            )

        with self._lock:
            closed = self._closed
        if closed:
            # Shutdown began while these were being started.
            for desc, worker in pending:
                worker.stop()
                if self.detector is not None:
                    self.detector.unwatch(desc.path)
            return []

        return [desc for desc, _worker in pending]

    def prune_missing(self) -> list[Path]:
        """Stops and evicts repositories whose working tree has disappeared.

        Returns:
            list[Path]: The evicted repository paths.
        """
        with self._lock:
            missing = [
                path
                for path in self._repositories
                if not (path / MARKER_DIR).exists()
            ]
            evicted = [(path, self._evict(path)) for path in missing]

        for path, worker in evicted:
            worker.stop()
            logger.info(f"PRUNED: {path} no longer exists, worker stopped.")
        return missing

    def _evict(self, path: Path) -> SyncWorker:
        """Removes a repository from the registry. Caller holds `_lock`."""
        self._repositories.pop(path, None)
        if self.detector is not None:
            self.detector.unwatch(path)
        return self._workers.pop(path)

    def rescan(self) -> list[RepositoryDescriptor]:
        """Scans every configured root, starts new workers, and evicts vanished ones.

        Returns:
            list[RepositoryDescriptor]: The repositories that got a new worker.
        """
        logger.debug(f"Scanning for repositories in: {[str(p) for p in self.scan_paths]}")
        discovered = scanner.scan(self.scan_paths, self.config.files.exclude)
        started = self.reconcile(discovered)
        self.prune_missing()
        return started

    def run(self, stop_event: threading.Event) -> None:
        """Blocks, rescanning periodically, until `stop_event` is set.

        All workers are shut down before this returns.
        """
        if self.detector is not None:
            self.detector.start()

        interval = self.config.daemon.rescan_interval
        try:
            while not stop_event.is_set():
                try:
                    self.rescan()
                    status = self.status()
                    logger.info(
                        f"Managing {status.active_workers}/{status.total_repositories} repositories."
                    )
                except Exception:
                    logger.exception("RESCAN ERROR")
                stop_event.wait(interval)
        finally:
            self.shutdown_all()

    def shutdown_all(self, grace: float = SHUTDOWN_GRACE) -> None:
        """Stops every worker and waits for in-flight sequences to finish.

        Only the first call has an effect.

        Args:
            grace (float): Total seconds to wait for all workers.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            workers = list(self._workers.items())

        logger.info(f"Stopping {len(workers)} repository workers...")
        for _path, worker in workers:
            worker.stop()

        deadline = time.monotonic() + grace
        for path, worker in workers:
            if not worker.join(max(0.0, deadline - time.monotonic())):
                logger.warning(f"TIMEOUT {path}: still busy after {grace:.0f}s grace.")

        if self.detector is not None:
            self.detector.stop()

        with self._lock:
            for path in list(self._repositories):
                self._evict(path)
        logger.info("All repository workers stopped.")

    def status(self) -> SyncStatus:
        """Reports the registry contents."""
        with self._lock:
            rows = [
                RepositoryStatus(
                    name=desc.name,
                    path=path,
                    remote_count=len(desc.remotes),
                    active=self._workers[path].is_alive(),
                )
                for path, desc in self._repositories.items()
            ]
        return SyncStatus(
            total_repositories=len(rows),
            active_workers=sum(1 for row in rows if row.active),
            repositories=rows,
        )


def run_once(
    config: Config, scan_paths: Sequence[Path | str] | None = None
) -> dict[Path, tuple[CommitResult, PullResult]]:
    """Runs one commit and one pull cycle for every discovered repository.

    Used for a foreground pass; no threads or watches are started.

    Returns:
        dict[Path, tuple[CommitResult, PullResult]]: Outcomes keyed by repository.
    """
    paths = scan_paths if scan_paths is not None else config.core.scan_paths
    results = {}
    for desc in scanner.scan(paths, config.files.exclude):
        try:
            worker = SyncWorker(desc, config)
            results[desc.path] = (worker.run_commit_cycle(), worker.run_pull_cycle())
        except Exception:
            logger.exception(f"LOOP ERROR {desc.path}")
    return results


def setup_logging(
    interactive: bool, level: str = "info", max_log_size: int = 5 * 1024 * 1024
) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to a rotating file.
        level (str): Minimum level name (debug, info, warning, error).
        max_log_size (int): Bytes before the log file is rotated.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Always log to a stream (stderr is captured by systemd/launchd).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        try:
            STATE_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE,
                maxBytes=max_log_size,
                backupCount=5,
            )
        except OSError as e:
            logger.warning(f"Could not open log file {LOG_FILE}: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Turns SIGINT and SIGTERM into a graceful stop request."""

    def handle(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def _write_pid_file() -> None:
    try:
        STATE_DIR.mkdir(parents=True, exist_ok=True)
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        # Ensure cleanup on exit.
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


def main(config: Config | None = None, interactive: bool = False) -> None:
    """The daemon entry point: discover, synchronize, and rescan until signalled.

    Args:
        config (Config | None): Resolved configuration; loaded from disk if omitted.
        interactive (bool, optional): Log to stdout and skip the log file and
                                      PID file. Defaults to False.
    """
    config = config if config is not None else Config.load()
    setup_logging(interactive, config.limits.log_level, config.limits.max_log_size)

    if not interactive:
        _write_pid_file()

    logger.info(
        f"Git Air starting in: {', '.join(str(Path(p).resolve()) for p in config.core.scan_paths)}"
    )
    daemon_cfg = config.daemon
    logger.info(
        f"Watch interval: {daemon_cfg.watch_interval:g}s, "
        f"pull interval: {daemon_cfg.pull_interval:g}s, "
        f"rescan interval: {daemon_cfg.rescan_interval:g}s"
    )

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    orchestrator = Orchestrator(config, detector=ChangeDetector(config.files.exclude))
    orchestrator.run(stop_event)
    logger.info("Git Air daemon stopped")


if __name__ == "__main__":
    main()
