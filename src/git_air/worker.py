"""Per-repository synchronization worker.

Each managed working tree gets exactly one `SyncWorker`, running on its own
thread. The worker owns three deadlines: the periodic commit check, the
periodic pull check, and a debounce deadline that file events push forward.
Commit and pull sequences for one repository never overlap; different
repositories run fully in parallel.
"""

import datetime
import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import Config
from .constants import APP_NAME
from .git_wrapper import (
    BranchError,
    CommitError,
    FetchError,
    GitError,
    GitRepo,
    PullError,
    PushError,
    StageError,
    SubmoduleError,
)
from .scanner import RepositoryDescriptor

logger = logging.getLogger(APP_NAME)


class WorkerState(enum.Enum):
    IDLE = "idle"
    COMMIT_PENDING = "commit-pending"
    PULL_PENDING = "pull-pending"
    STOPPED = "stopped"


@dataclass
class SyncState:
    """Mutable bookkeeping owned by a single worker.

    Attributes:
        pending_change (bool): A file event arrived and no commit cycle has run since.
        last_commit_ts (float | None): Wall-clock time of the last commit made.
        last_pull_check_ts (float | None): Wall-clock time of the last pull cycle.
        push_owed (bool): The last push fan-out left at least one remote behind.
    """

    pending_change: bool = False
    last_commit_ts: float | None = None
    last_pull_check_ts: float | None = None
    push_owed: bool = False


@dataclass
class CommitResult:
    """Outcome of one commit-then-push sequence.

    Attributes:
        committed (bool): Whether a new commit was created.
        pushed (list[str]): Remotes that accepted the push.
        push_errors (list[PushError]): One entry per remote that rejected it.
        aborted (str | None): Why the sequence stopped early, if it did.
    """

    committed: bool = False
    pushed: list[str] = field(default_factory=list)
    push_errors: list[PushError] = field(default_factory=list)
    aborted: str | None = None


@dataclass
class PullResult:
    """Outcome of one fetch/compare/pull sequence.

    Attributes:
        pulled_from (str | None): The remote that was merged, if any.
        errors (list[GitError]): Fetch or pull failures, in remote order.
        aborted (str | None): Why the sequence stopped early, if it did.
    """

    pulled_from: str | None = None
    errors: list[GitError] = field(default_factory=list)
    aborted: str | None = None


class SyncWorker:
    """Keeps one working tree committed, pushed, and pulled.

    Attributes:
        descriptor (RepositoryDescriptor): The repository this worker owns.
        repo (GitRepo): The git adapter scoped to the repository path.
        state (WorkerState): What the worker is doing right now.
        sync_state (SyncState): Timestamps and the pending-change flag.
    """

    def __init__(
        self,
        descriptor: RepositoryDescriptor,
        config: Config,
        repo: GitRepo | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.descriptor = descriptor
        self.config = config
        self.repo = repo if repo is not None else GitRepo(descriptor.path)
        self.state = WorkerState.IDLE
        self.sync_state = SyncState()
        self.commit_prefix = f"{config.core.commit_message} - {descriptor.name}"

        self._clock = clock
        self._cycle_lock = threading.Lock()
        self._deadline_lock = threading.Lock()
        self._debounce_at: float | None = None
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    def start(self) -> None:
        """Starts the worker thread. Calling it twice has no effect."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"git-air:{self.name}", daemon=True
        )
        self.descriptor.active = True
        self._thread.start()
        logger.info(f"STARTED {self.name}: watching {self.descriptor.path}")

    def stop(self) -> None:
        """Asks the worker to exit once any in-flight sequence has finished."""
        self._stop.set()
        self._wakeup.set()

    def join(self, timeout: float | None = None) -> bool:
        """Waits for the worker thread to exit.

        Returns:
            bool: True if the thread has exited (or never started).
        """
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_alive()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def notify_change(self) -> None:
        """Registers a file event and (re)arms the debounce deadline.

        Safe to call from any thread; never blocks on git.
        """
        with self._deadline_lock:
            self._debounce_at = self._clock() + self.config.daemon.debounce_delay
            self.sync_state.pending_change = True
        self._wakeup.set()

    def _take_due_debounce(self, now: float) -> bool:
        with self._deadline_lock:
            if self._debounce_at is not None and now >= self._debounce_at:
                self._debounce_at = None
                return True
            return False

    def _next_wakeup(self, next_commit: float, next_pull: float) -> float:
        with self._deadline_lock:
            deadlines = [next_commit, next_pull]
            if self._debounce_at is not None:
                deadlines.append(self._debounce_at)
        return min(deadlines)

    def _run(self) -> None:
        """Thread body: sleep until the nearest deadline, then run what is due."""
        daemon_cfg = self.config.daemon
        now = self._clock()
        next_commit = now + daemon_cfg.watch_interval
        next_pull = now + daemon_cfg.pull_interval

        try:
            while not self._stop.is_set():
                timeout = self._next_wakeup(next_commit, next_pull) - self._clock()
                if timeout > 0:
                    self._wakeup.wait(timeout)
                self._wakeup.clear()
                if self._stop.is_set():
                    break

                now = self._clock()
                if self._take_due_debounce(now) or now >= next_commit:
                    next_commit = now + daemon_cfg.watch_interval
                    self._guarded(self.run_commit_cycle)
                if now >= next_pull:
                    next_pull = now + daemon_cfg.pull_interval
                    self._guarded(self.run_pull_cycle)
        finally:
            self.state = WorkerState.STOPPED
            self.descriptor.active = False
            logger.info(f"STOPPED {self.name}")

    def _guarded(self, cycle: Callable[[], object]) -> None:
        """Runs a cycle so that no failure can take the worker thread down."""
        try:
            cycle()
        except Exception:
            logger.exception(f"LOOP ERROR {self.descriptor.path}")
            self.state = WorkerState.IDLE

    def run_commit_cycle(self) -> CommitResult:
        """Commits local changes and pushes them to every remote.

        Returns:
            CommitResult: What happened; failures are reported, never raised.
        """
        result = CommitResult()
        if not self.config.daemon.auto_commit:
            result.aborted = "auto-commit disabled"
            return result

        with self._cycle_lock:
            self.state = WorkerState.COMMIT_PENDING
            # This cycle covers every event so far; later events re-arm.
            with self._deadline_lock:
                self._debounce_at = None
                self.sync_state.pending_change = False
            try:
                self._commit(result)
                owed = result.committed or self.sync_state.push_owed
                if result.aborted is None and owed and self.config.daemon.auto_push:
                    self._push_all(result)
            finally:
                self.state = WorkerState.IDLE
        return result

    def _commit(self, result: CommitResult) -> None:
        repo = self.repo
        if self.descriptor.is_multi_module:
            try:
                repo.sync_submodules()
            except SubmoduleError as e:
                # A half-updated submodule set must never be committed.
                logger.error(f"SUBMODULE ERROR {self.name}: {e}. Cycle skipped.")
                result.aborted = "submodule sync failed"
                return

        if not repo.has_local_changes():
            logger.debug(f"CLEAN {self.name}: nothing to commit.")
            return

        logger.info(f"CHANGES {self.name}: committing...")
        try:
            repo.add_all()
        except StageError as e:
            logger.error(f"STAGE ERROR {self.name}: {e}")
            result.aborted = "stage failed"
            return

        timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            result.committed = repo.commit(f"{self.commit_prefix} - {timestamp}")
        except CommitError as e:
            logger.error(f"COMMIT ERROR {self.name}: {e}")
            result.aborted = "commit failed"
            return

        if result.committed:
            self.sync_state.last_commit_ts = time.time()
            logger.info(f"SUCCESS {self.name}: Committed.")
        else:
            logger.debug(f"CLEAN {self.name}: nothing staged after add.")

    def _remotes(self) -> dict[str, str]:
        try:
            return self.repo.list_remotes()
        except GitError as e:
            logger.warning(f"REMOTE ERROR {self.name}: cannot list remotes: {e}")
            return {}

    def _push_all(self, result: CommitResult) -> None:
        remotes = self._remotes()
        if not remotes:
            logger.debug(f"LOCAL {self.name}: no remotes, push skipped.")
            return

        try:
            branch = self.repo.current_branch()
        except BranchError as e:
            logger.warning(f"BRANCH {self.name}: {e}. Push skipped.")
            result.aborted = "no branch"
            return

        for remote in remotes:
            try:
                self.repo.push_to_remote(remote, branch)
            except PushError as e:
                result.push_errors.append(e)
                continue
            result.pushed.append(remote)
            logger.info(f"SUCCESS {self.name}: Pushed to {remote}.")

        self.sync_state.push_owed = bool(result.push_errors)
        for error in result.push_errors:
            logger.warning(f"PUSH ERROR {self.name}: {error}")
        if result.push_errors:
            logger.warning(
                f"PUSH {self.name}: {len(result.pushed)}/{len(remotes)} remotes updated."
            )

    def run_pull_cycle(self) -> PullResult:
        """Pulls from the first remote that has history HEAD does not match.

        Remotes are treated as mirrors of one history, so a single successful
        pull ends the cycle.

        Returns:
            PullResult: What happened; failures are reported, never raised.
        """
        result = PullResult()
        if not self.config.daemon.auto_pull:
            result.aborted = "auto-pull disabled"
            return result

        with self._cycle_lock:
            self.state = WorkerState.PULL_PENDING
            self.sync_state.last_pull_check_ts = time.time()
            try:
                self._pull_first(result)
            finally:
                self.state = WorkerState.IDLE
        return result

    def _pull_first(self, result: PullResult) -> None:
        remotes = self._remotes()
        if not remotes:
            return

        try:
            branch = self.repo.current_branch()
        except BranchError as e:
            logger.debug(f"BRANCH {self.name}: {e}. Pull skipped.")
            result.aborted = "no branch"
            return

        logger.debug(f"CHECK {self.name}: looking for remote changes...")
        for remote in remotes:
            try:
                if not self.repo.remote_has_new_commits(remote, branch):
                    continue
                logger.info(f"REMOTE {self.name}: changes on {remote}, pulling...")
                self.repo.pull_from_remote(remote, branch)
            except (FetchError, PullError) as e:
                result.errors.append(e)
                logger.warning(f"PULL ERROR {self.name}: {e}")
                continue
            result.pulled_from = remote
            logger.info(f"SUCCESS {self.name}: Pulled from {remote}.")
            return
