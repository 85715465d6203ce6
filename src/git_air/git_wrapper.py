import logging
import os
import subprocess
from pathlib import Path

from .constants import APP_NAME, MARKER_DIR, SUBMODULE_MANIFEST

logger = logging.getLogger(APP_NAME)


class GitError(RuntimeError):
    """Raised when a git command cannot be run or exits with a non-zero status.

    Attributes:
        detail (str): The command's stderr (or stdout) output, if any.
    """

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail


class StageError(GitError):
    """Staging the working tree failed."""


class CommitError(GitError):
    """Creating a commit failed."""


class SubmoduleError(GitError):
    """Updating or staging a submodule failed."""


class BranchError(GitError):
    """No current branch could be determined (detached HEAD, unborn branch)."""


class RemoteError(GitError):
    """Base class for failures scoped to a single remote.

    Attributes:
        remote (str): The remote the operation targeted.
    """

    operation = "operation on"

    def __init__(self, remote: str, detail: str):
        super().__init__(f"{self.operation} {remote} failed: {detail}", detail)
        self.remote = remote


class FetchError(RemoteError):
    operation = "fetch from"


class PushError(RemoteError):
    operation = "push to"


class PullError(RemoteError):
    operation = "pull from"


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every command runs with the repository as its working directory, so many
    instances can be used concurrently from different threads without touching
    process-wide state.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / MARKER_DIR).exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @staticmethod
    def _remote_env() -> dict[str, str]:
        """Environment for network commands: never block on a credential prompt."""
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
        return env

    def _run(
        self, args: list[str], capture: bool = True, env: dict | None = None
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitError: If git cannot be started or returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
                env=env,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip() or str(e)
            raise GitError(f"Git error: {detail}", detail) from e
        except OSError as e:
            raise GitError(f"Git error: {e}", str(e)) from e

    def _succeeds(self, args: list[str]) -> bool:
        """Runs a git command purely for its exit status."""
        try:
            self._run(args)
            return True
        except GitError:
            return False

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.
        """
        output = self._run(["status", "--porcelain"])
        return output.splitlines() if output else []

    def has_local_changes(self) -> bool:
        """Checks for staged, unstaged, or untracked changes in the working tree."""
        return bool(self.status_porcelain())

    def add_all(self) -> None:
        """Stages all changes (modified, deleted, and untracked files).

        Raises:
            StageError: If `git add` fails.
        """
        try:
            self._run(["add", "-A"], capture=False)
        except GitError as e:
            raise StageError(f"git add failed: {e.detail}", e.detail) from e

    def commit(self, message: str) -> bool:
        """Commits the staged changes.

        Args:
            message (str): The commit message.

        Returns:
            bool: True if a commit was created, False if nothing was staged.

        Raises:
            CommitError: If `git commit` fails.
        """
        if self._succeeds(["diff", "--cached", "--quiet"]):
            return False
        try:
            self._run(["commit", "-m", message], capture=False)
        except GitError as e:
            raise CommitError(f"git commit failed: {e.detail}", e.detail) from e
        return True

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'origin/main').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch.

        Raises:
            BranchError: On a detached HEAD, a repository without commits, or
                when git cannot answer.
        """
        try:
            branch = self._run(["branch", "--show-current"])
        except GitError as e:
            raise BranchError(f"Cannot determine branch: {e.detail}", e.detail) from e
        if not branch:
            raise BranchError("HEAD is detached")
        if self.rev_parse("HEAD") is None:
            raise BranchError(f"Branch '{branch}' has no commits yet")
        return branch

    def list_remotes(self) -> dict[str, str]:
        """Lists configured remotes and their fetch URLs.

        Returns:
            dict[str, str]: Remote name to URL, in the order git reports them.
                            Empty if no remote is configured.
        """
        output = self._run(["remote", "-v"])
        remotes: dict[str, str] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            name, url = parts[0], parts[1]
            # Only take fetch URLs (push URLs may differ).
            if len(parts) < 3 or parts[2] == "(fetch)":
                remotes.setdefault(name, url)
        return remotes

    def fetch_from_remote(self, remote: str) -> None:
        """Fetches from a single remote.

        Raises:
            FetchError: If the fetch fails (offline, auth, unknown remote).
        """
        try:
            self._run(["fetch", remote], env=self._remote_env())
        except GitError as e:
            raise FetchError(remote, e.detail) from e

    def push_to_remote(self, remote: str, branch: str) -> None:
        """Pushes a branch to a single remote.

        Raises:
            PushError: If the push fails. Other remotes are unaffected.
        """
        try:
            # capture suppresses verbose "Enumerating objects..." output.
            self._run(["push", remote, branch], env=self._remote_env())
        except GitError as e:
            raise PushError(remote, e.detail) from e

    def remote_has_new_commits(self, remote: str, branch: str) -> bool:
        """Fetches a remote and checks whether its branch has commits HEAD lacks.

        A remote that is merely behind HEAD (e.g. an unpushed local commit)
        has nothing to pull.

        Returns:
            bool: True if `<remote>/<branch>` contains commits not reachable
                  from HEAD, False if it does not or the remote branch does
                  not exist yet.

        Raises:
            FetchError: If the implicit fetch or the comparison fails.
        """
        self.fetch_from_remote(remote)
        remote_ref = f"refs/remotes/{remote}/{branch}"
        if self.rev_parse(remote_ref) is None:
            return False
        try:
            count = self._run(["rev-list", "--count", f"HEAD..{remote_ref}"])
        except GitError as e:
            raise FetchError(remote, e.detail) from e
        return int(count or 0) > 0

    def pull_from_remote(self, remote: str, branch: str) -> None:
        """Pulls a branch from a single remote.

        Raises:
            PullError: If the pull fails, typically because of a merge conflict.
        """
        try:
            self._run(["pull", "--no-edit", remote, branch], env=self._remote_env())
        except GitError as e:
            raise PullError(remote, e.detail) from e

    def submodule_paths(self) -> list[str]:
        """Lists the submodule paths declared in the top-level manifest."""
        if not (self.path / SUBMODULE_MANIFEST).is_file():
            return []
        try:
            output = self._run(
                ["config", "--file", SUBMODULE_MANIFEST, "--get-regexp", r"\.path$"]
            )
        except GitError as e:
            logger.debug(f"No submodule paths in {self.path.name}: {e}")
            return []
        return [line.split(None, 1)[1] for line in output.splitlines() if " " in line]

    def sync_submodules(self) -> None:
        """Moves every submodule to its tracked remote head and stages the pointers.

        Raises:
            SubmoduleError: If any submodule fails to update or stage.
        """
        try:
            self._run(
                ["submodule", "update", "--init", "--remote", "--recursive"],
                env=self._remote_env(),
            )
            paths = self.submodule_paths()
            if paths:
                self._run(["add", "--", *paths], capture=False)
        except GitError as e:
            raise SubmoduleError(f"submodule sync failed: {e.detail}", e.detail) from e
