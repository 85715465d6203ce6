"""Discovery of git working trees below a set of filesystem roots."""

import fnmatch
import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from .constants import APP_NAME, MARKER_DIR, SUBMODULE_MANIFEST
from .git_wrapper import GitError, GitRepo

logger = logging.getLogger(APP_NAME)


class RemoteTarget(NamedTuple):
    """A single push/pull destination of a repository."""

    name: str
    url: str


@dataclass
class RepositoryDescriptor:
    """Identity of one managed working tree.

    Attributes:
        path (Path): Absolute path to the working tree root (unique key).
        name (str): Display name, the final path component.
        remotes (list[RemoteTarget]): Configured remotes, unique by name.
        is_multi_module (bool): Whether the tree declares submodules or
            contains nested working trees.
        active (bool): Whether a worker currently runs for this tree.
    """

    path: Path
    name: str
    remotes: list[RemoteTarget] = field(default_factory=list)
    is_multi_module: bool = False
    active: bool = False


def is_excluded(name: str, patterns: Iterable[str]) -> bool:
    """Checks a single path component against base-name glob patterns.

    Matching is case-sensitive and never considers the rest of the path, so
    `node_modules` excludes every directory of that name at any depth.
    """
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def _walk_for_roots(root: Path, exclude: Sequence[str]) -> list[Path]:
    """Depth-first walk returning every directory that holds a `.git` directory."""
    found: list[Path] = []

    def on_error(err: OSError) -> None:
        # Unreadable subtrees are skipped; the scan itself never fails.
        logger.debug(f"Walk error at {err.filename}: {err}")

    for dirpath, dirnames, _filenames in os.walk(root, onerror=on_error):
        if MARKER_DIR in dirnames:
            found.append(Path(dirpath))
            logger.debug(f"Found {MARKER_DIR} directory in {dirpath}")

        # Prune in place: never descend into markers or excluded directories.
        kept = []
        for name in dirnames:
            if name == MARKER_DIR:
                continue
            if is_excluded(name, exclude):
                logger.debug(f"Skipping excluded path: {os.path.join(dirpath, name)}")
                continue
            kept.append(name)
        dirnames[:] = kept

    return found


def _read_remotes(path: Path) -> list[RemoteTarget]:
    """Returns the remotes of a tree, or an empty list when git cannot list them."""
    try:
        remotes = GitRepo(path).list_remotes()
    except (GitError, ValueError) as e:
        logger.warning(f"Failed to get remotes for {path}: {e}")
        return []
    return [RemoteTarget(name, url) for name, url in remotes.items()]


def _has_nested_root(path: Path, roots: Iterable[Path]) -> bool:
    return any(other != path and other.is_relative_to(path) for other in roots)


def scan(roots: Sequence[Path | str], exclude: Sequence[str]) -> list[RepositoryDescriptor]:
    """Discovers git working trees below the given roots.

    The scan is best-effort: unreadable subtrees and missing roots are logged
    and skipped, and a tree whose remotes cannot be listed is still reported
    (with no remotes). Nested working trees are reported individually and also
    mark their enclosing tree as multi-module.

    Args:
        roots (Sequence[Path | str]): Directories to search.
        exclude (Sequence[str]): Base-name glob patterns to prune.

    Returns:
        list[RepositoryDescriptor]: One descriptor per discovered root, no duplicates.
    """
    discovered: dict[Path, None] = {}
    for root in roots:
        root_path = Path(root).expanduser().resolve()
        if not root_path.is_dir():
            logger.warning(f"Scan path {root_path} is not a directory. Skipping.")
            continue
        logger.debug(f"Starting scan of path: {root_path}")
        for repo_path in _walk_for_roots(root_path, exclude):
            discovered.setdefault(repo_path, None)

    repositories = []
    for path in discovered:
        repositories.append(
            RepositoryDescriptor(
                path=path,
                name=path.name,
                remotes=_read_remotes(path),
                is_multi_module=(path / SUBMODULE_MANIFEST).is_file()
                or _has_nested_root(path, discovered),
            )
        )

    logger.debug(f"Discovered {len(repositories)} git repositories")
    return repositories


def normalize_remote_url(url: str) -> str:
    """Normalizes a remote URL so SSH and HTTPS spellings of one remote compare equal."""
    url = url.strip()
    url = url.removesuffix("/").removesuffix(".git")
    # Convert SSH (git@host:owner/repo) to HTTPS form for comparison
    if url.startswith("git@"):
        url = "https://" + url[len("git@") :].replace(":", "/", 1)
    elif url.startswith("ssh://git@"):
        url = "https://" + url[len("ssh://git@") :]
    return url.lower()


def group_by_remote(
    repositories: Iterable[RepositoryDescriptor],
) -> dict[str, list[RepositoryDescriptor]]:
    """Groups repositories by normalized remote URL.

    Returns:
        dict[str, list[RepositoryDescriptor]]: Each remote URL with the
        repositories that push to it. Repositories without remotes are absent.
    """
    groups: dict[str, list[RepositoryDescriptor]] = {}
    for repo in repositories:
        for remote in repo.remotes:
            members = groups.setdefault(normalize_remote_url(remote.url), [])
            if repo not in members:
                members.append(repo)
    return groups
