import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_COMMIT_MESSAGE,
    DEFAULT_EXCLUDES,
)

logger = logging.getLogger(APP_NAME)

LOG_LEVELS = ("debug", "info", "warning", "error")


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '1hr', '30m', '1.5s') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return num * multiplier[unit]


def _parse_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected true or false, got '{value}'")
    return value


def _parse_paths(value: Any) -> list[str]:
    if (
        not isinstance(value, list)
        or not value
        or not all(isinstance(p, str) for p in value)
    ):
        raise ValueError(f"Expected a list of paths, got '{value}'")
    return value


def _parse_positive_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Expected a positive integer, got '{value}'")
    return value


def _parse_level(value: Any) -> str:
    level = str(value).strip().lower()
    if level == "warn":
        level = "warning"
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level '{value}'")
    return level


_PARSERS = {
    "watch_interval": parse_time,
    "pull_interval": parse_time,
    "rescan_interval": parse_time,
    "debounce_delay": parse_time,
    "max_log_size": parse_size,
    "auto_commit": _parse_bool,
    "auto_push": _parse_bool,
    "auto_pull": _parse_bool,
    "scan_paths": _parse_paths,
    "max_repos": _parse_positive_int,
    "log_level": _parse_level,
}


@dataclass
class CoreConfig:
    """Core application settings.

    Attributes:
        commit_message (str): Prefix for automatic commit messages.
        scan_paths (list[str]): Roots searched for git working trees.
    """

    commit_message: str = DEFAULT_COMMIT_MESSAGE
    scan_paths: list[str] = field(default_factory=lambda: ["."])


@dataclass
class DaemonConfig:
    """Daemon operational settings.

    Attributes:
        watch_interval (float): Seconds between periodic commit checks.
        pull_interval (float): Seconds between remote pull checks.
        rescan_interval (float): Seconds between repository discovery passes.
        debounce_delay (float): Quiet period after a file event before committing.
        auto_commit (bool): Whether local changes are committed.
        auto_push (bool): Whether commits are pushed to every remote.
        auto_pull (bool): Whether remote changes are pulled.
        max_repos (int): Upper bound on concurrently managed repositories.
        preset (str | None): A configuration preset name (e.g. 'paranoid').
    """

    watch_interval: float = 30.0
    pull_interval: float = 60.0
    rescan_interval: float = 300.0
    debounce_delay: float = 2.0
    auto_commit: bool = True
    auto_push: bool = True
    auto_pull: bool = True
    max_repos: int = 100
    preset: str | None = None

    def apply_preset(self) -> None:
        """Overwrites intervals based on the selected preset."""
        if self.preset == "paranoid":
            self.watch_interval = 10  # 10 secs
            self.pull_interval = 30  # 30 secs
        elif self.preset == "balanced":
            self.watch_interval = 30  # 30 secs
            self.pull_interval = 60  # 1 min
        elif self.preset == "lazy":
            self.watch_interval = 300  # 5 mins
            self.pull_interval = 900  # 15 mins


@dataclass
class FilesConfig:
    """File selection settings.

    Attributes:
        exclude (list[str]): Base-name glob patterns that are never scanned or
            watched (user patterns are appended to the defaults).
    """

    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDES))


@dataclass
class LimitsConfig:
    """Logging and resource settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
        log_level (str): Minimum level for emitted log records.
    """

    max_log_size: int = 5 * 1024 * 1024
    log_level: str = "info"


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        daemon (DaemonConfig): Daemon behavior settings.
        files (FilesConfig): Exclusion settings.
        limits (LimitsConfig): Logging limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    files: FilesConfig = field(default_factory=FilesConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and explicit sources.

        A missing or broken file never aborts loading; the defaults are kept
        for anything that could not be read.

        Args:
            path (Path | None): An additional config file layered over the global one.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        if path is not None:
            if path.exists():
                instance._merge_from_file(path)
            else:
                logger.warning(f"Config file {path} not found, using defaults.")

        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
            if "daemon" in data:
                self.daemon = self._update_dataclass(
                    "daemon", self.daemon, data["daemon"]
                )
                self.daemon.apply_preset()
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "files" in data:
                # Extract exclude list to prevent it from being overwritten during dataclass update
                new_excludes = data["files"].pop("exclude", [])
                self.files = self._update_dataclass("files", self.files, data["files"])
                if new_excludes:
                    self.files.exclude.extend(new_excludes)
                    self.files.exclude = list(dict.fromkeys(self.files.exclude))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                parser = _PARSERS.get(k)
                filtered_updates[k] = parser(v) if parser else v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

    @staticmethod
    def write_default(path: Path = CONFIG_FILE) -> None:
        """Writes a commented configuration template, leaving existing files alone."""
        if path.exists():
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(
                "# Git Air Configuration\n\n"
                "[core]\n"
                '# commit_message = "auto commit"\n'
                '# scan_paths = ["."]\n\n'
                "[daemon]\n"
                "# Options: paranoid, balanced, lazy\n"
                '# preset = "balanced"\n'
                '# watch_interval = "30s"\n'
                '# pull_interval = "1m"\n'
                '# rescan_interval = "5m"\n'
                "# auto_push = true\n\n"
                "[files]\n"
                '# exclude = ["*.cache"]\n'
            )
