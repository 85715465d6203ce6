"""Tests for the configuration management subsystem."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_air.config import Config, parse_size, parse_time


@pytest.fixture(autouse=True)
def no_global_config(tmp_path: Path, mocker: MagicMock) -> Path:
    """Points the global config path at a file that does not exist."""
    missing = tmp_path / "no-such-config.toml"
    mocker.patch("git_air.config.CONFIG_FILE", missing)
    return missing


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with the documented defaults."""
    conf = Config()
    assert conf.core.commit_message == "auto commit"
    assert conf.core.scan_paths == ["."]
    assert conf.daemon.watch_interval == 30
    assert conf.daemon.pull_interval == 60
    assert conf.daemon.rescan_interval == 300
    assert conf.daemon.auto_commit and conf.daemon.auto_push and conf.daemon.auto_pull
    assert "node_modules" in conf.files.exclude
    assert conf.limits.log_level == "info"


def test_config_defaults_are_not_shared() -> None:
    """Verifies that list defaults are independent between instances."""
    a, b = Config(), Config()
    a.files.exclude.append("*.bak")
    assert "*.bak" not in b.files.exclude


def test_config_presets() -> None:
    """Verifies that applying a preset updates the daemon intervals correctly."""
    conf = Config()

    conf.daemon.preset = "paranoid"
    conf.daemon.apply_preset()
    assert conf.daemon.watch_interval == 10
    assert conf.daemon.pull_interval == 30

    conf.daemon.preset = "lazy"
    conf.daemon.apply_preset()
    assert conf.daemon.watch_interval == 300
    assert conf.daemon.pull_interval == 900


def test_config_load_without_files_uses_defaults() -> None:
    """Verifies that the daemon can start with no configuration file at all."""
    conf = Config.load()
    assert conf == Config()


def test_config_load_merges_layers(
    tmp_path: Path, mocker: MagicMock
) -> None:
    """Verifies the cascading merge logic (Defaults -> Global -> Explicit file).

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    global_config_path = tmp_path / "global.toml"
    global_config_path.write_text(
        '[core]\ncommit_message = "sync"\n'
        '[daemon]\nwatch_interval = "45s"\nauto_pull = false\n'
        '[files]\nexclude = ["*.bak"]\n'
    )
    explicit = tmp_path / "git-air.toml"
    explicit.write_text(
        '[daemon]\nwatch_interval = "10s"\n[files]\nexclude = ["dist"]\n'
    )
    mocker.patch("git_air.config.CONFIG_FILE", global_config_path)

    conf = Config.load(explicit)

    assert conf.core.commit_message == "sync"  # From Global
    assert conf.daemon.watch_interval == 10  # Explicit overrides Global
    assert conf.daemon.auto_pull is False  # From Global
    assert "*.bak" in conf.files.exclude  # Appended by Global
    assert "dist" in conf.files.exclude  # Appended by Explicit
    assert "node_modules" in conf.files.exclude  # Defaults kept


def test_config_load_missing_explicit_file(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that a missing explicit config file falls back to defaults."""
    conf = Config.load(tmp_path / "absent.toml")
    assert conf == Config()
    assert "not found, using defaults" in caplog.text


def test_config_syntax_error_keeps_defaults(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that a malformed TOML file is reported and ignored."""
    broken = tmp_path / "broken.toml"
    broken.write_text("[daemon\nwatch_interval = ")

    conf = Config.load(broken)

    assert conf.daemon.watch_interval == 30
    assert "Config syntax error" in caplog.text


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_parse_time() -> None:
    """Verifies that human-readable times are correctly converted to seconds."""
    assert parse_time(50) == 50
    assert parse_time("30s") == 30
    assert parse_time("1.5s") == 1.5
    assert parse_time("10 min") == 600
    assert parse_time("2 hrs") == 7200

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_time("10 lightyears")


def test_config_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fall back to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.WARNING)

    local_toml = tmp_path / "git-air.toml"
    local_toml.write_text(
        "[core]\n"
        'scan_paths = "~/code"\n'
        "[daemon]\n"
        'pull_interval = "soon"\n'
        'auto_push = "yes"\n'
        'max_repos = "50"\n'
        'fake_setting = "ignored"\n'
        "[limits]\n"
        'log_level = "chatty"\n'
    )

    conf = Config.load(local_toml)

    assert conf.core.scan_paths == ["."]
    assert conf.daemon.pull_interval == 60
    assert conf.daemon.auto_push is True
    assert conf.daemon.max_repos == 100
    assert conf.limits.log_level == "info"

    assert "Unknown config keys in [daemon]: fake_setting" in caplog.text
    assert "Config error in [core].scan_paths: Expected a list of paths" in caplog.text
    assert "Config error in [daemon].pull_interval: Invalid time format" in caplog.text
    assert "Config error in [daemon].auto_push" in caplog.text
    assert "Config error in [daemon].max_repos: Expected a positive integer" in caplog.text
    assert "Config error in [limits].log_level: Invalid log level" in caplog.text


@pytest.mark.parametrize(
    "line",
    [
        "scan_paths = []",
        'scan_paths = ["~/code", 7]',
        "max_repos = 0",
        "max_repos = true",
    ],
)
def test_config_rejects_unusable_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture, line: str
) -> None:
    """Verifies that roots and the repository cap keep their defaults when unusable."""
    section = "core" if line.startswith("scan_paths") else "daemon"
    local_toml = tmp_path / "git-air.toml"
    local_toml.write_text(f"[{section}]\n{line}\n")

    conf = Config.load(local_toml)

    assert conf.core.scan_paths == ["."]
    assert conf.daemon.max_repos == 100
    assert "Falling back to default" in caplog.text


def test_config_accepts_valid_roots_and_cap(tmp_path: Path) -> None:
    local_toml = tmp_path / "git-air.toml"
    local_toml.write_text(
        '[core]\nscan_paths = ["~/code", "/srv/repos"]\n[daemon]\nmax_repos = 5\n'
    )

    conf = Config.load(local_toml)

    assert conf.core.scan_paths == ["~/code", "/srv/repos"]
    assert conf.daemon.max_repos == 5


def test_write_default_creates_template_once(tmp_path: Path) -> None:
    """Verifies that the template is written once and never overwrites user edits."""
    target = tmp_path / "nested" / "config.toml"

    Config.write_default(target)
    assert "[daemon]" in target.read_text()

    target.write_text("# mine\n")
    Config.write_default(target)
    assert target.read_text() == "# mine\n"

    # The template itself must parse back to defaults.
    Config.write_default(tmp_path / "fresh.toml")
    assert Config.load(tmp_path / "fresh.toml") == Config()
