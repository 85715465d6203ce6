"""Tests for the command-line interface."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_air import cli
from git_air.config import Config
from git_air.scanner import RemoteTarget, RepositoryDescriptor
from git_air.worker import CommitResult, PullResult


@pytest.fixture(autouse=True)
def quiet_config(mocker: MagicMock) -> None:
    """Keeps tests independent of any config file on the machine."""
    mocker.patch("git_air.cli.Config.load", return_value=Config())


def test_apply_overrides() -> None:
    """Verifies that flags replace the configured values."""
    args = cli.build_parser().parse_args(
        ["run", "--scan", "~/code, /srv/repos", "--watch", "10s", "--pull", "2m", "--log", "debug"]
    )

    config = cli.apply_overrides(Config(), args)

    assert config.core.scan_paths == ["~/code", "/srv/repos"]
    assert config.daemon.watch_interval == 10
    assert config.daemon.pull_interval == 120
    assert config.limits.log_level == "debug"


def test_apply_overrides_dir() -> None:
    args = cli.build_parser().parse_args(["run", "--dir", "/tmp/notes"])
    assert cli.apply_overrides(Config(), args).core.scan_paths == ["/tmp/notes"]


def test_invalid_interval_exits(capsys: pytest.CaptureFixture) -> None:
    """Verifies that a malformed interval is rejected before the daemon starts."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["run", "--watch", "often"])

    assert exc_info.value.code == 2
    assert "Invalid time format" in capsys.readouterr().out


def test_default_command_runs_daemon(mocker: MagicMock) -> None:
    """Verifies that running without a subcommand starts the daemon."""
    mock_main = mocker.patch("git_air.cli.daemon.main")

    cli.main([])

    mock_main.assert_called_once()
    assert mock_main.call_args.kwargs["interactive"] is False


def test_run_foreground(mocker: MagicMock) -> None:
    mock_main = mocker.patch("git_air.cli.daemon.main")

    cli.main(["run", "--foreground", "--dir", "/tmp/notes"])

    config = mock_main.call_args.args[0]
    assert config.core.scan_paths == ["/tmp/notes"]
    assert mock_main.call_args.kwargs["interactive"] is True


def test_status_lists_repositories(
    mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies the status table and the shared-remote summary."""
    mocker.patch("git_air.cli._daemon_pid", return_value=None)
    mocker.patch(
        "git_air.cli.scanner.scan",
        return_value=[
            RepositoryDescriptor(
                Path("/w/api"), "api", [RemoteTarget("origin", "git@github.com:me/api.git")]
            ),
            RepositoryDescriptor(
                Path("/w/api-mirror"),
                "api-mirror",
                [RemoteTarget("origin", "https://github.com/me/api")],
            ),
            RepositoryDescriptor(Path("/w/notes"), "notes"),
        ],
    )

    cli.main(["status"])

    out = capsys.readouterr().out
    assert "Stopped" in out
    assert "api-mirror" in out
    assert "local only" in out
    assert "3 repositories, 1 unique remotes" in out


def test_status_without_repositories(
    mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    mocker.patch("git_air.cli._daemon_pid", return_value=4242)
    mocker.patch("git_air.cli.scanner.scan", return_value=[])

    cli.main(["status"])

    out = capsys.readouterr().out
    assert "Running" in out and "4242" in out
    assert "No git repositories found" in out


def test_now_reports_outcomes(mocker: MagicMock, capsys: pytest.CaptureFixture) -> None:
    """Verifies the one-shot pass summary line per repository."""
    mocker.patch("git_air.cli.daemon.setup_logging")
    mocker.patch(
        "git_air.cli.daemon.run_once",
        return_value={
            Path("/w/site"): (
                CommitResult(committed=True, pushed=["origin"]),
                PullResult(),
            ),
            Path("/w/notes"): (CommitResult(), PullResult(pulled_from="backup")),
        },
    )

    cli.main(["now"])

    out = capsys.readouterr().out
    assert "site: committed; pushed to origin" in out
    assert "notes: pulled from backup" in out


def test_config_init_writes_template(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    target = tmp_path / "config.toml"
    mocker.patch("git_air.cli.CONFIG_FILE", target)

    cli.main(["config", "--init"])
    cli.main(["config", "--init"])

    assert target.exists()
    assert "already exists" in capsys.readouterr().out
