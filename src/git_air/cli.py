import argparse
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import daemon, scanner
from .config import Config, parse_time
from .constants import APP_NAME, CONFIG_FILE, PID_FILE

logger = logging.getLogger(APP_NAME)
console = Console()


def _daemon_pid() -> int | None:
    """Returns the PID of the running daemon, or None if it is not running."""
    if not PID_FILE.exists():
        return None
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
    except (ValueError, OSError):
        return None
    return pid


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Layers command-line flags over the loaded configuration.

    Args:
        config (Config): The configuration loaded from disk.
        args (argparse.Namespace): Parsed flags; unset flags are None.

    Returns:
        Config: The same instance, updated in place.
    """
    if getattr(args, "scan", None):
        config.core.scan_paths = [p.strip() for p in args.scan.split(",") if p.strip()]
    elif getattr(args, "dir", None):
        config.core.scan_paths = [args.dir]
    if getattr(args, "watch", None):
        config.daemon.watch_interval = parse_time(args.watch)
    if getattr(args, "pull", None):
        config.daemon.pull_interval = parse_time(args.pull)
    if getattr(args, "log", None):
        config.limits.log_level = args.log
    return config


def show_status(config: Config) -> None:
    """Displays daemon liveness and every repository the daemon would manage."""
    pid = _daemon_pid()
    if pid:
        console.print(f"Daemon: [bold green]Running[/bold green] (pid {pid})")
    else:
        console.print("Daemon: [bold red]Stopped[/bold red]")

    with console.status("Scanning for repositories...", spinner="dots"):
        repositories = scanner.scan(config.core.scan_paths, config.files.exclude)

    if not repositories:
        console.print("[yellow]No git repositories found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Path", style="dim")
    table.add_column("Remotes")
    table.add_column("Type", justify="right")

    for repo in repositories:
        display_path = str(repo.path).replace(str(Path.home()), "~")
        remotes = ", ".join(r.name for r in repo.remotes) or "[yellow]local only[/yellow]"
        kind = "multi-module" if repo.is_multi_module else "simple"
        table.add_row(repo.name, display_path, remotes, kind)

    console.print(table)
    groups = scanner.group_by_remote(repositories)
    console.print(
        f"Summary: {len(repositories)} repositories, {len(groups)} unique remotes"
    )


def run_now(config: Config) -> None:
    """Runs a single commit/push/pull pass in the foreground."""
    daemon.setup_logging(True, config.limits.log_level)
    results = daemon.run_once(config)
    if not results:
        console.print("[yellow]No git repositories found.[/yellow]")
        return

    for path, (commit, pull) in results.items():
        parts = []
        if commit.committed:
            parts.append("committed")
        if commit.pushed:
            parts.append(f"pushed to {', '.join(commit.pushed)}")
        if commit.push_errors:
            failed = ", ".join(e.remote for e in commit.push_errors)
            parts.append(f"[red]push failed: {failed}[/red]")
        if commit.aborted:
            parts.append(f"[yellow]{commit.aborted}[/yellow]")
        if pull.pulled_from:
            parts.append(f"pulled from {pull.pulled_from}")
        if pull.errors:
            parts.append(f"[red]{len(pull.errors)} pull error(s)[/red]")
        console.print(f"[cyan]{path.name}[/cyan]: {'; '.join(parts) or 'up to date'}")


def show_config(config: Config, init: bool) -> None:
    """Prints the effective configuration, or writes the template file."""
    if init:
        if CONFIG_FILE.exists():
            console.print(f"Config already exists at [cyan]{CONFIG_FILE}[/cyan].")
            return
        Config.write_default(CONFIG_FILE)
        console.print(f"[bold green]✔ Wrote[/bold green] [cyan]{CONFIG_FILE}[/cyan]")
        return

    table = Table(title="Effective Configuration", show_header=True)
    table.add_column("Key", style="bold cyan")
    table.add_column("Value")
    for section_name in ("core", "daemon", "files", "limits"):
        section = getattr(config, section_name)
        for key in section.__dataclass_fields__:
            table.add_row(f"{section_name}.{key}", str(getattr(section, key)))
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keep every git repository under a directory committed and in sync.",
    )
    parser.add_argument("--config", type=Path, help="Path to a TOML config file")

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the sync daemon (default)")
    run_parser.add_argument("--dir", help="Directory to monitor (default: .)")
    run_parser.add_argument("--scan", help="Comma-separated paths to scan for repositories")
    run_parser.add_argument("--watch", help="Interval between commit checks (e.g. 30s)")
    run_parser.add_argument("--pull", help="Interval between remote checks (e.g. 1m)")
    run_parser.add_argument(
        "--log",
        choices=["debug", "info", "warning", "error"],
        help="Log level",
    )
    run_parser.add_argument(
        "--foreground",
        action="store_true",
        help="Log to stdout only (no log file, no PID file)",
    )

    status_parser = subparsers.add_parser(
        "status", help="Show daemon status and discovered repositories"
    )
    status_parser.add_argument("--scan", help="Comma-separated paths to scan")

    now_parser = subparsers.add_parser("now", help="Sync every repository once and exit")
    now_parser.add_argument("--scan", help="Comma-separated paths to scan")

    config_parser = subparsers.add_parser("config", help="Show or create configuration")
    config_parser.add_argument(
        "--init", action="store_true", help=f"Write a template to {CONFIG_FILE}"
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Git Air CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = Config.load(args.config)
    try:
        apply_overrides(config, args)
    except ValueError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(2)

    if args.command == "status":
        show_status(config)
        return
    elif args.command == "now":
        run_now(config)
        return
    elif args.command == "config":
        show_config(config, args.init)
        return

    # Default Action (run, or no subcommand at all)
    daemon.main(config, interactive=getattr(args, "foreground", False))


if __name__ == "__main__":
    main()
