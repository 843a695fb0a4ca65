from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from functools import partial
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from task_pod_runner import (
    ClusterEngine,
    ExecutionResult,
    RunnerSettings,
    create_engine,
    list_execution_units,
    run_command,
)
from task_pod_runner.execution import ApiError
from task_pod_runner.logging_config import configure_logging

_CONSOLE = Console(no_color=False)
LOG = logging.getLogger("task_pod_runner.cli")
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles."""

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich."""

    def error(self, message: str) -> Never:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running commands in execution pods."""
    parser = _RichArgumentParser(
        prog="tpr",
        description=(
            "task-pod-runner CLI\n"
            "Run shell commands in short-lived, resource-limited pods.\n"
            "Every pod is deleted once its command finishes or times out."
        ),
        epilog=(
            "Quick Examples:\n"
            "  tpr run 64f1c2 'echo hello'\n"
            "  tpr list units\n"
            "  tpr cleanup\n\n"
            "Configuration Examples:\n"
            "  tpr --namespace tasks run 64f1c2 'uname -a'\n"
            "  tpr --config /etc/tpr/settings.toml list units\n"
            "  tpr --backend local run 64f1c2 'ls -la | wc -l'"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a settings TOML file with a [runner] table.\n"
            "Defaults to $TPR_CONFIG, then bundled defaults.\n"
            "TPR_* environment overrides apply on top of the file."
        ),
    )
    parser.add_argument(
        "--backend",
        choices=["cluster", "local"],
        help="Execution backend (default: cluster).",
    )
    parser.add_argument(
        "--namespace",
        help="Kubernetes namespace for execution pods (default: default).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Log level for runner diagnostics, case-insensitive (default: WARNING).",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one task command and print its output.",
        description=(
            "Run a shell command for a task and wait for it to finish.\n"
            "The command runs through `sh -c`, so pipes and redirects work."
        ),
        epilog=(
            "Examples:\n"
            "  tpr run 64f1c2 'echo hello'\n"
            "  tpr run nightly-report 'date; df -h'"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("task_id", help="Task identifier used in the pod name.")
    run_cmd.add_argument("shell_command", help="Shell command to execute.")

    list_cmd = sub.add_parser(
        "list",
        help="List live execution units.",
        description="List pods labeled as task executions in the namespace.",
        formatter_class=_HELP_FORMATTER,
    )
    list_cmd_sub = list_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    list_cmd_sub.add_parser(
        "units",
        help="List execution pods with phase and creation time.",
        description="Show name, phase and creation time of each execution pod.",
        formatter_class=_HELP_FORMATTER,
    )

    sub.add_parser(
        "cleanup",
        help="Delete execution pods left behind after finishing.",
        description=(
            "Delete labeled pods in Succeeded or Failed phase.\n"
            "Running pods are never touched."
        ),
        epilog=(
            "Example:\n"
            "  tpr cleanup"
        ),
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_settings(args: argparse.Namespace) -> RunnerSettings:
    """Resolve settings from the config file, environment and CLI flags."""
    settings = RunnerSettings.from_env(config_path=args.config)
    overrides: dict[str, Any] = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.namespace:
        overrides["namespace"] = args.namespace
    return replace(settings, **overrides) if overrides else settings


def _print_result(task_id: str, result: ExecutionResult) -> None:
    table = Table(title=f"Execution of task {task_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Start", result.start_time.isoformat())
    table.add_row("End", result.end_time.isoformat())
    _CONSOLE.print(table)
    _CONSOLE.print(Panel(Text(result.output), title="Output", border_style="green"))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `tpr` CLI command handler."""
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.log_level)
    try:
        settings = build_settings(args)
        engine = create_engine(settings)
    except (ValueError, RuntimeError) as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {exc}", border_style="red"))
        return 1

    if args.command == "run":
        result = run_command(args.task_id, args.shell_command, engine=engine)
        _print_result(args.task_id, result)
        return 0
    if args.command == "list" and args.resource == "units":
        _CONSOLE.print(list_execution_units(engine), markup=False, highlight=False)
        return 0
    if args.command == "cleanup":
        if not isinstance(engine, ClusterEngine):
            _CONSOLE.print(
                Panel.fit(f"Backend '{settings.backend}' has no units to clean up.", style="bold red")
            )
            return 1
        try:
            summary = engine.cleanup_stale()
        except ApiError as exc:
            _CONSOLE.print(Panel.fit(f"[bold red]Cleanup failed:[/bold red] {exc}", border_style="red"))
            return 1
        LOG.info("Cleanup removed %s pod(s)", summary.removed_units)
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
        return 0

    parser.error("Unhandled command")
