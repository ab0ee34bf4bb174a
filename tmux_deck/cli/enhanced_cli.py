"""
Enhanced CLI Module

Command-line interface with rich output: the interactive session popup plus
scriptable commands for listing sessions, inspecting git context and
managing worktrees.
"""

import argparse
import json
import sys
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..core.controller import AppState, InteractionController
from ..core.errors import DeckError, PartialDelete
from ..core.executor import ActionExecutor
from ..core.reconciler import SessionReconciler
from ..core.session_model import AgentStatus, GitContext, Session
from ..git.worktree_manager import SHORT_SHA_LENGTH, WorktreeManager
from ..monitoring.refresh_worker import RefreshWorker
from ..monitoring.status_classifier import classify
from ..tmux.session_controller import TmuxBackend
from ..utils.config_loader import ConfigLoader, DeckConfig
from ..utils.system_utils import SystemUtils

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    AgentStatus.WORKING: "green",
    AgentStatus.IDLE: "blue",
    AgentStatus.WAITING_INPUT: "yellow",
    AgentStatus.UNKNOWN: "dim",
}


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def session_to_dict(session: Session) -> Dict[str, Any]:
    """Plain-data view of a session for --json output."""
    return _to_jsonable(asdict(session))


class EnhancedCLI:
    """
    Command-line interface for tmux-deck.

    Features:
    - Interactive session popup (default command)
    - Rich tables for sessions, branches and git context
    - Worktree creation and guarded removal
    - Status classification of arbitrary captured text
    """

    def __init__(self, config_loader: Optional[ConfigLoader] = None):
        """
        Initialize CLI.

        Args:
            config_loader: Loader to use instead of one built from --config-dir
        """
        self.config_loader = config_loader
        self.config = DeckConfig()
        self.parser = self._create_argument_parser()

    def error(self, message: str) -> None:
        """Display error message."""
        err_console.print(f"[red]❌ {message}[/red]")

    def success(self, message: str) -> None:
        """Display success message."""
        console.print(f"[green]✅ {message}[/green]")

    def warning(self, message: str) -> None:
        """Display warning message."""
        err_console.print(f"[yellow]⚠️  {message}[/yellow]")

    def info(self, message: str) -> None:
        """Display info message."""
        console.print(f"[blue]ℹ️  {message}[/blue]")

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with provided arguments.

        Args:
            args: Command-line arguments (defaults to sys.argv)

        Returns:
            Exit code (0 success, 1 error, 130 interrupted)
        """
        try:
            parsed_args = self.parser.parse_args(args)
            self._configure(parsed_args)
            func = getattr(parsed_args, "func", None) or self._cmd_ui
            return func(parsed_args)

        except KeyboardInterrupt:
            err_console.print("\n[yellow]Operation cancelled by user[/yellow]")
            return 130
        except PartialDelete as e:
            self.error(f"{e}")
            self.warning(f"git no longer tracks the worktree; remove {e.leftover_path} manually")
            return 1
        except DeckError as e:
            self.error(str(e))
            return 1

    def _configure(self, args: argparse.Namespace) -> None:
        """Load configuration, apply CLI overrides and set up logging."""
        from ..main import setup_logging

        loader = self.config_loader or ConfigLoader(args.config_dir)
        self.config = loader.load_deck_config()
        if args.socket:
            self.config.tmux_socket = args.socket

        level = self.config.log_level
        if args.verbose >= 1:
            level = "DEBUG"

        interactive = getattr(args, "func", None) in (None, self._cmd_ui)
        setup_logging(level, self.config.log_path, console=not interactive)

    def _create_argument_parser(self) -> argparse.ArgumentParser:
        """Create argument parser with all commands."""
        parser = argparse.ArgumentParser(
            prog="tmux-deck",
            description="Session switcher and worktree manager for tmux-hosted coding agents",
            epilog="Use 'tmux-deck <command> --help' for command-specific help"
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"tmux-deck {__version__}"
        )

        parser.add_argument(
            "--verbose", "-v",
            action="count",
            default=0,
            help="Enable debug logging"
        )

        parser.add_argument(
            "--config-dir",
            type=Path,
            help="Configuration directory (default: $TMUX_DECK_CONFIG_DIR or ~/.config/tmux-deck)"
        )

        parser.add_argument(
            "--socket",
            help="tmux socket name (-L) or path (-S)"
        )

        subparsers = parser.add_subparsers(
            title="commands",
            dest="command"
        )

        ui_parser = subparsers.add_parser("ui", help="Open the interactive session popup (default)")
        ui_parser.set_defaults(func=self._cmd_ui)

        list_parser = subparsers.add_parser("list", help="List sessions with agent status and git context")
        list_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
        list_parser.set_defaults(func=self._cmd_list)

        status_parser = subparsers.add_parser("status", help="Show git context for a path")
        status_parser.add_argument("path", type=Path, help="Directory to inspect")
        status_parser.set_defaults(func=self._cmd_status)

        branches_parser = subparsers.add_parser("branches", help="List local branches of a repository")
        branches_parser.add_argument("path", type=Path, help="Path inside the repository")
        branches_parser.set_defaults(func=self._cmd_branches)

        self._add_worktree_commands(subparsers)

        classify_parser = subparsers.add_parser("classify", help="Classify captured pane text")
        classify_parser.add_argument("file", nargs="?", type=Path, help="File to read (default: stdin)")
        classify_parser.set_defaults(func=self._cmd_classify)

        return parser

    def _add_worktree_commands(self, subparsers) -> None:
        """Add worktree management commands."""
        worktree_parser = subparsers.add_parser(
            "worktree",
            help="Worktree management",
            description="Create and remove linked git worktrees"
        )
        worktree_subparsers = worktree_parser.add_subparsers(dest="worktree_action", required=True)

        list_parser = worktree_subparsers.add_parser("list", help="List worktrees of a repository")
        list_parser.add_argument("repo", type=Path, help="Path inside the repository")
        list_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
        list_parser.set_defaults(func=self._cmd_worktree_list)

        add_parser = worktree_subparsers.add_parser("add", help="Create a worktree")
        add_parser.add_argument("repo", type=Path, help="Source repository")
        add_parser.add_argument("path", type=Path, help="New worktree directory")
        add_parser.add_argument("branch", help="Branch to check out")
        add_parser.add_argument("--new-branch", "-b", action="store_true",
                                help="Create the branch at the current HEAD")
        add_parser.set_defaults(func=self._cmd_worktree_add)

        remove_parser = worktree_subparsers.add_parser("remove", help="Delete a worktree")
        remove_parser.add_argument("path", type=Path, help="Worktree directory")
        remove_parser.add_argument("--force", "-f", action="store_true",
                                   help="Delete even if dirty, locked or prunable")
        remove_parser.set_defaults(func=self._cmd_worktree_remove)

    def _backend(self) -> TmuxBackend:
        return TmuxBackend(socket=self.config.tmux_socket)

    def _reconciler(self, backend: TmuxBackend) -> SessionReconciler:
        resolver = SystemUtils.resolve_pane_command if self.config.resolve_wrapped_commands else None
        return SessionReconciler(
            backend,
            WorktreeManager(),
            agent_command=self.config.agent_command,
            capture_lines=self.config.capture_lines,
            command_resolver=resolver,
        )

    def _cmd_ui(self, args) -> int:
        """Handle the interactive popup."""
        from .interactive import SessionPopup

        if not sys.stdin.isatty() or not sys.stdout.isatty():
            self.error("The interactive popup needs a terminal")
            return 1
        if not SystemUtils.check_command_availability("tmux"):
            self.error("tmux is not installed or not in PATH")
            return 1

        backend = self._backend()
        git = WorktreeManager()
        executor = ActionExecutor(
            backend,
            git,
            agent_command=self.config.agent_command,
            start_agent=self.config.start_agent_in_new_sessions,
            use_github=self.config.github_enabled,
        )
        state = AppState(current_session=backend.current_session())
        controller = InteractionController(executor, state=state, preview_lines=self.config.preview_lines)
        worker = RefreshWorker(self._reconciler(backend), interval=self.config.refresh_interval)
        return SessionPopup(controller, worker).run()

    def _cmd_list(self, args) -> int:
        """Handle list command."""
        sessions = self._reconciler(self._backend()).reconcile()

        if args.json:
            print(json.dumps([session_to_dict(s) for s in sessions], indent=2))
            return 0

        if not sessions:
            self.info("No tmux sessions")
            return 0

        table = Table(title="tmux Sessions")
        table.add_column("", justify="center")
        table.add_column("Session", style="bold")
        table.add_column("Status")
        table.add_column("Branch")
        table.add_column("Path")

        for session in sessions:
            status = session.agent_status
            if status is None:
                status_cell = "[dim]-[/dim]"
            else:
                style = STATUS_STYLES[status]
                status_cell = f"[{style}]{status.symbol} {status.value}[/{style}]"
            table.add_row(
                "*" if session.attached else "",
                session.name,
                status_cell,
                self._branch_cell(session.git_context),
                session.display_path(),
            )

        console.print(table)
        return 0

    def _branch_cell(self, context: Optional[GitContext]) -> str:
        if context is None:
            return ""
        cell = context.branch
        if context.dirty:
            cell += " [red]*[/red]"
        if context.sync_summary:
            cell += f" [yellow]{context.sync_summary}[/yellow]"
        if context.is_worktree:
            cell += " [cyan](worktree)[/cyan]"
        return cell

    def _cmd_status(self, args) -> int:
        """Handle status command."""
        context = WorktreeManager().detect(args.path)
        if context is None:
            self.warning(f"{args.path} is not inside a git repository")
            return 1

        lines = [
            f"[bold]Branch:[/bold] {context.branch}",
            f"[bold]Repository:[/bold] {context.repository_path}",
            f"[bold]Dirty:[/bold] {'yes' if context.dirty else 'no'}"
            f" (staged: {'yes' if context.has_staged else 'no'}, unstaged: {'yes' if context.has_unstaged else 'no'})",
            f"[bold]Worktree:[/bold] {'yes' if context.is_worktree else 'no'}",
        ]
        if context.is_worktree:
            lines.append(f"[bold]Main repository:[/bold] {context.main_repository_path}")
        if context.has_upstream:
            lines.append(f"[bold]Upstream:[/bold] ahead {context.ahead}, behind {context.behind}")
        elif context.has_remote:
            lines.append("[bold]Upstream:[/bold] none (branch not pushed)")
        else:
            lines.append("[bold]Upstream:[/bold] no remotes")

        console.print(Panel("\n".join(lines), title=str(args.path), border_style="blue"))
        return 0

    def _cmd_branches(self, args) -> int:
        """Handle branches command."""
        for branch in WorktreeManager().list_branches(args.path):
            console.print(branch)
        return 0

    def _cmd_worktree_list(self, args) -> int:
        """Handle worktree list command."""
        entries = WorktreeManager().list_worktrees(args.repo)

        if args.json:
            print(json.dumps(entries, indent=2))
            return 0

        table = Table(title="Worktrees")
        table.add_column("Path", style="bold")
        table.add_column("Branch")
        table.add_column("HEAD")
        table.add_column("Notes")

        for entry in entries:
            branch = entry.get("branch", "")
            if branch.startswith("refs/heads/"):
                branch = branch[len("refs/heads/"):]
            if "detached" in entry:
                branch = "[dim](detached)[/dim]"
            notes = [key for key in ("bare", "locked", "prunable") if key in entry]
            table.add_row(
                entry["worktree"],
                branch,
                entry.get("HEAD", "")[:SHORT_SHA_LENGTH],
                ", ".join(notes),
            )

        console.print(table)
        return 0

    def _cmd_worktree_add(self, args) -> int:
        """Handle worktree add command."""
        created = WorktreeManager().create_worktree(args.repo, args.path, args.branch, args.new_branch)
        self.success(f"Created worktree {created} on branch {args.branch}")
        return 0

    def _cmd_worktree_remove(self, args) -> int:
        """Handle worktree remove command."""
        removed = WorktreeManager().delete_worktree(args.path, force=args.force)
        self.success(f"Removed worktree {removed}")
        return 0

    def _cmd_classify(self, args) -> int:
        """Handle classify command."""
        if args.file is not None:
            try:
                text = args.file.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                self.error(f"Cannot read {args.file}: {e}")
                return 1
        else:
            text = sys.stdin.read()
        print(classify(text).value)
        return 0
