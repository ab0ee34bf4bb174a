"""
Tmux Session Controller Module

The multiplexer collaborator: a small synchronous protocol the core depends
on, and the TmuxBackend that implements it by shelling out to ``tmux``.
"""

import logging
import subprocess
from typing import List, Optional, Protocol

from ..core.errors import SessionNotFound, TmuxError
from ..core.session_model import Pane, RawSession

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "\t"
SESSION_FORMAT = FIELD_SEPARATOR.join(["#{session_name}", "#{session_created}", "#{session_attached}"])
PANE_FORMAT = FIELD_SEPARATOR.join(["#{pane_id}", "#{pane_current_command}", "#{pane_current_path}", "#{pane_pid}"])

# stderr fragments meaning "nothing to list" rather than failure
EMPTY_SERVER_MARKERS = ("no server running", "no sessions", "error connecting to")
MISSING_SESSION_MARKERS = ("can't find session", "session not found")


class MultiplexerBackend(Protocol):
    """Operations the reconciler and executor need from a terminal multiplexer."""

    def list_sessions(self) -> List[RawSession]: ...

    def list_panes(self, session: str) -> List[Pane]: ...

    def capture_pane(self, pane_id: str, lines: int, strip_empty: bool = True) -> str: ...

    def current_session(self) -> Optional[str]: ...

    def switch_client(self, session: str) -> None: ...

    def kill_session(self, session: str) -> None: ...

    def rename_session(self, old_name: str, new_name: str) -> None: ...

    def new_session(self, name: str, path: str) -> None: ...

    def send_keys(self, target: str, text: str, enter: bool = True) -> None: ...


def trim_captured_lines(content: str, lines: int, strip_empty: bool = True) -> str:
    """
    Keep the last ``lines`` lines of captured pane text.

    With ``strip_empty`` blank lines are dropped first (status detection);
    without it interior blank lines survive and only trailing ones are
    trimmed (preview display).
    """
    all_lines = content.splitlines()
    if strip_empty:
        kept = [line for line in all_lines if line.strip()]
    else:
        end = len(all_lines)
        while end and not all_lines[end - 1].strip():
            end -= 1
        kept = all_lines[:end]
    if lines <= 0:
        return ""
    return "\n".join(kept[-lines:])


class TmuxBackend:
    """
    tmux command wrapper implementing MultiplexerBackend.

    Features:
    - Session and pane enumeration with tab-separated formats
    - Pane capture with escape sequences preserved
    - Session switch, kill, rename and creation
    - Optional socket isolation (-L name or -S path)
    """

    def __init__(self, socket: Optional[str] = None):
        """
        Initialize tmux backend.

        Args:
            socket: Socket name (``-L``) or, when it contains a path
                separator, socket path (``-S``)
        """
        self.socket = socket
        self.base_cmd = ["tmux"]
        if socket:
            self.base_cmd.extend(["-S" if "/" in socket else "-L", socket])

    def _run_tmux_command(self, cmd: List[str]) -> subprocess.CompletedProcess:
        """
        Run a tmux command.

        Args:
            cmd: Command arguments (without 'tmux' prefix)

        Returns:
            CompletedProcess result (non-zero exit codes are not raised)

        Raises:
            TmuxError: If tmux cannot be executed at all
        """
        full_cmd = self.base_cmd + cmd
        logger.debug(f"Tmux command: {' '.join(full_cmd)}")

        try:
            result = subprocess.run(full_cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            logger.error(f"Failed to run tmux command {full_cmd}: {e}")
            raise TmuxError(f"Failed to run tmux: {e}") from e

        if result.returncode != 0:
            logger.warning(f"Tmux command failed (rc={result.returncode}): {' '.join(cmd)}: {result.stderr.strip()}")

        return result

    def _check(self, result: subprocess.CompletedProcess, action: str, session: Optional[str] = None) -> None:
        if result.returncode == 0:
            return
        stderr = (result.stderr or "").strip()
        if session and any(marker in stderr for marker in MISSING_SESSION_MARKERS):
            raise SessionNotFound(session)
        raise TmuxError(f"Failed to {action}: {stderr or f'exit code {result.returncode}'}")

    def list_sessions(self) -> List[RawSession]:
        """
        List all tmux sessions in server order.

        Returns:
            List of RawSession (empty when no server is running)

        Raises:
            TmuxError: On any other tmux failure
        """
        result = self._run_tmux_command(["list-sessions", "-F", SESSION_FORMAT])

        if result.returncode != 0:
            stderr = (result.stderr or "").lower()
            if any(marker in stderr for marker in EMPTY_SERVER_MARKERS):
                return []
            self._check(result, "list sessions")

        sessions = []
        for line in result.stdout.splitlines():
            parts = line.split(FIELD_SEPARATOR)
            if len(parts) < 3:
                continue
            try:
                created = int(parts[1])
            except ValueError:
                created = 0
            sessions.append(RawSession(name=parts[0], created=created, attached=parts[2] not in ("", "0")))

        return sessions

    def list_panes(self, session: str) -> List[Pane]:
        """
        List the panes of every window in a session, in tmux order.

        Raises:
            SessionNotFound: Session vanished since enumeration
            TmuxError: On any other tmux failure
        """
        result = self._run_tmux_command(["list-panes", "-s", "-t", f"={session}", "-F", PANE_FORMAT])
        self._check(result, f"list panes of {session}", session)

        panes = []
        for line in result.stdout.splitlines():
            parts = line.split(FIELD_SEPARATOR)
            if len(parts) < 3:
                continue
            pid = None
            if len(parts) > 3 and parts[3].isdigit():
                pid = int(parts[3])
            panes.append(Pane(pane_id=parts[0], command=parts[1], current_path=parts[2], pid=pid))

        return panes

    def capture_pane(self, pane_id: str, lines: int, strip_empty: bool = True) -> str:
        """
        Capture the last lines of a pane, escape sequences included.

        Args:
            pane_id: tmux pane id (``%N``)
            lines: Number of lines to keep
            strip_empty: Drop blank lines before taking the tail

        Raises:
            TmuxError: If the pane cannot be captured
        """
        result = self._run_tmux_command(["capture-pane", "-t", pane_id, "-p", "-J", "-e"])
        self._check(result, f"capture pane {pane_id}")
        return trim_captured_lines(result.stdout, lines, strip_empty)

    def current_session(self) -> Optional[str]:
        """Name of the session the invoking client is attached to, if any."""
        try:
            result = self._run_tmux_command(["display-message", "-p", "#{session_name}"])
        except TmuxError:
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def switch_client(self, session: str) -> None:
        result = self._run_tmux_command(["switch-client", "-t", f"={session}"])
        self._check(result, f"switch to session {session}", session)

    def kill_session(self, session: str) -> None:
        result = self._run_tmux_command(["kill-session", "-t", f"={session}"])
        self._check(result, f"kill session {session}", session)
        logger.info(f"Killed tmux session {session}")

    def rename_session(self, old_name: str, new_name: str) -> None:
        result = self._run_tmux_command(["rename-session", "-t", f"={old_name}", new_name])
        self._check(result, f"rename session {old_name} to {new_name}", old_name)
        logger.info(f"Renamed tmux session {old_name} -> {new_name}")

    def new_session(self, name: str, path: str) -> None:
        """Create a detached session rooted at ``path``."""
        result = self._run_tmux_command(["new-session", "-d", "-s", name, "-c", str(path)])
        self._check(result, f"create session {name}")
        logger.info(f"Created tmux session {name} in {path}")

    def send_keys(self, target: str, text: str, enter: bool = True) -> None:
        cmd = ["send-keys", "-t", target, "-l", text]
        result = self._run_tmux_command(cmd)
        self._check(result, f"send keys to {target}")
        if enter:
            result = self._run_tmux_command(["send-keys", "-t", target, "Enter"])
            self._check(result, f"send Enter to {target}")
