"""
Session Reconciler Module

Turns raw tmux observations into the enriched session list: finds the agent
pane of each session, classifies its status from captured output and
resolves the git context of its working directory. Every pass builds a new
list from scratch.
"""

import logging
from typing import Callable, Iterable, List, Optional, Sequence

from ..git.worktree_manager import WorktreeManager
from ..monitoring.status_classifier import classify
from ..tmux.session_controller import MultiplexerBackend
from ..utils.system_utils import SystemUtils
from .errors import DeckError, SessionNotFound
from .session_model import AgentStatus, Pane, RawSession, Session

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_CAPTURE_LINES = 15

CommandResolver = Callable[[str, Optional[int]], str]


def sort_sessions(sessions: Iterable[Session]) -> List[Session]:
    """Attached sessions first, then by name."""
    return sorted(sessions, key=lambda s: (not s.attached, s.name))


class SessionReconciler:
    """
    Builds the session list from backend truth.

    Features:
    - Agent pane detection (first pane whose command matches the agent)
    - Status classification of the agent pane's recent output
    - Git context for the agent pane's working directory
    - Full and targeted (named sessions only) passes
    """

    def __init__(self,
                 backend: MultiplexerBackend,
                 git: Optional[WorktreeManager] = None,
                 agent_command: str = DEFAULT_AGENT_COMMAND,
                 capture_lines: int = DEFAULT_CAPTURE_LINES,
                 command_resolver: Optional[CommandResolver] = SystemUtils.resolve_pane_command):
        """
        Initialize reconciler.

        Args:
            backend: Multiplexer to query
            git: Git context resolver
            agent_command: Command name identifying the agent pane
            capture_lines: Non-empty lines captured for classification
            command_resolver: Maps (pane command, pane pid) to the real
                program name; None disables resolution
        """
        self.backend = backend
        self.git = git or WorktreeManager()
        self.agent_command = agent_command
        self.capture_lines = capture_lines
        self.command_resolver = command_resolver

    def reconcile(self) -> List[Session]:
        """
        Run a full pass.

        Returns:
            New, sorted list of sessions

        Raises:
            BackendUnavailable: If sessions cannot be enumerated
        """
        raw_sessions = self.backend.list_sessions()
        sessions = [self._build_session(raw) for raw in raw_sessions]
        logger.debug(f"Reconciled {len(sessions)} sessions")
        return sort_sessions(sessions)

    def reconcile_sessions(self, previous: Sequence[Session], names: Iterable[str]) -> List[Session]:
        """
        Run a targeted pass for the named sessions.

        Named sessions are dropped from ``previous`` and rebuilt if they still
        exist; all other sessions are carried over as they are.

        Args:
            previous: Last published list (not modified)
            names: Sessions to rebuild (old and new names after a rename)

        Returns:
            New, sorted list of sessions
        """
        targets = set(names)
        kept = [session for session in previous if session.name not in targets]
        known = {session.name for session in kept}

        for raw in self.backend.list_sessions():
            if raw.name in targets and raw.name not in known:
                kept.append(self._build_session(raw))

        return sort_sessions(kept)

    def is_agent_command(self, command: str) -> bool:
        return command == self.agent_command or self.agent_command in command

    def find_agent_pane(self, panes: Sequence[Pane]) -> Optional[Pane]:
        """First pane (in tmux order) running the agent."""
        for pane in panes:
            command = pane.command
            if self.command_resolver is not None:
                command = self.command_resolver(pane.command, pane.pid)
            if self.is_agent_command(command):
                return pane
        return None

    def _build_session(self, raw: RawSession) -> Session:
        try:
            panes = tuple(self.backend.list_panes(raw.name))
        except SessionNotFound:
            logger.debug(f"Session {raw.name} vanished during reconciliation")
            panes = ()
        except DeckError as e:
            logger.warning(f"Could not list panes for session {raw.name}: {e}")
            panes = ()

        agent = self.find_agent_pane(panes)
        if agent is None:
            return Session(
                name=raw.name,
                created=raw.created,
                attached=raw.attached,
                working_directory=panes[0].current_path if panes else "",
                panes=panes,
            )

        return Session(
            name=raw.name,
            created=raw.created,
            attached=raw.attached,
            working_directory=agent.current_path,
            panes=panes,
            agent_pane=agent.pane_id,
            agent_status=self._classify_pane(agent),
            git_context=self.git.detect(agent.current_path),
        )

    def _classify_pane(self, pane: Pane) -> AgentStatus:
        try:
            text = self.backend.capture_pane(pane.pane_id, self.capture_lines, strip_empty=True)
        except DeckError as e:
            logger.debug(f"Capture failed for pane {pane.pane_id}: {e}")
            return AgentStatus.UNKNOWN
        return classify(text)
