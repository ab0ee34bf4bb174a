"""
Session Model Module

Immutable snapshot types produced by a reconciliation pass. A pass builds new
objects every time; nothing here is mutated after construction, so a session
that disappears and comes back is always a fresh object.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


class AgentStatus(Enum):
    """Best-effort status of the agent process in a pane."""
    WORKING = "working"
    IDLE = "idle"
    WAITING_INPUT = "waiting_input"
    UNKNOWN = "unknown"

    @property
    def symbol(self) -> str:
        """Single glyph used in session lists."""
        return {
            AgentStatus.WORKING: "●",
            AgentStatus.IDLE: "○",
            AgentStatus.WAITING_INPUT: "◐",
            AgentStatus.UNKNOWN: "?",
        }[self]


@dataclass(frozen=True)
class Pane:
    """One tmux pane as reported by the backend."""
    pane_id: str
    command: str
    current_path: str
    pid: Optional[int] = None


@dataclass(frozen=True)
class RawSession:
    """Session row straight from ``tmux list-sessions``."""
    name: str
    created: int
    attached: bool


@dataclass(frozen=True)
class GitContext:
    """
    Git facts for the directory an agent pane is working in.

    ``has_upstream``, ``ahead`` and ``behind`` describe the checked-out
    branch's tracking branch; they stay False/0 on a detached HEAD or when
    no valid tracking branch is configured.
    """
    branch: str
    dirty: bool
    is_worktree: bool
    repository_path: str
    main_repository_path: Optional[str] = None
    has_staged: bool = False
    has_unstaged: bool = False
    has_remote: bool = False
    has_upstream: bool = False
    ahead: int = 0
    behind: int = 0

    def __post_init__(self):
        if self.is_worktree != (self.main_repository_path is not None):
            raise ValueError("main_repository_path must be set exactly when is_worktree is true")

    @property
    def source_repository(self) -> str:
        """Repository new worktrees should be created from."""
        return self.main_repository_path if self.is_worktree else self.repository_path

    @property
    def sync_summary(self) -> str:
        """Ahead/behind marker such as "↑2 ↓1"; empty when in sync or untracked."""
        parts = []
        if self.ahead:
            parts.append(f"↑{self.ahead}")
        if self.behind:
            parts.append(f"↓{self.behind}")
        return " ".join(parts)


@dataclass(frozen=True)
class Session:
    """A tmux session enriched with agent status and git context."""
    name: str
    created: int
    attached: bool
    working_directory: str
    panes: Tuple[Pane, ...] = field(default_factory=tuple)
    agent_pane: Optional[str] = None
    agent_status: Optional[AgentStatus] = None
    git_context: Optional[GitContext] = None

    @property
    def has_agent(self) -> bool:
        return self.agent_pane is not None

    @property
    def is_worktree(self) -> bool:
        return self.git_context is not None and self.git_context.is_worktree

    def display_path(self) -> str:
        """Working directory with the home directory shown as ``~``."""
        if not self.working_directory:
            return ""
        home = str(Path.home())
        path = self.working_directory
        if path == home:
            return "~"
        if path.startswith(home + "/"):
            return "~" + path[len(home):]
        return path
