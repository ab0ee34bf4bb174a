"""
tmux-deck - Session Switcher for tmux-hosted Coding Agents

Enriches tmux sessions with agent status (working, idle, waiting for input)
and git context (branch, dirty state, upstream, worktree relationship), and drives
switch, rename, kill, worktree, git and pull request actions from a keyboard
popup.

The package is organised as:
- core: session model, reconciler, interaction controller and executor
- git: git context resolution, worktree lifecycle, index and remote
  operations, and GitHub pull requests through gh
- tmux: the multiplexer backend
- monitoring: status classifier and background refresh worker
- utils: configuration, file and process helpers
- cli: argparse commands and the curses popup
"""

__version__ = "0.3.0"
__author__ = "tmux-deck contributors"
__description__ = "Session switcher and worktree manager for tmux-hosted coding agents"

from .core.errors import (
    BackendUnavailable,
    BranchNotFound,
    DeckError,
    DirtyWorktree,
    GitBackendError,
    GitHubError,
    NotAWorktree,
    NotFoundError,
    PartialDelete,
    PartialFailure,
    PathConflict,
    PreconditionFailed,
    RepositoryError,
    SessionNotFound,
    TmuxError,
)
from .core.session_model import AgentStatus, GitContext, Pane, RawSession, Session
from .core.modes import ActionKind, SessionAction
from .core.reconciler import SessionReconciler
from .core.executor import ActionExecutor, ExecutionResult
from .core.controller import AppState, InteractionController
from .git.worktree_manager import WorktreeManager, default_worktree_path, sanitize_branch_name
from .git.operations import GitOperations
from .git.github import GitHubCLI, PullRequestInfo
from .monitoring.status_classifier import classify
from .monitoring.refresh_worker import RefreshWorker
from .tmux.session_controller import MultiplexerBackend, TmuxBackend
from .utils.config_loader import ConfigLoader, DeckConfig

__all__ = [
    # Errors
    'DeckError', 'NotFoundError', 'RepositoryError', 'BranchNotFound', 'SessionNotFound',
    'PreconditionFailed', 'DirtyWorktree', 'NotAWorktree', 'PathConflict',
    'PartialFailure', 'PartialDelete',
    'BackendUnavailable', 'TmuxError', 'GitBackendError', 'GitHubError',

    # Model
    'AgentStatus', 'GitContext', 'Pane', 'RawSession', 'Session',
    'ActionKind', 'SessionAction',

    # Core
    'SessionReconciler',
    'ActionExecutor', 'ExecutionResult',
    'AppState', 'InteractionController',

    # Backends
    'WorktreeManager', 'default_worktree_path', 'sanitize_branch_name',
    'GitOperations', 'GitHubCLI', 'PullRequestInfo',
    'MultiplexerBackend', 'TmuxBackend',

    # Monitoring
    'classify',
    'RefreshWorker',

    # Configuration
    'ConfigLoader', 'DeckConfig',

    # Package metadata
    '__version__',
    '__author__',
    '__description__'
]


def get_version():
    """Get the current version of tmux-deck."""
    return __version__
