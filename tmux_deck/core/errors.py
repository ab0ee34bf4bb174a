"""
Error Taxonomy Module

Typed failures raised by the tmux and git backends. Absence during detection
(a path outside any repository, a session without an agent pane) is never an
error; these exceptions are reserved for operations that were asked to do
something and could not.
"""

from pathlib import Path
from typing import Optional


class DeckError(Exception):
    """Base class for every failure surfaced to the user."""
    pass


# ============================================================================
# Not found
# ============================================================================

class NotFoundError(DeckError):
    """A repository, branch, worktree or session is absent."""
    pass


class RepositoryError(NotFoundError):
    """Path is not inside a usable git repository."""
    pass


class BranchNotFound(NotFoundError):
    """Requested local branch does not exist."""

    def __init__(self, branch_name: str):
        super().__init__(f"Branch '{branch_name}' not found")
        self.branch_name = branch_name


class SessionNotFound(NotFoundError):
    """Session vanished between enumeration and action."""

    def __init__(self, session_name: str):
        super().__init__(f"Session '{session_name}' not found")
        self.session_name = session_name


# ============================================================================
# Precondition failures
# ============================================================================

class PreconditionFailed(DeckError):
    """Operation refused because the target is in an unsafe state."""
    pass


class DirtyWorktree(PreconditionFailed):
    """Worktree has uncommitted changes or is otherwise unsafe to delete."""

    def __init__(self, worktree_path: Path, reason: str):
        super().__init__(f"Worktree '{worktree_path}' {reason}")
        self.worktree_path = worktree_path
        self.reason = reason


class NotAWorktree(PreconditionFailed):
    """Path belongs to the main checkout, not a linked worktree."""

    def __init__(self, path: Path):
        super().__init__(f"'{path}' is not a worktree (it may be the main repository)")
        self.path = path


class PathConflict(PreconditionFailed):
    """Target path for a new worktree already exists."""

    def __init__(self, path: Path):
        super().__init__(f"Path '{path}' already exists")
        self.path = path


# ============================================================================
# Partial failures
# ============================================================================

class PartialFailure(DeckError):
    """Some destructive steps succeeded before a later one failed."""
    pass


class PartialDelete(PartialFailure):
    """
    Worktree registration was pruned but its directory could not be removed.

    Retrying only needs to remove ``leftover_path``; git no longer tracks it.
    """

    def __init__(self, leftover_path: Path, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(
            f"Worktree deregistered but directory '{leftover_path}' could not be removed{detail}"
        )
        self.leftover_path = leftover_path
        self.cause = cause


# ============================================================================
# Backend failures
# ============================================================================

class BackendUnavailable(DeckError):
    """A tmux or git call failed at the transport level."""
    pass


class TmuxError(BackendUnavailable):
    """tmux command could not be run or returned an error."""
    pass


class GitBackendError(BackendUnavailable):
    """git command could not be run or returned an unexpected error."""
    pass


class GitHubError(BackendUnavailable):
    """gh is missing, not authenticated, or a gh command failed."""
    pass
