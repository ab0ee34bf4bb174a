"""
Interaction Modes Module

Mode and action types for the interaction state machine. Exactly one mode is
active at a time and each mode carries only its own transient state, which
is discarded when the mode is left.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .session_model import Session


class ActionKind(Enum):
    """Actions offered for a selected session."""
    SWITCH_TO = "switch_to"
    RENAME = "rename"
    NEW_WORKTREE = "new_worktree"
    STAGE = "stage"
    COMMIT = "commit"
    PUSH = "push"
    PUSH_SET_UPSTREAM = "push_set_upstream"
    FETCH = "fetch"
    PULL = "pull"
    CREATE_PULL_REQUEST = "create_pull_request"
    VIEW_PULL_REQUEST = "view_pull_request"
    CLOSE_PULL_REQUEST = "close_pull_request"
    MERGE_PULL_REQUEST = "merge_pull_request"
    MERGE_PULL_REQUEST_AND_CLOSE = "merge_pull_request_and_close"
    KILL = "kill"


ACTION_LABELS = {
    ActionKind.SWITCH_TO: "Switch to session",
    ActionKind.RENAME: "Rename session",
    ActionKind.NEW_WORKTREE: "New session from worktree",
    ActionKind.STAGE: "Stage all changes",
    ActionKind.COMMIT: "Commit staged changes",
    ActionKind.PUSH: "Push to remote",
    ActionKind.PUSH_SET_UPSTREAM: "Push and set upstream",
    ActionKind.FETCH: "Fetch from remote",
    ActionKind.PULL: "Pull from remote",
    ActionKind.CREATE_PULL_REQUEST: "Create pull request",
    ActionKind.VIEW_PULL_REQUEST: "View pull request",
    ActionKind.CLOSE_PULL_REQUEST: "Close pull request",
    ActionKind.MERGE_PULL_REQUEST: "Merge pull request",
    ActionKind.MERGE_PULL_REQUEST_AND_CLOSE: "Merge PR + close session",
}

# Destructive or remote-visible actions that go through ConfirmActionMode
CONFIRMED_KINDS = frozenset({
    ActionKind.KILL,
    ActionKind.CLOSE_PULL_REQUEST,
    ActionKind.MERGE_PULL_REQUEST,
    ActionKind.MERGE_PULL_REQUEST_AND_CLOSE,
})


@dataclass(frozen=True)
class SessionAction:
    """An action value; ``delete_worktree`` only matters for KILL."""
    kind: ActionKind
    delete_worktree: bool = False

    @property
    def label(self) -> str:
        if self.kind is ActionKind.KILL:
            return "Kill session + delete worktree" if self.delete_worktree else "Kill session"
        return ACTION_LABELS[self.kind]

    @property
    def requires_confirmation(self) -> bool:
        return self.kind in CONFIRMED_KINDS


SWITCH_TO = SessionAction(ActionKind.SWITCH_TO)
RENAME = SessionAction(ActionKind.RENAME)
NEW_WORKTREE = SessionAction(ActionKind.NEW_WORKTREE)
STAGE = SessionAction(ActionKind.STAGE)
COMMIT = SessionAction(ActionKind.COMMIT)
PUSH = SessionAction(ActionKind.PUSH)
PUSH_SET_UPSTREAM = SessionAction(ActionKind.PUSH_SET_UPSTREAM)
FETCH = SessionAction(ActionKind.FETCH)
PULL = SessionAction(ActionKind.PULL)
CREATE_PULL_REQUEST = SessionAction(ActionKind.CREATE_PULL_REQUEST)
VIEW_PULL_REQUEST = SessionAction(ActionKind.VIEW_PULL_REQUEST)
CLOSE_PULL_REQUEST = SessionAction(ActionKind.CLOSE_PULL_REQUEST)
MERGE_PULL_REQUEST = SessionAction(ActionKind.MERGE_PULL_REQUEST)
MERGE_PULL_REQUEST_AND_CLOSE = SessionAction(ActionKind.MERGE_PULL_REQUEST_AND_CLOSE)
KILL = SessionAction(ActionKind.KILL)
KILL_AND_DELETE_WORKTREE = SessionAction(ActionKind.KILL, delete_worktree=True)


class CyclingField(Enum):
    """Dialog field enum whose members Tab / BackTab cycle through."""

    def next(self):
        members = list(type(self))
        return members[(members.index(self) + 1) % len(members)]

    def previous(self):
        members = list(type(self))
        return members[(members.index(self) - 1) % len(members)]


class NewSessionField(Enum):
    NAME = "name"
    PATH = "path"


class NewWorktreeField(CyclingField):
    BRANCH = "branch"
    PATH = "path"
    SESSION_NAME = "session_name"


class PullRequestField(CyclingField):
    TITLE = "title"
    BODY = "body"
    BASE_BRANCH = "base_branch"


@dataclass
class NormalMode:
    pass


@dataclass
class ActionMenuMode:
    """Action list for the session named ``session_name`` (see ``AppState.actions``)."""
    session_name: str = ""


@dataclass
class FilterMode:
    text: str = ""


@dataclass
class ConfirmActionMode:
    """Waiting for y/n on ``AppState.pending_action``."""
    previous: 'Mode' = field(default_factory=NormalMode)


@dataclass
class NewSessionMode:
    name: str = ""
    path: str = ""
    active_field: NewSessionField = NewSessionField.NAME
    path_suggestions: List[str] = field(default_factory=list)


@dataclass
class RenameMode:
    old_name: str
    new_name: str


@dataclass
class NewWorktreeMode:
    """
    New worktree dialog state.

    ``candidates`` are the branches matching ``branch_input``; the
    highlighted candidate (if any) is the effective branch, else the typed
    text is. Nothing is highlighted until the user moves into the
    candidate list. ``path_edited`` / ``session_name_edited`` stop the automatic
    derivation of those fields once the user has typed in them.
    """
    source_repo: str
    all_branches: List[str]
    branch_input: str = ""
    candidates: List[str] = field(default_factory=list)
    highlighted: Optional[int] = None
    worktree_path: str = ""
    session_name: str = ""
    active_field: NewWorktreeField = NewWorktreeField.BRANCH
    path_edited: bool = False
    session_name_edited: bool = False

    @property
    def effective_branch(self) -> str:
        if self.highlighted is not None and 0 <= self.highlighted < len(self.candidates):
            return self.candidates[self.highlighted]
        return self.branch_input.strip()

    @property
    def is_new_branch(self) -> bool:
        return self.effective_branch not in self.all_branches


@dataclass
class CommitMode:
    """Commit message entry for ``session``'s repository."""
    session: Session
    message: str = ""


@dataclass
class CreatePullRequestMode:
    """Pull request form for the branch checked out in ``session``."""
    session: Session
    base_branch: str
    title: str = ""
    body: str = ""
    active_field: PullRequestField = PullRequestField.TITLE


@dataclass
class HelpMode:
    previous: 'Mode' = field(default_factory=NormalMode)


Mode = Union[
    NormalMode,
    ActionMenuMode,
    FilterMode,
    ConfirmActionMode,
    NewSessionMode,
    RenameMode,
    NewWorktreeMode,
    CommitMode,
    CreatePullRequestMode,
    HelpMode,
]
