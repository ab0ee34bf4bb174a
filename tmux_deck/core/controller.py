"""
Interaction Controller Module

The mode-based state machine behind the session popup. It owns the single
AppState instance: mode, session list, selection, action menu and pending
confirmation. Keys arrive already decoded (printable characters, or one of
the KEY_* names below); confirmed actions are handed to the ActionExecutor
and their results become transient messages plus refresh requests. The
selected session's recent pane output is kept as a preview.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple

from ..git.github import FALLBACK_DEFAULT_BRANCH, PullRequestInfo
from ..git.worktree_manager import default_session_name, default_worktree_path
from ..utils.file_utils import complete_path
from .errors import DeckError
from .executor import ActionExecutor, ExecutionResult
from .modes import (
    CLOSE_PULL_REQUEST,
    COMMIT,
    CREATE_PULL_REQUEST,
    FETCH,
    KILL,
    KILL_AND_DELETE_WORKTREE,
    MERGE_PULL_REQUEST,
    MERGE_PULL_REQUEST_AND_CLOSE,
    NEW_WORKTREE,
    PULL,
    PUSH,
    PUSH_SET_UPSTREAM,
    RENAME,
    STAGE,
    SWITCH_TO,
    VIEW_PULL_REQUEST,
    ActionKind,
    ActionMenuMode,
    CommitMode,
    ConfirmActionMode,
    CreatePullRequestMode,
    FilterMode,
    HelpMode,
    Mode,
    NewSessionField,
    NewSessionMode,
    NewWorktreeField,
    NewWorktreeMode,
    NormalMode,
    PullRequestField,
    RenameMode,
    SessionAction,
)
from .session_model import Session

logger = logging.getLogger(__name__)

KEY_UP = "up"
KEY_DOWN = "down"
KEY_LEFT = "left"
KEY_RIGHT = "right"
KEY_ENTER = "enter"
KEY_ESC = "esc"
KEY_TAB = "tab"
KEY_BACKTAB = "backtab"
KEY_BACKSPACE = "backspace"
KEY_CTRL_U = "ctrl-u"

SESSION_NAME_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-")
BRANCH_NAME_CHARS = SESSION_NAME_CHARS | set("/.")

DEFAULT_PREVIEW_LINES = 15

MESSAGE_INFO = "info"
MESSAGE_ERROR = "error"


@dataclass
class Message:
    """Transient status line text, cleared by the next key press."""
    text: str
    level: str = MESSAGE_INFO


@dataclass
class AppState:
    """The single live UI state, owned by the frame loop."""
    mode: Mode = field(default_factory=NormalMode)
    sessions: Tuple[Session, ...] = ()
    selected: int = 0
    actions: List[SessionAction] = field(default_factory=list)
    selected_action: int = 0
    pending_action: Optional[SessionAction] = None
    pending_session: Optional[Session] = None
    github_ready: bool = False
    pull_request: Optional[PullRequestInfo] = None
    preview: Optional[str] = None
    current_session: Optional[str] = None
    message: Optional[Message] = None
    should_quit: bool = False
    refresh_all: bool = False
    refresh_names: Set[str] = field(default_factory=set)


def is_printable(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


def filter_sessions(sessions: Sequence[Session], text: str) -> List[Session]:
    """Sessions whose name or display path contains ``text`` (case-insensitive)."""
    needle = text.lower()
    if not needle:
        return list(sessions)
    return [
        session for session in sessions
        if needle in session.name.lower() or needle in session.display_path().lower()
    ]


def actions_for(session: Session,
                github_ready: bool = False,
                pull_request: Optional[PullRequestInfo] = None) -> List[SessionAction]:
    """
    Actions legal for a session, in menu order.

    Stage needs unstaged changes and commit needs staged ones. Push needs
    commits ahead of the upstream; pull needs commits behind it and a clean
    tree. A branch without an upstream can only be pushed with set-upstream.
    Pull request actions need ``github_ready`` (see
    ``ActionExecutor.pull_request_status``): an open ``pull_request`` offers
    view, close and merge, anything else offers create.
    """
    actions = [SWITCH_TO, RENAME]
    context = session.git_context
    if context is not None:
        actions.append(NEW_WORKTREE)
        if context.has_unstaged:
            actions.append(STAGE)
        if context.has_staged:
            actions.append(COMMIT)
        if context.has_remote:
            actions.append(FETCH)

        if context.has_upstream:
            if context.ahead > 0:
                actions.append(PUSH)
            if context.behind > 0 and not context.dirty:
                actions.append(PULL)
            if github_ready:
                if pull_request is not None and pull_request.is_open:
                    actions.extend([VIEW_PULL_REQUEST, CLOSE_PULL_REQUEST,
                                    MERGE_PULL_REQUEST, MERGE_PULL_REQUEST_AND_CLOSE])
                else:
                    actions.append(CREATE_PULL_REQUEST)
        elif context.has_remote:
            actions.append(PUSH_SET_UPSTREAM)

    actions.append(KILL)
    if session.is_worktree:
        actions.append(KILL_AND_DELETE_WORKTREE)
    return actions


class InteractionController:
    """
    Interaction state machine.

    Features:
    - Normal, action menu, filter, confirm and help modes
    - New session, rename, new worktree, commit and pull request dialogs
    - Confirmation gate for every destructive action
    - Selection kept stable across session list replacements
    - Action menu closed once its session is no longer selected
    - Pane preview of the selected session
    """

    def __init__(self,
                 executor: ActionExecutor,
                 state: Optional[AppState] = None,
                 cwd: Optional[Callable[[], str]] = None,
                 path_completer: Callable[[str], List[str]] = complete_path,
                 preview_lines: int = DEFAULT_PREVIEW_LINES):
        self.executor = executor
        self.state = state or AppState()
        self._cwd = cwd or os.getcwd
        self._complete_path = path_completer
        self.preview_lines = preview_lines
        self._handlers = {
            NormalMode: self._handle_normal,
            ActionMenuMode: self._handle_action_menu,
            FilterMode: self._handle_filter,
            ConfirmActionMode: self._handle_confirm,
            NewSessionMode: self._handle_new_session,
            RenameMode: self._handle_rename,
            NewWorktreeMode: self._handle_new_worktree,
            CommitMode: self._handle_commit,
            CreatePullRequestMode: self._handle_create_pull_request,
            HelpMode: self._handle_help,
        }

    # ------------------------------------------------------------------
    # Session list
    # ------------------------------------------------------------------

    def visible_sessions(self) -> List[Session]:
        mode = self.state.mode
        if isinstance(mode, FilterMode):
            return filter_sessions(self.state.sessions, mode.text)
        return list(self.state.sessions)

    def selected_session(self) -> Optional[Session]:
        visible = self.visible_sessions()
        if 0 <= self.state.selected < len(visible):
            return visible[self.state.selected]
        return None

    def replace_sessions(self, sessions: Sequence[Session]) -> None:
        """
        Install a freshly reconciled list.

        The selected session stays selected when it still exists; otherwise
        the index is clamped to the new visible list. An open action menu is
        rebuilt for its session, or closed when that session is no longer
        the selected one.
        """
        current = self.selected_session()
        self.state.sessions = tuple(sessions)

        visible = self.visible_sessions()
        for index, session in enumerate(visible):
            if current is not None and session.name == current.name:
                self.state.selected = index
                break
        else:
            self._clamp_selection(len(visible))

        self._sync_action_menu()
        self.update_preview()

    def update_preview(self) -> None:
        """Recapture the selected session's pane output."""
        session = self.selected_session()
        if session is None or self.preview_lines <= 0:
            self.state.preview = None
            return
        self.state.preview = self.executor.capture_preview(session, self.preview_lines)

    def _clamp_selection(self, count: int) -> None:
        if count == 0:
            self.state.selected = 0
        else:
            self.state.selected = max(0, min(self.state.selected, count - 1))

    def _move_selection(self, delta: int) -> None:
        count = len(self.visible_sessions())
        if count == 0:
            self.state.selected = 0
            return
        self.state.selected = max(0, min(self.state.selected + delta, count - 1))

    def _select_by_name(self, name: str) -> None:
        for index, session in enumerate(self.state.sessions):
            if session.name == name:
                self.state.selected = index
                return
        self._clamp_selection(len(self.state.sessions))

    # ------------------------------------------------------------------
    # Refresh requests
    # ------------------------------------------------------------------

    def request_refresh(self, names: Optional[Sequence[str]] = None) -> None:
        """Ask for a full pass (no names) or a targeted pass."""
        if names is None:
            self.state.refresh_all = True
        else:
            self.state.refresh_names.update(names)

    def take_refresh_request(self) -> Tuple[bool, Set[str]]:
        """Pop the pending refresh request as (full, names)."""
        request = (self.state.refresh_all, set(self.state.refresh_names))
        self.state.refresh_all = False
        self.state.refresh_names.clear()
        return request

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def info(self, text: str) -> None:
        self.state.message = Message(text, MESSAGE_INFO)

    def error(self, text: str) -> None:
        self.state.message = Message(text, MESSAGE_ERROR)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def handle_key(self, key: str) -> None:
        """Feed one decoded key press into the active mode."""
        self.state.message = None
        before = self.selected_session()
        handler = self._handlers[type(self.state.mode)]
        handler(key)

        after = self.selected_session()
        if (before and before.name) != (after and after.name):
            self.update_preview()

    def _handle_normal(self, key: str) -> None:
        if key in ("j", KEY_DOWN):
            self._move_selection(1)
        elif key in ("k", KEY_UP):
            self._move_selection(-1)
        elif key == KEY_ENTER:
            session = self.selected_session()
            if session is not None:
                self._apply_result(self.executor.execute(SWITCH_TO, session))
        elif key in ("l", KEY_RIGHT):
            self._open_action_menu()
        elif key == "/":
            self.state.mode = FilterMode()
            self.state.selected = 0
        elif key == "n":
            self._open_new_session()
        elif key == "r":
            session = self.selected_session()
            if session is not None:
                self.state.mode = RenameMode(old_name=session.name, new_name=session.name)
        elif key == "K":
            session = self.selected_session()
            if session is not None:
                self._ask_confirmation(KILL, session, NormalMode())
        elif key == "R":
            self.request_refresh()
            self.info("Refreshing...")
        elif key == "?":
            self.state.mode = HelpMode(previous=self.state.mode)
        elif key in ("q", KEY_ESC):
            self.state.should_quit = True

    def _open_action_menu(self) -> None:
        session = self.selected_session()
        if session is None:
            return
        github_ready, pull_request = self.executor.pull_request_status(session)
        self.state.github_ready = github_ready
        self.state.pull_request = pull_request
        self.state.actions = actions_for(session, github_ready, pull_request)
        self.state.selected_action = 0
        self.state.mode = ActionMenuMode(session_name=session.name)

    def _close_action_menu(self) -> None:
        self.state.mode = NormalMode()
        self.state.actions = []
        self.state.selected_action = 0

    def _sync_action_menu(self) -> None:
        """Rebuild the open action menu for its session, or close it."""
        mode = self.state.mode
        if not isinstance(mode, ActionMenuMode):
            return

        session = self.selected_session()
        if session is None or session.name != mode.session_name:
            self._close_action_menu()
            self.info(f"Session '{mode.session_name}' is no longer selected; action menu closed")
            return

        highlighted = None
        if 0 <= self.state.selected_action < len(self.state.actions):
            highlighted = self.state.actions[self.state.selected_action]
        self.state.actions = actions_for(session, self.state.github_ready, self.state.pull_request)
        if highlighted in self.state.actions:
            self.state.selected_action = self.state.actions.index(highlighted)
        else:
            self.state.selected_action = min(self.state.selected_action, len(self.state.actions) - 1)

    def _handle_action_menu(self, key: str) -> None:
        actions = self.state.actions
        if key in ("j", KEY_DOWN) and actions:
            self.state.selected_action = (self.state.selected_action + 1) % len(actions)
        elif key in ("k", KEY_UP) and actions:
            self.state.selected_action = (self.state.selected_action - 1) % len(actions)
        elif key in (KEY_ENTER, "l", KEY_RIGHT):
            self._run_menu_action()
        elif key in ("h", KEY_LEFT, KEY_ESC):
            self._close_action_menu()
        elif key == "q":
            self.state.should_quit = True

    def _run_menu_action(self) -> None:
        mode = self.state.mode
        session = self.selected_session()
        if session is None or session.name != mode.session_name or not self.state.actions:
            self._close_action_menu()
            return

        action = self.state.actions[self.state.selected_action]
        if action.requires_confirmation:
            self._ask_confirmation(action, session, mode)
        elif action.kind is ActionKind.RENAME:
            self.state.mode = RenameMode(old_name=session.name, new_name=session.name)
        elif action.kind is ActionKind.NEW_WORKTREE:
            self._open_new_worktree(session)
        elif action.kind is ActionKind.COMMIT:
            self.state.mode = CommitMode(session=session)
        elif action.kind is ActionKind.CREATE_PULL_REQUEST:
            base_branch = self.executor.default_branch(session) or FALLBACK_DEFAULT_BRANCH
            self.state.mode = CreatePullRequestMode(session=session, base_branch=base_branch)
        else:
            self.state.mode = NormalMode()
            self._apply_result(self.executor.execute(action, session))

    def _ask_confirmation(self, action: SessionAction, session: Session, previous: Mode) -> None:
        self.state.pending_action = action
        self.state.pending_session = session
        self.state.mode = ConfirmActionMode(previous=previous)

    def _handle_confirm(self, key: str) -> None:
        if key in (KEY_ENTER, "y", "Y"):
            action = self.state.pending_action
            session = self.state.pending_session
            self._clear_pending()
            self.state.mode = NormalMode()
            if action is not None and session is not None:
                self._apply_result(self.executor.execute(action, session))
        elif key in ("n", "N", KEY_ESC):
            previous = self.state.mode.previous
            self._clear_pending()
            self.state.mode = previous
            self._sync_action_menu()

    def _clear_pending(self) -> None:
        self.state.pending_action = None
        self.state.pending_session = None

    def _handle_filter(self, key: str) -> None:
        mode = self.state.mode
        if key == KEY_ENTER:
            session = self.selected_session()
            self._leave_filter()
            if session is not None:
                self._apply_result(self.executor.execute(SWITCH_TO, session))
        elif key in (KEY_ESC, KEY_CTRL_U):
            self._leave_filter()
        elif key == KEY_UP:
            self._move_selection(-1)
        elif key == KEY_DOWN:
            self._move_selection(1)
        elif key == KEY_BACKSPACE:
            mode.text = mode.text[:-1]
            self.state.selected = 0
        elif is_printable(key):
            mode.text += key
            self.state.selected = 0

    def _leave_filter(self) -> None:
        """Back to the full list, keeping the highlighted session selected."""
        session = self.selected_session()
        self.state.mode = NormalMode()
        if session is not None:
            self._select_by_name(session.name)
        else:
            self._clamp_selection(len(self.state.sessions))

    def _open_new_session(self) -> None:
        path = self._cwd()
        self.state.mode = NewSessionMode(name="", path=path, path_suggestions=self._complete_path(path))

    def _handle_new_session(self, key: str) -> None:
        mode = self.state.mode
        if key == KEY_ESC:
            self.state.mode = NormalMode()
        elif key in (KEY_TAB, KEY_BACKTAB):
            if mode.active_field is NewSessionField.NAME:
                mode.active_field = NewSessionField.PATH
            else:
                mode.active_field = NewSessionField.NAME
        elif key == KEY_ENTER:
            name = mode.name.strip()
            if not name:
                self.error("Session name cannot be empty")
                return
            self.state.mode = NormalMode()
            self._apply_result(self.executor.create_session(name, mode.path))
        elif mode.active_field is NewSessionField.NAME:
            if key == KEY_BACKSPACE:
                mode.name = mode.name[:-1]
            elif key in SESSION_NAME_CHARS:
                mode.name += key
        else:
            if key == KEY_RIGHT and mode.path_suggestions:
                mode.path = mode.path_suggestions[0]
            elif key == KEY_BACKSPACE:
                mode.path = mode.path[:-1]
            elif is_printable(key):
                mode.path += key
            else:
                return
            mode.path_suggestions = self._complete_path(mode.path)

    def _handle_rename(self, key: str) -> None:
        mode = self.state.mode
        if key == KEY_ESC:
            self.state.mode = NormalMode()
        elif key == KEY_ENTER:
            new_name = mode.new_name.strip()
            if not new_name:
                self.error("Session name cannot be empty")
                return
            self.state.mode = NormalMode()
            if new_name == mode.old_name:
                return
            self._apply_result(self.executor.rename(mode.old_name, new_name))
        elif key == KEY_BACKSPACE:
            mode.new_name = mode.new_name[:-1]
        elif key in SESSION_NAME_CHARS:
            mode.new_name += key

    def _open_new_worktree(self, session: Session) -> None:
        context = session.git_context
        if context is None:
            self.state.mode = NormalMode()
            self.error(f"Session '{session.name}' is not in a git repository")
            return

        source_repo = context.source_repository
        try:
            branches = self.executor.git.list_branches(source_repo)
        except DeckError as e:
            logger.warning(f"Could not list branches of {source_repo}: {e}")
            self.state.mode = NormalMode()
            self.error(f"Failed to list branches: {e}")
            return

        mode = NewWorktreeMode(source_repo=source_repo, all_branches=branches)
        self._refilter_branches(mode)
        self.state.mode = mode

    def _refilter_branches(self, mode: NewWorktreeMode) -> None:
        needle = mode.branch_input.strip().lower()
        mode.candidates = [branch for branch in mode.all_branches if needle in branch.lower()]
        # The typed text stays the effective branch until a candidate is chosen
        if not mode.candidates:
            mode.highlighted = None
        elif mode.highlighted is not None and mode.highlighted >= len(mode.candidates):
            mode.highlighted = len(mode.candidates) - 1
        self._derive_worktree_fields(mode)

    def _derive_worktree_fields(self, mode: NewWorktreeMode) -> None:
        branch = mode.effective_branch
        if not mode.path_edited:
            mode.worktree_path = str(default_worktree_path(mode.source_repo, branch)) if branch else ""
        if not mode.session_name_edited:
            mode.session_name = default_session_name(mode.source_repo, branch) if branch else ""

    def _handle_new_worktree(self, key: str) -> None:
        mode = self.state.mode
        if key == KEY_ESC:
            self.state.mode = NormalMode()
        elif key == KEY_TAB:
            mode.active_field = mode.active_field.next()
        elif key == KEY_BACKTAB:
            mode.active_field = mode.active_field.previous()
        elif key == KEY_ENTER:
            self._submit_new_worktree(mode)
        elif mode.active_field is NewWorktreeField.BRANCH:
            self._edit_branch_field(mode, key)
        elif mode.active_field is NewWorktreeField.PATH:
            if key == KEY_BACKSPACE:
                mode.worktree_path = mode.worktree_path[:-1]
            elif is_printable(key):
                mode.worktree_path += key
            else:
                return
            mode.path_edited = True
        else:
            if key == KEY_BACKSPACE:
                mode.session_name = mode.session_name[:-1]
            elif key in SESSION_NAME_CHARS:
                mode.session_name += key
            else:
                return
            mode.session_name_edited = True

    def _edit_branch_field(self, mode: NewWorktreeMode, key: str) -> None:
        if key == KEY_DOWN:
            if not mode.candidates:
                return
            if mode.highlighted is None:
                mode.highlighted = 0
            else:
                mode.highlighted = min(mode.highlighted + 1, len(mode.candidates) - 1)
            self._derive_worktree_fields(mode)
        elif key == KEY_UP:
            # Moving above the first candidate selects the typed text
            if mode.highlighted is None:
                return
            mode.highlighted = mode.highlighted - 1 if mode.highlighted > 0 else None
            self._derive_worktree_fields(mode)
        elif key == KEY_BACKSPACE:
            mode.branch_input = mode.branch_input[:-1]
            self._refilter_branches(mode)
        elif is_printable(key) and key != " ":
            mode.branch_input += key
            self._refilter_branches(mode)

    def _submit_new_worktree(self, mode: NewWorktreeMode) -> None:
        branch = mode.effective_branch
        worktree_path = mode.worktree_path.strip()
        session_name = mode.session_name.strip()

        if not branch:
            self.error("Branch name cannot be empty")
            return
        if not worktree_path:
            self.error("Worktree path cannot be empty")
            return
        if not session_name:
            self.error("Session name cannot be empty")
            return

        self.state.mode = NormalMode()
        self._apply_result(self.executor.create_worktree_session(
            mode.source_repo, worktree_path, branch, mode.is_new_branch, session_name
        ))

    def _handle_commit(self, key: str) -> None:
        mode = self.state.mode
        if key == KEY_ESC:
            self.state.mode = NormalMode()
        elif key == KEY_ENTER:
            message = mode.message.strip()
            if not message:
                self.error("Commit message cannot be empty")
                return
            self.state.mode = NormalMode()
            self._apply_result(self.executor.commit(mode.session, message))
        elif key == KEY_BACKSPACE:
            mode.message = mode.message[:-1]
        elif is_printable(key):
            mode.message += key

    def _handle_create_pull_request(self, key: str) -> None:
        mode = self.state.mode
        if key == KEY_ESC:
            self.state.mode = NormalMode()
        elif key == KEY_TAB:
            mode.active_field = mode.active_field.next()
        elif key == KEY_BACKTAB:
            mode.active_field = mode.active_field.previous()
        elif key == KEY_ENTER:
            title = mode.title.strip()
            base_branch = mode.base_branch.strip()
            if not title:
                self.error("Pull request title cannot be empty")
                return
            if not base_branch:
                self.error("Base branch cannot be empty")
                return
            self.state.mode = NormalMode()
            self._apply_result(self.executor.create_pull_request(
                mode.session, title, mode.body.strip(), base_branch
            ))
        elif mode.active_field is PullRequestField.TITLE:
            if key == KEY_BACKSPACE:
                mode.title = mode.title[:-1]
            elif is_printable(key):
                mode.title += key
        elif mode.active_field is PullRequestField.BODY:
            if key == KEY_BACKSPACE:
                mode.body = mode.body[:-1]
            elif is_printable(key):
                mode.body += key
        else:
            if key == KEY_BACKSPACE:
                mode.base_branch = mode.base_branch[:-1]
            elif key in BRANCH_NAME_CHARS:
                mode.base_branch += key

    def _handle_help(self, key: str) -> None:
        self.state.mode = self.state.mode.previous

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _apply_result(self, result: ExecutionResult) -> None:
        if result.success:
            self.info(result.message)
        else:
            self.error(result.message)
        if result.affected_sessions:
            self.request_refresh(result.affected_sessions)
        if result.quit_requested:
            self.state.should_quit = True
