"""
Interactive Session Popup

curses frame loop: paints the controller's AppState, decodes key presses
into controller key names and installs session lists published by the
refresh worker. All state changes go through InteractionController.
"""

import curses
import logging
import os
from typing import Any, List, Optional, Union

from ..core.controller import (
    KEY_BACKSPACE,
    KEY_BACKTAB,
    KEY_CTRL_U,
    KEY_DOWN,
    KEY_ENTER,
    KEY_ESC,
    KEY_LEFT,
    KEY_RIGHT,
    KEY_TAB,
    KEY_UP,
    MESSAGE_ERROR,
    InteractionController,
)
from ..core.modes import (
    ActionKind,
    ActionMenuMode,
    CommitMode,
    ConfirmActionMode,
    CreatePullRequestMode,
    FilterMode,
    HelpMode,
    NewSessionField,
    NewSessionMode,
    NewWorktreeField,
    NewWorktreeMode,
    PullRequestField,
    RenameMode,
)
from ..core.session_model import AgentStatus, Session
from ..monitoring.refresh_worker import RefreshWorker
from ..monitoring.status_classifier import strip_ansi

logger = logging.getLogger(__name__)

FRAME_TIMEOUT_MS = 100
MAX_LISTED_SUGGESTIONS = 5
MIN_LIST_ROWS = 3

COLOR_TITLE = 1
COLOR_WORKING = 2
COLOR_WAITING = 3
COLOR_IDLE = 4
COLOR_ERROR = 5

STATUS_COLORS = {
    AgentStatus.WORKING: COLOR_WORKING,
    AgentStatus.WAITING_INPUT: COLOR_WAITING,
    AgentStatus.IDLE: COLOR_IDLE,
}

HELP_LINES = [
    "Navigation",
    "  j / Down      move down",
    "  k / Up        move up",
    "  Enter         switch to session",
    "  l / Right     action menu",
    "  /             filter sessions",
    "",
    "Sessions",
    "  n             new session",
    "  r             rename session",
    "  K             kill session",
    "  R             refresh",
    "",
    "Action menu",
    "  git           stage, commit, push, fetch, pull (offered when applicable)",
    "  GitHub        create, view, merge, close pull requests (needs gh)",
    "",
    "  ?             this help",
    "  q / Esc       quit",
    "",
    "Status:  ● working   ◐ waiting for input   ○ idle   ? unknown",
    "",
    "Press any key to return",
]

NORMAL_HINTS = "j/k move  Enter switch  l actions  / filter  n new  r rename  K kill  R refresh  ? help  q quit"

SPECIAL_KEYS = {
    curses.KEY_UP: KEY_UP,
    curses.KEY_DOWN: KEY_DOWN,
    curses.KEY_LEFT: KEY_LEFT,
    curses.KEY_RIGHT: KEY_RIGHT,
    curses.KEY_ENTER: KEY_ENTER,
    curses.KEY_BACKSPACE: KEY_BACKSPACE,
    curses.KEY_BTAB: KEY_BACKTAB,
}

CONTROL_CHARS = {
    "\n": KEY_ENTER,
    "\r": KEY_ENTER,
    "\x1b": KEY_ESC,
    "\t": KEY_TAB,
    "\x7f": KEY_BACKSPACE,
    "\b": KEY_BACKSPACE,
    "\x15": KEY_CTRL_U,
}


def decode_key(key: Union[int, str]) -> Optional[str]:
    """Translate a ``get_wch`` result into a controller key, or None."""
    if isinstance(key, int):
        return SPECIAL_KEYS.get(key)
    if key in CONTROL_CHARS:
        return CONTROL_CHARS[key]
    if len(key) == 1 and key.isprintable():
        return key
    return None


def short_text(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(text) <= width:
        return text
    if width <= 1:
        return text[:width]
    return text[:width - 1] + "…"


def session_line(session: Session, width: int, current: bool = False) -> str:
    """One list row; ``current`` marks the session this client is attached to."""
    symbol = session.agent_status.symbol if session.agent_status else " "
    if current:
        attached = "▸"
    else:
        attached = "*" if session.attached else " "
    branch = ""
    context = session.git_context
    if context is not None:
        branch = context.branch + ("*" if context.dirty else "")
        if context.sync_summary:
            branch += f" {context.sync_summary}"
        if context.is_worktree:
            branch += " [wt]"
    return short_text(f" {symbol} {attached} {session.name:<24} {branch:<28} {session.display_path()}", width)


def centered_offset(selected: int, total: int, height: int) -> int:
    """First row to draw so ``selected`` sits mid-window once the list scrolls."""
    if height <= 0 or total <= 0:
        return 0
    middle = height // 2
    if selected <= middle:
        return 0
    return min(selected - middle, max(total - height, 0))


def preview_tail(text: Optional[str], rows: int) -> List[str]:
    """Last ``rows`` lines of a pane capture with escape sequences removed."""
    if not text or rows <= 0:
        return []
    return strip_ansi(text).splitlines()[-rows:]


class SessionPopup:
    """
    curses front end for the interaction controller.

    Features:
    - Session list with status glyphs, branch and dirty markers
    - Pane preview of the selected session
    - Overlays for the action menu, confirmation and dialogs
    - Non-blocking refresh via the background worker
    """

    def __init__(self, controller: InteractionController, worker: RefreshWorker):
        self.controller = controller
        self.worker = worker

    def run(self) -> int:
        os.environ.setdefault("ESCDELAY", "25")
        return int(curses.wrapper(self._loop))

    def _loop(self, stdscr: Any) -> int:
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        stdscr.timeout(FRAME_TIMEOUT_MS)
        stdscr.keypad(True)
        self._init_colors()

        self.worker.start()
        try:
            while not self.controller.state.should_quit:
                self._sync_with_worker()
                self._render(stdscr)

                try:
                    key = stdscr.get_wch()
                except curses.error:
                    continue

                decoded = decode_key(key)
                if decoded is not None:
                    self.controller.handle_key(decoded)
        finally:
            self.worker.stop()

        return 0

    def _init_colors(self) -> None:
        if not curses.has_colors():
            return
        try:
            curses.start_color()
            curses.use_default_colors()
            curses.init_pair(COLOR_TITLE, curses.COLOR_CYAN, -1)
            curses.init_pair(COLOR_WORKING, curses.COLOR_GREEN, -1)
            curses.init_pair(COLOR_WAITING, curses.COLOR_YELLOW, -1)
            curses.init_pair(COLOR_IDLE, curses.COLOR_BLUE, -1)
            curses.init_pair(COLOR_ERROR, curses.COLOR_RED, -1)
        except curses.error:
            pass

    def _sync_with_worker(self) -> None:
        outcome = self.worker.poll()
        if outcome is not None:
            if outcome.sessions is not None:
                self.controller.replace_sessions(outcome.sessions)
            elif outcome.error:
                self.controller.error(f"Refresh failed: {outcome.error}")

        full, names = self.controller.take_refresh_request()
        if full:
            self.worker.request_full()
        elif names:
            self.worker.request_sessions(names)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _put(self, stdscr: Any, y: int, x: int, text: str, attr: int = curses.A_NORMAL) -> None:
        height, width = stdscr.getmaxyx()
        if y < 0 or y >= height or x >= width:
            return
        try:
            stdscr.addstr(y, x, short_text(text, width - x - 1), attr)
        except curses.error:
            pass

    def _render(self, stdscr: Any) -> None:
        stdscr.erase()
        height, width = stdscr.getmaxyx()
        state = self.controller.state
        mode = state.mode

        title = f"tmux-deck  {len(state.sessions)} sessions"
        if state.current_session:
            title += f"  attached: {state.current_session}"
        self._put(stdscr, 0, 0, title, curses.color_pair(COLOR_TITLE) | curses.A_BOLD)

        if isinstance(mode, HelpMode):
            for offset, line in enumerate(HELP_LINES):
                self._put(stdscr, 2 + offset, 2, line)
            stdscr.refresh()
            return

        top = 2
        if isinstance(mode, FilterMode):
            self._put(stdscr, 1, 0, f"/{mode.text}", curses.A_BOLD)

        overlay = self._overlay_lines()
        available = max(1, height - top - 2 - len(overlay))
        preview_rows = 0
        if self.controller.preview_lines > 0 and available >= 2 * MIN_LIST_ROWS + 1:
            preview_rows = min(self.controller.preview_lines + 1, available - MIN_LIST_ROWS)
        list_height = available - preview_rows
        self._render_sessions(stdscr, top, list_height, width)
        if preview_rows:
            self._render_preview(stdscr, top + list_height, preview_rows)

        overlay_top = height - 1 - len(overlay)
        for offset, (line, attr) in enumerate(overlay):
            self._put(stdscr, overlay_top + offset, 0, line, attr)

        self._render_footer(stdscr, height - 1)
        stdscr.refresh()

    def _render_sessions(self, stdscr: Any, top: int, rows: int, width: int) -> None:
        visible = self.controller.visible_sessions()
        if not visible:
            self._put(stdscr, top, 2, "No sessions")
            return

        state = self.controller.state
        selected = state.selected
        start = centered_offset(selected, len(visible), rows)
        for row, session in enumerate(visible[start:start + rows]):
            index = start + row
            attr = curses.A_REVERSE if index == selected else curses.A_NORMAL
            if session.agent_status in STATUS_COLORS:
                attr |= curses.color_pair(STATUS_COLORS[session.agent_status])
            current = session.name == state.current_session
            self._put(stdscr, top + row, 0, session_line(session, width, current), attr)

    def _render_preview(self, stdscr: Any, top: int, rows: int) -> None:
        session = self.controller.selected_session()
        name = session.name if session else ""
        self._put(stdscr, top, 0, f"── {name} ──", curses.A_DIM)

        lines = preview_tail(self.controller.state.preview, rows - 1)
        if not lines:
            self._put(stdscr, top + 1, 2, "No preview available", curses.A_DIM)
            return
        for offset, line in enumerate(lines):
            self._put(stdscr, top + 1 + offset, 2, line)

    def _overlay_lines(self) -> List[tuple]:
        state = self.controller.state
        mode = state.mode
        session = self.controller.selected_session()
        bold = curses.A_BOLD
        lines = []

        if isinstance(mode, ActionMenuMode):
            title = session.name if session else ""
            lines.append((f"Actions for {title}:", bold))
            pull_request = state.pull_request
            if pull_request is not None:
                lines.append((f"   PR #{pull_request.number} {pull_request.state.lower()} "
                              f"({pull_request.mergeable.lower()})  {pull_request.url}", curses.A_DIM))
            for index, action in enumerate(state.actions):
                marker = ">" if index == state.selected_action else " "
                attr = curses.A_REVERSE if index == state.selected_action else curses.A_NORMAL
                lines.append((f" {marker} {action.label}", attr))
        elif isinstance(mode, ConfirmActionMode):
            lines.extend(self._confirm_lines())
        elif isinstance(mode, CommitMode):
            branch = mode.session.git_context.branch if mode.session.git_context else ""
            lines.append((f"Commit staged changes on {branch}", bold))
            lines.append((f"   message: {mode.message}_", curses.A_NORMAL))
        elif isinstance(mode, CreatePullRequestMode):
            lines.extend(self._pull_request_dialog_lines(mode))
        elif isinstance(mode, RenameMode):
            lines.append((f"Rename '{mode.old_name}' to: {mode.new_name}_", bold))
        elif isinstance(mode, NewSessionMode):
            name_mark = ">" if mode.active_field is NewSessionField.NAME else " "
            path_mark = ">" if mode.active_field is NewSessionField.PATH else " "
            lines.append(("New session (Tab switches field, Right accepts suggestion)", bold))
            lines.append((f" {name_mark} name: {mode.name}", curses.A_NORMAL))
            lines.append((f" {path_mark} path: {mode.path}", curses.A_NORMAL))
            if mode.active_field is NewSessionField.PATH:
                for suggestion in mode.path_suggestions[:MAX_LISTED_SUGGESTIONS]:
                    lines.append((f"         {suggestion}", curses.A_DIM))
        elif isinstance(mode, NewWorktreeMode):
            lines.extend(self._worktree_dialog_lines(mode))

        return lines

    def _confirm_lines(self) -> List[tuple]:
        state = self.controller.state
        action = state.pending_action
        target = state.pending_session.name if state.pending_session else "?"
        label = action.label if action else "?"
        lines = [(f"{label} '{target}'? [y/N]", curses.A_BOLD | curses.color_pair(COLOR_WAITING))]

        ends_session = action is not None and action.kind in (ActionKind.KILL, ActionKind.MERGE_PULL_REQUEST_AND_CLOSE)
        if ends_session and target == state.current_session:
            lines.append(("This is your current session; your tmux client will exit",
                          curses.A_BOLD | curses.color_pair(COLOR_ERROR)))
        return lines

    def _pull_request_dialog_lines(self, mode: CreatePullRequestMode) -> List[tuple]:
        def mark(field: PullRequestField) -> str:
            return ">" if mode.active_field is field else " "

        branch = mode.session.git_context.branch if mode.session.git_context else ""
        return [
            (f"Create pull request from {branch} (Tab switches field)", curses.A_BOLD),
            (f" {mark(PullRequestField.TITLE)} title: {mode.title}", curses.A_NORMAL),
            (f" {mark(PullRequestField.BODY)} body:  {mode.body}", curses.A_NORMAL),
            (f" {mark(PullRequestField.BASE_BRANCH)} base:  {mode.base_branch}", curses.A_NORMAL),
        ]

    def _worktree_dialog_lines(self, mode: NewWorktreeMode) -> List[tuple]:
        def mark(field: NewWorktreeField) -> str:
            return ">" if mode.active_field is field else " "

        branch_note = " (new branch)" if mode.effective_branch and mode.is_new_branch else ""
        lines = [
            (f"New worktree session from {mode.source_repo}", curses.A_BOLD),
            (f" {mark(NewWorktreeField.BRANCH)} branch:  {mode.branch_input}{branch_note}", curses.A_NORMAL),
        ]
        if mode.active_field is NewWorktreeField.BRANCH:
            highlighted = mode.highlighted if mode.highlighted is not None else 0
            start = centered_offset(highlighted, len(mode.candidates), MAX_LISTED_SUGGESTIONS)
            shown = mode.candidates[start:start + MAX_LISTED_SUGGESTIONS]
            for index, branch in enumerate(shown, start):
                attr = curses.A_REVERSE if index == mode.highlighted else curses.A_DIM
                lines.append((f"            {branch}", attr))
        lines.append((f" {mark(NewWorktreeField.PATH)} path:    {mode.worktree_path}", curses.A_NORMAL))
        lines.append((f" {mark(NewWorktreeField.SESSION_NAME)} session: {mode.session_name}", curses.A_NORMAL))
        return lines

    def _render_footer(self, stdscr: Any, y: int) -> None:
        message = self.controller.state.message
        if message is not None:
            attr = curses.color_pair(COLOR_ERROR) if message.level == MESSAGE_ERROR else curses.color_pair(COLOR_IDLE)
            self._put(stdscr, y, 0, message.text, attr | curses.A_BOLD)
            return
        self._put(stdscr, y, 0, NORMAL_HINTS, curses.A_DIM)
