"""
Action Executor Module

Performs confirmed session actions against the tmux, git and GitHub
backends. Every failure comes back as an unsuccessful ExecutionResult;
nothing is raised into the interaction state machine.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from ..git.github import GitHubCLI, PullRequestInfo
from ..git.operations import GitOperations
from ..git.worktree_manager import WorktreeManager
from ..tmux.session_controller import MultiplexerBackend
from ..utils.file_utils import expand_path
from .errors import DeckError, NotAWorktree, PartialDelete, PreconditionFailed
from .modes import ActionKind, SessionAction
from .session_model import Session

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Outcome of one executor call."""
    success: bool
    message: str
    error: Optional[DeckError] = None
    affected_sessions: List[str] = field(default_factory=list)
    quit_requested: bool = False

    @classmethod
    def ok(cls, message: str, affected: Optional[List[str]] = None, quit_requested: bool = False) -> 'ExecutionResult':
        return cls(True, message, None, list(affected or []), quit_requested)

    @classmethod
    def failed(cls, error: DeckError, affected: Optional[List[str]] = None) -> 'ExecutionResult':
        return cls(False, str(error), error, list(affected or []))


class ActionExecutor:
    """
    Executes session actions.

    Features:
    - Switch, kill and rename of tmux sessions
    - Session creation with optional agent start
    - Worktree deletion strictly before session kill
    - Worktree plus session creation as one action
    - Stage, commit, push, fetch and pull in the session's repository
    - GitHub pull request create / view / merge / close through gh
    """

    def __init__(self,
                 backend: MultiplexerBackend,
                 git: Optional[WorktreeManager] = None,
                 agent_command: str = "claude",
                 start_agent: bool = True,
                 operations: Optional[GitOperations] = None,
                 github: Optional[GitHubCLI] = None,
                 use_github: bool = True):
        self.backend = backend
        self.git = git or WorktreeManager()
        self.agent_command = agent_command
        self.start_agent = start_agent
        self.operations = operations or GitOperations()
        self.github = github or GitHubCLI()
        self.use_github = use_github

    def execute(self, action: SessionAction, session: Session) -> ExecutionResult:
        """
        Execute a menu action for a session.

        Args:
            action: Action to perform (RENAME, NEW_WORKTREE, COMMIT and
                CREATE_PULL_REQUEST go through their dialogs and the
                dedicated methods instead)
            session: Session the action targets

        Returns:
            ExecutionResult
        """
        logger.info(f"Executing {action.label!r} on session {session.name}")

        kind = action.kind
        if kind is ActionKind.SWITCH_TO:
            return self.switch_to(session)
        if kind is ActionKind.KILL:
            if action.delete_worktree:
                return self.kill_and_delete_worktree(session)
            return self.kill(session)
        if kind is ActionKind.STAGE:
            return self._in_repository(session, self.operations.stage_all,
                                       lambda _: "Staged all changes")
        if kind is ActionKind.PUSH:
            return self._in_repository(session, self.operations.push,
                                       lambda target: f"Pushed to {target}")
        if kind is ActionKind.PUSH_SET_UPSTREAM:
            return self._in_repository(session, self.operations.push_set_upstream,
                                       lambda target: f"Pushed and set upstream to {target}")
        if kind is ActionKind.FETCH:
            return self._in_repository(session, self.operations.fetch,
                                       lambda remote: f"Fetched from {remote}")
        if kind is ActionKind.PULL:
            return self._in_repository(session, self.operations.pull,
                                       lambda moved: "Pulled from remote" if moved else "Already up to date")
        if kind is ActionKind.VIEW_PULL_REQUEST:
            return self._in_repository(session, self.github.view_pull_request,
                                       lambda _: "Opened pull request in browser")
        if kind is ActionKind.CLOSE_PULL_REQUEST:
            return self._in_repository(session, self.github.close_pull_request,
                                       lambda _: "Closed pull request")
        if kind is ActionKind.MERGE_PULL_REQUEST:
            return self._in_repository(session, self.github.merge_pull_request,
                                       lambda _: "Merged pull request")
        if kind is ActionKind.MERGE_PULL_REQUEST_AND_CLOSE:
            return self.merge_pull_request_and_close(session)

        return ExecutionResult(False, f"'{action.label}' needs input and cannot be executed directly")

    def _in_repository(self,
                       session: Session,
                       operation: Callable[[str], Any],
                       describe: Callable[[Any], str]) -> ExecutionResult:
        """Run a git or gh operation in the session's repository."""
        context = session.git_context
        if context is None:
            error = PreconditionFailed(f"Session '{session.name}' is not in a git repository")
            return ExecutionResult.failed(error, [session.name])

        try:
            outcome = operation(context.repository_path)
        except DeckError as e:
            logger.warning(f"Git operation on {session.name} failed: {e}")
            return ExecutionResult.failed(e, [session.name])
        return ExecutionResult.ok(describe(outcome), [session.name])

    def switch_to(self, session: Session) -> ExecutionResult:
        try:
            self.backend.switch_client(session.name)
        except DeckError as e:
            logger.warning(f"Switch to {session.name} failed: {e}")
            return ExecutionResult.failed(e, [session.name])
        return ExecutionResult.ok(f"Switched to '{session.name}'", quit_requested=True)

    def kill(self, session: Session) -> ExecutionResult:
        try:
            self.backend.kill_session(session.name)
        except DeckError as e:
            logger.warning(f"Kill of {session.name} failed: {e}")
            return ExecutionResult.failed(e, [session.name])
        return ExecutionResult.ok(f"Killed session '{session.name}'", [session.name])

    def kill_and_delete_worktree(self, session: Session) -> ExecutionResult:
        """
        Delete the session's worktree, then kill the session.

        The session is only killed after the worktree is fully gone; any
        deletion failure (including a partial one) leaves it alive.
        """
        context = session.git_context
        if context is None or not context.is_worktree:
            error = NotAWorktree(Path(session.working_directory or session.name))
            return ExecutionResult.failed(error, [session.name])

        try:
            removed = self.git.delete_worktree(context.repository_path, force=False)
        except PartialDelete as e:
            logger.error(f"Partial worktree delete for {session.name}: {e}")
            return ExecutionResult.failed(e, [session.name])
        except DeckError as e:
            logger.warning(f"Worktree delete for {session.name} refused: {e}")
            return ExecutionResult.failed(e, [session.name])

        try:
            self.backend.kill_session(session.name)
        except DeckError as e:
            logger.warning(f"Worktree {removed} deleted but kill of {session.name} failed: {e}")
            return ExecutionResult(
                False,
                f"Deleted worktree {removed}, but killing '{session.name}' failed: {e}",
                e,
                [session.name],
            )

        return ExecutionResult.ok(f"Killed '{session.name}' and deleted worktree {removed}", [session.name])

    def rename(self, old_name: str, new_name: str) -> ExecutionResult:
        try:
            self.backend.rename_session(old_name, new_name)
        except DeckError as e:
            logger.warning(f"Rename {old_name} -> {new_name} failed: {e}")
            return ExecutionResult.failed(e, [old_name, new_name])
        return ExecutionResult.ok(f"Renamed '{old_name}' to '{new_name}'", [old_name, new_name])

    def create_session(self, name: str, path: str) -> ExecutionResult:
        """
        Create a detached session, starting the agent in it when configured.

        Args:
            name: Session name
            path: Working directory (``~`` is expanded)
        """
        session_path = expand_path(path) if path.strip() else Path.cwd()
        try:
            self._start_session(name, session_path)
        except DeckError as e:
            logger.warning(f"Creating session {name} failed: {e}")
            return ExecutionResult.failed(e, [name])
        return ExecutionResult.ok(f"Created session '{name}'", [name])

    def create_worktree_session(self,
                                source_repo: str,
                                worktree_path: str,
                                branch: str,
                                is_new_branch: bool,
                                session_name: str) -> ExecutionResult:
        """
        Create a worktree and a session rooted in it.

        If the session cannot be created the worktree is kept and the
        failure is reported.
        """
        try:
            created = self.git.create_worktree(source_repo, expand_path(worktree_path), branch, is_new_branch)
        except DeckError as e:
            logger.warning(f"Creating worktree for {branch} failed: {e}")
            return ExecutionResult.failed(e)

        try:
            self._start_session(session_name, created)
        except DeckError as e:
            logger.warning(f"Worktree {created} created but session {session_name} failed: {e}")
            return ExecutionResult(
                False,
                f"Created worktree {created}, but creating session '{session_name}' failed: {e}",
                e,
                [session_name],
            )

        return ExecutionResult.ok(f"Created session '{session_name}' on {branch} in {created}", [session_name])

    def commit(self, session: Session, message: str) -> ExecutionResult:
        """Commit the staged changes of the session's repository."""
        return self._in_repository(
            session,
            lambda path: self.operations.commit(path, message),
            lambda sha: f"Committed {sha}",
        )

    def create_pull_request(self, session: Session, title: str, body: str, base_branch: str) -> ExecutionResult:
        """Open a pull request from the session's branch into ``base_branch``."""
        return self._in_repository(
            session,
            lambda path: self.github.create_pull_request(path, title, body, base_branch),
            lambda url: f"Created pull request {url}".rstrip(),
        )

    def merge_pull_request_and_close(self, session: Session) -> ExecutionResult:
        """
        Merge the session's pull request, then delete its worktree (if it is
        one) and kill the session.

        The worktree is force-deleted since its branch has just been merged.
        Failures after the merge are reported with the merge acknowledged.
        """
        context = session.git_context
        if context is None:
            error = PreconditionFailed(f"Session '{session.name}' is not in a git repository")
            return ExecutionResult.failed(error, [session.name])

        try:
            self.github.merge_pull_request(context.repository_path)
        except DeckError as e:
            logger.warning(f"Merging pull request of {session.name} failed: {e}")
            return ExecutionResult.failed(e, [session.name])

        if context.is_worktree:
            try:
                self.git.delete_worktree(context.repository_path, force=True)
            except DeckError as e:
                logger.error(f"Pull request of {session.name} merged but worktree delete failed: {e}")
                return ExecutionResult(False, f"Pull request merged, but deleting the worktree failed: {e}",
                                       e, [session.name])

        try:
            self.backend.kill_session(session.name)
        except DeckError as e:
            logger.warning(f"Pull request of {session.name} merged but kill failed: {e}")
            return ExecutionResult(False, f"Pull request merged, but killing '{session.name}' failed: {e}",
                                   e, [session.name])

        if context.is_worktree:
            return ExecutionResult.ok("Merged pull request, removed worktree and closed session", [session.name])
        return ExecutionResult.ok("Merged pull request and closed session", [session.name])

    def pull_request_status(self, session: Session) -> Tuple[bool, Optional[PullRequestInfo]]:
        """
        Whether pull request actions apply to a session, plus its pull request.

        They apply when the branch has an upstream, gh is usable, the first
        remote is on GitHub and the branch is not the default branch.
        """
        context = session.git_context
        if not self.use_github or context is None or not context.has_upstream:
            return False, None

        path = context.repository_path
        try:
            if not self.github.is_available() or not self.github.is_github_remote(path):
                return False, None
            default_branch = self.github.default_branch(path)
            if default_branch is None or context.branch == default_branch:
                return False, None
            return True, self.github.pull_request_info(path)
        except DeckError as e:
            logger.warning(f"Pull request lookup for {session.name} failed: {e}")
            return False, None

    def default_branch(self, session: Session) -> Optional[str]:
        context = session.git_context
        if context is None:
            return None
        return self.github.default_branch(context.repository_path)

    def capture_preview(self, session: Session, lines: int) -> Optional[str]:
        """
        Recent output of the session's agent pane (or first pane), blank
        lines kept so the layout survives. None when nothing can be captured.
        """
        pane_id = session.agent_pane
        if pane_id is None and session.panes:
            pane_id = session.panes[0].pane_id
        if pane_id is None or lines <= 0:
            return None

        try:
            return self.backend.capture_pane(pane_id, lines, strip_empty=False)
        except DeckError as e:
            logger.debug(f"Preview capture of {pane_id} failed: {e}")
            return None

    def _start_session(self, name: str, path: Path) -> None:
        self.backend.new_session(name, str(path))
        if self.start_agent and self.agent_command:
            try:
                self.backend.send_keys(name, self.agent_command, enter=True)
            except DeckError as e:
                logger.warning(f"Session {name} created but starting {self.agent_command} failed: {e}")
