"""
Git Operations Module

Index and remote operations offered from the action menu: stage, commit,
push, fetch and fast-forward pull. Each call opens the repository containing
the given path, performs one operation and raises a DeckError on failure.
"""

import logging
from typing import Iterable

from git import PushInfo, Remote, Repo
from git.exc import GitCommandError

from ..core.errors import GitBackendError, PreconditionFailed
from .worktree_manager import PathLike, SHORT_SHA_LENGTH, git_stderr, open_repository, tracking_branch

logger = logging.getLogger(__name__)

PUSH_FAILURE_FLAGS = PushInfo.ERROR | PushInfo.REJECTED | PushInfo.REMOTE_REJECTED | PushInfo.REMOTE_FAILURE


class GitOperations:
    """
    Repository operations for a session's working directory.

    Features:
    - Stage everything (deletions included) and commit the index
    - Push to the tracking branch, or push and set one up
    - Fetch from the first remote
    - Pull that only ever fast-forwards
    """

    def stage_all(self, path: PathLike) -> None:
        """Stage every change in the working tree, like ``git add -A``."""
        repo = open_repository(path)
        try:
            repo.git.add("--all")
        except GitCommandError as e:
            raise GitBackendError(f"Failed to stage changes: {git_stderr(e)}") from e
        finally:
            repo.close()

        logger.info(f"Staged all changes in {path}")

    def commit(self, path: PathLike, message: str) -> str:
        """
        Commit the index.

        Args:
            path: Path inside the repository
            message: Commit message (must not be blank)

        Returns:
            Short SHA of the new commit

        Raises:
            PreconditionFailed: Blank message or nothing staged
            GitBackendError: The commit could not be written
        """
        if not message.strip():
            raise PreconditionFailed("Commit message cannot be empty")

        repo = open_repository(path)
        try:
            if not repo.git.diff("--cached", "--name-only"):
                raise PreconditionFailed("Nothing staged to commit")
            commit = repo.index.commit(message)
        except GitCommandError as e:
            raise GitBackendError(f"Failed to commit: {git_stderr(e)}") from e
        finally:
            repo.close()

        short_sha = commit.hexsha[:SHORT_SHA_LENGTH]
        logger.info(f"Committed {short_sha} in {path}")
        return short_sha

    def push(self, path: PathLike) -> str:
        """
        Push the checked-out branch to its tracking branch.

        Returns:
            The tracking branch pushed to, e.g. "origin/feature-x"

        Raises:
            PreconditionFailed: Detached HEAD or no tracking branch
            GitBackendError: The push failed or was rejected
        """
        repo = open_repository(path)
        try:
            self._require_branch(repo)
            tracking = tracking_branch(repo)
            if tracking is None:
                raise PreconditionFailed("No upstream branch configured")

            branch = repo.active_branch.name
            remote = repo.remote(tracking.remote_name)
            refspec = f"refs/heads/{branch}:refs/heads/{tracking.remote_head}"
            self._check_push(remote.push(refspec=refspec), tracking.name)
        except GitCommandError as e:
            raise GitBackendError(f"Failed to push: {git_stderr(e)}") from e
        finally:
            repo.close()

        logger.info(f"Pushed {branch} to {tracking.name}")
        return tracking.name

    def push_set_upstream(self, path: PathLike) -> str:
        """
        Push the checked-out branch to the first remote and track it there.

        Returns:
            The new tracking branch, e.g. "origin/feature-x"

        Raises:
            PreconditionFailed: Detached HEAD or no remotes
            GitBackendError: The push failed or was rejected
        """
        repo = open_repository(path)
        try:
            self._require_branch(repo)
            remote = self._first_remote(repo)
            branch = repo.active_branch.name
            refspec = f"refs/heads/{branch}:refs/heads/{branch}"
            self._check_push(remote.push(refspec=refspec, set_upstream=True), f"{remote.name}/{branch}")
        except GitCommandError as e:
            raise GitBackendError(f"Failed to push: {git_stderr(e)}") from e
        finally:
            repo.close()

        logger.info(f"Pushed {branch} to {remote.name} and set upstream")
        return f"{remote.name}/{branch}"

    def fetch(self, path: PathLike) -> str:
        """
        Fetch from the first remote.

        Returns:
            Name of the remote fetched from

        Raises:
            PreconditionFailed: No remotes
            GitBackendError: The fetch failed
        """
        repo = open_repository(path)
        try:
            remote = self._first_remote(repo)
            remote.fetch()
        except GitCommandError as e:
            raise GitBackendError(f"Failed to fetch: {git_stderr(e)}") from e
        finally:
            repo.close()

        logger.info(f"Fetched {remote.name} in {path}")
        return remote.name

    def pull(self, path: PathLike) -> bool:
        """
        Fetch the tracking branch's remote and fast-forward onto it.

        Returns:
            True if HEAD moved, False if it was already up to date

        Raises:
            PreconditionFailed: Detached HEAD, no tracking branch, or the
                branches have diverged
            GitBackendError: Fetch or merge failed
        """
        repo = open_repository(path)
        try:
            self._require_branch(repo)
            tracking = tracking_branch(repo)
            if tracking is None:
                raise PreconditionFailed("No upstream branch configured")

            repo.remote(tracking.remote_name).fetch()

            if repo.is_ancestor(tracking.commit, repo.head.commit):
                logger.info(f"{repo.active_branch.name} already up to date with {tracking.name}")
                return False
            if not repo.is_ancestor(repo.head.commit, tracking.commit):
                raise PreconditionFailed("Cannot fast-forward; manual merge required")

            repo.git.merge("--ff-only", tracking.name)
        except GitCommandError as e:
            raise GitBackendError(f"Failed to pull: {git_stderr(e)}") from e
        finally:
            repo.close()

        logger.info(f"Fast-forwarded {path} to {tracking.name}")
        return True

    def _require_branch(self, repo: Repo) -> None:
        if not repo.head.is_valid():
            raise PreconditionFailed("Repository has no commits yet")
        if repo.head.is_detached:
            raise PreconditionFailed("HEAD is detached; check out a branch first")

    def _first_remote(self, repo: Repo) -> Remote:
        remotes = list(repo.remotes)
        if not remotes:
            raise PreconditionFailed("No remotes configured")
        return remotes[0]

    def _check_push(self, results: Iterable[PushInfo], target: str) -> None:
        for info in results:
            if info.flags & PUSH_FAILURE_FLAGS:
                summary = info.summary.strip() or "rejected"
                raise GitBackendError(f"Push to {target} failed: {summary}")
        error = getattr(results, "error", None)
        if error is not None:
            raise GitBackendError(f"Push to {target} failed: {error}")
