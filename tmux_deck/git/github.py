"""
GitHub Pull Request Module

Pull request actions through the GitHub CLI (``gh``): availability checks,
default-branch lookup, and create / view / merge / close for the branch
checked out in a session's repository.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from git import Reference, SymbolicReference
from git.exc import GitCommandError

from ..core.errors import DeckError, GitHubError
from .worktree_manager import DEFAULT_BRANCHES, PathLike, open_repository

logger = logging.getLogger(__name__)

GITHUB_HOST = "github.com"
FALLBACK_DEFAULT_BRANCH = "main"
PR_VIEW_FIELDS = "number,url,state,mergeable"
UNAVAILABLE_MESSAGE = "GitHub CLI (gh) is not available or not authenticated"


@dataclass(frozen=True)
class PullRequestInfo:
    """The pull request ``gh pr view`` reports for the current branch."""
    number: int
    url: str
    state: str
    mergeable: str = "UNKNOWN"

    @property
    def is_open(self) -> bool:
        return self.state == "OPEN"


class GitHubCLI:
    """
    Wrapper around the ``gh`` command.

    Features:
    - Availability check (installed and authenticated), cached per instance
    - GitHub remote detection and default-branch lookup
    - Pull request info for the checked-out branch
    - Create, open in browser, merge and close pull requests
    """

    def __init__(self, gh_command: str = "gh"):
        self.gh_command = gh_command
        self._available: Optional[bool] = None

    def _run_gh_command(self, args: List[str], cwd: Optional[PathLike] = None) -> subprocess.CompletedProcess:
        """
        Run a gh command.

        Args:
            args: Command arguments (without the 'gh' prefix)
            cwd: Repository directory gh should act on

        Returns:
            CompletedProcess result (non-zero exit codes are not raised)

        Raises:
            GitHubError: If gh cannot be executed at all
        """
        full_cmd = [self.gh_command] + args
        logger.debug(f"gh command: {' '.join(full_cmd)} (cwd={cwd})")

        try:
            result = subprocess.run(full_cmd, cwd=str(cwd) if cwd else None,
                                    capture_output=True, text=True, check=False)
        except OSError as e:
            raise GitHubError(f"Failed to run gh: {e}") from e

        if result.returncode != 0:
            logger.debug(f"gh command failed (rc={result.returncode}): {' '.join(args)}: {result.stderr.strip()}")

        return result

    def is_available(self) -> bool:
        """Check if gh is installed and authenticated."""
        if self._available is None:
            try:
                self._available = (
                    self._run_gh_command(["--version"]).returncode == 0
                    and self._run_gh_command(["auth", "status"]).returncode == 0
                )
            except GitHubError as e:
                logger.info(f"gh unavailable: {e}")
                self._available = False
        return self._available

    def _require_available(self) -> None:
        if not self.is_available():
            raise GitHubError(UNAVAILABLE_MESSAGE)

    def remote_url(self, path: PathLike) -> Optional[str]:
        """URL of the repository's first remote, if any."""
        try:
            repo = open_repository(path)
        except DeckError:
            return None
        try:
            remotes = list(repo.remotes)
            if not remotes:
                return None
            urls = list(remotes[0].urls)
            return urls[0] if urls else None
        except GitCommandError as e:
            logger.debug(f"Could not read remote url of {path}: {e}")
            return None
        finally:
            repo.close()

    def is_github_remote(self, path: PathLike) -> bool:
        url = self.remote_url(path)
        return url is not None and GITHUB_HOST in url

    def default_branch(self, path: PathLike) -> Optional[str]:
        """
        The remote's default branch.

        Follows ``refs/remotes/<remote>/HEAD`` when it exists, then falls
        back to a remote "main" or "master" branch, then to "main".

        Returns:
            Branch name, or None when the path has no repository or remote
        """
        try:
            repo = open_repository(path)
        except DeckError:
            return None
        try:
            remotes = list(repo.remotes)
            if not remotes:
                return None
            remote_prefix = f"refs/remotes/{remotes[0].name}/"

            head = SymbolicReference(repo, f"{remote_prefix}HEAD")
            if head.is_valid():
                try:
                    target = head.reference.path
                except TypeError:
                    target = ""
                if target.startswith(remote_prefix):
                    return target[len(remote_prefix):]

            for candidate in DEFAULT_BRANCHES:
                if Reference(repo, f"{remote_prefix}{candidate}").is_valid():
                    return candidate
            return FALLBACK_DEFAULT_BRANCH
        finally:
            repo.close()

    def pull_request_info(self, path: PathLike) -> Optional[PullRequestInfo]:
        """Pull request for the checked-out branch, or None if there is none."""
        if not self.is_available():
            return None

        result = self._run_gh_command(["pr", "view", "--json", PR_VIEW_FIELDS], cwd=path)
        if result.returncode != 0:
            return None

        try:
            data = json.loads(result.stdout)
            return PullRequestInfo(
                number=int(data["number"]),
                url=data.get("url", ""),
                state=data["state"],
                mergeable=data.get("mergeable") or "UNKNOWN",
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unexpected gh pr view output in {path}: {e}")
            return None

    def create_pull_request(self, path: PathLike, title: str, body: str, base_branch: str) -> str:
        """
        Create a pull request for the checked-out branch.

        Returns:
            URL of the new pull request

        Raises:
            GitHubError: gh unavailable or pr create failed
        """
        self._require_available()
        result = self._run_gh_command(
            ["pr", "create", "--title", title, "--base", base_branch, "--body", body], cwd=path
        )
        if result.returncode != 0:
            raise GitHubError(f"gh pr create failed: {result.stderr.strip()}")

        url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        logger.info(f"Created pull request {url} from {path}")
        return url

    def view_pull_request(self, path: PathLike) -> None:
        """Open the branch's pull request in the browser."""
        self._require_available()
        result = self._run_gh_command(["pr", "view", "--web"], cwd=path)
        if result.returncode != 0:
            raise GitHubError(f"gh pr view failed: {result.stderr.strip()}")

    def merge_pull_request(self, path: PathLike, delete_branch: bool = False) -> None:
        """Merge the branch's pull request with a merge commit."""
        self._require_available()
        args = ["pr", "merge", "--merge"]
        if delete_branch:
            args.append("--delete-branch")
        result = self._run_gh_command(args, cwd=path)
        if result.returncode != 0:
            raise GitHubError(f"gh pr merge failed: {result.stderr.strip()}")
        logger.info(f"Merged pull request from {path}")

    def close_pull_request(self, path: PathLike) -> None:
        self._require_available()
        result = self._run_gh_command(["pr", "close"], cwd=path)
        if result.returncode != 0:
            raise GitHubError(f"gh pr close failed: {result.stderr.strip()}")
        logger.info(f"Closed pull request from {path}")
