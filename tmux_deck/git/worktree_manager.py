"""
Git Worktree Manager Module

Resolves git context (branch, dirty state, upstream, worktree relationship) for
session working directories, lists branches, and creates or deletes linked
worktrees. Every destructive path validates first and mutates second.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from git import RemoteReference, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..core.errors import (
    BranchNotFound,
    DirtyWorktree,
    GitBackendError,
    NotAWorktree,
    PartialDelete,
    PathConflict,
    PreconditionFailed,
    RepositoryError,
)
from ..core.session_model import GitContext

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Branch label used when HEAD points at an unborn branch
NO_COMMITS_PLACEHOLDER = "HEAD"
SHORT_SHA_LENGTH = 7
DEFAULT_BRANCHES = ("main", "master")
PATH_HOSTILE_CHARACTERS = ("/", "\\", " ", ":", ".")
# The worktree link is parked under this name while git prunes its registration
PARKED_LINK_NAME = ".git.deleting"


def sanitize_branch_name(branch: str) -> str:
    """
    Turn a branch name into a path/session-name friendly suffix.

    Leading path components are dropped and path-hostile characters are
    replaced by '-', e.g. "feature/new-thing" -> "new-thing".
    """
    suffix = branch.rsplit("/", 1)[-1]
    for char in PATH_HOSTILE_CHARACTERS:
        suffix = suffix.replace(char, "-")
    return suffix


def default_worktree_path(repo_path: PathLike, branch: str) -> Path:
    """
    Default location for a branch's worktree: a sibling of the repository.

    e.g. /repos/project + feature/foo -> /repos/project-foo
    """
    repo_path = Path(repo_path)
    repo_name = repo_path.name or "repo"
    return repo_path.parent / f"{repo_name}-{sanitize_branch_name(branch)}"


def default_session_name(repo_path: PathLike, branch: str) -> str:
    """Session name for a branch's worktree: <repo-name>-<branch-suffix>."""
    repo_name = Path(repo_path).name or "repo"
    return f"{repo_name}-{sanitize_branch_name(branch)}"


def open_repository(path: PathLike) -> Repo:
    """Open the repository containing path or raise RepositoryError."""
    try:
        return Repo(str(Path(path).expanduser()), search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise RepositoryError(f"'{path}' is not a git repository") from e


def git_stderr(error: GitCommandError) -> str:
    """The useful part of a failed git command's stderr."""
    stderr = getattr(error, "stderr", "") or str(error)
    return stderr.strip().removeprefix("stderr:").strip().strip("'").strip()


def tracking_branch(repo: Repo) -> Optional[RemoteReference]:
    """The checked-out branch's tracking branch, if configured and fetched."""
    if not repo.head.is_valid() or repo.head.is_detached:
        return None
    tracking = repo.active_branch.tracking_branch()
    if tracking is None or not tracking.is_valid():
        return None
    return tracking


def upstream_status(repo: Repo) -> Tuple[bool, int, int]:
    """Return (has_upstream, ahead, behind) for the checked-out branch."""
    if tracking_branch(repo) is None:
        return False, 0, 0
    ahead = sum(1 for _ in repo.iter_commits("@{u}..HEAD"))
    behind = sum(1 for _ in repo.iter_commits("HEAD..@{u}"))
    return True, ahead, behind


class WorktreeManager:
    """
    Git context resolution and worktree lifecycle.

    Features:
    - Branch / dirty / worktree detection for arbitrary paths
    - Upstream tracking (remote, ahead and behind counts)
    - Local branch listing with the default branch first
    - Worktree creation for new or existing branches
    - Guarded worktree deletion (dirty, locked and prunable checks)
    """

    def detect(self, path: PathLike) -> Optional[GitContext]:
        """
        Detect git context for a path.

        Args:
            path: Any directory, typically a pane's working directory

        Returns:
            GitContext, or None when the path is not inside a non-bare repository
        """
        if not path:
            return None

        try:
            repo = Repo(str(path), search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return None

        try:
            if repo.bare:
                return None

            branch = self._resolve_branch(repo)
            has_staged, has_unstaged = self._scan_status(repo)
            has_upstream, ahead, behind = upstream_status(repo)
            is_worktree = self._is_linked_worktree(repo)

            main_repository_path = None
            if is_worktree:
                main_repository_path = self._main_worktree_path(repo)
                if main_repository_path is None or not Path(main_repository_path).exists():
                    logger.warning(f"Main repository for worktree {repo.working_tree_dir} not found")
                    return None

            return GitContext(
                branch=branch,
                dirty=has_staged or has_unstaged,
                is_worktree=is_worktree,
                repository_path=str(repo.working_tree_dir),
                main_repository_path=main_repository_path,
                has_staged=has_staged,
                has_unstaged=has_unstaged,
                has_remote=len(repo.remotes) > 0,
                has_upstream=has_upstream,
                ahead=ahead,
                behind=behind,
            )
        except GitCommandError as e:
            logger.warning(f"Git context detection failed for {path}: {e}")
            return None
        finally:
            repo.close()

    def list_branches(self, repo_path: PathLike) -> List[str]:
        """
        List local branches, "main"/"master" first, the rest alphabetically.

        Args:
            repo_path: Path inside the repository

        Returns:
            List of branch names

        Raises:
            RepositoryError: If repo_path is not inside a repository
        """
        repo = open_repository(repo_path)
        try:
            names = [head.name for head in repo.heads]
        finally:
            repo.close()

        return sorted(names, key=lambda name: (name not in DEFAULT_BRANCHES, name))

    def create_worktree(self,
                        repo_path: PathLike,
                        worktree_path: PathLike,
                        branch_name: str,
                        is_new_branch: bool) -> Path:
        """
        Create a linked worktree.

        Args:
            repo_path: Repository to create the worktree from
            worktree_path: Directory for the new worktree (must not exist)
            branch_name: Branch to check out in the worktree
            is_new_branch: Create branch_name at the current HEAD commit first

        Returns:
            Path: The created worktree directory

        Raises:
            RepositoryError: repo_path is not a repository
            PathConflict: worktree_path already exists
            BranchNotFound: existing branch requested but absent
            PreconditionFailed: branch cannot be created or checked out
        """
        repo = open_repository(repo_path)
        target = Path(worktree_path).expanduser()

        try:
            if target.exists():
                raise PathConflict(target)

            existing = {head.name for head in repo.heads}

            if not is_new_branch and branch_name not in existing:
                raise BranchNotFound(branch_name)

            if is_new_branch:
                if branch_name in existing:
                    raise PreconditionFailed(f"Branch '{branch_name}' already exists")
                if not repo.head.is_valid():
                    raise PreconditionFailed("Repository has no commits yet; cannot branch from HEAD")
                try:
                    repo.create_head(branch_name, repo.head.commit)
                except GitCommandError as e:
                    raise PreconditionFailed(
                        f"Failed to create branch '{branch_name}': {git_stderr(e)}"
                    ) from e
                logger.info(f"Created branch {branch_name} at {repo.head.commit.hexsha[:SHORT_SHA_LENGTH]}")

            try:
                repo.git.worktree("add", str(target), branch_name)
            except GitCommandError as e:
                if is_new_branch:
                    self._discard_branch(repo, branch_name)
                raise PreconditionFailed(
                    f"Failed to create worktree for '{branch_name}' at '{target}': {git_stderr(e)}"
                ) from e

            logger.info(f"Created worktree {target} for branch {branch_name}")
            return target
        finally:
            repo.close()

    def delete_worktree(self, worktree_path: PathLike, force: bool = False) -> Path:
        """
        Delete a linked worktree: deregister it from git, then remove its files.

        Args:
            worktree_path: Any path inside the worktree
            force: Skip the dirty / locked / prunable safety checks

        Returns:
            Path: The removed worktree root

        Raises:
            RepositoryError: Path is not inside a repository
            NotAWorktree: Path belongs to the main checkout
            DirtyWorktree: Unsafe to delete and force not set
            GitBackendError: Deregistration failed (nothing was removed)
            PartialDelete: Deregistered, but the directory could not be removed
        """
        repo = open_repository(worktree_path)

        try:
            if repo.bare or not self._is_linked_worktree(repo):
                raise NotAWorktree(Path(worktree_path))

            root = Path(repo.working_tree_dir)
            main_path = self._main_worktree_path(repo)
            entry = self._find_worktree_entry(repo, root) or {}

            if not force:
                has_staged, has_unstaged = self._scan_status(repo)
                if has_staged or has_unstaged:
                    raise DirtyWorktree(root, "has uncommitted changes; commit or stash them, or force delete")
                if "locked" in entry:
                    raise DirtyWorktree(root, f"is locked; unlock it first with: git worktree unlock {root}")
                if "prunable" in entry:
                    raise DirtyWorktree(root, "is marked prunable by git")
        except GitCommandError as e:
            raise GitBackendError(f"Failed to inspect worktree {worktree_path}: {git_stderr(e)}") from e
        finally:
            repo.close()

        self._deregister_worktree(main_path, root, locked="locked" in entry)

        try:
            shutil.rmtree(root)
        except OSError as e:
            logger.error(f"Worktree {root} deregistered but directory removal failed: {e}")
            raise PartialDelete(root, e) from e

        logger.info(f"Deleted worktree {root}")
        return root

    def list_worktrees(self, repo_path: PathLike) -> List[Dict[str, str]]:
        """
        List worktrees known to a repository (main checkout first).

        Returns:
            List of dicts with 'worktree' plus optional 'HEAD', 'branch',
            'detached', 'bare', 'locked' and 'prunable' keys
        """
        repo = open_repository(repo_path)
        try:
            return self._parse_worktree_list(repo.git.worktree("list", "--porcelain"))
        except GitCommandError as e:
            raise GitBackendError(f"Failed to list worktrees: {git_stderr(e)}") from e
        finally:
            repo.close()

    def _resolve_branch(self, repo: Repo) -> str:
        if not repo.head.is_valid():
            return NO_COMMITS_PLACEHOLDER
        if repo.head.is_detached:
            return repo.head.commit.hexsha[:SHORT_SHA_LENGTH]
        return repo.active_branch.name

    def _scan_status(self, repo: Repo):
        """Return (has_staged, has_unstaged); untracked files count as unstaged."""
        output = repo.git.status("--porcelain", "--untracked-files=normal", "--ignore-submodules")
        has_staged = False
        has_unstaged = False

        for line in output.splitlines():
            if len(line) < 2:
                continue
            index_state, tree_state = line[0], line[1]
            if index_state == "?":
                has_unstaged = True
                continue
            if index_state not in (" ", "!"):
                has_staged = True
            if tree_state not in (" ", "!"):
                has_unstaged = True

        return has_staged, has_unstaged

    def _is_linked_worktree(self, repo: Repo) -> bool:
        git_dir = Path(repo.git_dir).resolve()
        common_dir = Path(repo.common_dir).resolve()
        return git_dir != common_dir

    def _main_worktree_path(self, repo: Repo) -> Optional[str]:
        """The first entry of `git worktree list` is always the main checkout."""
        entries = self._parse_worktree_list(repo.git.worktree("list", "--porcelain"))
        if not entries:
            return None
        return entries[0]["worktree"]

    def _find_worktree_entry(self, repo: Repo, root: Path) -> Optional[Dict[str, str]]:
        resolved = root.resolve()
        for entry in self._parse_worktree_list(repo.git.worktree("list", "--porcelain")):
            if Path(entry["worktree"]).resolve() == resolved:
                return entry
        return None

    @staticmethod
    def _parse_worktree_list(output: str) -> List[Dict[str, str]]:
        entries = []
        current: Dict[str, str] = {}

        for line in output.splitlines():
            if not line.strip():
                if current:
                    entries.append(current)
                    current = {}
                continue
            key, _, value = line.partition(" ")
            if key == "worktree" and current:
                entries.append(current)
                current = {}
            current[key] = value

        if current:
            entries.append(current)

        return entries

    def _deregister_worktree(self, main_path: Optional[str], root: Path, locked: bool) -> None:
        """
        Make git forget a worktree while leaving its files in place.

        The worktree's ``.git`` link is parked under another name so that
        ``git worktree prune`` treats the registration as stale and removes
        it. The link is put back if git still lists the worktree afterwards.
        """
        if main_path is None:
            raise GitBackendError(f"Cannot locate the main repository for {root}")

        link = root / ".git"
        parked = root / PARKED_LINK_NAME
        main_repo = open_repository(main_path)
        try:
            if locked:
                main_repo.git.worktree("unlock", str(root))
            link.rename(parked)
            try:
                main_repo.git.worktree("prune")
                if self._find_worktree_entry(main_repo, root) is not None:
                    raise GitBackendError(f"git still lists worktree {root} after pruning")
            except (GitCommandError, GitBackendError):
                parked.rename(link)
                raise
        except GitCommandError as e:
            raise GitBackendError(f"Failed to deregister worktree {root}: {git_stderr(e)}") from e
        except OSError as e:
            raise GitBackendError(f"Failed to deregister worktree {root}: {e}") from e
        finally:
            main_repo.close()

        logger.info(f"Deregistered worktree {root}")

    def _discard_branch(self, repo: Repo, branch_name: str) -> None:
        try:
            repo.delete_head(branch_name, force=True)
            logger.info(f"Removed branch {branch_name} after failed worktree creation")
        except GitCommandError as e:
            logger.warning(f"Could not remove branch {branch_name}: {git_stderr(e)}")
