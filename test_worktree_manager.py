#!/usr/bin/env python3
"""
Worktree Manager Tests
Tests git context detection and worktree lifecycle against real temporary
repositories
"""

import os
import shutil
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent))

from tmux_deck.core.errors import (
    BranchNotFound,
    DirtyWorktree,
    GitBackendError,
    NotAWorktree,
    PartialDelete,
    PathConflict,
    PreconditionFailed,
    RepositoryError,
)
from tmux_deck.git.worktree_manager import (
    PARKED_LINK_NAME,
    WorktreeManager,
    default_session_name,
    default_worktree_path,
    sanitize_branch_name,
)


def git(*args, cwd):
    return subprocess.run(['git', *args], cwd=cwd, check=True, capture_output=True, text=True).stdout.strip()


def init_repo(path: Path, commit: bool = True) -> Path:
    """Create a repository on branch 'main', optionally with one commit."""
    path.mkdir(parents=True)
    git('init', cwd=path)
    git('symbolic-ref', 'HEAD', 'refs/heads/main', cwd=path)
    configure_identity(path)
    if commit:
        (path / "README.md").write_text("# Test Project\n")
        git('add', '.', cwd=path)
        git('commit', '-m', 'Initial commit', cwd=path)
    return path


def configure_identity(path: Path) -> None:
    git('config', 'user.email', 'test@example.com', cwd=path)
    git('config', 'user.name', 'Test User', cwd=path)
    git('config', 'commit.gpgsign', 'false', cwd=path)


def add_bare_remote(repo: Path, remote_path: Path, name: str = 'origin') -> Path:
    """Create a bare repository and register it as a remote of ``repo``."""
    git('init', '--bare', str(remote_path), cwd=repo.parent)
    git('symbolic-ref', 'HEAD', 'refs/heads/main', cwd=remote_path)
    git('remote', 'add', name, str(remote_path), cwd=repo)
    return remote_path


def clone_repo(remote_path: Path, path: Path) -> Path:
    git('clone', str(remote_path), str(path), cwd=remote_path.parent)
    configure_identity(path)
    return path


def commit_file(repo: Path, name: str, content: str = "content\n") -> None:
    (repo / name).write_text(content)
    git('add', name, cwd=repo)
    git('commit', '-m', f'Add {name}', cwd=repo)


class GitTestCase(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp()).resolve()
        self.repo = init_repo(self.test_dir / "project")
        self.manager = WorktreeManager()

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)


class TestNameDerivation(unittest.TestCase):
    """Test path and session name derivation from branch names"""

    def test_default_worktree_path_is_sibling(self):
        self.assertEqual(
            default_worktree_path("/repos/project", "feature/new-thing"),
            Path("/repos/project-new-thing")
        )

    def test_sanitize_keeps_last_component(self):
        self.assertEqual(sanitize_branch_name("feature/new-thing"), "new-thing")
        self.assertEqual(sanitize_branch_name("main"), "main")

    def test_sanitize_replaces_path_hostile_characters(self):
        self.assertEqual(sanitize_branch_name("fix/v1.2 hot:fix"), "v1-2-hot-fix")

    def test_default_session_name(self):
        self.assertEqual(default_session_name("/repos/project", "feature/x"), "project-x")


class TestDetect(GitTestCase):
    """Test git context detection"""

    def test_outside_repository_is_none(self):
        plain = self.test_dir / "plain"
        plain.mkdir()
        self.assertIsNone(self.manager.detect(plain))

    def test_missing_path_is_none(self):
        self.assertIsNone(self.manager.detect(self.test_dir / "missing"))

    def test_empty_path_is_none(self):
        self.assertIsNone(self.manager.detect(""))

    def test_clean_main_checkout(self):
        context = self.manager.detect(self.repo)
        self.assertEqual(context.branch, "main")
        self.assertFalse(context.dirty)
        self.assertFalse(context.is_worktree)
        self.assertIsNone(context.main_repository_path)
        self.assertEqual(Path(context.repository_path).resolve(), self.repo)

    def test_subdirectory_resolves_to_repository_root(self):
        sub = self.repo / "src" / "pkg"
        sub.mkdir(parents=True)
        context = self.manager.detect(sub)
        self.assertEqual(Path(context.repository_path).resolve(), self.repo)

    def test_untracked_file_is_dirty_and_unstaged(self):
        (self.repo / "notes.txt").write_text("todo\n")
        context = self.manager.detect(self.repo)
        self.assertTrue(context.dirty)
        self.assertTrue(context.has_unstaged)
        self.assertFalse(context.has_staged)

    def test_staged_change_is_dirty_and_staged(self):
        (self.repo / "README.md").write_text("# Changed\n")
        git('add', 'README.md', cwd=self.repo)
        context = self.manager.detect(self.repo)
        self.assertTrue(context.dirty)
        self.assertTrue(context.has_staged)
        self.assertFalse(context.has_unstaged)

    def test_ignored_file_is_not_dirty(self):
        (self.repo / ".gitignore").write_text("*.log\n")
        git('add', '.gitignore', cwd=self.repo)
        git('commit', '-m', 'ignore logs', cwd=self.repo)
        (self.repo / "debug.log").write_text("noise\n")
        self.assertFalse(self.manager.detect(self.repo).dirty)

    def test_detached_head_uses_short_sha(self):
        sha = git('rev-parse', 'HEAD', cwd=self.repo)
        git('checkout', '--detach', cwd=self.repo)
        self.assertEqual(self.manager.detect(self.repo).branch, sha[:7])

    def test_repository_without_commits_uses_placeholder(self):
        empty = init_repo(self.test_dir / "empty", commit=False)
        context = self.manager.detect(empty)
        self.assertEqual(context.branch, "HEAD")

    def test_bare_repository_is_none(self):
        bare = self.test_dir / "bare.git"
        git('init', '--bare', str(bare), cwd=self.test_dir)
        self.assertIsNone(self.manager.detect(bare))


class TestUpstreamDetection(GitTestCase):
    """Test remote, upstream and ahead/behind detection"""

    def setUp(self):
        super().setUp()
        self.remote = add_bare_remote(self.repo, self.test_dir / "remote.git")

    def test_remote_without_upstream(self):
        context = self.manager.detect(self.repo)
        self.assertTrue(context.has_remote)
        self.assertFalse(context.has_upstream)
        self.assertEqual((context.ahead, context.behind), (0, 0))

    def test_no_remote(self):
        git('remote', 'remove', 'origin', cwd=self.repo)
        context = self.manager.detect(self.repo)
        self.assertFalse(context.has_remote)
        self.assertFalse(context.has_upstream)

    def test_ahead_of_upstream(self):
        git('push', '-u', 'origin', 'main', cwd=self.repo)
        commit_file(self.repo, "a.txt")
        commit_file(self.repo, "b.txt")

        context = self.manager.detect(self.repo)
        self.assertTrue(context.has_upstream)
        self.assertEqual((context.ahead, context.behind), (2, 0))
        self.assertEqual(context.sync_summary, "↑2")

    def test_behind_upstream(self):
        git('push', '-u', 'origin', 'main', cwd=self.repo)
        other = clone_repo(self.remote, self.test_dir / "other")
        commit_file(other, "c.txt")
        git('push', 'origin', 'main', cwd=other)
        git('fetch', 'origin', cwd=self.repo)

        context = self.manager.detect(self.repo)
        self.assertEqual((context.ahead, context.behind), (0, 1))

    def test_detached_head_has_no_upstream(self):
        git('push', '-u', 'origin', 'main', cwd=self.repo)
        git('checkout', '--detach', cwd=self.repo)
        self.assertFalse(self.manager.detect(self.repo).has_upstream)


class TestListBranches(GitTestCase):
    """Test local branch listing"""

    def test_default_branch_first_then_alphabetical(self):
        for name in ("zeta", "alpha", "feature/x"):
            git('branch', name, cwd=self.repo)
        self.assertEqual(self.manager.list_branches(self.repo), ["main", "alpha", "feature/x", "zeta"])

    def test_not_a_repository(self):
        plain = self.test_dir / "plain"
        plain.mkdir()
        with self.assertRaises(RepositoryError):
            self.manager.list_branches(plain)


class TestCreateWorktree(GitTestCase):
    """Test worktree creation checks and effects"""

    def test_new_branch_worktree(self):
        target = self.test_dir / "project-x"
        created = self.manager.create_worktree(self.repo, target, "feature/x", True)

        self.assertEqual(created, target)
        self.assertTrue((target / "README.md").exists())
        self.assertIn("feature/x", self.manager.list_branches(self.repo))

        context = self.manager.detect(target)
        self.assertTrue(context.is_worktree)
        self.assertEqual(context.branch, "feature/x")
        self.assertEqual(Path(context.main_repository_path).resolve(), self.repo)
        self.assertEqual(Path(context.source_repository).resolve(), self.repo)

    def test_existing_branch_worktree(self):
        git('branch', 'topic', cwd=self.repo)
        target = self.test_dir / "project-topic"
        self.manager.create_worktree(self.repo, target, "topic", False)
        self.assertEqual(self.manager.detect(target).branch, "topic")

    def test_not_a_repository(self):
        plain = self.test_dir / "plain"
        plain.mkdir()
        with self.assertRaises(RepositoryError):
            self.manager.create_worktree(plain, self.test_dir / "wt", "x", True)

    def test_existing_path_conflicts(self):
        target = self.test_dir / "taken"
        target.mkdir()
        with self.assertRaises(PathConflict):
            self.manager.create_worktree(self.repo, target, "feature/x", True)
        self.assertNotIn("feature/x", self.manager.list_branches(self.repo))

    def test_missing_branch(self):
        with self.assertRaises(BranchNotFound):
            self.manager.create_worktree(self.repo, self.test_dir / "wt", "nope", False)
        self.assertFalse((self.test_dir / "wt").exists())

    def test_new_branch_that_already_exists(self):
        git('branch', 'topic', cwd=self.repo)
        with self.assertRaises(PreconditionFailed):
            self.manager.create_worktree(self.repo, self.test_dir / "wt", "topic", True)

    def test_new_branch_without_commits(self):
        empty = init_repo(self.test_dir / "empty", commit=False)
        with self.assertRaises(PreconditionFailed):
            self.manager.create_worktree(empty, self.test_dir / "wt", "topic", True)

    def test_branch_checked_out_elsewhere(self):
        with self.assertRaises(PreconditionFailed):
            self.manager.create_worktree(self.repo, self.test_dir / "wt", "main", False)
        self.assertFalse((self.test_dir / "wt").exists())

    def test_failed_attach_removes_new_branch(self):
        blocker = self.test_dir / "blocker"
        blocker.write_text("not a directory\n")

        with self.assertRaises(PreconditionFailed):
            self.manager.create_worktree(self.repo, blocker / "wt", "feature/y", True)

        self.assertNotIn("feature/y", self.manager.list_branches(self.repo))


class TestDeleteWorktree(GitTestCase):
    """Test guarded worktree deletion"""

    def setUp(self):
        super().setUp()
        self.worktree = self.test_dir / "project-x"
        self.manager.create_worktree(self.repo, self.worktree, "feature/x", True)

    def worktree_paths(self):
        return [Path(entry["worktree"]).resolve() for entry in self.manager.list_worktrees(self.repo)]

    def test_clean_worktree_is_removed(self):
        removed = self.manager.delete_worktree(self.worktree)

        self.assertEqual(removed.resolve(), self.worktree)
        self.assertFalse(self.worktree.exists())
        self.assertEqual(self.worktree_paths(), [self.repo])
        self.assertIn("feature/x", self.manager.list_branches(self.repo))

    def test_subdirectory_path_removes_whole_worktree(self):
        sub = self.worktree / "docs"
        sub.mkdir()
        (sub / ".keep").write_text("")
        git('add', '.', cwd=self.worktree)
        git('commit', '-m', 'docs', cwd=self.worktree)

        self.manager.delete_worktree(sub)
        self.assertFalse(self.worktree.exists())

    def test_dirty_worktree_is_refused_and_untouched(self):
        (self.worktree / "wip.txt").write_text("unsaved\n")

        with self.assertRaises(DirtyWorktree):
            self.manager.delete_worktree(self.worktree, force=False)

        self.assertTrue((self.worktree / "wip.txt").exists())
        self.assertIn(self.worktree, self.worktree_paths())

    def test_dirty_worktree_force(self):
        (self.worktree / "wip.txt").write_text("unsaved\n")
        self.manager.delete_worktree(self.worktree, force=True)
        self.assertFalse(self.worktree.exists())
        self.assertEqual(self.worktree_paths(), [self.repo])

    def test_locked_worktree_is_refused(self):
        git('worktree', 'lock', str(self.worktree), cwd=self.repo)
        with self.assertRaises(DirtyWorktree):
            self.manager.delete_worktree(self.worktree)
        self.assertTrue(self.worktree.exists())

    def test_locked_worktree_force(self):
        git('worktree', 'lock', str(self.worktree), cwd=self.repo)
        self.manager.delete_worktree(self.worktree, force=True)
        self.assertFalse(self.worktree.exists())
        self.assertEqual(self.worktree_paths(), [self.repo])

    def test_main_repository_is_never_a_worktree(self):
        for force in (False, True):
            with self.assertRaises(NotAWorktree):
                self.manager.delete_worktree(self.repo, force=force)
        self.assertTrue((self.repo / "README.md").exists())

    def test_not_a_repository(self):
        plain = self.test_dir / "plain"
        plain.mkdir()
        with self.assertRaises(RepositoryError):
            self.manager.delete_worktree(plain)

    def test_directory_removal_failure_is_partial_delete(self):
        real_rmtree = shutil.rmtree

        def failing_rmtree(path, *args, **kwargs):
            if Path(path).resolve() == self.worktree:
                raise PermissionError("read-only filesystem")
            return real_rmtree(path, *args, **kwargs)

        with patch("tmux_deck.git.worktree_manager.shutil.rmtree", side_effect=failing_rmtree):
            with self.assertRaises(PartialDelete) as ctx:
                self.manager.delete_worktree(self.worktree)

        self.assertEqual(Path(ctx.exception.leftover_path).resolve(), self.worktree)
        self.assertTrue(self.worktree.exists())
        self.assertEqual(self.worktree_paths(), [self.repo])

    def test_git_removes_its_own_registration(self):
        admin_dir = self.repo / ".git" / "worktrees" / "project-x"
        self.assertTrue(admin_dir.is_dir())
        self.manager.delete_worktree(self.worktree)
        self.assertFalse(admin_dir.exists())
        self.assertEqual(git('worktree', 'list', '--porcelain', cwd=self.repo).count("worktree "), 1)

    def test_registration_kept_when_prune_does_not_take(self):
        real_find = WorktreeManager._find_worktree_entry
        calls = []

        def still_listed(manager, repo, root):
            calls.append(root)
            entry = real_find(manager, repo, root)
            return entry if len(calls) == 1 else {"worktree": str(root)}

        with patch.object(WorktreeManager, "_find_worktree_entry", autospec=True, side_effect=still_listed):
            with self.assertRaises(GitBackendError):
                self.manager.delete_worktree(self.worktree)

        self.assertTrue((self.worktree / ".git").is_file())
        self.assertFalse((self.worktree / PARKED_LINK_NAME).exists())
        self.assertTrue((self.worktree / "README.md").exists())

    def test_worktree_with_missing_main_repository_has_no_context(self):
        moved = self.test_dir / "moved"
        os.rename(self.repo, moved)
        self.assertIsNone(self.manager.detect(self.worktree))


if __name__ == "__main__":
    unittest.main()
