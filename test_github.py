#!/usr/bin/env python3
"""
GitHub CLI Tests
Tests gh invocation and output parsing with subprocess mocked, and default
branch lookup against real temporary repositories
"""

import json
import shutil
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent))

from tmux_deck.core.errors import GitHubError
from tmux_deck.git.github import GitHubCLI, PullRequestInfo

from test_worktree_manager import add_bare_remote, git, init_repo


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class GitHubTestCase(unittest.TestCase):

    def setUp(self):
        patcher = patch("tmux_deck.git.github.subprocess.run")
        self.run = patcher.start()
        self.addCleanup(patcher.stop)
        self.run.return_value = completed()
        self.gh = GitHubCLI()

    def commands(self):
        return [call.args[0] for call in self.run.call_args_list]


class TestAvailability(GitHubTestCase):
    """Test gh availability detection"""

    def test_available_when_installed_and_authenticated(self):
        self.assertTrue(self.gh.is_available())
        self.assertEqual(self.commands(), [["gh", "--version"], ["gh", "auth", "status"]])

    def test_result_is_cached(self):
        self.gh.is_available()
        self.gh.is_available()
        self.assertEqual(self.run.call_count, 2)

    def test_not_authenticated(self):
        self.run.side_effect = [completed(), completed(1, stderr="not logged in")]
        self.assertFalse(self.gh.is_available())

    def test_not_installed(self):
        self.run.side_effect = FileNotFoundError("gh")
        self.assertFalse(self.gh.is_available())

    def test_actions_require_availability(self):
        self.run.side_effect = FileNotFoundError("gh")
        with self.assertRaises(GitHubError):
            self.gh.create_pull_request("/repos/project", "Title", "", "main")
        with self.assertRaises(GitHubError):
            self.gh.merge_pull_request("/repos/project")


class TestPullRequests(GitHubTestCase):
    """Test pull request commands"""

    def setUp(self):
        super().setUp()
        self.gh._available = True

    def test_pull_request_info(self):
        self.run.return_value = completed(stdout=json.dumps({
            "number": 42, "url": "https://github.com/acme/project/pull/42",
            "state": "OPEN", "mergeable": "MERGEABLE",
        }))
        info = self.gh.pull_request_info("/repos/project")
        self.assertEqual(info, PullRequestInfo(42, "https://github.com/acme/project/pull/42", "OPEN", "MERGEABLE"))
        self.assertTrue(info.is_open)
        self.assertEqual(self.run.call_args.kwargs["cwd"], "/repos/project")

    def test_no_pull_request(self):
        self.run.return_value = completed(1, stderr="no pull requests found for branch")
        self.assertIsNone(self.gh.pull_request_info("/repos/project"))

    def test_unexpected_output(self):
        self.run.return_value = completed(stdout="not json")
        self.assertIsNone(self.gh.pull_request_info("/repos/project"))

    def test_closed_pull_request_is_not_open(self):
        self.run.return_value = completed(stdout=json.dumps({"number": 3, "url": "", "state": "CLOSED"}))
        info = self.gh.pull_request_info("/repos/project")
        self.assertFalse(info.is_open)
        self.assertEqual(info.mergeable, "UNKNOWN")

    def test_create_returns_url(self):
        self.run.return_value = completed(stdout="Creating pull request\nhttps://github.com/acme/project/pull/9\n")
        url = self.gh.create_pull_request("/repos/project", "Add login", "Body", "develop")
        self.assertEqual(url, "https://github.com/acme/project/pull/9")
        self.assertEqual(self.commands()[-1], [
            "gh", "pr", "create", "--title", "Add login", "--base", "develop", "--body", "Body",
        ])

    def test_create_failure(self):
        self.run.return_value = completed(1, stderr="a pull request already exists\n")
        with self.assertRaises(GitHubError) as ctx:
            self.gh.create_pull_request("/repos/project", "Add login", "", "main")
        self.assertIn("already exists", str(ctx.exception))

    def test_merge_keeps_branch_by_default(self):
        self.gh.merge_pull_request("/repos/project")
        self.assertEqual(self.commands()[-1], ["gh", "pr", "merge", "--merge"])
        self.gh.merge_pull_request("/repos/project", delete_branch=True)
        self.assertEqual(self.commands()[-1], ["gh", "pr", "merge", "--merge", "--delete-branch"])

    def test_view_and_close(self):
        self.gh.view_pull_request("/repos/project")
        self.gh.close_pull_request("/repos/project")
        self.assertEqual(self.commands(), [["gh", "pr", "view", "--web"], ["gh", "pr", "close"]])

    def test_close_failure(self):
        self.run.return_value = completed(1, stderr="no open pull request")
        with self.assertRaises(GitHubError):
            self.gh.close_pull_request("/repos/project")


class TestRepositoryLookups(unittest.TestCase):
    """Test remote and default branch lookups on real repositories"""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp()).resolve()
        self.repo = init_repo(self.test_dir / "project")
        self.gh = GitHubCLI()

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_no_remote(self):
        self.assertIsNone(self.gh.default_branch(self.repo))
        self.assertIsNone(self.gh.remote_url(self.repo))
        self.assertFalse(self.gh.is_github_remote(self.repo))

    def test_not_a_repository(self):
        plain = self.test_dir / "plain"
        plain.mkdir()
        self.assertIsNone(self.gh.default_branch(plain))
        self.assertIsNone(self.gh.remote_url(plain))

    def test_github_remote(self):
        git('remote', 'add', 'origin', 'git@github.com:acme/project.git', cwd=self.repo)
        self.assertEqual(self.gh.remote_url(self.repo), "git@github.com:acme/project.git")
        self.assertTrue(self.gh.is_github_remote(self.repo))

    def test_default_branch_from_remote_head(self):
        add_bare_remote(self.repo, self.test_dir / "remote.git")
        git('checkout', '-b', 'develop', cwd=self.repo)
        git('push', 'origin', 'main', 'develop', cwd=self.repo)
        git('symbolic-ref', 'refs/remotes/origin/HEAD', 'refs/remotes/origin/develop', cwd=self.repo)
        self.assertEqual(self.gh.default_branch(self.repo), "develop")

    def test_default_branch_falls_back_to_known_names(self):
        add_bare_remote(self.repo, self.test_dir / "remote.git")
        git('branch', '-m', 'main', 'master', cwd=self.repo)
        git('push', 'origin', 'master', cwd=self.repo)
        self.assertEqual(self.gh.default_branch(self.repo), "master")

    def test_default_branch_when_nothing_is_fetched(self):
        add_bare_remote(self.repo, self.test_dir / "remote.git")
        self.assertEqual(self.gh.default_branch(self.repo), "main")


if __name__ == "__main__":
    unittest.main()
