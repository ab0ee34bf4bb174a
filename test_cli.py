#!/usr/bin/env python3
"""
CLI Tests
Tests the scriptable commands with logging and tmux mocked out
"""

import io
import json
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent))

from tmux_deck.cli.enhanced_cli import EnhancedCLI, session_to_dict
from tmux_deck.core.errors import PartialDelete, TmuxError
from tmux_deck.core.session_model import AgentStatus, GitContext, Session
from tmux_deck.utils.config_loader import ConfigLoader

from test_worktree_manager import init_repo

SESSION = Session(
    name="api",
    created=1700000000,
    attached=True,
    working_directory="/repos/api",
    agent_pane="%2",
    agent_status=AgentStatus.WAITING_INPUT,
    git_context=GitContext(branch="main", dirty=True, is_worktree=False,
                           repository_path="/repos/api", has_unstaged=True),
)


class CLITestCase(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp()).resolve()
        logging_patcher = patch("tmux_deck.main.setup_logging")
        self.setup_logging = logging_patcher.start()
        self.addCleanup(logging_patcher.stop)
        self.cli = EnhancedCLI(ConfigLoader(self.test_dir / "config"))

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def run_cli(self, *args):
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            code = self.cli.run(list(args))
        return code, stdout.getvalue()


class TestCommands(CLITestCase):
    """Test individual commands"""

    def test_classify_file(self):
        screen = self.test_dir / "screen.txt"
        screen.write_text("Do you want to proceed?\n❯ 1. Yes\n")
        code, output = self.run_cli("classify", str(screen))
        self.assertEqual(code, 0)
        self.assertEqual(output.strip(), "waiting_input")

    def test_classify_missing_file(self):
        code, _ = self.run_cli("classify", str(self.test_dir / "missing.txt"))
        self.assertEqual(code, 1)

    def test_list_json(self):
        reconciler = MagicMock()
        reconciler.reconcile.return_value = [SESSION]
        with patch.object(EnhancedCLI, "_reconciler", return_value=reconciler):
            code, output = self.run_cli("list", "--json")

        self.assertEqual(code, 0)
        data = json.loads(output)
        self.assertEqual(data[0]["name"], "api")
        self.assertEqual(data[0]["agent_status"], "waiting_input")
        self.assertTrue(data[0]["git_context"]["dirty"])

    def test_list_backend_failure(self):
        reconciler = MagicMock()
        reconciler.reconcile.side_effect = TmuxError("server exited")
        with patch.object(EnhancedCLI, "_reconciler", return_value=reconciler):
            code, _ = self.run_cli("list")
        self.assertEqual(code, 1)

    def test_status_outside_repository(self):
        code, _ = self.run_cli("status", str(self.test_dir))
        self.assertEqual(code, 1)

    def test_worktree_add_and_remove(self):
        repo = init_repo(self.test_dir / "project")
        target = self.test_dir / "project-x"

        code, _ = self.run_cli("worktree", "add", "-b", str(repo), str(target), "feature/x")
        self.assertEqual(code, 0)
        self.assertTrue(target.exists())

        code, _ = self.run_cli("worktree", "remove", str(target))
        self.assertEqual(code, 0)
        self.assertFalse(target.exists())

    def test_worktree_list_json(self):
        repo = init_repo(self.test_dir / "project")
        target = self.test_dir / "project-y"
        self.run_cli("worktree", "add", "-b", str(repo), str(target), "feature/y")

        code, output = self.run_cli("worktree", "list", "--json", str(repo))
        self.assertEqual(code, 0)
        entries = json.loads(output)
        self.assertEqual([Path(e["worktree"]).resolve() for e in entries], [repo.resolve(), target.resolve()])
        self.assertEqual(entries[1]["branch"], "refs/heads/feature/y")

    def test_worktree_list_table(self):
        repo = init_repo(self.test_dir / "project")
        code, _ = self.run_cli("worktree", "list", str(repo))
        self.assertEqual(code, 0)

    def test_partial_delete_exit_code(self):
        with patch("tmux_deck.cli.enhanced_cli.WorktreeManager") as manager:
            manager.return_value.delete_worktree.side_effect = PartialDelete(self.test_dir / "wt")
            code, _ = self.run_cli("worktree", "remove", str(self.test_dir / "wt"))
        self.assertEqual(code, 1)


class TestConfiguration(CLITestCase):
    """Test logging and socket configuration"""

    def test_socket_override(self):
        reconciler = MagicMock()
        reconciler.reconcile.return_value = []
        with patch.object(EnhancedCLI, "_reconciler", return_value=reconciler):
            self.run_cli("--socket", "deck", "list")
        self.assertEqual(self.cli.config.tmux_socket, "deck")
        self.assertEqual(self.cli._backend().base_cmd, ["tmux", "-L", "deck"])

    def test_verbose_enables_debug_logging_on_console(self):
        self.run_cli("-v", "classify", str(self.test_dir / "missing.txt"))
        args, kwargs = self.setup_logging.call_args
        self.assertEqual(args[0], "DEBUG")
        self.assertTrue(kwargs["console"])

    def test_session_to_dict_uses_enum_values(self):
        self.assertEqual(session_to_dict(SESSION)["agent_status"], "waiting_input")


if __name__ == "__main__":
    unittest.main()
