#!/usr/bin/env python3
"""
Interactive Popup Tests
Tests key decoding and session line formatting (no terminal needed)
"""

import curses
import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent))

from tmux_deck.cli.interactive import (
    SessionPopup,
    centered_offset,
    decode_key,
    preview_tail,
    session_line,
    short_text,
)
from tmux_deck.core.controller import (
    KEY_BACKSPACE,
    KEY_BACKTAB,
    KEY_CTRL_U,
    KEY_ENTER,
    KEY_ESC,
    KEY_UP,
    InteractionController,
)
from tmux_deck.core.session_model import AgentStatus, GitContext, Session
from tmux_deck.monitoring.refresh_worker import RefreshOutcome


class TestDecodeKey(unittest.TestCase):
    """Test curses key translation"""

    def test_special_keys(self):
        self.assertEqual(decode_key(curses.KEY_UP), KEY_UP)
        self.assertEqual(decode_key(curses.KEY_BTAB), KEY_BACKTAB)
        self.assertIsNone(decode_key(curses.KEY_F1))

    def test_control_characters(self):
        self.assertEqual(decode_key("\n"), KEY_ENTER)
        self.assertEqual(decode_key("\x1b"), KEY_ESC)
        self.assertEqual(decode_key("\x7f"), KEY_BACKSPACE)
        self.assertEqual(decode_key("\x15"), KEY_CTRL_U)
        self.assertIsNone(decode_key("\x01"))

    def test_printable_characters_pass_through(self):
        self.assertEqual(decode_key("K"), "K")
        self.assertEqual(decode_key("é"), "é")


class TestFormatting(unittest.TestCase):
    """Test list line formatting"""

    def test_short_text(self):
        self.assertEqual(short_text("abcdef", 4), "abc…")
        self.assertEqual(short_text("abc", 10), "abc")
        self.assertEqual(short_text("abc", 0), "")

    def test_session_line(self):
        session = Session(
            name="api", created=0, attached=True, working_directory="/repos/api-x",
            agent_pane="%1", agent_status=AgentStatus.WAITING_INPUT,
            git_context=GitContext(branch="feature/x", dirty=True, is_worktree=True,
                                   repository_path="/repos/api-x", main_repository_path="/repos/api"),
        )
        line = session_line(session, 200)
        self.assertTrue(line.startswith(" ◐ * api"))
        self.assertIn("feature/x* [wt]", line)
        self.assertTrue(line.endswith("/repos/api-x"))

    def test_session_line_marks_current_session_and_sync(self):
        session = Session(
            name="web", created=0, attached=True, working_directory="/repos/web",
            git_context=GitContext(branch="main", dirty=False, is_worktree=False, repository_path="/repos/web",
                                   has_remote=True, has_upstream=True, ahead=2, behind=1),
        )
        line = session_line(session, 200, current=True)
        self.assertTrue(line.startswith("   ▸ web"))
        self.assertIn("main ↑2 ↓1", line)
        self.assertTrue(session_line(session, 200).startswith("   * web"))


class TestScrolling(unittest.TestCase):
    """Test list windowing around the selection"""

    def test_top_of_list_does_not_scroll(self):
        self.assertEqual(centered_offset(3, 20, 10), 0)
        self.assertEqual(centered_offset(5, 20, 10), 0)

    def test_selection_kept_mid_window(self):
        self.assertEqual(centered_offset(7, 20, 10), 2)
        self.assertEqual(centered_offset(10, 20, 10), 5)

    def test_end_of_list_stops_scrolling(self):
        self.assertEqual(centered_offset(18, 20, 10), 10)
        self.assertEqual(centered_offset(19, 20, 10), 10)

    def test_short_or_empty_lists(self):
        self.assertEqual(centered_offset(3, 5, 10), 0)
        self.assertEqual(centered_offset(0, 0, 10), 0)
        self.assertEqual(centered_offset(4, 5, 0), 0)


class TestPreviewTail(unittest.TestCase):
    """Test preview text preparation"""

    def test_keeps_last_rows_without_escapes(self):
        text = "one\n\x1b[32mtwo\x1b[0m\n\nfour"
        self.assertEqual(preview_tail(text, 3), ["two", "", "four"])

    def test_nothing_to_show(self):
        self.assertEqual(preview_tail(None, 5), [])
        self.assertEqual(preview_tail("", 5), [])
        self.assertEqual(preview_tail("text", 0), [])


class TestWorkerSync(unittest.TestCase):
    """Test hand-off between the worker and the controller"""

    def setUp(self):
        self.worker = MagicMock()
        self.controller = InteractionController(MagicMock())
        self.popup = SessionPopup(self.controller, self.worker)

    def test_published_sessions_are_installed(self):
        sessions = [Session(name="a", created=0, attached=False, working_directory="/tmp")]
        self.worker.poll.return_value = RefreshOutcome(sessions=sessions)
        self.popup._sync_with_worker()
        self.assertEqual(self.controller.state.sessions, tuple(sessions))

    def test_failed_pass_keeps_list_and_shows_error(self):
        self.controller.replace_sessions([Session(name="a", created=0, attached=False, working_directory="")])
        self.worker.poll.return_value = RefreshOutcome(error="server exited")
        self.popup._sync_with_worker()
        self.assertEqual(len(self.controller.state.sessions), 1)
        self.assertIn("server exited", self.controller.state.message.text)

    def test_refresh_requests_are_forwarded(self):
        self.worker.poll.return_value = None
        self.controller.request_refresh(["a", "b"])
        self.popup._sync_with_worker()
        self.worker.request_sessions.assert_called_once_with({"a", "b"})
        self.worker.request_full.assert_not_called()

        self.controller.request_refresh()
        self.popup._sync_with_worker()
        self.worker.request_full.assert_called_once_with()


if __name__ == "__main__":
    unittest.main()
