#!/usr/bin/env python3
"""
Status Classifier Tests
Tests agent status inference from captured pane text
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from tmux_deck.core.session_model import AgentStatus
from tmux_deck.monitoring.status_classifier import (
    classify,
    has_busy_marker,
    has_ready_prompt,
    strip_ansi,
)

IDLE_SCREEN = "\n".join([
    "⏺ Done. The tests pass.",
    "╭──────────────────────────────────────╮",
    "│ ❯                                    │",
    "╰──────────────────────────────────────╯",
    "  ? for shortcuts",
])

WORKING_SCREEN = "\n".join([
    "⏺ Reading files",
    "✻ Pondering… (12s · esc to interrupt)",
    "╭──────────────────────────────────────╮",
    "│ ❯                                    │",
    "╰──────────────────────────────────────╯",
])

CONFIRM_SCREEN = "\n".join([
    "Bash command",
    "  rm -rf build/",
    "Do you want to proceed?",
    "❯ 1. Yes",
    "  2. No",
])


class TestClassify(unittest.TestCase):
    """Test the ordered classification rules"""

    def test_empty_text_is_unknown(self):
        self.assertEqual(classify(""), AgentStatus.UNKNOWN)

    def test_unrecognised_text_is_unknown(self):
        self.assertEqual(classify("$ ls\nREADME.md  setup.py\n$"), AgentStatus.UNKNOWN)

    def test_idle_prompt(self):
        self.assertEqual(classify(IDLE_SCREEN), AgentStatus.IDLE)

    def test_working_with_spinner_and_interrupt_hint(self):
        self.assertEqual(classify(WORKING_SCREEN), AgentStatus.WORKING)

    def test_working_with_ctrl_c_hint(self):
        self.assertEqual(classify("Running tests (ctrl+c to interrupt)"), AgentStatus.WORKING)

    def test_waiting_input_question(self):
        self.assertEqual(classify(CONFIRM_SCREEN), AgentStatus.WAITING_INPUT)

    def test_waiting_input_yes_no_marker(self):
        self.assertEqual(classify("Overwrite config? [y/N]"), AgentStatus.WAITING_INPUT)

    def test_confirmation_beats_busy_and_idle_markers(self):
        text = WORKING_SCREEN + "\nDo you want to make this edit to app.py?\n" + IDLE_SCREEN
        self.assertEqual(classify(text), AgentStatus.WAITING_INPUT)

    def test_busy_marker_beats_ready_prompt(self):
        text = IDLE_SCREEN + "\n✶ Compiling… (esc to interrupt)"
        self.assertEqual(classify(text), AgentStatus.WORKING)

    def test_interrupt_hint_without_marker_is_not_busy(self):
        self.assertFalse(has_busy_marker(["press a key to interrupt"]))

    def test_busy_marker_must_share_a_line_with_hint(self):
        self.assertFalse(has_busy_marker(["✻ Thinking", "to interrupt"]))

    def test_prompt_without_border_is_not_ready(self):
        self.assertFalse(has_ready_prompt(["some output", "❯ 1. Yes"]))
        self.assertEqual(classify("some output\n❯ choose"), AgentStatus.UNKNOWN)

    def test_ansi_sequences_are_ignored(self):
        colored = "\x1b[38;5;246m──────────\x1b[0m\n\x1b[1m❯\x1b[0m "
        self.assertEqual(strip_ansi(colored), "──────────\n❯ ")
        self.assertEqual(classify(colored), AgentStatus.IDLE)

    def test_classification_is_idempotent(self):
        for text in (IDLE_SCREEN, WORKING_SCREEN, CONFIRM_SCREEN, "", "noise"):
            self.assertEqual(classify(text), classify(text))
            self.assertIn(classify(text), list(AgentStatus))


if __name__ == "__main__":
    unittest.main()
