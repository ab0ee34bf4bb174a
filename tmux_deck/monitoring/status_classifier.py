"""
Agent Status Classifier Module

Infers what a coding agent is doing from the last lines of its pane. The
rules are an ordered table evaluated top to bottom; the first rule whose
predicate matches decides the status. Anything unrecognised is UNKNOWN.
"""

import re
from typing import Callable, List, Tuple

from ..core.session_model import AgentStatus

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*(\x07|\x1b\\)")

CONFIRMATION_MARKERS = (
    "[y/n]",
    "[Y/n]",
    "[y/N]",
    "(y/n)",
    "Do you want to proceed?",
    "Do you want to make this edit",
)

INTERRUPT_HINT = "to interrupt"
INTERRUPT_KEYS = ("ctrl+c", "esc")
SPINNER_GLYPHS = "✻✽✶✳✢·*⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

PROMPT_GLYPH = "❯"
BORDER_GLYPH = "─"

Rule = Tuple[Callable[[List[str]], bool], AgentStatus]


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences from captured output."""
    return ANSI_ESCAPE.sub("", text)


def has_confirmation_marker(lines: List[str]) -> bool:
    return any(marker in line for line in lines for marker in CONFIRMATION_MARKERS)


def _is_busy_line(line: str) -> bool:
    if INTERRUPT_HINT not in line:
        return False
    lowered = line.lower()
    if any(key in lowered for key in INTERRUPT_KEYS):
        return True
    return any(glyph in line for glyph in SPINNER_GLYPHS)


def has_busy_marker(lines: List[str]) -> bool:
    """A progress marker and an interrupt hint on the same line."""
    return any(_is_busy_line(line) for line in lines)


def has_ready_prompt(lines: List[str]) -> bool:
    """Input prompt line with the input box border directly above it."""
    for index, line in enumerate(lines):
        if PROMPT_GLYPH in line and index > 0 and BORDER_GLYPH in lines[index - 1]:
            return True
    return False


def _is_idle(lines: List[str]) -> bool:
    return has_ready_prompt(lines) and not has_busy_marker(lines)


RULES: Tuple[Rule, ...] = (
    (has_confirmation_marker, AgentStatus.WAITING_INPUT),
    (has_busy_marker, AgentStatus.WORKING),
    (_is_idle, AgentStatus.IDLE),
)


def classify(text: str) -> AgentStatus:
    """
    Classify captured pane text.

    Args:
        text: Recent pane output, possibly containing ANSI escapes

    Returns:
        AgentStatus: first matching rule's status, UNKNOWN otherwise
    """
    if not text:
        return AgentStatus.UNKNOWN

    lines = strip_ansi(text).splitlines()
    for predicate, status in RULES:
        if predicate(lines):
            return status
    return AgentStatus.UNKNOWN
