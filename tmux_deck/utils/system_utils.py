"""
System Utilities Module

Process and environment helpers: command availability and resolution of the
real program behind interpreter-hosted pane commands.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

# tmux reports the interpreter, not the script, for these runtimes
INTERPRETER_COMMANDS = frozenset({"node", "bun", "deno", "python", "python3"})


class SystemUtils:
    """
    System-level utilities and process inspection.
    """

    @staticmethod
    def check_command_availability(command: str) -> bool:
        """
        Check if a command is available in PATH.

        Args:
            command: Command name to check

        Returns:
            bool: True if command is available
        """
        return shutil.which(command) is not None

    @staticmethod
    def resolve_pane_command(command: str, pid: Optional[int]) -> str:
        """
        Resolve the program a pane is really running.

        When tmux reports an interpreter (node, python, ...) as the pane's
        command, the script name from the interpreter's command line is used
        instead, so ``node .../bin/claude`` resolves to ``claude``. The pane's
        shell process and its descendants are searched for the interpreter.

        Args:
            command: ``#{pane_current_command}`` as reported by tmux
            pid: ``#{pane_pid}`` (the pane's root process), if known

        Returns:
            str: The script name, or ``command`` unchanged when it cannot be
            resolved
        """
        if command not in INTERPRETER_COMMANDS or not pid:
            return command

        try:
            root = psutil.Process(pid)
            candidates = [root] + root.children(recursive=True)
            for proc in candidates:
                try:
                    if proc.name() != command:
                        continue
                    cmdline = proc.cmdline()
                except psutil.Error:
                    continue
                if len(cmdline) > 1:
                    return Path(cmdline[1]).name
        except psutil.Error as e:
            logger.debug(f"Cannot inspect pane process {pid}: {e}")

        return command
