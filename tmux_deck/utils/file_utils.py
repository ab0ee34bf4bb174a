"""
File Utilities Module

Config file reading and filesystem path helpers for tmux-deck: home
expansion, display formatting and completion suggestions for path inputs.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 50


class FileUtils:
    """
    File operation utilities with error handling.
    """

    @staticmethod
    def read_json(file_path: Path) -> Optional[Dict[str, Any]]:
        """
        Safely read JSON file.

        Args:
            file_path: Path to JSON file

        Returns:
            Dict containing JSON data or None if missing or invalid
        """
        try:
            if not file_path.exists():
                return None

            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in {file_path}: {e}")
            return None
        except OSError as e:
            logger.error(f"Error reading {file_path}: {e}")
            return None

    @staticmethod
    def read_yaml(file_path: Path) -> Optional[Dict[str, Any]]:
        """
        Safely read YAML file.

        Args:
            file_path: Path to YAML file

        Returns:
            Dict containing YAML data ({} for an empty file) or None if
            missing or invalid
        """
        try:
            if not file_path.exists():
                return None

            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)

            return data or {}

        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in {file_path}: {e}")
            return None
        except OSError as e:
            logger.error(f"Error reading YAML {file_path}: {e}")
            return None


def expand_path(path: str) -> Path:
    """Expand a leading ``~`` and environment variables in a user-typed path."""
    return Path(os.path.expandvars(os.path.expanduser(path.strip())))


def contract_home(path: str) -> str:
    """Show the home directory as ``~``."""
    home = str(Path.home())
    if path == home:
        return "~"
    if path.startswith(home + os.sep):
        return "~" + path[len(home):]
    return path


def complete_path(partial: str) -> List[str]:
    """
    Filesystem completion suggestions for a partially typed path.

    Directories come first, then files, each group sorted case-insensitively.
    Directories carry a trailing separator. Hidden entries are only offered
    when the typed prefix starts with a dot. Suggestions keep the ``~`` form
    when the input used it.

    Args:
        partial: Text typed so far (may start with ``~``)

    Returns:
        List of suggested full paths (empty when nothing matches)
    """
    partial = partial.strip()
    uses_tilde = partial.startswith("~")

    if not partial:
        directory, prefix = Path("."), ""
    elif partial.endswith(os.sep):
        directory, prefix = expand_path(partial), ""
    else:
        expanded = expand_path(partial)
        directory, prefix = expanded.parent, expanded.name

    if not directory.is_dir():
        return []

    try:
        entries = list(directory.iterdir())
    except OSError as e:
        logger.debug(f"Cannot list {directory} for completion: {e}")
        return []

    lowered_prefix = prefix.lower()
    matches = []
    for entry in entries:
        name = entry.name
        if prefix and not name.lower().startswith(lowered_prefix):
            continue
        if name.startswith(".") and not prefix.startswith("."):
            continue

        is_dir = entry.is_dir()
        display = str(entry) if partial else name
        if uses_tilde:
            display = contract_home(display)
        if is_dir:
            display += os.sep
        matches.append((not is_dir, display.lower(), display))

    matches.sort()
    return [display for _, _, display in matches[:MAX_SUGGESTIONS]]

