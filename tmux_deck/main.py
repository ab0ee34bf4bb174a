"""
Main entry point for tmux-deck.

Sets up logging and hands the command line to EnhancedCLI.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO",
                  log_file: Optional[Union[str, Path]] = None,
                  console: bool = False) -> None:
    """
    Configure root logging.

    Args:
        level: Log level name
        log_file: File to append log records to (parent created if needed)
        console: Also log to stderr; off for the interactive popup, which
            owns the terminal
    """
    handlers: List[logging.Handler] = []

    if log_file is not None:
        log_path = Path(log_file).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))
        except OSError as e:
            print(f"tmux-deck: cannot open log file {log_path}: {e}", file=sys.stderr)

    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    from .cli.enhanced_cli import EnhancedCLI

    return EnhancedCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
