"""ccbell logging — Rich console on stderr + daily-rotated file logs.

ccbell runs as a hook, so the console stays silent below WARNING unless
verbose; decisions and outcomes go to the log file.
"""

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

# Shared console instances; diagnostics go to stderr
console = Console()
err_console = Console(stderr=True)

# File log format: [TIME] [LEVEL] [COMPONENT] message
_FILE_FORMAT = "%(asctime)s [%(levelname)-8s] [%(name)-20s] %(message)s"
_FILE_DATE_FMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_dir: Path, verbose: bool = False, log_level: str = "WARNING") -> None:
    """Configure ccbell logging with Rich console output and daily file rotation.

    Args:
        log_dir: Directory for ``ccbell.log`` and its rotations.
        verbose: If True, sets console log level to DEBUG.
        log_level: Default console log level string (e.g. "INFO", "WARNING").
    """
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.WARNING)

    # --- Root logger ---
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates on reconfigure
    root.handlers.clear()

    # --- Console handler (Rich, stderr) ---
    rich_handler = RichHandler(
        console=err_console,
        rich_tracebacks=True,
        show_path=verbose,
        show_level=True,
        show_time=True,
    )
    rich_handler.setLevel(level)
    root.addHandler(rich_handler)

    # --- File handler (daily rotation, keep 7 days) ---
    log_file = Path(log_dir) / "ccbell.log"
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=str(log_file),
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
    except OSError as exc:
        # An unwritable log dir must not stop notifications
        logging.getLogger(__name__).warning("File logging disabled: %s", exc)
        return
    file_handler.suffix = "%Y-%m-%d"
    file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FMT))
    root.addHandler(file_handler)

    logging.getLogger(__name__).debug(
        "Logging configured: level=%s, file=%s, verbose=%s",
        logging.getLevelName(level), log_file, verbose,
    )
