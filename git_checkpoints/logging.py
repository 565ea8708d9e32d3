"""Logging setup for git-checkpoints.

Modules log through ``logging.getLogger(__name__)``; this module only wires
handlers once per process. Console output stays quiet (warnings only) so
scheduled runs do not spam cron mail. Set ``GIT_CHECKPOINTS_DEBUG=1`` or pass
``--verbose`` for debug output plus a rotating log file in the user dir.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "git_checkpoints"
LOG_FILE_NAME = "git-checkpoints.log"


def is_debug_mode() -> bool:
    """Check the debug environment switch."""
    return os.environ.get("GIT_CHECKPOINTS_DEBUG", "").lower() in ("1", "true", "yes")


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> logging.Logger:
    """Install handlers on the package logger.

    Args:
        verbose: Lower console threshold to DEBUG
        log_dir: Directory for the rotating debug log (debug mode only)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    debug = verbose or is_debug_mode()

    # Avoid duplicate handlers when called more than once (tests, CliRunner)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    if debug and log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / LOG_FILE_NAME,
                maxBytes=10 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(f"Could not open log file in {log_dir}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            logger.addHandler(file_handler)

    return logger
