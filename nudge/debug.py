"""
Nudge Debug Logging

Hooks run as short-lived processes whose stdout belongs to the host, so
their log records go to .nudge/debug.log instead. Enabled by setting
NUDGE_DEBUG to a truthy value.
"""

import logging
import os
from pathlib import Path
from typing import Optional

DEBUG_ENV_VAR = "NUDGE_DEBUG"
DEBUG_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_TRUTHY = ("1", "true", "yes", "on")


def debug_enabled() -> bool:
    return os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in _TRUTHY


def configure_debug_logging(project_dir: Optional[Path] = None) -> Optional[Path]:
    """Attach a file handler for the `nudge` logger when debugging is on.

    Returns the log file path, or None when debugging is off. Calling it
    again does not add a second handler.
    """
    if not debug_enabled():
        return None

    log_path = (project_dir or Path.cwd()) / ".nudge" / "debug.log"
    root = logging.getLogger("nudge")
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path.resolve():
            return log_path

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path)
    except OSError:
        return None  # Debug output must never break a hook

    handler.setFormatter(logging.Formatter(DEBUG_LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    return log_path
