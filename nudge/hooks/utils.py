"""
Shared plumbing for Nudge's lifecycle hooks.

Every hook reads one JSON payload from stdin and prints one JSON object
to stdout. A hook must never break the host: bad input and internal
failures both produce the hook's neutral answer.
"""

import json
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from nudge.config import NudgeConfig, load_config
from nudge.debug import configure_debug_logging
from nudge.learning.loops import WarningCache
from nudge.learning.store import PROJECT_DIR_NAME, LearningStore, learning_store_for

logger = logging.getLogger(__name__)

WARNINGS_FILENAME = "warnings.json"

APPROVE = {"decision": "approve"}


def project_dir_for(input_data: Dict[str, Any]) -> Path:
    cwd = input_data.get("cwd")
    return Path(cwd) if isinstance(cwd, str) and cwd else Path.cwd()


def resolve_config(input_data: Dict[str, Any], config: Optional[NudgeConfig]) -> NudgeConfig:
    return config if config is not None else load_config(project_dir_for(input_data))


def resolve_store(
    input_data: Dict[str, Any], store: Optional[LearningStore] = None
) -> Optional[LearningStore]:
    """The given store, or the learning DB of the payload's project.

    Returns None when that DB cannot be opened.
    """
    if store is not None:
        return store
    try:
        return learning_store_for(project_dir_for(input_data))
    except (sqlite3.Error, OSError) as e:
        logger.warning("could not open learning store: %s", e)
        return None


def session_id_for(input_data: Dict[str, Any]) -> Optional[str]:
    session_id = input_data.get("session_id")
    return session_id if isinstance(session_id, str) and session_id else None


def warnings_path(project_dir: Path) -> Path:
    return project_dir / PROJECT_DIR_NAME / WARNINGS_FILENAME


def load_warning_cache(project_dir: Path, config: NudgeConfig) -> WarningCache:
    return WarningCache.load(
        warnings_path(project_dir),
        cooldown_seconds=config.loop_blocking.warn_cooldown_seconds,
    )


def save_warning_cache(cache: WarningCache, project_dir: Path) -> None:
    try:
        cache.save(warnings_path(project_dir))
    except OSError as e:
        logger.debug("could not save warning cache: %s", e)


def additional_context(event_name: str, text: Optional[str]) -> Dict[str, Any]:
    """Informational hook answer, or {} when there is nothing to say."""
    if not text:
        return {}
    return {
        "hookSpecificOutput": {
            "hookEventName": event_name,
            "additionalContext": text,
        }
    }


def run_hook(
    process_hook: Callable[[Dict[str, Any]], Dict[str, Any]],
    neutral: Dict[str, Any],
) -> None:
    """Read stdin, run `process_hook`, print its JSON answer."""
    configure_debug_logging()
    try:
        raw = sys.stdin.read()
        if not raw.strip():
            print(json.dumps(neutral))
            return

        input_data = json.loads(raw)
        if not isinstance(input_data, dict):
            print(json.dumps(neutral))
            return

        result = process_hook(input_data)
        print(json.dumps(result))

    except json.JSONDecodeError as e:
        logger.debug("hook input is not JSON: %s", e)
        print(json.dumps(neutral))

    except Exception as e:
        logger.warning("hook failed: %s", e, exc_info=True)
        print(json.dumps(neutral))
