#!/usr/bin/env python3
"""
Nudge SessionStart Hook

Opens a fresh learning session when the host starts (or resumes) one and
forgets loop warnings from the previous session.

Input (stdin): JSON with session_id and cwd
Output (stdout): {}
"""

from typing import Any, Dict, Optional

from nudge.config import NudgeConfig
from nudge.hooks.utils import (
    load_warning_cache,
    project_dir_for,
    resolve_config,
    resolve_store,
    run_hook,
    save_warning_cache,
    session_id_for,
)
from nudge.learning.queries import learning_log_event, learning_start_session
from nudge.learning.store import LearningStore


def process_hook(
    input_data: Dict[str, Any],
    store: Optional[LearningStore] = None,
    config: Optional[NudgeConfig] = None,
) -> Dict[str, Any]:
    config = resolve_config(input_data, config)
    if not config.enabled:
        return {}
    store = resolve_store(input_data, store)
    if store is None:
        return {}

    session_id = learning_start_session(session_id_for(input_data), store=store)
    if session_id is None:
        return {}

    learning_log_event(
        "SessionStart",
        tool_input={"source": input_data.get("source"), "cwd": input_data.get("cwd")},
        session_id=session_id,
        store=store,
    )

    project_dir = project_dir_for(input_data)
    cache = load_warning_cache(project_dir, config)
    cache.clear()
    save_warning_cache(cache, project_dir)
    return {}


def main():
    """Entry point for the hook."""
    run_hook(process_hook, {})


if __name__ == "__main__":
    main()
