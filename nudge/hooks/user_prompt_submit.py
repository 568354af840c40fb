#!/usr/bin/env python3
"""
Nudge UserPromptSubmit Hook

Adds a few lines of learned guidance to each prompt: the helper that
similar past sessions found useful, helpers whose trigger metric has
reached its learned threshold (busiest folder, most re-read file), and a
hint when the current session is running inefficiently.
"""

from typing import Any, Dict, List, Optional

from nudge.config import NudgeConfig
from nudge.hooks.utils import (
    additional_context,
    load_warning_cache,
    project_dir_for,
    resolve_config,
    resolve_store,
    run_hook,
    save_warning_cache,
    session_id_for,
)
from nudge.learning.hygiene import format_efficiency_warning
from nudge.learning.queries import (
    learning_session_efficiency,
    learning_session_suggestions,
    learning_suggest_agent,
)
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

    session_id = session_id_for(input_data)
    project_dir = project_dir_for(input_data)
    parts: List[str] = []

    if config.features.agent_prediction:
        suggestion = learning_suggest_agent(
            session_id,
            min_confidence=config.learning.min_prediction_confidence,
            store=store,
            project_root=project_dir,
        )
        if suggestion:
            parts.append(suggestion)

        triggered = learning_session_suggestions(session_id, store=store, project_root=project_dir)
        if triggered:
            cache = load_warning_cache(project_dir, config)
            fresh = [s.message for s in triggered if cache.should_warn(s.key)]
            if fresh:
                parts.extend(fresh)
                save_warning_cache(cache, project_dir)

    efficiency = learning_session_efficiency(session_id, store=store)
    if efficiency is not None:
        hint = format_efficiency_warning(efficiency, config.hygiene.warn_on_low_efficiency)
        if hint:
            parts.append(hint)

    return additional_context("UserPromptSubmit", "\n".join(parts))


def main():
    """Entry point for the hook."""
    run_hook(process_hook, {})


if __name__ == "__main__":
    main()
