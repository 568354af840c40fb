#!/usr/bin/env python3
"""
Nudge Stop Hook

Runs when the agent finishes a turn. Scores the session's efficiency,
lets that score nudge the reactive thresholds (once per session),
then runs a learning cycle. Never keeps the agent from stopping.
"""

import logging
from typing import Any, Dict, Optional

from nudge.config import NudgeConfig
from nudge.hooks.utils import (
    APPROVE,
    project_dir_for,
    resolve_config,
    resolve_store,
    run_hook,
    session_id_for,
)
from nudge.learning.queries import (
    learning_adjust_for_efficiency,
    learning_claim_efficiency,
    learning_run_cycle,
    learning_session_efficiency,
)
from nudge.learning.store import LearningStore
from nudge.learning.thresholds import HIGH_EFFICIENCY_SCORE, LOW_EFFICIENCY_SCORE

logger = logging.getLogger(__name__)


def process_hook(
    input_data: Dict[str, Any],
    store: Optional[LearningStore] = None,
    config: Optional[NudgeConfig] = None,
) -> Dict[str, Any]:
    config = resolve_config(input_data, config)
    if not config.enabled:
        return dict(APPROVE)
    store = resolve_store(input_data, store)
    if store is None:
        return dict(APPROVE)

    session_id = session_id_for(input_data)

    efficiency = learning_session_efficiency(session_id, store=store)
    # A session that touched no files scores 100 without earning it
    active = efficiency is not None and (efficiency.files_read or efficiency.files_edited)
    # Stop fires every turn; a session moves the thresholds at most once
    if (
        active
        and config.hygiene.auto_adjust_thresholds
        and not LOW_EFFICIENCY_SCORE <= efficiency.score <= HIGH_EFFICIENCY_SCORE
        and learning_claim_efficiency(session_id, store=store)
    ):
        for adj in learning_adjust_for_efficiency(efficiency.score, store=store):
            logger.debug(
                "stop: %s %.1f -> %.1f (%s)",
                adj.agent_type, adj.old_value, adj.new_value, adj.status.value,
            )

    report = learning_run_cycle(
        config.learning.window_days,
        session_id=session_id,
        store=store,
        project_root=project_dir_for(input_data),
    )
    if report is not None:
        for insight in report.insights:
            logger.debug("insight: %s", insight)

    return dict(APPROVE)


def main():
    """Entry point for the hook."""
    run_hook(process_hook, dict(APPROVE))


if __name__ == "__main__":
    main()
