"""
Nudge Effectiveness Scorer

Scores whether a helper measurably improved the session it was used in,
and manages the spawn -> completion lifecycle of usage records.

Score (0.0-1.0) = read reduction (0.4) + error reduction (0.3)
                + task success (0.3)
"""

import logging
from typing import Optional

from nudge.learning.schemas import AgentBaseline, AgentOutcome, AgentUsageRecord
from nudge.learning.store import LearningStore, get_learning_store

logger = logging.getLogger(__name__)

READ_WEIGHT = 0.4
ERROR_WEIGHT = 0.3
SUCCESS_WEIGHT = 0.3

# Credit given when there were no reads before the spawn to reduce
NEUTRAL_READ_CREDIT = 0.2


def calculate_effectiveness(baseline: AgentBaseline, outcome: AgentOutcome) -> float:
    """Compute a helper's effectiveness from its before/after metrics."""
    score = 0.0

    if baseline.reads_at_spawn > 0:
        reduction = 1 - outcome.reads_after / baseline.reads_at_spawn
        score += max(0.0, reduction) * READ_WEIGHT
    else:
        score += NEUTRAL_READ_CREDIT

    if baseline.errors_at_spawn > 0:
        reduction = 1 - outcome.errors_after / baseline.errors_at_spawn
        score += max(0.0, reduction) * ERROR_WEIGHT
    elif outcome.errors_after == 0:
        score += ERROR_WEIGHT

    if outcome.task_success:
        score += SUCCESS_WEIGHT

    return max(0.0, min(1.0, score))


class EffectivenessTracker:
    """Opens usage records at spawn and scores them at completion."""

    def __init__(self, store: Optional[LearningStore] = None):
        self.store = store or get_learning_store()

    def capture_baseline(self, session_id: Optional[str] = None) -> AgentBaseline:
        return AgentBaseline(
            reads_at_spawn=self.store.count_session_reads(session_id),
            errors_at_spawn=self.store.count_session_errors(session_id),
        )

    def begin_usage(
        self,
        agent_name: str,
        agent_type: str,
        trigger_context: Optional[str] = None,
        correlation_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> int:
        """Record a spawn with the session's current read/error counts.

        Raises UsageAlreadyOpenError if `agent_type` is already open in
        the session.
        """
        baseline = self.capture_baseline(session_id)
        usage_id = self.store.record_agent_spawn(
            agent_name,
            agent_type,
            baseline,
            trigger_context=trigger_context,
            correlation_id=correlation_id,
            session_id=session_id,
        )
        logger.debug("usage %s opened for %s (%s)", usage_id, agent_name, agent_type)
        return usage_id

    def finish_usage(
        self,
        task_success: bool,
        correlation_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[AgentUsageRecord]:
        """Close the matching open usage and score it.

        Returns the completed record, or None if nothing was open.
        """
        usage = self.store.get_open_agent_usage(
            session_id=session_id, correlation_id=correlation_id
        )
        if usage is None:
            return None

        # Session counters are cumulative; the outcome only counts what
        # happened after the spawn.
        outcome = AgentOutcome(
            reads_after=max(0, self.store.count_session_reads(usage.session_id) - usage.reads_at_spawn),
            errors_after=max(0, self.store.count_session_errors(usage.session_id) - usage.errors_at_spawn),
            task_success=task_success,
        )
        baseline = AgentBaseline(
            reads_at_spawn=usage.reads_at_spawn,
            errors_at_spawn=usage.errors_at_spawn,
        )
        score = calculate_effectiveness(baseline, outcome)

        if not self.store.complete_agent_usage(usage.id, outcome, score):
            return None

        logger.debug("usage %s closed: %s scored %.2f", usage.id, usage.agent_type, score)
        return self.store.get_agent_usage(usage.id)
