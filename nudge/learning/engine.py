"""
Nudge Learning Engine

Runs one learning cycle over everything the store has gathered:
- partitions helper types by effectiveness
- adapts thresholds from that effectiveness
- rolls learned error patterns up by category
- asks the predictor about the current session
- turns all of it into short insight strings

The only writes a cycle makes are the threshold adjustments it triggers.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from nudge.learning.clusterer import ErrorClusterer
from nudge.learning.predictor import AgentPredictor
from nudge.learning.schemas import ErrorPattern, LearningReport
from nudge.learning.store import LearningStore, get_learning_store
from nudge.learning.thresholds import (
    DEFAULT_WINDOW_DAYS,
    ThresholdManager,
    classify_effectiveness,
)

logger = logging.getLogger(__name__)

TOP_PATTERN_COUNT = 10
TOP_CATEGORY_COUNT = 5
UNCATEGORIZED = "uncategorized"

# Insight thresholds
PREDICTION_INSIGHT_CONFIDENCE = 0.5
FEW_USAGES = 10
LOW_AVERAGE_EFFECTIVENESS = 0.4

STATUS_PATTERN_LIMIT = 100


def rollup_categories(patterns: Iterable[ErrorPattern]) -> List[Dict[str, Any]]:
    """Occurrences per category, most frequent first."""
    counts: Counter = Counter()
    for pattern in patterns:
        counts[pattern.category or UNCATEGORIZED] += pattern.occurrence_count
    return [
        {"category": category, "count": count}
        for category, count in counts.most_common(TOP_CATEGORY_COUNT)
    ]


class LearningEngine:
    """Coordinates the clusterer, threshold manager and predictor."""

    def __init__(
        self,
        store: Optional[LearningStore] = None,
        project_root: Optional[Union[str, Path]] = None,
    ):
        self.store = store or get_learning_store()
        self.clusterer = ErrorClusterer(self.store)
        self.thresholds = ThresholdManager(self.store)
        self.predictor = AgentPredictor(self.store, project_root)

    def run_learning_cycle(
        self,
        window_days: int = DEFAULT_WINDOW_DAYS,
        session_id: Optional[str] = None,
    ) -> LearningReport:
        insights: List[str] = []

        stats = self.store.get_all_agent_effectiveness(window_days)
        total_usages = sum(s.sample_count for s in stats)
        average = (
            sum(s.avg_effectiveness * s.sample_count for s in stats) / total_usages
            if total_usages else 0.0
        )

        effective = [s.agent_type for s in stats if classify_effectiveness(s) == "effective"]
        ineffective = [s.agent_type for s in stats if classify_effectiveness(s) == "ineffective"]
        if effective:
            insights.append(f"Effective agents: {', '.join(effective)}")
        if ineffective:
            insights.append(f"Consider improving or removing: {', '.join(ineffective)}")

        adjustments = self.thresholds.adjust_all_thresholds(window_days)
        for adj in adjustments:
            insights.append(
                f"Threshold {adj.agent_type}: {adj.old_value} -> {adj.new_value} ({adj.reason})"
            )

        patterns = self.clusterer.get_learned_patterns(TOP_PATTERN_COUNT)
        categories = rollup_categories(patterns)
        if categories:
            top = categories[0]
            insights.append(
                f"Most common error type: {top['category']} ({top['count']} occurrences)"
            )

        prediction = self.predictor.predict_agent(session_id)
        if prediction is not None and prediction.confidence >= PREDICTION_INSIGHT_CONFIDENCE:
            insights.append(
                f"Predicted helpful agent: {prediction.agent_name} "
                f"({round(prediction.confidence * 100)}% confidence)"
            )

        if total_usages == 0:
            insights.append("No agent usage data yet - use agents to start learning")
        elif total_usages < FEW_USAGES:
            insights.append(
                f"Learning from {total_usages} agent usages - more data will improve predictions"
            )
        if 0 < average < LOW_AVERAGE_EFFECTIVENESS:
            insights.append(
                "Overall agent effectiveness is low - consider refining agent definitions"
            )

        logger.debug(
            "learning cycle: %d usages, %d adjustments, %d patterns",
            total_usages, len(adjustments), len(patterns),
        )
        return LearningReport(
            agent_effectiveness=stats,
            effective_agents=effective,
            ineffective_agents=ineffective,
            threshold_adjustments=adjustments,
            error_patterns=patterns,
            top_error_categories=categories,
            current_prediction=prediction,
            insights=insights,
            total_agent_usages=total_usages,
            average_effectiveness=average,
        )

    def get_learning_status(self, window_days: int = DEFAULT_WINDOW_DAYS) -> Dict[str, Any]:
        """Quick summary of how much the store has learned."""
        stats = self.store.get_all_agent_effectiveness(window_days)
        patterns = self.clusterer.get_learned_patterns(STATUS_PATTERN_LIMIT)
        classified = sum(
            1 for s in stats
            if classify_effectiveness(s) in ("effective", "ineffective")
        )
        return {
            "has_data": bool(stats) or bool(patterns),
            "agent_usages": sum(s.sample_count for s in stats),
            "error_patterns": len(patterns),
            "thresholds_adjusted": classified,
        }
