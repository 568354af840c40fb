"""
Nudge Adaptive Threshold Manager

Owns one trigger threshold per helper type. A threshold is the metric a
session must reach (edits in a folder, repeated failures, re-reads, ...)
before that helper type is suggested.

Thresholds move for two reasons:
- Effectiveness: effective helpers get a lower bar (x0.9), ineffective
  ones a higher bar (x1.15), once at least 5 samples exist.
- Session efficiency: a struggling session lowers the reactive helpers'
  bars by 20%, a smooth one raises them by 10%.

Every change is clamped to the type's [min, max], rounded to one decimal,
and dropped when smaller than 0.5.
"""

import logging
import sqlite3
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from nudge.learning.schemas import (
    AgentEffectivenessStats,
    PersistStatus,
    ThresholdAdjustment,
    ThresholdConfig,
)
from nudge.learning.store import HISTORY_LIMIT, LearningStore, get_learning_store, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdDefault:
    value: float
    min_value: float
    max_value: float


DEFAULT_THRESHOLDS: Dict[str, ThresholdDefault] = {
    "wide-activity-detector": ThresholdDefault(20, 5, 100),
    "recurring-failure-detector": ThresholdDefault(3, 1, 20),
    "re-read-detector": ThresholdDefault(5, 2, 30),
    "language-specialist": ThresholdDefault(1, 1, 10),
    "quality-guard": ThresholdDefault(1, 1, 10),
    "regression-fixer": ThresholdDefault(1, 1, 10),
}
FALLBACK_THRESHOLD = ThresholdDefault(10, 3, 100)

# Helper types that react to a session going badly
REACTIVE_AGENT_TYPES = (
    "wide-activity-detector",
    "recurring-failure-detector",
    "re-read-detector",
)

DEFAULT_WINDOW_DAYS = 30
NEUTRAL_EFFECTIVENESS = 0.5

# Effectiveness path
MIN_ADJUST_SAMPLES = 5
HIGH_EFFECTIVENESS = 0.6
LOW_EFFECTIVENESS = 0.3
EFFECTIVE_FACTOR = 0.9
INEFFECTIVE_FACTOR = 1.15

# Reporting is looser than acting
MIN_CLASSIFY_SAMPLES = 3

# Efficiency path
LOW_EFFICIENCY_SCORE = 40
HIGH_EFFICIENCY_SCORE = 75
LOW_EFFICIENCY_FACTOR = 0.8
HIGH_EFFICIENCY_FACTOR = 1.1

MIN_CHANGE = 0.5


def default_threshold_config(agent_type: str) -> ThresholdConfig:
    """Built-in threshold state for a helper type (fallback for unknown types)."""
    default = DEFAULT_THRESHOLDS.get(agent_type, FALLBACK_THRESHOLD)
    return ThresholdConfig(
        agent_type=agent_type,
        threshold_value=float(default.value),
        min_value=float(default.min_value),
        max_value=float(default.max_value),
        effectiveness_avg=NEUTRAL_EFFECTIVENESS,
        sample_count=0,
    )


def clamp_threshold(value: float, min_value: float, max_value: float) -> float:
    return round(min(max(value, min_value), max_value), 1)


def classify_effectiveness(stats: AgentEffectivenessStats) -> str:
    """effective / ineffective / neutral / insufficient-data"""
    if stats.sample_count < MIN_CLASSIFY_SAMPLES:
        return "insufficient-data"
    if stats.avg_effectiveness >= HIGH_EFFECTIVENESS:
        return "effective"
    if stats.avg_effectiveness < LOW_EFFECTIVENESS:
        return "ineffective"
    return "neutral"


class ThresholdManager:
    """Reads and adapts per helper type trigger thresholds."""

    def __init__(self, store: Optional[LearningStore] = None):
        self.store = store or get_learning_store()

    # =====================================================================
    # Reads
    # =====================================================================

    def get_threshold_config(self, agent_type: str) -> ThresholdConfig:
        """Stored state for `agent_type`, or its built-in default."""
        return self.store.get_threshold_row(agent_type) or default_threshold_config(agent_type)

    def get_threshold(self, agent_type: str) -> float:
        return self.get_threshold_config(agent_type).threshold_value

    def get_all_thresholds(self) -> List[ThresholdConfig]:
        """Every known or stored helper type, stored rows taking precedence."""
        configs = {t: default_threshold_config(t) for t in DEFAULT_THRESHOLDS}
        for row in self.store.get_all_threshold_rows():
            configs[row.agent_type] = row
        return [configs[t] for t in sorted(configs)]

    def should_suggest(self, agent_type: str, metric: float) -> bool:
        """True once `metric` has reached the helper type's threshold."""
        return metric >= self.get_threshold(agent_type)

    # =====================================================================
    # Effectiveness path
    # =====================================================================

    def adjust_threshold(
        self, agent_type: str, window_days: int = DEFAULT_WINDOW_DAYS
    ) -> Optional[ThresholdAdjustment]:
        """Move one helper type's threshold from its recent effectiveness.

        Returns None when there is nothing to do: too few samples, an
        average in the neutral band, or a change below MIN_CHANGE.
        """
        stats = self.store.get_agent_effectiveness(agent_type, window_days)
        if stats.sample_count < MIN_ADJUST_SAMPLES:
            logger.debug(
                "%s: %d samples, need %d before adjusting",
                agent_type, stats.sample_count, MIN_ADJUST_SAMPLES,
            )
            return None

        avg = stats.avg_effectiveness
        if avg > HIGH_EFFECTIVENESS:
            factor = EFFECTIVE_FACTOR
            reason = f"high effectiveness ({avg:.2f} avg over {stats.sample_count} samples)"
        elif avg < LOW_EFFECTIVENESS:
            factor = INEFFECTIVE_FACTOR
            reason = f"low effectiveness ({avg:.2f} avg over {stats.sample_count} samples)"
        else:
            return None

        config = self.get_threshold_config(agent_type)
        return self._apply(
            config,
            config.threshold_value * factor,
            reason,
            effectiveness_avg=avg,
            sample_count=stats.sample_count,
        )

    def adjust_all_thresholds(
        self, window_days: int = DEFAULT_WINDOW_DAYS
    ) -> List[ThresholdAdjustment]:
        """adjust_threshold() for every helper type with completed usages."""
        adjustments = []
        for agent_type in self.store.get_agent_types_with_usage():
            adjustment = self.adjust_threshold(agent_type, window_days)
            if adjustment is not None:
                adjustments.append(adjustment)
        return adjustments

    # =====================================================================
    # Efficiency path
    # =====================================================================

    def adjust_for_efficiency(self, efficiency_score: float) -> List[ThresholdAdjustment]:
        """React to a 0-100 session efficiency score.

        Below 40 the reactive helpers are surfaced sooner; above 75 they
        are held back a little. Anything in between leaves them alone.
        """
        if efficiency_score < LOW_EFFICIENCY_SCORE:
            factor = LOW_EFFICIENCY_FACTOR
            reason = f"low session efficiency ({efficiency_score:.0f})"
        elif efficiency_score > HIGH_EFFICIENCY_SCORE:
            factor = HIGH_EFFICIENCY_FACTOR
            reason = f"high session efficiency ({efficiency_score:.0f})"
        else:
            return []

        adjustments = []
        for agent_type in REACTIVE_AGENT_TYPES:
            config = self.get_threshold_config(agent_type)
            adjustment = self._apply(config, config.threshold_value * factor, reason)
            if adjustment is not None:
                adjustments.append(adjustment)
        return adjustments

    # =====================================================================
    # Reset & reporting
    # =====================================================================

    def reset_threshold(self, agent_type: str) -> ThresholdConfig:
        """Restore the built-in default, zero samples, neutral average."""
        config = default_threshold_config(agent_type)
        self.store.save_threshold(config)
        logger.debug("%s reset to %.1f", agent_type, config.threshold_value)
        return replace(config, stored=True)

    def get_effectiveness_report(
        self, window_days: int = DEFAULT_WINDOW_DAYS
    ) -> List[Dict[str, Any]]:
        """Per helper type stats, status, and current threshold."""
        report = []
        for stats in self.store.get_all_agent_effectiveness(window_days):
            report.append({
                "agent_type": stats.agent_type,
                "sample_count": stats.sample_count,
                "avg_effectiveness": stats.avg_effectiveness,
                "success_rate": stats.success_rate,
                "status": classify_effectiveness(stats),
                "threshold": self.get_threshold(stats.agent_type),
            })
        return report

    # =====================================================================
    # Internals
    # =====================================================================

    def _apply(
        self,
        config: ThresholdConfig,
        proposed: float,
        reason: str,
        effectiveness_avg: Optional[float] = None,
        sample_count: Optional[int] = None,
    ) -> Optional[ThresholdAdjustment]:
        new_value = clamp_threshold(proposed, config.min_value, config.max_value)
        if abs(new_value - config.threshold_value) < MIN_CHANGE:
            return None

        now = utc_now()
        entry = {
            "timestamp": now,
            "old": config.threshold_value,
            "new": new_value,
            "reason": reason,
        }
        updated = replace(
            config,
            threshold_value=new_value,
            last_adjusted=now,
            adjustment_history=(config.adjustment_history + [entry])[-HISTORY_LIMIT:],
            effectiveness_avg=(
                effectiveness_avg if effectiveness_avg is not None else config.effectiveness_avg
            ),
            sample_count=sample_count if sample_count is not None else config.sample_count,
        )
        adjustment = ThresholdAdjustment(
            agent_type=config.agent_type,
            old_value=config.threshold_value,
            new_value=new_value,
            reason=reason,
            effectiveness_avg=effectiveness_avg,
            sample_count=sample_count,
            timestamp=now,
        )

        try:
            self.store.save_threshold(updated)
        except sqlite3.Error as e:
            logger.warning(
                "threshold %s computed (%.1f -> %.1f) but not persisted: %s",
                config.agent_type, config.threshold_value, new_value, e,
            )
            adjustment.status = PersistStatus.NOT_PERSISTED
            adjustment.error = str(e)
            return adjustment

        logger.debug(
            "threshold %s: %.1f -> %.1f (%s)",
            config.agent_type, config.threshold_value, new_value, reason,
        )
        return adjustment
