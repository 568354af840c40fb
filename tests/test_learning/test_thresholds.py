"""
Tests for nudge.learning.thresholds: defaults, effectiveness and
efficiency adjustments, bounds, reset, and write failures.
"""

import sqlite3

import pytest

pytestmark = pytest.mark.learning

from nudge.learning.schemas import (
    AgentBaseline,
    AgentEffectivenessStats,
    AgentOutcome,
    PersistStatus,
    ThresholdConfig,
)
from nudge.learning.thresholds import (
    DEFAULT_THRESHOLDS,
    FALLBACK_THRESHOLD,
    ThresholdManager,
    clamp_threshold,
    classify_effectiveness,
)


def _record_usages(store, agent_type, score, count, success=True):
    for i in range(count):
        usage_id = store.record_agent_spawn(f"{agent_type}-agent", agent_type, AgentBaseline())
        store.complete_agent_usage(usage_id, AgentOutcome(task_success=success), score)


@pytest.fixture
def manager(store, session):
    return ThresholdManager(store)


class TestDefaults:

    def test_known_type_default(self, manager):
        config = manager.get_threshold_config("re-read-detector")
        assert config.threshold_value == 5
        assert config.min_value == 2
        assert config.max_value == 30
        assert config.stored is False

    def test_unknown_type_uses_fallback(self, manager):
        config = manager.get_threshold_config("brand-new-helper")
        assert config.threshold_value == FALLBACK_THRESHOLD.value
        assert config.min_value == FALLBACK_THRESHOLD.min_value

    def test_all_thresholds_lists_defaults(self, manager):
        configs = manager.get_all_thresholds()
        assert [c.agent_type for c in configs] == sorted(DEFAULT_THRESHOLDS)

    def test_all_thresholds_includes_stored_types(self, manager, store):
        store.save_threshold(ThresholdConfig(
            agent_type="custom-helper", threshold_value=4, min_value=1, max_value=9,
        ))
        types = [c.agent_type for c in manager.get_all_thresholds()]
        assert "custom-helper" in types
        assert len(types) == len(DEFAULT_THRESHOLDS) + 1

    def test_should_suggest(self, manager):
        assert manager.should_suggest("recurring-failure-detector", 3) is True
        assert manager.should_suggest("recurring-failure-detector", 2) is False


class TestClassify:

    @pytest.mark.parametrize("samples,avg,expected", [
        (2, 0.9, "insufficient-data"),
        (3, 0.6, "effective"),
        (3, 0.45, "neutral"),
        (10, 0.1, "ineffective"),
    ])
    def test_classification(self, samples, avg, expected):
        stats = AgentEffectivenessStats("quality-guard", samples, avg, 0.5)
        assert classify_effectiveness(stats) == expected


class TestEffectivenessAdjustment:

    def test_effective_helper_lowers_threshold(self, manager, store):
        _record_usages(store, "re-read-detector", 0.9, 6)

        adjustment = manager.adjust_threshold("re-read-detector")

        assert adjustment.old_value == 5
        assert adjustment.new_value == 4.5
        assert "high effectiveness" in adjustment.reason
        assert adjustment.persisted is True
        assert manager.get_threshold("re-read-detector") == 4.5

    def test_ineffective_helper_raises_threshold(self, manager, store):
        _record_usages(store, "wide-activity-detector", 0.1, 5, success=False)

        adjustment = manager.adjust_threshold("wide-activity-detector")

        assert adjustment.new_value == 23.0
        assert "low effectiveness" in adjustment.reason

    def test_too_few_samples(self, manager, store):
        _record_usages(store, "re-read-detector", 0.9, 4)
        assert manager.adjust_threshold("re-read-detector") is None
        assert store.get_threshold_row("re-read-detector") is None

    def test_neutral_band_leaves_threshold(self, manager, store):
        _record_usages(store, "re-read-detector", 0.5, 6)
        assert manager.adjust_threshold("re-read-detector") is None

    def test_small_change_dropped(self, manager, store):
        # 1 * 0.9 clamps back to the minimum of 1
        _record_usages(store, "quality-guard", 0.9, 6)
        assert manager.adjust_threshold("quality-guard") is None

    def test_history_recorded(self, manager, store):
        _record_usages(store, "re-read-detector", 0.9, 6)
        manager.adjust_threshold("re-read-detector")

        config = manager.get_threshold_config("re-read-detector")
        assert config.stored is True
        assert config.sample_count == 6
        assert config.effectiveness_avg == pytest.approx(0.9)
        assert config.adjustment_history[-1]["old"] == 5
        assert config.adjustment_history[-1]["new"] == 4.5

    def test_adjust_all(self, manager, store):
        _record_usages(store, "re-read-detector", 0.9, 6)
        _record_usages(store, "regression-fixer", 0.5, 6)

        adjustments = manager.adjust_all_thresholds()
        assert [a.agent_type for a in adjustments] == ["re-read-detector"]


class TestEfficiencyAdjustment:

    def test_low_efficiency_lowers_reactive_thresholds(self, manager):
        adjustments = manager.adjust_for_efficiency(20)
        by_type = {a.agent_type: a.new_value for a in adjustments}

        assert by_type == {
            "wide-activity-detector": 16.0,
            "recurring-failure-detector": 2.4,
            "re-read-detector": 4.0,
        }
        assert all("low session efficiency" in a.reason for a in adjustments)

    def test_high_efficiency_raises_reactive_thresholds(self, manager):
        adjustments = manager.adjust_for_efficiency(90)
        by_type = {a.agent_type: a.new_value for a in adjustments}

        assert by_type["wide-activity-detector"] == 22.0
        # 3 * 1.1 is a change below the minimum step
        assert "recurring-failure-detector" not in by_type

    def test_middle_band_is_ignored(self, manager):
        assert manager.adjust_for_efficiency(50) == []

    def test_non_reactive_types_untouched(self, manager):
        manager.adjust_for_efficiency(10)
        assert manager.get_threshold_config("quality-guard").stored is False

    def test_repeated_adjustments_stay_in_bounds(self, manager):
        for _ in range(30):
            manager.adjust_for_efficiency(10)
        for agent_type in ("wide-activity-detector", "recurring-failure-detector", "re-read-detector"):
            config = manager.get_threshold_config(agent_type)
            assert config.min_value <= config.threshold_value <= config.max_value
            assert len(config.adjustment_history) <= 10


class TestBounds:

    def test_clamp(self):
        assert clamp_threshold(0.2, 1, 10) == 1
        assert clamp_threshold(50, 1, 10) == 10
        assert clamp_threshold(4.44, 1, 10) == 4.4


class TestReset:

    def test_reset_restores_default(self, manager, store):
        _record_usages(store, "re-read-detector", 0.9, 6)
        manager.adjust_threshold("re-read-detector")

        config = manager.reset_threshold("re-read-detector")

        assert config.threshold_value == 5
        assert config.stored is True
        row = store.get_threshold_row("re-read-detector")
        assert row.threshold_value == 5
        assert row.sample_count == 0
        assert row.effectiveness_avg == 0.5
        assert row.adjustment_history == []


class TestWriteFailure:

    def test_failed_write_reported_not_persisted(self, manager, store, monkeypatch):
        def broken_save(config):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "save_threshold", broken_save)
        adjustments = manager.adjust_for_efficiency(20)

        assert len(adjustments) == 3
        assert all(a.status == PersistStatus.NOT_PERSISTED for a in adjustments)
        assert all(a.persisted is False for a in adjustments)
        assert "database is locked" in adjustments[0].error
        assert store.get_threshold_row("re-read-detector") is None


class TestEffectivenessReport:

    def test_report_rows(self, manager, store):
        _record_usages(store, "quality-guard", 0.8, 3)
        report = manager.get_effectiveness_report()

        assert len(report) == 1
        row = report[0]
        assert row["agent_type"] == "quality-guard"
        assert row["status"] == "effective"
        assert row["threshold"] == 1
