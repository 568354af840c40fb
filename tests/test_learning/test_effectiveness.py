"""
Tests for nudge.learning.effectiveness: scoring and the usage lifecycle.
"""

import pytest

pytestmark = pytest.mark.learning

from nudge.learning.effectiveness import EffectivenessTracker, calculate_effectiveness
from nudge.learning.schemas import AgentBaseline, AgentOutcome
from nudge.learning.store import UsageAlreadyOpenError


class TestCalculateEffectiveness:

    def test_clean_session_with_success(self):
        score = calculate_effectiveness(AgentBaseline(0, 0), AgentOutcome(0, 0, True))
        assert score == pytest.approx(0.8)

    def test_clean_session_without_success(self):
        score = calculate_effectiveness(AgentBaseline(0, 0), AgentOutcome(0, 0, False))
        assert score == pytest.approx(0.5)

    def test_large_reduction(self):
        score = calculate_effectiveness(AgentBaseline(10, 2), AgentOutcome(1, 0, True))
        assert score == pytest.approx(0.96)

    def test_more_reads_than_before_gives_no_read_credit(self):
        score = calculate_effectiveness(AgentBaseline(2, 0), AgentOutcome(5, 0, False))
        assert score == pytest.approx(0.3)

    def test_new_errors_without_prior_errors(self):
        score = calculate_effectiveness(AgentBaseline(0, 0), AgentOutcome(0, 3, False))
        assert score == pytest.approx(0.2)

    def test_worst_case_is_zero(self):
        score = calculate_effectiveness(AgentBaseline(4, 1), AgentOutcome(8, 5, False))
        assert score == 0.0


class TestTrackerLifecycle:

    def test_baseline_captured_at_spawn(self, store, session):
        store.log_event("Read", {"file_path": "/p/a.py"})
        store.log_event("Read", {"file_path": "/p/b.py"})
        store.log_event("Bash", {"command": "make"}, success=False)

        tracker = EffectivenessTracker(store)
        usage_id = tracker.begin_usage("context-keeper", "re-read-detector")
        usage = store.get_agent_usage(usage_id)

        assert usage.reads_at_spawn == 2
        assert usage.errors_at_spawn == 1

    def test_finish_scores_only_post_spawn_activity(self, store, session):
        for i in range(10):
            store.log_event("Read", {"file_path": f"/p/{i}.py"})
        store.log_event("Bash", {"command": "make"}, success=False)
        store.log_event("Bash", {"command": "make"}, success=False)

        tracker = EffectivenessTracker(store)
        tracker.begin_usage("context-keeper", "re-read-detector", correlation_id="toolu_1")
        store.log_event("Read", {"file_path": "/p/x.py"})

        usage = tracker.finish_usage(True, correlation_id="toolu_1")

        assert usage.completed is True
        assert usage.reads_after == 1
        assert usage.errors_after == 0
        assert usage.effectiveness_score == pytest.approx(0.96)

    def test_finish_without_open_usage(self, store, session):
        assert EffectivenessTracker(store).finish_usage(True) is None

    def test_finish_twice(self, store, session):
        tracker = EffectivenessTracker(store)
        tracker.begin_usage("a", "quality-guard", correlation_id="toolu_1")
        assert tracker.finish_usage(True, correlation_id="toolu_1") is not None
        assert tracker.finish_usage(True, correlation_id="toolu_1") is None

    def test_same_type_rejected_while_open(self, store, session):
        tracker = EffectivenessTracker(store)
        tracker.begin_usage("a", "quality-guard")
        with pytest.raises(UsageAlreadyOpenError):
            tracker.begin_usage("b", "quality-guard")

    def test_correlation_id_picks_the_right_usage(self, store, session):
        tracker = EffectivenessTracker(store)
        first = tracker.begin_usage("a", "quality-guard", correlation_id="toolu_a")
        tracker.begin_usage("b", "regression-fixer", correlation_id="toolu_b")

        usage = tracker.finish_usage(False, correlation_id="toolu_a")
        assert usage.id == first
        assert store.get_open_agent_usage().agent_type == "regression-fixer"
