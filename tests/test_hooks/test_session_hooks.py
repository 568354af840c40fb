"""Tests for the SessionStart, UserPromptSubmit and Stop hooks."""

from dataclasses import replace

import pytest

pytestmark = pytest.mark.hooks

from nudge.config import NudgeConfig
from nudge.hooks import session_start, stop, user_prompt_submit
from nudge.hooks.utils import warnings_path
from nudge.learning.loops import WarningCache
from nudge.learning.schemas import AgentBaseline, AgentOutcome, ContextFeatures
from nudge.learning.thresholds import ThresholdManager, default_threshold_config


def _log_reads(store, names, times=1):
    for name in names:
        for _ in range(times):
            store.log_event("Read", {"file_path": f"/p/{name}"})


class TestSessionStart:

    def test_registers_host_session(self, store, project_dir):
        result = session_start.process_hook(
            {"session_id": "host-1", "source": "startup", "cwd": str(project_dir)},
            store=store, config=NudgeConfig(),
        )

        assert result == {}
        assert store.get_current_session_id() == "host-1"
        events = store.get_session_events("host-1")
        assert [e.tool for e in events] == ["SessionStart"]
        assert events[0].tool_input["source"] == "startup"

    def test_generates_id_without_host_session(self, store, project_dir):
        session_start.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())
        assert len(store.get_session_events()) == 1

    def test_clears_previous_warnings(self, store, project_dir):
        cache = WarningCache()
        cache.should_warn("repeated_read:/p/a.py")
        cache.save(warnings_path(project_dir))

        session_start.process_hook(
            {"session_id": "host-2", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )

        assert len(WarningCache.load(warnings_path(project_dir))) == 0

    def test_disabled(self, store, project_dir):
        session_start.process_hook(
            {"session_id": "host-1", "cwd": str(project_dir)},
            store=store, config=NudgeConfig(enabled=False),
        )
        assert store.get_stats()["sessions"] == 0


class TestUserPromptSubmit:

    def test_quiet_for_fresh_session(self, store, session, project_dir):
        result = user_prompt_submit.process_hook(
            {"prompt": "fix the bug", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )
        assert result == {}

    def test_suggests_predicted_helper(self, store, session, project_dir):
        store.log_event("Edit", {"file_path": str(project_dir / "src" / "a.ts")})
        features = ContextFeatures(folder_activity={"src": 1}, file_types={"ts": 1})
        store.save_context_snapshot(features, "type-expert", 0.9)

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )

        output = result["hookSpecificOutput"]
        assert output["hookEventName"] == "UserPromptSubmit"
        assert output["additionalContext"].startswith("Suggested: type-expert (90% confidence)")

    def test_prediction_disabled(self, store, session, project_dir):
        store.log_event("Edit", {"file_path": str(project_dir / "src" / "a.ts")})
        features = ContextFeatures(folder_activity={"src": 1}, file_types={"ts": 1})
        store.save_context_snapshot(features, "type-expert", 0.9)

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)},
            store=store, config=NudgeConfig(features={"agent_prediction": False}),
        )
        assert result == {}

    def test_rereads_below_threshold_stay_quiet(self, store, session, project_dir):
        _log_reads(store, ["a.py"], times=4)
        store.log_event("Edit", {"file_path": "/p/a.py"})

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )
        assert result == {}

    def test_lowered_reread_threshold_suggests_sooner(self, store, session, project_dir):
        ThresholdManager(store).adjust_for_efficiency(20)
        _log_reads(store, ["a.py"], times=4)
        store.log_event("Edit", {"file_path": "/p/a.py"})

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )

        context = result["hookSpecificOutput"]["additionalContext"]
        assert context == "Suggested agent: context-keeper - a.py read 4x"

    def test_busy_folder_suggests_expert(self, store, session, project_dir):
        store.save_threshold(replace(default_threshold_config("wide-activity-detector"), threshold_value=5.0))
        for i in range(5):
            store.log_event("Edit", {"file_path": str(project_dir / "api" / f"h{i}.py")})

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )

        context = result["hookSpecificOutput"]["additionalContext"]
        assert context == "Suggested agent: api-expert - 5 edits in api/"

    def test_triggered_suggestion_not_repeated(self, store, session, project_dir):
        _log_reads(store, ["a.py"], times=5)
        store.log_event("Edit", {"file_path": "/p/a.py"})
        payload = {"prompt": "next", "cwd": str(project_dir)}

        first = user_prompt_submit.process_hook(payload, store=store, config=NudgeConfig())
        second = user_prompt_submit.process_hook(payload, store=store, config=NudgeConfig())

        assert first != {}
        assert second == {}

    def test_low_efficiency_hint(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)
        store.log_event("Grep", {"pattern": "TODO"})

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)}, store=store, config=NudgeConfig(),
        )

        context = result["hookSpecificOutput"]["additionalContext"]
        assert context.startswith("Session efficiency 30/100")

    def test_hint_threshold_from_config(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)
        store.log_event("Grep", {"pattern": "TODO"})

        result = user_prompt_submit.process_hook(
            {"prompt": "next", "cwd": str(project_dir)},
            store=store, config=NudgeConfig(hygiene={"warn_on_low_efficiency": 20}),
        )
        assert result == {}


class TestStop:

    def test_always_approves(self, store, session, project_dir):
        result = stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())
        assert result == {"decision": "approve"}

    def test_empty_session_leaves_thresholds(self, store, session, project_dir):
        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())
        assert store.get_all_threshold_rows() == []

    def test_struggling_session_lowers_reactive_thresholds(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)
        store.log_event("Grep", {"pattern": "TODO"})

        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        assert store.get_threshold_row("re-read-detector").threshold_value == 4.0
        assert store.get_threshold_row("wide-activity-detector").threshold_value == 16.0

    def test_smooth_session_raises_reactive_thresholds(self, store, session, project_dir):
        _log_reads(store, "a")
        store.log_event("Edit", {"file_path": "/p/a"})

        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        assert store.get_threshold_row("wide-activity-detector").threshold_value == 22.0

    def test_efficiency_applied_once_per_session(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)
        store.log_event("Grep", {"pattern": "TODO"})

        for _ in range(3):
            stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        assert store.get_threshold_row("re-read-detector").threshold_value == 4.0
        assert store.get_threshold_row("wide-activity-detector").threshold_value == 16.0

    def test_new_session_adjusts_again(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)
        store.log_event("Grep", {"pattern": "TODO"})
        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        store.start_session("session-2")
        _log_reads(store, "abcde", times=3)
        store.log_event("Grep", {"pattern": "TODO"})
        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        assert store.get_threshold_row("wide-activity-detector").threshold_value == 12.8

    def test_neutral_turn_does_not_use_up_the_session(self, store, session, project_dir):
        _log_reads(store, "abc")
        store.log_event("Edit", {"file_path": "/p/a"})
        store.log_event("Grep", {"pattern": "TODO"})
        store.log_event("Grep", {"pattern": "TODO"})
        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        assert store.claim_efficiency_adjustment() is True

    def test_auto_adjust_disabled(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)

        stop.process_hook(
            {"cwd": str(project_dir)},
            store=store, config=NudgeConfig(hygiene={"auto_adjust_thresholds": False}),
        )
        assert store.get_all_threshold_rows() == []

    def test_runs_learning_cycle(self, store, session, project_dir):
        for _ in range(6):
            usage_id = store.record_agent_spawn("reader", "re-read-detector", AgentBaseline())
            store.complete_agent_usage(usage_id, AgentOutcome(task_success=True), 0.9)

        stop.process_hook({"cwd": str(project_dir)}, store=store, config=NudgeConfig())

        assert store.get_threshold_row("re-read-detector").threshold_value == 4.5

    def test_disabled(self, store, session, project_dir):
        _log_reads(store, "abcde", times=3)
        result = stop.process_hook(
            {"cwd": str(project_dir)}, store=store, config=NudgeConfig(enabled=False),
        )
        assert result == {"decision": "approve"}
        assert store.get_all_threshold_rows() == []
