"""Tests for shared hook plumbing and debug logging."""

import io
import json
import logging

import pytest

pytestmark = pytest.mark.hooks

from nudge.config import NudgeConfig
from nudge.debug import configure_debug_logging, debug_enabled
from nudge.hooks.utils import (
    additional_context,
    load_warning_cache,
    project_dir_for,
    resolve_store,
    run_hook,
    save_warning_cache,
    session_id_for,
    warnings_path,
)
from nudge.learning.store import get_learning_store


class TestInputHelpers:

    def test_project_dir_from_cwd(self, tmp_path):
        assert project_dir_for({"cwd": str(tmp_path)}) == tmp_path

    def test_project_dir_defaults_to_working_dir(self, project_dir):
        assert project_dir_for({}) == project_dir
        assert project_dir_for({"cwd": 42}) == project_dir

    def test_session_id(self):
        assert session_id_for({"session_id": "abc"}) == "abc"
        assert session_id_for({"session_id": ""}) is None
        assert session_id_for({}) is None

    def test_additional_context(self):
        assert additional_context("Stop", None) == {}
        assert additional_context("Stop", "") == {}
        assert additional_context("Stop", "hi") == {
            "hookSpecificOutput": {"hookEventName": "Stop", "additionalContext": "hi"}
        }


class TestResolveStore:

    def test_given_store_wins(self, store, tmp_path):
        assert resolve_store({"cwd": str(tmp_path)}, store) is store

    def test_opens_payload_project_db(self, tmp_path):
        other = tmp_path / "other"
        other.mkdir()

        resolved = resolve_store({"cwd": str(other)})

        assert resolved.db_path == (other / ".nudge" / "learning.db").resolve()
        assert resolved.db_path.exists()

    def test_same_project_reuses_store(self, project_dir):
        first = resolve_store({"cwd": str(project_dir)})
        assert resolve_store({}) is first
        assert get_learning_store() is first

    def test_other_project_replaces_store(self, project_dir, tmp_path):
        first = resolve_store({"cwd": str(project_dir)})
        other = tmp_path / "other"
        other.mkdir()

        second = resolve_store({"cwd": str(other)})

        assert second is not first
        assert get_learning_store() is second

    def test_unopenable_db_gives_none(self, tmp_path, caplog):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a project directory should be")

        with caplog.at_level(logging.WARNING, logger="nudge.hooks.utils"):
            assert resolve_store({"cwd": str(blocker)}) is None
        assert "could not open learning store" in caplog.text


class TestWarningCacheFiles:

    def test_round_trip_uses_configured_cooldown(self, project_dir):
        config = NudgeConfig(loop_blocking={"warn_cooldown_seconds": 60})
        cache = load_warning_cache(project_dir, config)
        assert cache.cooldown_seconds == 60

        cache.should_warn("k", now=100.0)
        save_warning_cache(cache, project_dir)

        assert warnings_path(project_dir) == project_dir / ".nudge" / "warnings.json"
        assert load_warning_cache(project_dir, config).warned == {"k": 100.0}

    def test_save_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a directory should be")
        cache = load_warning_cache(blocker, NudgeConfig())
        cache.should_warn("k")
        save_warning_cache(cache, blocker)


class TestRunHook:

    def _run(self, monkeypatch, capsys, process_hook, stdin_text, neutral=None):
        monkeypatch.setattr("sys.stdin", io.StringIO(stdin_text))
        run_hook(process_hook, neutral if neutral is not None else {"decision": "approve"})
        return json.loads(capsys.readouterr().out)

    def test_passes_input_through(self, monkeypatch, capsys):
        result = self._run(
            monkeypatch, capsys, lambda data: {"seen": data["tool_name"]}, '{"tool_name": "Read"}'
        )
        assert result == {"seen": "Read"}

    def test_exception_gives_neutral_answer(self, monkeypatch, capsys, caplog):
        def explode(data):
            raise RuntimeError("boom")

        with caplog.at_level(logging.WARNING, logger="nudge.hooks.utils"):
            result = self._run(monkeypatch, capsys, explode, '{"tool_name": "Read"}', neutral={})

        assert result == {}
        assert "hook failed: boom" in caplog.text

    def test_whitespace_input(self, monkeypatch, capsys):
        assert self._run(monkeypatch, capsys, lambda d: {"x": 1}, "  \n") == {"decision": "approve"}


class TestDebugLogging:

    @pytest.fixture(autouse=True)
    def _restore_logger(self):
        logger = logging.getLogger("nudge")
        handlers = list(logger.handlers)
        level = logger.level
        yield
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.handlers = handlers
        logger.setLevel(level)

    def test_off_by_default(self, project_dir):
        assert debug_enabled() is False
        assert configure_debug_logging(project_dir) is None
        assert not (project_dir / ".nudge" / "debug.log").exists()

    @pytest.mark.parametrize("value", ["1", "true", "YES", "on"])
    def test_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("NUDGE_DEBUG", value)
        assert debug_enabled() is True

    def test_writes_log_file(self, monkeypatch, project_dir):
        monkeypatch.setenv("NUDGE_DEBUG", "1")
        log_path = configure_debug_logging(project_dir)

        logging.getLogger("nudge.learning.store").debug("hello from a test")
        for handler in logging.getLogger("nudge").handlers:
            handler.flush()

        assert log_path == project_dir / ".nudge" / "debug.log"
        assert "hello from a test" in log_path.read_text()

    def test_no_duplicate_handlers(self, monkeypatch, project_dir):
        monkeypatch.setenv("NUDGE_DEBUG", "1")
        before = len(logging.getLogger("nudge").handlers)
        configure_debug_logging(project_dir)
        configure_debug_logging(project_dir)
        assert len(logging.getLogger("nudge").handlers) == before + 1
