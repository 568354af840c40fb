"""Pytest configuration and fixtures for Nudge tests."""

from pathlib import Path
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def _isolate_learning_store(tmp_path, monkeypatch):
    """Isolate the learning store so tests never touch a real .nudge/learning.db.

    Also points the global config at an empty directory and runs each test
    from its own working directory, so hooks and CLI commands that resolve
    paths from the cwd stay inside tmp_path.
    """
    from nudge.learning.store import reset_learning_store

    reset_learning_store()

    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    monkeypatch.delenv("NUDGE_DEBUG", raising=False)

    isolated_path = project / ".nudge" / "learning.db"
    with patch("nudge.learning.store.DEFAULT_LEARNING_PATH", isolated_path), \
         patch("nudge.config.loader.NUDGE_HOME", tmp_path / "home" / ".nudge"):
        yield

    reset_learning_store()


@pytest.fixture
def project_dir():
    """The isolated project directory each test runs in."""
    return Path.cwd()


@pytest.fixture
def store(tmp_path):
    """A LearningStore on its own temporary database."""
    from nudge.learning.store import LearningStore

    s = LearningStore(db_path=tmp_path / "test_learning.db")
    yield s
    s.close()


@pytest.fixture
def session(store):
    """A started session id on the `store` fixture."""
    return store.start_session("session-1")
