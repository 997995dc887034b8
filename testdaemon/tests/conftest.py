"""
Pytest fixtures for the testdaemon suite.

Unit tests never let the process exit: anything that would call
`testdaemon.core.outcome.terminate` gets a `Recorder` instead.
"""
import os

import pytest
from loguru import logger

from testdaemon.core.config import Settings, load_settings


class Recorder:
    """Stand-in terminator that remembers outcomes instead of exiting."""

    def __init__(self):
        self.outcomes = []

    def __call__(self, outcome):
        self.outcomes.append(outcome)

    @property
    def last(self):
        return self.outcomes[-1] if self.outcomes else None


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TESTDAEMON_* variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("TESTDAEMON_"):
            monkeypatch.delenv(key)
    yield


@pytest.fixture
def settings_fixture(clean_env) -> Settings:
    """A small, fully validated Settings object that never floods for real."""
    return load_settings(overrides={
        "port": 0,
        "noise": {"chunk_size": 64, "max_bytes": 4096, "interval_sec": 0.01},
    })


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def log_lines():
    """Collect loguru messages emitted during a test."""
    lines = []
    sink_id = logger.add(lambda m: lines.append(m.record["message"]), level="DEBUG")
    yield lines
    logger.remove(sink_id)
