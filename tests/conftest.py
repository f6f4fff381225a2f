"""
Global test configuration: environment isolation, markers and shared fixtures.
"""

import logging
import os

import pytest

from screenplay_coverage.core.types import AnalysisPolicy
from screenplay_coverage.telemetry import TelemetryCollector
from tests.helpers import RecordingNotifier, SleepRecorder, build_script


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_coverage_env(request, monkeypatch):
    """Ensure a clean COVERAGE_* environment for each test.

    Escape hatch: mark a test with @pytest.mark.allow_env_pollution to keep
    the current environment unchanged.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("COVERAGE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def isolated_project_root(monkeypatch, tmp_path):
    """Run each test from an empty directory so no real pyproject.toml is read."""
    workdir = tmp_path / "project"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Sets the log level for noisy external libraries to WARNING."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# --- Test Environment Markers ---
def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "integration: Pipeline tests with a scripted or mock provider",
        "allow_env_pollution: Keep COVERAGE_* environment variables",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


@pytest.fixture
def telemetry():
    return TelemetryCollector()


@pytest.fixture
def sleeper():
    """Instant replacement for asyncio.sleep that records requested delays."""
    return SleepRecorder()


@pytest.fixture
def policy():
    return AnalysisPolicy()


@pytest.fixture
def script():
    """A parsed 110-page script with a few passages the detectors flag."""
    return build_script()


@pytest.fixture
def notifier():
    return RecordingNotifier()
