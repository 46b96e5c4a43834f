"""Shared fixtures for tests that drive the scripted fake analyzer."""

import stat
import sys
import time
from pathlib import Path

import pytest

FAKE_ANALYZER = Path(__file__).parent / "fake_analyzer.py"


def fake_server_command(framing: str = "stream") -> list[str]:
    return [sys.executable, str(FAKE_ANALYZER), "--server", "--framing", framing]


def fake_oneshot_command(document_path: str) -> list[str]:
    return [sys.executable, str(FAKE_ANALYZER), document_path, "--stdin"]


def wait_for(condition, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll until condition() is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return bool(condition())


requires_posix = pytest.mark.skipif(
    sys.platform == "win32", reason="uses a shell wrapper as analyzer binary"
)


@pytest.fixture
def analyzer_project(tmp_path):
    """A project directory whose .uvaclient points at the fake analyzer."""
    wrapper = tmp_path / "analyzer"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_ANALYZER}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    (tmp_path / ".uvaclient").write_text(
        """
analyzer:
  development: true
  development_path: analyzer
  restart_backoff: 0.1
  request_timeout: 5.0
"""
    )
    return tmp_path
