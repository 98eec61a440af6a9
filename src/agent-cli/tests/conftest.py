"""Pytest configuration and shared fixtures for all tests.

This module provides:
- Test configuration and markers
- An isolated working directory and home directory per test
"""

from pathlib import Path

import pytest
from _pytest.config import Config

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config: Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Tests touching the file system or subprocesses")
    config.addinivalue_line("markers", "asyncio: Async tests")


# ============================================================================
# FILE SYSTEM FIXTURES
# ============================================================================


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test inside an empty directory with its own home directory."""
    work_dir = tmp_path / "work"
    home_dir = tmp_path / "home"
    work_dir.mkdir()
    home_dir.mkdir()
    monkeypatch.chdir(work_dir)
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("USERPROFILE", str(home_dir))
    for name in ("AGENT_CLI_API_KEY", "AGENT_CLI_API_URL", "AGENT_CLI_MODEL", "AGENT_CLI_AUTO_CONFIRM", "AGENT_CLI_LOG_LEVEL", "AGENT_CLI_SYSTEM_PROMPT"):
        monkeypatch.delenv(name, raising=False)
    return work_dir
