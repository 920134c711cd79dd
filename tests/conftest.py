"""Test fixtures for tool-progress module."""

import pytest
import tempfile
from pathlib import Path

from amplifier_module_tool_progress.store import ProgressStore
from amplifier_module_tool_progress.summariser import SummaryResult, fallback_summary


class FakeSummariser:
    """Records calls; returns a fixed summary or, when failing, a fallback."""

    def __init__(self, summary: str = "Patched the session timeout.", fail: bool = False):
        self.summary = summary
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    async def summarise(self, title: str, content: str) -> SummaryResult:
        self.calls.append((title, content))
        if self.fail:
            return SummaryResult(summary=fallback_summary(content), is_fallback=True, reason="network_error")
        return SummaryResult(summary=self.summary, is_fallback=False)


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test_progress.db"
        yield db_path


@pytest.fixture
def store(temp_db):
    """An open store on a temporary database."""
    store = ProgressStore(db_path=temp_db)
    yield store
    store.close()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate config loading from the real environment and home directory."""
    for var in (
        "AGENT_PROGRESS_CONFIG_PATH",
        "AGENT_PROGRESS_DB_PATH",
        "AGENT_PROGRESS_MODEL",
        "AGENT_PROGRESS_LOG_LEVEL",
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def fake_summariser():
    """Factory for summarisers that never touch the network."""
    return FakeSummariser
