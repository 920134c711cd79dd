"""Tests for summary caching in the context service."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from amplifier_module_tool_progress.context import ContextService, SummaryStats
from amplifier_module_tool_progress.errors import EntryNotFoundError, StorageError
from amplifier_module_tool_progress.summariser import FALLBACK_MAX_LENGTH, Summariser


def _failing_summariser():
    create = AsyncMock(side_effect=RuntimeError("service unavailable"))
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return Summariser(client=client), create


class TestContextService:
    """Tests for ContextService.get_context."""

    @pytest.mark.asyncio
    async def test_not_found(self, store, fake_summariser):
        service = ContextService(store, fake_summariser())

        with pytest.raises(EntryNotFoundError):
            await service.get_context("demo", "nonexistent1")

    @pytest.mark.asyncio
    async def test_wrong_project_is_not_found(self, store, fake_summariser):
        entry = store.create_entry(project_id="demo", title="T", content="B")
        service = ContextService(store, fake_summariser())

        with pytest.raises(EntryNotFoundError):
            await service.get_context("other", entry.id)

    @pytest.mark.asyncio
    async def test_summarises_once_and_caches(self, store, fake_summariser):
        entry = store.create_entry(project_id="demo", title="Fix login bug", content="Patched auth.ts")
        summariser = fake_summariser(summary="Fixed login.")
        service = ContextService(store, summariser)

        first = await service.get_context("demo", entry.id)

        assert first.summary == "Fixed login."
        assert summariser.calls == [("Fix login bug", "Patched auth.ts")]
        assert store.get_entry("demo", entry.id).summary == "Fixed login."

        second = await service.get_context("demo", entry.id)

        assert second.summary == "Fixed login."
        assert len(summariser.calls) == 1

    @pytest.mark.asyncio
    async def test_existing_summary_is_used_as_is(self, store, fake_summariser):
        entry = store.create_entry(project_id="demo", title="T", content="B")
        store.update_summary(entry.id, "Stored summary")
        summariser = fake_summariser(summary="New summary")
        service = ContextService(store, summariser)

        result = await service.get_context("demo", entry.id)

        assert result.summary == "Stored summary"
        assert summariser.calls == []

    @pytest.mark.asyncio
    async def test_fallback_is_not_cached(self, store, fake_summariser):
        entry = store.create_entry(project_id="demo", title="T", content="Body text")
        summariser = fake_summariser(fail=True)
        service = ContextService(store, summariser)

        for _ in range(3):
            result = await service.get_context("demo", entry.id)
            assert result.is_fallback is True
            assert result.summary == "Body text"
            assert store.get_entry("demo", entry.id).summary is None

        assert len(summariser.calls) == 3

    @pytest.mark.asyncio
    async def test_long_content_fallback_with_failing_api(self, store):
        content = "Step. " * 200
        entry = store.create_entry(project_id="demo", title="T", content=content)
        summariser, create = _failing_summariser()
        service = ContextService(store, summariser)

        first = await service.get_context("demo", entry.id)
        assert len(first.summary) == FALLBACK_MAX_LENGTH
        assert first.summary == content[:FALLBACK_MAX_LENGTH]

        await service.get_context("demo", entry.id)
        assert create.await_count == 2
        assert store.get_entry("demo", entry.id).summary is None

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self, store, fake_summariser):
        entry = store.create_entry(project_id="demo", title="T", content="Body")
        summariser = fake_summariser(summary="Real summary", fail=True)
        service = ContextService(store, summariser)

        await service.get_context("demo", entry.id)
        summariser.fail = False
        result = await service.get_context("demo", entry.id)

        assert result.summary == "Real summary"
        assert store.get_entry("demo", entry.id).summary == "Real summary"

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_returns_summary(self, store, monkeypatch, fake_summariser):
        entry = store.create_entry(project_id="demo", title="T", content="Body")
        service = ContextService(store, fake_summariser(summary="Fresh"))

        def broken_update(entry_id, summary):
            raise StorageError("disk full", operation="update summary", entry_id=entry_id)

        monkeypatch.setattr(store, "update_summary", broken_update)

        result = await service.get_context("demo", entry.id)

        assert result.summary == "Fresh"
        assert result.is_fallback is False
        assert service.stats.persist_failures == 1

    @pytest.mark.asyncio
    async def test_reads_do_not_change_entry(self, store, fake_summariser):
        entry = store.create_entry(
            project_id="demo", title="Title", content="Body", tags=["b", "a"], agent_id="agent-1",
            created_at="2025-01-15T10:00:00Z",
        )
        service = ContextService(store, fake_summariser())

        for include_full in (False, True, False):
            await service.get_context("demo", entry.id, include_full=include_full)

        stored = store.get_entry("demo", entry.id)
        assert (stored.title, stored.content, stored.tags, stored.agent_id, stored.project_id, stored.created_at) == (
            entry.title, entry.content, entry.tags, entry.agent_id, entry.project_id, entry.created_at
        )

    @pytest.mark.asyncio
    async def test_include_full(self, store, fake_summariser):
        entry = store.create_entry(project_id="demo", title="T", content="Full body", tags=["x"])
        service = ContextService(store, fake_summariser(summary="S"))

        with_content = (await service.get_context("demo", entry.id, include_full=True)).to_dict()
        without_content = (await service.get_context("demo", entry.id)).to_dict()

        assert with_content["content"] == "Full body"
        assert "content" not in without_content
        assert without_content == {
            "id": entry.id,
            "projectId": "demo",
            "title": "T",
            "summary": "S",
            "createdAt": entry.created_at,
            "tags": ["x"],
        }


class TestSummaryStats:
    """Tests for the stats owned by the context service."""

    @pytest.mark.asyncio
    async def test_counts(self, store, fake_summariser):
        cached = store.create_entry(project_id="demo", title="T", content="B")
        failing = store.create_entry(project_id="demo", title="T", content="B")
        service = ContextService(store, fake_summariser())

        await service.get_context("demo", cached.id)
        await service.get_context("demo", cached.id)
        service.summariser.fail = True
        await service.get_context("demo", failing.id)

        snapshot = service.stats.snapshot()
        assert snapshot["requests"] == 3
        assert snapshot["cache_hits"] == 1
        assert snapshot["attempts"] == 2
        assert snapshot["fresh"] == 1
        assert snapshot["fallbacks"] == 1
        assert snapshot["success_rate"] == 0.5

    def test_reset(self):
        stats = SummaryStats(requests=4, cache_hits=1, attempts=3, fresh=2, fallbacks=1)
        stats.reset()
        assert stats == SummaryStats()
        assert stats.success_rate == 0.0

    def test_injected_stats_are_used(self, store, fake_summariser):
        stats = SummaryStats()
        service = ContextService(store, fake_summariser(), stats=stats)
        assert service.stats is stats
