"""
Entry context retrieval with summary caching.

The first detail read of an entry summarises its content and stores the
result. Later reads reuse the stored summary without calling the
summariser. Fallback summaries produced when the summariser fails are
returned but never stored, so the next read tries again.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional

from .errors import EntryNotFoundError, StorageError, log_error
from .store import LogEntry, ProgressStore
from .summariser import Summariser

logger = logging.getLogger(__name__)


@dataclass
class SummaryStats:
    """Counters for summary retrieval, owned by one ContextService."""
    requests: int = 0
    cache_hits: int = 0
    attempts: int = 0
    fresh: int = 0
    fallbacks: int = 0
    persist_failures: int = 0

    @property
    def success_rate(self) -> float:
        return self.fresh / self.attempts if self.attempts else 0.0

    def snapshot(self) -> dict:
        data = asdict(self)
        data["success_rate"] = self.success_rate
        return data

    def reset(self) -> None:
        self.requests = 0
        self.cache_hits = 0
        self.attempts = 0
        self.fresh = 0
        self.fallbacks = 0
        self.persist_failures = 0


@dataclass
class EntryContext:
    """Detail view of an entry with its summary."""
    entry: LogEntry
    summary: str
    is_fallback: bool = False
    include_full: bool = False

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.entry.id,
            "projectId": self.entry.project_id,
            "title": self.entry.title,
            "summary": self.summary,
            "createdAt": self.entry.created_at,
            "tags": self.entry.tags,
        }
        if self.include_full:
            data["content"] = self.entry.content
        return data


class ContextService:
    """Fetches entries and fills in their summaries on demand."""

    def __init__(
        self,
        store: ProgressStore,
        summariser: Summariser,
        stats: Optional[SummaryStats] = None,
    ):
        self.store = store
        self.summariser = summariser
        self._stats = stats or SummaryStats()

    @property
    def stats(self) -> SummaryStats:
        return self._stats

    async def get_context(
        self, project_id: str, entry_id: str, include_full: bool = False
    ) -> EntryContext:
        """
        Get an entry with its summary, computing the summary if needed.

        Args:
            project_id: Owning project
            entry_id: Entry ID
            include_full: Include the full content in the result

        Returns:
            The entry context

        Raises:
            EntryNotFoundError: No such entry in the project
            StorageError: The entry could not be read
        """
        self._stats.requests += 1

        entry = self.store.get_entry(project_id, entry_id)
        if entry is None:
            raise EntryNotFoundError(project_id, entry_id)

        if entry.summary is not None:
            self._stats.cache_hits += 1
            logger.debug(f"Using cached summary for {entry.id}")
            return EntryContext(entry=entry, summary=entry.summary, include_full=include_full)

        self._stats.attempts += 1
        result = await self.summariser.summarise(entry.title, entry.content)

        if result.is_fallback:
            self._stats.fallbacks += 1
            logger.debug(f"Not caching fallback summary for {entry.id} ({result.reason})")
        else:
            self._stats.fresh += 1
            try:
                self.store.update_summary(entry.id, result.summary)
                logger.debug(f"Cached summary for {entry.id}")
            except StorageError as e:
                # The caller still gets the summary for this request
                self._stats.persist_failures += 1
                log_error(e, "database", operation="cache summary", project_id=project_id, entry_id=entry.id)

        return EntryContext(
            entry=entry,
            summary=result.summary,
            is_fallback=result.is_fallback,
            include_full=include_full,
        )

    def log_stats(self) -> None:
        stats = self._stats
        logger.info(
            f"Summary stats: {stats.requests} requests, {stats.cache_hits} cached, "
            f"{stats.fresh}/{stats.attempts} fresh, {stats.fallbacks} fallbacks, "
            f"{stats.persist_failures} cache write failures"
        )
