"""
Agent Progress Log Tool Module for Amplifier.

Lets AI agents record completed work per project, find earlier entries,
and read a condensed summary of any one entry. Entries are persisted in
SQLite; summaries are generated on first read via an OpenAI-compatible
API and cached.

Tools provided:
- log_progress: Record completed work
- search_logs: Find entries by title, tags, or date range
- get_context: Get an entry's summary and optionally its full content
"""

import logging

from amplifier_core import ModuleCoordinator

from .config import configure_logging, load_config
from .context import ContextService, SummaryStats
from .store import ProgressStore
from .summariser import Summariser
from .tools import (
    GetContextTool,
    LogProgressTool,
    SearchLogsTool,
)

__version__ = "0.1.0"
__all__ = ["mount", "ProgressStore", "ContextService", "Summariser", "SummaryStats"]

logger = logging.getLogger(__name__)


async def mount(coordinator: ModuleCoordinator, config: dict | None = None):
    """
    Mount the progress log tool module.

    Args:
        coordinator: Amplifier coordinator instance
        config: Configuration dictionary with optional keys:
            - storage_path: Path to SQLite database (default: ~/.agent-progress/data.db)
            - openai_api_key: API key for summaries (default: OPENAI_API_KEY)
            - openai_base_url: OpenAI-compatible endpoint
            - model: Summary model (default: gpt-4o-mini)
            - log_level: debug, info, warn or error
            - summary_timeout: Seconds before a summary call gives up (default: 30)

    Returns:
        Cleanup function
    """
    settings = load_config(config)
    configure_logging(settings.log_level)

    store = ProgressStore(db_path=settings.db_path)
    summariser = Summariser(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.model,
        timeout=settings.summary_timeout,
    )
    if not summariser.configured:
        logger.warning("No OpenAI API key configured; summaries will fall back to truncated content")

    context = ContextService(store, summariser)

    tools = [
        LogProgressTool(store),
        SearchLogsTool(store),
        GetContextTool(context),
    ]

    for tool in tools:
        await coordinator.mount("tools", tool, name=tool.name)
        logger.debug(f"Mounted progress tool: {tool.name}")

    # Expose the store and context service so hooks can use them
    coordinator.set_capability("progress.store", store)
    coordinator.set_capability("progress.context", context)

    logger.info(
        f"Progress module mounted with {len(tools)} tools "
        f"({store.count_entries()} entries, storage: {store.db_path})"
    )

    async def cleanup():
        context.log_stats()
        store.close()
        logger.info("Progress module cleanup complete")

    return cleanup
