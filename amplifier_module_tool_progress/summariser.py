"""
Summarisation of log entries using an OpenAI-compatible chat API.

Summaries never fail from the caller's point of view: any problem with the
API produces a fallback built from the entry content, flagged so the
caller can avoid caching it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from .errors import SummariserError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a technical summariser. Summarise the following agent work log in 2-3 sentences. "
    "Focus on: what was done, key files/components changed, and outcome. Be concise and factual. "
    'Do not use phrases like "The agent" - write in past tense as if reporting completed work.'
)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT = 30.0

# Fallback summaries are the first FALLBACK_MAX_LENGTH characters of the
# content, with no ellipsis.
FALLBACK_MAX_LENGTH = 500


@dataclass
class SummaryResult:
    """A summary and whether it is a degraded fallback."""
    summary: str
    is_fallback: bool
    reason: Optional[str] = None


def fallback_summary(content: str) -> str:
    return content[:FALLBACK_MAX_LENGTH]


def classify_failure(error: BaseException) -> str:
    """Map a summarisation failure to a short reason for logs and stats."""
    if isinstance(error, SummariserError):
        return error.reason
    if isinstance(error, (asyncio.TimeoutError, openai.APITimeoutError)):
        return "timeout"
    if isinstance(error, openai.RateLimitError):
        return "rate_limited"
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return "auth_error"
    if isinstance(error, openai.APIConnectionError):
        return "network_error"
    return "unknown_error"


class Summariser:
    """Condenses entry content into a short summary."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[Any] = None,
    ):
        """
        Args:
            api_key: OpenAI API key. Without one every summary is a fallback.
            base_url: API base URL (any OpenAI-compatible endpoint)
            model: Chat model name
            timeout: Hard limit in seconds for one summarisation call
            client: Pre-built async client, mainly for tests
        """
        self.model = model
        self.timeout = timeout

        if client is not None:
            self._client = client
        elif api_key:
            # Retries would stretch the call past the timeout
            self._client = AsyncOpenAI(
                api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
            )
        else:
            self._client = None

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def summarise(self, title: str, content: str) -> SummaryResult:
        """
        Summarise an entry.

        Returns a fresh summary, or on any failure a truncated copy of the
        content with is_fallback set. Cancellation is not a failure and
        propagates to the caller.
        """
        try:
            summary = await asyncio.wait_for(self._complete(title, content), timeout=self.timeout)
        except Exception as e:
            reason = classify_failure(e)
            logger.warning(f"Summarisation failed ({reason}) for '{title[:50]}': {e}")
            return SummaryResult(summary=fallback_summary(content), is_fallback=True, reason=reason)

        return SummaryResult(summary=summary, is_fallback=False)

    async def _complete(self, title: str, content: str) -> str:
        if self._client is None:
            raise SummariserError("No OpenAI API key configured", reason="not_configured")

        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Title: {title}\n\nContent:\n{content}"},
            ],
            max_tokens=150,
            temperature=0.3,
        )

        summary = ""
        if response.choices:
            summary = (response.choices[0].message.content or "").strip()
        if not summary:
            raise SummariserError("Empty response from LLM API", reason="empty_response")
        return summary
