"""Sentinel — OSINT Search Gateway (Serper Google News).

Issues date-windowed news searches, falling back to an undated query when
the strict window returns nothing. Transport failures are retried up to
MAX_ATTEMPTS times with a linear backoff (attempt × BACKOFF_SECONDS).

Reference:
  https://serper.dev/ (POST /news)
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

import httpx

from backend.models import OsintNewsItem, OsintRawItem
from collectors.base_collector import BaseCollector
from fusion_engine.dedup import dedupe_news

logger = logging.getLogger("sentinel.search")

SERPER_NEWS_URL = "https://google.serper.dev/news"

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 1.0

# Results per provider request
PAGE_SIZE = 20

# Cap on aggregated batches
MAX_RAW_ITEMS = 80

WINDOW_START = "2020-01-01"

# Canonical global-conflict topics for the aggregated batch
GLOBAL_CONFLICT_TOPICS = [
    "global military conflicts",
    "civil unrest",
    "armed conflict hotspots",
    "war escalation",
]


class SearchError(Exception):
    """The search provider answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Serper request failed ({status_code}): {body}")
        self.status_code = status_code


def _source_name(source: Any) -> str:
    if not source:
        return "Unknown Source"
    if isinstance(source, str):
        return source
    if isinstance(source, dict):
        return source.get("name") or source.get("site") or "Unknown Source"
    return str(source)


def normalize_news_item(item: dict, temporal_date: str) -> OsintNewsItem:
    """Map one provider result onto OsintNewsItem."""
    return OsintNewsItem(
        title=item.get("title") or "Untitled report",
        snippet=item.get("snippet") or item.get("description") or "No snippet available.",
        source=_source_name(item.get("source")),
        link=item.get("link") or item.get("url") or "",
        published_at=item.get("date") or item.get("publishedAt"),
        query_date_context=temporal_date,
    )


class SerperCollector(BaseCollector):
    """Google News search via Serper, normalized to OsintNewsItem."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 20.0,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = BACKOFF_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name="search", timeout=timeout, transport=transport)
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _request_news(self, body: dict) -> list[dict]:
        resp = await self.post_json(
            SERPER_NEWS_URL,
            body,
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
        )
        if resp.status_code >= 400:
            raise SearchError(resp.status_code, resp.text)
        data = resp.json()
        news = data.get("news") if isinstance(data, dict) else None
        return [item for item in news if isinstance(item, dict)] if isinstance(news, list) else []

    async def search_news(
        self,
        query: str,
        temporal_date: str,
        time_period: str = "custom",
        start_date: str = WINDOW_START,
        end_date: Optional[str] = None,
    ) -> list[OsintNewsItem]:
        """Search within [start_date, end_date]; relax the window once if it is empty."""
        end_date = end_date or temporal_date
        strict_body = {
            "q": f"{query} from {start_date} to {end_date}",
            "gl": "us",
            "hl": "en",
            "num": PAGE_SIZE,
            "page": 1,
            "sort": "date",
            "time_period": time_period,
            "tbs": f"cdr:1,cd_min:{start_date},cd_max:{end_date}",
            "engine": "google_news",
        }
        relaxed_body = {
            "q": query,
            "gl": "us",
            "hl": "en",
            "num": PAGE_SIZE,
            "page": 1,
            "sort": "date",
            "engine": "google_news",
        }

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                items = await self._request_news(strict_body)
                if not items:
                    logger.debug("[search] Strict window empty for %r, relaxing", query)
                    items = await self._request_news(relaxed_body)
                return [normalize_news_item(item, temporal_date) for item in items]
            except (httpx.HTTPError, SearchError, ValueError) as e:
                last_error = e
                logger.warning(
                    "[search] Attempt %d/%d failed for %r: %s",
                    attempt, self.max_attempts, query, e,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(attempt * self.backoff_seconds)

        raise last_error

    async def search_all(
        self,
        queries: Sequence[str],
        temporal_date: str,
        time_period: str = "custom",
        start_date: str = WINDOW_START,
        end_date: Optional[str] = None,
        timeout: Optional[float] = None,
        limit: int = MAX_RAW_ITEMS,
    ) -> list[OsintNewsItem]:
        """Fan out queries concurrently; failed queries are dropped, not fatal."""
        async def one(query: str) -> list[OsintNewsItem]:
            search = self.search_news(query, temporal_date, time_period, start_date, end_date)
            if timeout is None:
                return await search
            return await asyncio.wait_for(search, timeout=timeout)

        results = await asyncio.gather(*(one(q) for q in queries), return_exceptions=True)
        items: list[OsintNewsItem] = []
        for query, result in zip(queries, results):
            if isinstance(result, BaseException):
                logger.warning("[search] Query %r failed: %s", query, str(result) or type(result).__name__)
                continue
            items.extend(result)
        return dedupe_news(items)[:limit]

    async def fetch_global_conflict_news(
        self,
        temporal_date: str,
        limit: int = MAX_RAW_ITEMS,
    ) -> list[OsintRawItem]:
        """Aggregate the canonical conflict topics into one deduplicated batch."""
        results = await asyncio.gather(
            *(
                self.search_news(topic, temporal_date, "custom", WINDOW_START, temporal_date)
                for topic in GLOBAL_CONFLICT_TOPICS
            ),
            return_exceptions=True,
        )
        items: list[OsintNewsItem] = []
        for topic, result in zip(GLOBAL_CONFLICT_TOPICS, results):
            if isinstance(result, BaseException):
                logger.warning("[search] Topic %r failed: %s", topic, result)
                continue
            items.extend(result)

        unique = [
            item for item in dedupe_news(items, include_date=True)
            if item.title and item.snippet and item.source
        ]
        logger.info("[search] Global conflict batch: %d raw → %d unique", len(items), len(unique))
        return [OsintRawItem.from_news_item(item, temporal_date) for item in unique[:limit]]
