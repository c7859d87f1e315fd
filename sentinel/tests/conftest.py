"""Shared fixtures: sitrep/news factories and a scripted reasoning provider."""

import json
from typing import Any, Optional

import httpx
import pytest

from agents.llm import ModelUnavailableError
from backend.config import Settings
from backend.models import OsintNewsItem, Sitrep


class FakeCompleter:
    """Scripted stand-in for the reasoning client.

    Each call consumes the next scripted response; the last one repeats.
    Exceptions are raised, callables are invoked with (messages, model).
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(self, messages: list[dict], model: str, reasoning_effort: str = "medium") -> str:
        self.calls.append({"messages": messages, "model": model, "reasoning_effort": reasoning_effort})
        if not self.responses:
            raise ModelUnavailableError(f"{model}: no scripted response")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages, model)
        return response

    @property
    def models(self) -> list[str]:
        return [call["model"] for call in self.calls]


def make_news(
    title: str = "Clashes reported near Goma",
    link: str = "https://news.example/goma",
    source: str = "Example Wire",
    snippet: str = "Fighting continued overnight.",
    published_at: Optional[str] = "2024-05-01",
) -> OsintNewsItem:
    return OsintNewsItem(
        title=title,
        snippet=snippet,
        source=source,
        link=link,
        published_at=published_at,
        query_date_context="2024-05-02",
    )


def make_sitrep(
    id: str = "SR-1",
    coordinates: tuple[float, float] = (10.0, 20.0),
    title: str = "Border skirmish",
    raw_osint: Optional[list[OsintNewsItem]] = None,
    is_prophet_node: bool = False,
    timestamp: str = "2024-05-01T00:00:00Z",
    category: str = "CONFLICT",
    **extra: Any,
) -> Sitrep:
    return Sitrep(
        id=id,
        title=title,
        coordinates=coordinates,
        timestamp=timestamp,
        threat_level="MEDIUM",
        description="Reported engagement.",
        category=category,
        entities={"people": [], "places": ["Global"], "orgs": ["OSINT Source"]},
        raw_osint=raw_osint or [],
        is_prophet_node=is_prophet_node,
        **extra,
    )


def serper_payload(*titles: str, prefix: str = "https://news.example/") -> dict:
    return {
        "news": [
            {
                "title": title,
                "snippet": f"{title} snippet",
                "source": "Example Wire",
                "link": f"{prefix}{idx}-{title.lower().replace(' ', '-')}",
                "date": "2024-05-01",
            }
            for idx, title in enumerate(titles)
        ]
    }


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode(),
                          headers={"Content-Type": "application/json"})


@pytest.fixture
def settings() -> Settings:
    return Settings(
        serper_api_key="serper-test",
        openai_api_key="openai-test",
        scheduler_enabled=False,
        _env_file=None,
    )


@pytest.fixture
def news() -> OsintNewsItem:
    return make_news()
