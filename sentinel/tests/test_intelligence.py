"""Tests for the orchestration service (search, prophet handshake, analysis, live feed)."""

import asyncio
import json

import httpx
import pytest

from agents.llm import LLMFatalError
from agents.reasoning import default_analysis
from backend.intelligence import (
    FALLBACK_SEED_NODES,
    GLOBAL_CONFLICT_QUERY,
    IntelligenceService,
    clamp_max_nodes,
)
from backend.main import build_service
from backend.models import SearchRequest
from conftest import FakeCompleter, json_response, make_news, make_sitrep, serper_payload
from fusion_engine.store import IntelligenceStore

LINK = "https://news.example/0-clashes-in-goma"

GENERATED = {"nodes": [
    {"lat": 10.1211, "lng": 20.4511, "title": "Clashes in Goma", "severity": "HIGH",
     "category": "CONFLICT", "timestamp": "2024-05-01T00:00:00Z", "summary": "s",
     "actors": ["M23"], "confidence": 77, "sourceLinks": [LINK]},
    {"lat": 10.1249, "lng": 20.4549, "title": "Duplicate", "severity": "LOW",
     "category": "CONFLICT", "timestamp": "2024-05-01T00:00:00Z", "summary": "s"},
    {"lat": -4.1, "lng": 40.1, "title": "Naval standoff", "severity": "MEDIUM",
     "category": "MARITIME", "timestamp": "2024-05-01T00:00:00Z", "summary": "s"},
]}


def make_service(settings, handler, llm) -> IntelligenceService:
    service = build_service(settings, IntelligenceStore(), llm, httpx.MockTransport(handler))
    service.search.backoff_seconds = 0
    return service


def news_handler(*titles):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return json_response(serper_payload(*titles))

    handler.requests = requests
    return handler


def failing_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="down")


class TestClampMaxNodes:

    @pytest.mark.parametrize("value, expected", [(5, 10), (15, 15), ("15", 15), (50, 20), ("lots", 20), (None, 20)])
    def test_clamp(self, value, expected):
        assert clamp_max_nodes(value) == expected


class TestSearchIntelligence:

    def test_search_shapes_sitreps(self, settings):
        service = make_service(settings, news_handler("Clashes in Goma"), FakeCompleter(json.dumps(GENERATED)))
        request = SearchRequest(query="drc", temporal_date="2024-05-02", max_nodes="abc")
        result = asyncio.run(service.search_intelligence(request))

        assert [s.title for s in result.sitreps] == ["Clashes in Goma", "Naval standoff"]
        first = result.sitreps[0]
        assert first.id.startswith("SR-EXT-")
        assert first.entities.places == ["drc"]
        assert first.entities.orgs == ["M23"]
        assert [item.link for item in first.raw_osint] == [LINK]
        assert first.confidence == 77
        assert first.risk_score is None
        assert result.sitreps[1].entities.orgs == ["OSINT Source"]
        assert result.center == (20.0, 0.0)
        assert result.zoom == 2
        assert result.metadata == {"degraded": False, "rawCount": 1, "nodeCount": 2}

    def test_hotspot_fan_out(self, settings):
        handler = news_handler("Story")
        service = make_service(settings, handler, FakeCompleter(json.dumps(GENERATED)))
        request = SearchRequest(temporal_date="2024-05-02", regions=["Sahel", "Oceania"],
                                include_global_hotspots=True)
        result = asyncio.run(service.search_intelligence(request))
        queries = sorted(body["q"] for body in handler.requests)
        assert queries == [
            f"{GLOBAL_CONFLICT_QUERY} Oceania from 2020-01-01 to 2024-05-02",
            f"{GLOBAL_CONFLICT_QUERY} Sahel from 2020-01-01 to 2024-05-02",
        ]
        assert result.sitreps[0].entities.places == ["Global"]

    def test_without_search_key(self, settings):
        settings.serper_api_key = ""
        handler = news_handler("Story")
        llm = FakeCompleter("{}")
        service = make_service(settings, handler, llm)
        result = asyncio.run(service.search_intelligence(SearchRequest(temporal_date="2024-05-02")))
        assert handler.requests == []
        assert llm.calls == []
        assert result.metadata["degraded"] is True
        assert result.sitreps == []


class TestProphet:

    def test_ids_stamped(self, settings):
        payload = {"prophetNodes": [{"title": "A", "coordinates": [1, 2], "confidence": 75},
                                    {"id": "keep", "title": "B", "coordinates": [3, 4], "confidence": 40}]}
        llm = FakeCompleter('{"indices": [1]}', json.dumps(payload))
        service = make_service(settings, failing_handler, llm)
        nodes = asyncio.run(service.run_prophet([make_news()], "2024-05-02"))
        assert nodes[0].id.startswith("PR-") and nodes[0].id.endswith("-0")
        assert nodes[1].id.startswith("PR-") and nodes[1].id.endswith("-1")

    def test_supplied_ids_never_shared_across_runs(self, settings):
        first = {"prophetNodes": [{"id": "1", "title": "Port risk", "coordinates": [12.6, 43.3], "confidence": 75}]}
        second = {"prophetNodes": [{"id": "1", "title": "Border risk", "coordinates": [40.0, 44.0], "confidence": 75}]}
        llm = FakeCompleter('{"indices": [1]}', json.dumps(first), '{"indices": [1]}', json.dumps(second))
        service = make_service(settings, failing_handler, llm)
        asyncio.run(service.handshake([make_sitrep()], [make_news()], "2024-05-02"))
        asyncio.run(service.handshake([make_sitrep()], [make_news()], "2024-05-02"))

        ids = [s.id for s in service.store.sitreps]
        assert "1" not in ids
        assert len(ids) == len(set(ids))

        target = ids[0]
        service.store.put_analysis(target, default_analysis().model_copy(update={"risk_score": 90}))
        critical = [s.id for s in service.store.sitreps if s.threat_level.value == "CRITICAL"]
        assert critical == [target]

    def test_handshake_merges_forecasts(self, settings):
        payload = {"prophetNodes": [{"title": "Port risk", "coordinates": [12.6, 43.3], "confidence": 75}]}
        llm = FakeCompleter('{"indices": [1]}', json.dumps(payload))
        service = make_service(settings, failing_handler, llm)
        merged = asyncio.run(service.handshake([make_sitrep()], [make_news()], "2024-05-02"))

        assert len(merged) == 1
        forecast = service.store.sitreps[0]
        assert forecast.is_prophet_node
        assert forecast.title == "Prophet: Port risk"
        assert forecast.category.value == "POLITICAL"
        assert forecast.threat_level.value == "HIGH"
        assert forecast.timestamp == "2024-05-02T00:00:00Z"
        assert len(service.store.prophet_nodes) == 1

    def test_handshake_failure_isolated(self, settings):
        llm = FakeCompleter(LLMFatalError("401"))
        service = make_service(settings, failing_handler, llm)
        merged = asyncio.run(service.handshake([make_sitrep()], [make_news()], "2024-05-02"))
        assert merged == []
        assert service.store.sitreps == []

    def test_handshake_skips_empty_inputs(self, settings):
        llm = FakeCompleter("{}")
        service = make_service(settings, failing_handler, llm)
        assert asyncio.run(service.handshake([], [make_news()], "2024-05-02")) == []
        assert asyncio.run(service.handshake([make_sitrep()], [], "2024-05-02")) == []
        assert llm.calls == []


class TestAnalyzeSitrep:
    """The reasoning call runs at most once per sitrep id."""

    ANALYSIS = json.dumps({"riskScore": 90, "actors": {"state": ["Army"], "nonState": []}})

    def test_cached_after_first_call(self, settings):
        llm = FakeCompleter(self.ANALYSIS)
        service = make_service(settings, failing_handler, llm)
        service.store.set_initial_sitreps([make_sitrep(id="A", raw_osint=[make_news()])])

        first = asyncio.run(service.analyze_sitrep("A"))
        second = asyncio.run(service.analyze_sitrep("A"))

        assert len(llm.calls) == 1
        assert first is second
        sitrep = service.store.get_sitrep("A")
        assert sitrep.risk_score == 90
        assert sitrep.threat_level.value == "CRITICAL"
        assert "Army" in sitrep.entities.orgs
        assert service.store.is_analyzing is False

    def test_concurrent_requests_share_one_call(self, settings):
        llm = FakeCompleter(self.ANALYSIS)
        service = make_service(settings, failing_handler, llm)
        service.store.set_initial_sitreps([make_sitrep(id="A", raw_osint=[make_news()])])

        async def both():
            return await asyncio.gather(service.analyze_sitrep("A"), service.analyze_sitrep("A"))

        first, second = asyncio.run(both())
        assert len(llm.calls) == 1
        assert first == second

    def test_flag_held_while_other_ids_run(self, settings):
        analysis = self.ANALYSIS

        class GatedCompleter:
            """Blocks each call until the sitrep title in the prompt is released."""

            def __init__(self):
                self.entered = {"Alpha": asyncio.Event(), "Bravo": asyncio.Event()}
                self.release = {"Alpha": asyncio.Event(), "Bravo": asyncio.Event()}

            async def complete(self, messages, model, reasoning_effort="medium"):
                title = "Alpha" if "Alpha" in messages[-1]["content"] else "Bravo"
                self.entered[title].set()
                await self.release[title].wait()
                return analysis

        async def scenario():
            llm = GatedCompleter()
            service = make_service(settings, failing_handler, llm)
            service.store.set_initial_sitreps([
                make_sitrep(id="A", title="Alpha", coordinates=(1.0, 1.0), raw_osint=[make_news()]),
                make_sitrep(id="B", title="Bravo", coordinates=(2.0, 2.0), raw_osint=[make_news()]),
            ])
            first = asyncio.create_task(service.analyze_sitrep("A"))
            second = asyncio.create_task(service.analyze_sitrep("B"))
            await llm.entered["Alpha"].wait()
            await llm.entered["Bravo"].wait()

            llm.release["Alpha"].set()
            await first
            during = service.store.is_analyzing
            llm.release["Bravo"].set()
            await second
            return during, service.store.is_analyzing

        during, after = asyncio.run(scenario())
        assert during is True
        assert after is False

    def test_unknown_id(self, settings):
        service = make_service(settings, failing_handler, FakeCompleter("{}"))
        assert asyncio.run(service.analyze_sitrep("missing")) is None


class TestLiveFeed:

    LIVE_NODES = json.dumps([{"id": "n1", "title": "Fighting", "lat": 21.0, "lng": 96.0,
                              "severity": "HIGH", "sitrep": "x", "timestamp": "2024-05-01T00:00:00Z"}])

    def test_success_then_stale(self, settings):
        calls = {"fail": False}

        def handler(request: httpx.Request) -> httpx.Response:
            if calls["fail"]:
                return httpx.Response(500, text="down")
            return json_response(serper_payload("Fighting"))

        service = make_service(settings, handler, FakeCompleter(self.LIVE_NODES))
        fresh = asyncio.run(service.live_feed())
        assert fresh.metadata.source == "serper-news-live"
        assert fresh.metadata.stale is False
        assert [n.id for n in fresh.nodes] == ["n1"]

        calls["fail"] = True
        stale = asyncio.run(service.live_feed())
        assert stale.metadata.stale is True
        assert [n.id for n in stale.nodes] == ["n1"]

    def test_seed_when_nothing_available(self, settings):
        service = make_service(settings, failing_handler, FakeCompleter(self.LIVE_NODES))
        feed = asyncio.run(service.live_feed())
        assert feed.metadata.degraded is True
        assert feed.metadata.source == "fallback-seed"
        assert feed.nodes == FALLBACK_SEED_NODES
        assert len(feed.raw) == 5
        assert "stale" not in feed.to_wire()["metadata"]

    def test_parse_failure_keeps_raw_with_seed_nodes(self, settings):
        service = make_service(settings, news_handler("Fighting"), FakeCompleter(LLMFatalError("401")))
        feed = asyncio.run(service.live_feed())
        assert feed.metadata.degraded is True
        assert [item.title for item in feed.raw] == ["Fighting"]
