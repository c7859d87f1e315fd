"""Sentinel — Intelligence Orchestration.

Wires the search gateway and the three agents together for the HTTP routes
and the ingestion scheduler. Stateless request paths (live feed, search,
stateless analyze, prophet) return fresh records; the store-backed paths
(handshake, cached analysis) mutate the injected IntelligenceStore.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from agents.llm import LLMError
from agents.node_generation import NodeGenerationAgent
from agents.prophet import ProphetAgent
from agents.reasoning import ReasoningAgent
from backend.config import Settings
from backend.models import (
    IntelligenceAnalysis,
    LiveFeed,
    LiveMetadata,
    LiveNode,
    OsintNewsItem,
    OsintRawItem,
    ProphetNode,
    SearchRequest,
    SearchResult,
    Sitrep,
)
from collectors.serper_collector import WINDOW_START, SerperCollector
from fusion_engine.dedup import dedupe_nodes_by_coordinates
from fusion_engine.normalizer import candidates_to_sitreps, prophet_nodes_to_sitreps
from fusion_engine.risk_calculator import to_finite
from fusion_engine.store import IntelligenceStore
from fusion_engine.temporal import iso_day

logger = logging.getLogger("sentinel.intel")

DEFAULT_REGIONS = [
    "Middle East",
    "Sahel",
    "Eastern Europe",
    "Southeast Asia",
    "Horn of Africa",
    "South Asia",
    "East Asia",
    "Latin America",
    "North America",
    "Oceania",
]

GLOBAL_CONFLICT_QUERY = "Armed Conflict OR Civil Unrest OR Cyber Warfare"

# Used when the aggregated live batch comes back empty
LIVE_FALLBACK_QUERIES = [
    "armed conflict Middle East",
    "civil unrest Africa",
    "conflict Eastern Europe",
    "insurgency South Asia",
]

MIN_NODES = 10
MAX_NODES = 20

MAP_CENTER = (20.0, 0.0)
MAP_ZOOM = 2

LIVE_SOURCE = "serper-news-live"
SEED_SOURCE = "fallback-seed"

# ─── Seed dataset (served when no live data has ever succeeded) ───

FALLBACK_SEED_OSINT = [
    OsintRawItem(
        title="Ukraine frontline artillery exchanges continue in Donbas",
        snippet="Sustained shelling and drone strikes reported near Donetsk and Luhansk sectors.",
        source="Fallback OSINT", date="2026-01-15", query_date_context="2026-02-10",
    ),
    OsintRawItem(
        title="Gaza-Israel cross-border strikes persist",
        snippet="Renewed exchanges and urban combat pressure continue around Gaza perimeter.",
        source="Fallback OSINT", date="2026-01-12", query_date_context="2026-02-10",
    ),
    OsintRawItem(
        title="Sudan urban clashes intensify in Khartoum corridor",
        snippet="Armed confrontations and mobility restrictions reported in central districts.",
        source="Fallback OSINT", date="2026-01-10", query_date_context="2026-02-10",
    ),
    OsintRawItem(
        title="Sahel insurgent activity spikes across tri-border zone",
        snippet="Militant attacks and force deployments reported in Mali-Burkina-Niger belt.",
        source="Fallback OSINT", date="2025-12-28", query_date_context="2026-02-10",
    ),
    OsintRawItem(
        title="Myanmar conflict areas report renewed fighting",
        snippet="Armed groups and military units engaged near key transport corridors.",
        source="Fallback OSINT", date="2026-01-08", query_date_context="2026-02-10",
    ),
]

FALLBACK_SEED_NODES = [
    LiveNode(
        id="seed-ukraine-donbas", title="Donbas frontline pressure", lat=48.4, lng=37.9,
        severity="HIGH", sitrep="Sustained artillery and drone activity across Donbas sectors.",
        timestamp="2026-01-15T00:00:00Z",
    ),
    LiveNode(
        id="seed-gaza", title="Gaza perimeter combat activity", lat=31.5, lng=34.45,
        severity="HIGH", sitrep="Cross-border strikes and urban combat pressure remain elevated.",
        timestamp="2026-01-12T00:00:00Z",
    ),
    LiveNode(
        id="seed-khartoum", title="Khartoum urban clashes", lat=15.5007, lng=32.5599,
        severity="HIGH", sitrep="Armed confrontations persist in key Khartoum districts.",
        timestamp="2026-01-10T00:00:00Z",
    ),
    LiveNode(
        id="seed-sahel", title="Sahel tri-border insurgency activity", lat=15.3, lng=-0.1,
        severity="MEDIUM", sitrep="Insurgent mobility and attacks reported across the tri-border belt.",
        timestamp="2025-12-28T00:00:00Z",
    ),
    LiveNode(
        id="seed-myanmar", title="Myanmar corridor fighting", lat=21.2, lng=96.0,
        severity="MEDIUM", sitrep="Renewed fighting reported along transport corridors.",
        timestamp="2026-01-08T00:00:00Z",
    ),
]


def clamp_max_nodes(value: Any) -> int:
    """Requested node budget clamped to [MIN_NODES, MAX_NODES]; non-numeric → MAX_NODES."""
    number = to_finite(value)
    if number is None:
        return MAX_NODES
    return max(MIN_NODES, min(MAX_NODES, int(number)))


def _millis() -> int:
    return int(time.time() * 1000)


class IntelligenceService:
    """Search → node generation → merge → prophet handshake, plus analysis."""

    def __init__(
        self,
        settings: Settings,
        store: IntelligenceStore,
        search: SerperCollector,
        node_agent: NodeGenerationAgent,
        prophet_agent: ProphetAgent,
        reasoning_agent: ReasoningAgent,
    ):
        self.settings = settings
        self.store = store
        self.search = search
        self.node_agent = node_agent
        self.prophet_agent = prophet_agent
        self.reasoning_agent = reasoning_agent

        self._last_live_snapshot: Optional[LiveFeed] = None
        self._pending_analyses: dict[str, asyncio.Task] = {}

    @property
    def search_configured(self) -> bool:
        return self.search.configured

    @property
    def reasoning_configured(self) -> bool:
        return bool(self.settings.openai_api_key)

    # ── Search ──────────────────────────────────────

    async def search_intelligence(self, request: SearchRequest) -> SearchResult:
        """Foreground search: raw OSINT → deduplicated, node-capped sitreps (not merged)."""
        temporal_date = request.temporal_date
        end_date = request.end_date or temporal_date
        hotspots = request.include_global_hotspots
        regions = request.regions or DEFAULT_REGIONS

        if hotspots:
            queries = [f"{GLOBAL_CONFLICT_QUERY} {region}" for region in regions]
        else:
            queries = [request.query or GLOBAL_CONFLICT_QUERY]

        raw = []
        if self.search_configured:
            raw = await self.search.search_all(
                queries,
                temporal_date,
                request.time_period,
                request.start_date,
                end_date,
                limit=self.settings.max_raw_items,
            )

        generated = []
        if raw and self.reasoning_configured:
            scope = GLOBAL_CONFLICT_QUERY if hotspots else request.query
            generated = await self.node_agent.generate_nodes(scope, raw, request.start_date, end_date)

        nodes = dedupe_nodes_by_coordinates(generated)[:clamp_max_nodes(request.max_nodes)]
        place = "Global" if hotspots else (request.query or "Global")
        sitreps = candidates_to_sitreps(nodes, raw, place)

        logger.info(
            "[search] %d queries → %d raw → %d nodes → %d sitreps",
            len(queries), len(raw), len(generated), len(sitreps),
        )
        return SearchResult(
            sitreps=sitreps,
            center=MAP_CENTER,
            zoom=MAP_ZOOM,
            raw=raw,
            metadata={"degraded": not raw, "rawCount": len(raw), "nodeCount": len(sitreps)},
        )

    # ── Prophet ─────────────────────────────────────

    async def run_prophet(self, batch: Sequence[OsintNewsItem], temporal_date: str) -> list[ProphetNode]:
        """Prefilter then predict; every node is stamped `PR-<ms>-<idx>`."""
        candidates = await self.prophet_agent.select_candidates(batch)
        nodes = await self.prophet_agent.predict(candidates, temporal_date)
        stamp = _millis()
        return [
            node.model_copy(update={"id": f"PR-{stamp}-{idx}"})
            for idx, node in enumerate(nodes)
        ]

    async def handshake(
        self,
        sitreps: Sequence[Sitrep],
        raw: Sequence[OsintNewsItem],
        temporal_date: str,
    ) -> list[Sitrep]:
        """Forecast from the same raw batch that produced `sitreps` and merge the result.

        Forecast failure is logged and yields no forecasts; it never aborts the caller.
        """
        if not sitreps or not raw:
            return []
        try:
            nodes = await self.run_prophet(raw, temporal_date)
        except LLMError as e:
            logger.error("[prophet] Handshake failed: %s", e)
            return []

        self.store.set_prophet_nodes(nodes)
        return self.store.merge_sitreps(prophet_nodes_to_sitreps(nodes))

    # ── Analysis ────────────────────────────────────

    async def analyze(self, sitrep: Sitrep, raw_osint: Sequence[OsintNewsItem]) -> IntelligenceAnalysis:
        return await self.reasoning_agent.analyze(sitrep, raw_osint)

    async def analyze_sitrep(self, sitrep_id: str) -> Optional[IntelligenceAnalysis]:
        """Cached deep analysis of a stored sitrep; None when the id is unknown.

        Concurrent requests for the same id share one reasoning call.
        """
        cached = self.store.get_analysis(sitrep_id)
        if cached is not None:
            return cached

        pending = self._pending_analyses.get(sitrep_id)
        if pending is not None:
            return await pending

        sitrep = self.store.get_sitrep(sitrep_id)
        if sitrep is None:
            return None

        task = asyncio.ensure_future(self._analyze_and_store(sitrep))
        self._pending_analyses[sitrep_id] = task
        self.store.is_analyzing = True
        try:
            return await task
        finally:
            self._pending_analyses.pop(sitrep_id, None)
            # stays set while analyses of other ids are in flight
            self.store.is_analyzing = bool(self._pending_analyses)

    async def _analyze_and_store(self, sitrep: Sitrep) -> IntelligenceAnalysis:
        analysis = await self.reasoning_agent.analyze(sitrep, sitrep.raw_osint)
        self.store.put_analysis(sitrep.id, analysis)
        logger.info("[reasoning] %s analysed, risk %d", sitrep.id, analysis.risk_score)
        return analysis

    # ── Live feed ───────────────────────────────────

    async def live_feed(self, now: Optional[datetime] = None) -> LiveFeed:
        """Global live snapshot; degrades to the last good snapshot, then to seed data."""
        temporal_date = iso_day(now or datetime.now(timezone.utc))
        s = self.settings

        try:
            raw = await asyncio.wait_for(
                self.search.fetch_global_conflict_news(temporal_date, s.max_raw_items),
                timeout=s.live_search_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("[live] Global batch timed out after %.0fs", s.live_search_timeout)
            raw = []

        if not raw:
            items = await self.search.search_all(
                LIVE_FALLBACK_QUERIES,
                temporal_date,
                "custom",
                WINDOW_START,
                temporal_date,
                timeout=s.live_fallback_search_timeout,
                limit=s.max_raw_items,
            )
            raw = [OsintRawItem.from_news_item(item, temporal_date) for item in items]

        if not raw:
            return self._degraded_feed(temporal_date)

        try:
            nodes = await asyncio.wait_for(
                self.node_agent.parse_live_conflicts(raw),
                timeout=s.live_parse_timeout,
            )
        except (asyncio.TimeoutError, LLMError) as e:
            logger.warning("[live] Live parsing failed: %s", str(e) or type(e).__name__)
            nodes = []

        if not nodes:
            return self._degraded_feed(temporal_date, raw)

        feed = LiveFeed(
            nodes=nodes,
            raw=raw,
            metadata=LiveMetadata(
                source=LIVE_SOURCE,
                range_start=WINDOW_START,
                range_end=temporal_date,
                stale=False,
            ),
        )
        self._last_live_snapshot = feed
        logger.info("[live] %d nodes from %d raw items", len(nodes), len(raw))
        return feed

    def _degraded_feed(self, temporal_date: str, raw: Sequence[OsintRawItem] = ()) -> LiveFeed:
        if self._last_live_snapshot is not None:
            logger.warning("[live] Serving stale snapshot")
            metadata = self._last_live_snapshot.metadata.model_copy(
                update={"stale": True, "range_end": temporal_date},
            )
            return self._last_live_snapshot.model_copy(update={"metadata": metadata})

        logger.warning("[live] No live data available, serving seed dataset")
        return LiveFeed(
            nodes=FALLBACK_SEED_NODES,
            raw=list(raw) or FALLBACK_SEED_OSINT,
            metadata=LiveMetadata(
                source=SEED_SOURCE,
                range_start=WINDOW_START,
                range_end=temporal_date,
                degraded=True,
            ),
        )
