"""Sentinel — Ingestion Scheduler.

Background intelligence stream. Every `interval` seconds a tick runs one
cycle: search → node generation → merge → prophet handshake. A cycle that
fails is logged and the next tick still fires; a tick that arrives while a
cycle is running is skipped, not queued.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from backend.intelligence import IntelligenceService
from backend.models import SearchRequest, Sitrep
from fusion_engine.dedup import sitrep_coordinate_key
from fusion_engine.normalizer import live_nodes_to_sitreps
from fusion_engine.store import IntelligenceStore
from fusion_engine.temporal import iso_day

logger = logging.getLogger("sentinel.scheduler")

MAX_PULSE_SITREPS = 20

DEGRADED_MESSAGE = "Background ingestion degraded. Retrying on next cycle."


@dataclass
class CycleReport:
    """Outcome of one ingestion cycle."""
    new_sitreps: list[Sitrep] = field(default_factory=list)
    forecasts: list[Sitrep] = field(default_factory=list)
    raw_count: int = 0
    latency_ms: int = 0

    @property
    def message(self) -> str:
        return f"Pulse update: {len(self.new_sitreps)} new conflict nodes detected."


class IngestionScheduler:
    """Periodic, non-overlapping ingestion cycles over the shared store."""

    def __init__(
        self,
        service: IntelligenceService,
        store: IntelligenceStore,
        interval: float = 300.0,
        mode: str = "hotspot",
        query: str = "",
        on_pulse: Optional[Callable[[CycleReport], Awaitable[None]]] = None,
        on_log: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.service = service
        self.store = store
        self.interval = interval
        self.mode = mode
        self.query = query
        self.on_pulse = on_pulse
        self.on_log = on_log

        self._seen_coordinates: set[str] = set()
        self._cycle_running = False
        self._running = False
        self._ticks: set[asyncio.Task] = set()

    @property
    def is_cycle_running(self) -> bool:
        return self._cycle_running

    async def run_cycle(self, query: Optional[str] = None) -> CycleReport:
        """One search → merge → handshake pass. Errors propagate to the caller."""
        started = time.perf_counter()
        query = self.query if query is None else query
        hotspots = self.mode == "hotspot" and not query
        temporal_date = iso_day(self.store.temporal_date())

        request = SearchRequest(
            query=query,
            temporal_date=temporal_date,
            end_date=temporal_date,
            include_global_hotspots=hotspots,
            max_nodes=MAX_PULSE_SITREPS,
        )
        self.store.is_searching = True
        try:
            result = await self.service.search_intelligence(request)
        finally:
            self.store.is_searching = False

        fresh = []
        for sitrep in result.sitreps:
            if hotspots:
                key = sitrep_coordinate_key(sitrep)
                if key in self._seen_coordinates:
                    continue
                self._seen_coordinates.add(key)
            fresh.append(sitrep.model_copy(update={"is_new": True}))
            if len(fresh) >= MAX_PULSE_SITREPS:
                break

        merged = self.store.merge_sitreps(fresh)
        self.store.mark_background_poll()

        forecasts = await self.service.handshake(fresh, result.raw, temporal_date)

        latency_ms = int((time.perf_counter() - started) * 1000)
        self.store.set_uplink_latency(latency_ms)
        logger.info(
            "[cycle] %d new, %d forecasts, %d raw in %dms",
            len(merged), len(forecasts), len(result.raw), latency_ms,
        )
        return CycleReport(
            new_sitreps=merged,
            forecasts=forecasts,
            raw_count=len(result.raw),
            latency_ms=latency_ms,
        )

    async def tick(self, query: Optional[str] = None) -> Optional[CycleReport]:
        """Run a cycle unless one is already in flight; never raises."""
        if self._cycle_running:
            logger.info("[cycle] Previous cycle still running, skipping tick")
            return None

        self._cycle_running = True
        self.store.is_background_running = True
        try:
            report = await self.run_cycle(query)
            await self._emit_log(report.message)
            if self.on_pulse:
                await self.on_pulse(report)
            return report
        except Exception as e:
            logger.error("[cycle] Ingestion cycle failed: %s", e, exc_info=True)
            await self._emit_log(DEGRADED_MESSAGE)
            return None
        finally:
            self._cycle_running = False
            self.store.is_background_running = False

    async def prime(self):
        """Seed the store from the live feed before the first tick."""
        try:
            feed = await self.service.live_feed()
        except Exception as e:
            logger.warning("[prime] Live feed unavailable: %s", e)
            return
        if feed.metadata.degraded:
            logger.warning("[prime] Live feed degraded, starting with an empty store")
            return

        sitreps = live_nodes_to_sitreps(feed.nodes, feed.raw)
        self.store.set_initial_sitreps(sitreps)
        if self.mode == "hotspot":
            self._seen_coordinates.update(sitrep_coordinate_key(s) for s in sitreps)

    async def start(self):
        """Prime, then fire a tick every `interval` seconds until stopped."""
        if not (self.service.search_configured and self.service.reasoning_configured):
            logger.warning("Search or reasoning credentials missing, background stream idle")
            return

        self._running = True
        logger.info("Ingestion scheduler started (%s mode, every %ss)", self.mode, self.interval)
        await self.prime()
        while self._running:
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval)

    def stop(self):
        self._running = False
        for task in list(self._ticks):
            task.cancel()
        logger.info("Ingestion scheduler stopped")

    async def _emit_log(self, message: str):
        logger.info(message)
        if self.on_log:
            await self.on_log(message)
