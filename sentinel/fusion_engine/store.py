"""Sentinel — Canonical Event Store / Merge Engine.

Owns the authoritative, deduplicated sitrep collection plus the analysis
cache and the latest prophet audit snapshot. One instance is built at
application start and injected into every component that reads or mutates
it; each mutating method is a single synchronous state transition, so the
event loop never interleaves two of them.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from backend.models import Category, Entities, IntelligenceAnalysis, ProphetNode, Sitrep
from fusion_engine.dedup import dedupe_sitreps
from fusion_engine.risk_calculator import threat_level_from_risk
from fusion_engine.temporal import date_from_slider_position, parse_instant

logger = logging.getLogger("sentinel.store")

ALL_CATEGORIES = frozenset(Category)


def filter_for_display(
    sitreps: Iterable[Sitrep],
    categories: Iterable[Category],
    temporal_date: datetime,
) -> list[Sitrep]:
    """Sitreps whose category is active and whose timestamp is not after `temporal_date`.

    Sitreps with an unparseable timestamp are never shown.
    """
    active = set(categories)
    visible = []
    for sitrep in sitreps:
        if sitrep.category not in active:
            continue
        occurred = parse_instant(sitrep.timestamp)
        if occurred is None or occurred > temporal_date:
            continue
        visible.append(sitrep)
    return visible


class IntelligenceStore:
    """In-memory single source of truth for sitreps, analyses and forecasts."""

    def __init__(self):
        self.sitreps: list[Sitrep] = []
        self.analyses: dict[str, IntelligenceAnalysis] = {}
        self.prophet_nodes: list[ProphetNode] = []
        self.temporal_position: float = 100.0

        self.is_searching = False
        self.is_analyzing = False
        self.is_background_running = False
        self.uplink_latency_ms = 0
        self.last_background_poll_at: Optional[str] = None

    # ── Mutations ───────────────────────────────────

    def set_initial_sitreps(self, sitreps: list[Sitrep]):
        self.sitreps = list(sitreps)
        logger.info("[store] Seeded with %d sitreps", len(self.sitreps))

    def merge_sitreps(self, incoming: list[Sitrep]) -> list[Sitrep]:
        """Prepend `incoming` and re-deduplicate the whole collection.

        Returns the incoming sitreps that survived the merge.
        """
        before = len(self.sitreps)
        self.sitreps = dedupe_sitreps([*incoming, *self.sitreps])
        incoming_ids = {id(s) for s in incoming}
        survivors = [s for s in self.sitreps if id(s) in incoming_ids]
        logger.info(
            "[store] Merged %d incoming → %d kept (store %d → %d)",
            len(incoming), len(survivors), before, len(self.sitreps),
        )
        return survivors

    def put_analysis(self, sitrep_id: str, analysis: IntelligenceAnalysis):
        """Cache `analysis` and fold its risk and actors into the matching sitrep."""
        actors = [*analysis.actors.state, *analysis.actors.non_state]
        updated = []
        for sitrep in self.sitreps:
            if sitrep.id != sitrep_id:
                updated.append(sitrep)
                continue
            entities = Entities(
                people=sitrep.entities.people,
                places=sitrep.entities.places,
                orgs=[*sitrep.entities.orgs, *actors],
            )
            updated.append(sitrep.model_copy(update={
                "risk_score": analysis.risk_score,
                "threat_level": threat_level_from_risk(analysis.risk_score),
                "entities": entities,
            }))
        self.sitreps = updated
        self.analyses[sitrep_id] = analysis

    def set_prophet_nodes(self, nodes: list[ProphetNode]):
        self.prophet_nodes = list(nodes)

    def set_temporal_position(self, position: float):
        self.temporal_position = max(0.0, min(100.0, float(position)))

    def set_uplink_latency(self, value_ms: int):
        self.uplink_latency_ms = value_ms

    def mark_background_poll(self):
        self.last_background_poll_at = datetime.now(timezone.utc).isoformat()

    # ── Reads ───────────────────────────────────────

    def get_sitrep(self, sitrep_id: str) -> Optional[Sitrep]:
        for sitrep in self.sitreps:
            if sitrep.id == sitrep_id:
                return sitrep
        return None

    def get_analysis(self, sitrep_id: str) -> Optional[IntelligenceAnalysis]:
        return self.analyses.get(sitrep_id)

    def temporal_date(self, now: Optional[datetime] = None) -> datetime:
        return date_from_slider_position(self.temporal_position, now)

    def visible_sitreps(
        self,
        categories: Optional[Iterable[Category]] = None,
        position: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> list[Sitrep]:
        active = ALL_CATEGORIES if categories is None else categories
        pos = self.temporal_position if position is None else position
        return filter_for_display(self.sitreps, active, date_from_slider_position(pos, now))

    def status(self) -> dict:
        return {
            "isSearching": self.is_searching,
            "isAnalyzing": self.is_analyzing,
            "isBackgroundRunning": self.is_background_running,
            "uplinkLatencyMs": self.uplink_latency_ms,
            "lastBackgroundPollAt": self.last_background_poll_at,
            "temporalPosition": self.temporal_position,
            "sitrepCount": len(self.sitreps),
            "prophetSitrepCount": sum(1 for s in self.sitreps if s.is_prophet_node),
            "analysisCount": len(self.analyses),
        }
