"""Sitrep normalizer.

Converts agent outputs (event candidates, live nodes, prophet nodes) into
canonical Sitrep records, skipping anything that fails validation.
"""

import logging
import time
from typing import Optional, Sequence

from pydantic import ValidationError

from backend.models import (
    Category,
    EventCandidate,
    LiveNode,
    OsintNewsItem,
    OsintRawItem,
    ProphetNode,
    Sitrep,
)
from fusion_engine.risk_calculator import category_from_text, threat_level_from_confidence

logger = logging.getLogger("sentinel.normalizer")


def _millis() -> int:
    return int(time.time() * 1000)


def candidate_to_sitrep(
    candidate: EventCandidate,
    sitrep_id: str,
    raw: Sequence[OsintNewsItem],
    place: str,
) -> Sitrep:
    """Validate and normalize one generated candidate into a Sitrep."""
    links = set(candidate.source_links)
    return Sitrep(
        id=sitrep_id,
        title=candidate.title,
        coordinates=(candidate.lat, candidate.lng),
        timestamp=candidate.timestamp,
        threat_level=candidate.severity,
        description=candidate.summary,
        category=candidate.category,
        entities={
            "people": [],
            "places": [place],
            "orgs": candidate.actors or ["OSINT Source"],
        },
        raw_osint=[item for item in raw if item.link and item.link in links],
        confidence=candidate.confidence,
    )


def candidates_to_sitreps(
    candidates: Sequence[EventCandidate],
    raw: Sequence[OsintNewsItem],
    place: str = "Global",
    stamp: Optional[int] = None,
) -> list[Sitrep]:
    """Normalize a batch of candidates, skipping invalid ones."""
    stamp = stamp if stamp is not None else _millis()
    results = []
    for idx, candidate in enumerate(candidates):
        try:
            results.append(candidate_to_sitrep(candidate, f"SR-EXT-{stamp}-{idx}", raw, place))
        except ValidationError as e:
            logger.error("Failed to normalize candidate: %s, title: %s", e, candidate.title)
    return results


def live_nodes_to_sitreps(nodes: Sequence[LiveNode], raw: Sequence[OsintRawItem]) -> list[Sitrep]:
    """Turn live-feed nodes into sitreps; supporting OSINT is matched by title."""
    stamp = _millis()
    by_title: dict[str, list[OsintNewsItem]] = {}
    for item in raw:
        by_title.setdefault(item.title.strip().lower(), []).append(item.to_news_item())

    results = []
    for idx, node in enumerate(nodes):
        try:
            results.append(Sitrep(
                id=f"SR-LIVE-{stamp}-{idx}",
                title=node.title,
                coordinates=(node.lat, node.lng),
                timestamp=node.timestamp,
                threat_level=node.severity,
                description=node.sitrep,
                category=category_from_text(f"{node.title} {node.sitrep}"),
                entities={"people": [], "places": ["Global"], "orgs": ["Serper.dev"]},
                raw_osint=by_title.get(node.title.strip().lower(), []),
                is_new=True,
            ))
        except ValidationError as e:
            logger.error("Failed to normalize live node %s: %s", node.id, e)
    return results


def prophet_nodes_to_sitreps(nodes: Sequence[ProphetNode]) -> list[Sitrep]:
    """Forecast nodes become POLITICAL sitreps flagged isProphetNode."""
    results = []
    for node in nodes:
        try:
            results.append(Sitrep(
                id=node.id,
                title=f"Prophet: {node.title}",
                coordinates=node.coordinates,
                timestamp=node.timestamp,
                threat_level=threat_level_from_confidence(node.confidence),
                description=node.probability_analysis,
                category=Category.POLITICAL,
                entities={"people": [], "places": [], "orgs": ["ProphetAgent"]},
                is_prophet_node=True,
                probability_analysis=node.probability_analysis,
                leading_indicators=node.leading_indicators,
                confidence=node.confidence,
                is_new=True,
            ))
        except ValidationError as e:
            logger.error("Failed to normalize prophet node %s: %s", node.id, e)
    return results
