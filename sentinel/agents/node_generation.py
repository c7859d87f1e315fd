"""Sentinel — Node Generation Agent.

Turns raw OSINT snippets into structured, geolocated event candidates via
the reasoning provider. Coordinates the model omits (or garbles) are
inferred from a regional keyword table; if the provider fails outright the
agent degrades to one low-confidence candidate per news item.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from pydantic import ValidationError

from agents.llm import (
    Completer,
    LLMError,
    ModelChain,
    ParseResult,
    extract_json,
    safe_array,
    safe_object_array,
    user_message,
)
from backend.models import EventCandidate, LiveNode, OsintNewsItem, OsintRawItem
from fusion_engine.risk_calculator import (
    category_from_text,
    clamp_score,
    normalize_category,
    normalize_severity,
    to_finite,
)
from fusion_engine.temporal import parse_instant

logger = logging.getLogger("sentinel.agent")

# Region keyword hints → representative (lat, lng); first match wins
REGION_HINTS = [
    (("middle east", "gaza", "israel", "lebanon", "syria"), (31.8, 35.2)),
    (("sahel", "mali", "burkina", "niger"), (15.3, -0.1)),
    (("eastern europe", "ukraine", "donetsk"), (48.4, 37.9)),
    (("southeast asia", "myanmar", "south china sea"), (14.6, 101.0)),
    (("sudan", "khartoum"), (15.5007, 32.5599)),
    (("drc", "goma"), (-1.679, 29.222)),
    (("yemen", "houthi"), (15.5, 48.5)),
    (("somalia", "al-shabaab"), (5.1, 46.1)),
]
DEFAULT_POINT = (20.0, 0.0)

# Fallback pins are spread along a diagonal so they do not stack
JITTER_STEP = 0.11
JITTER_CYCLE = 5

MAX_FALLBACK_CANDIDATES = 12
MAX_FALLBACK_LIVE_NODES = 20
FALLBACK_CONFIDENCE = 40

LIVE_SYSTEM_PROMPT = (
    "You are a Defense Intelligence Analyst. Parse these news snippets and return a valid "
    "JSON array of objects. Each object must contain: { id, title, lat, lng, severity, sitrep, "
    "timestamp }. Ensure the coordinates (lat/lng) are geographically accurate for the "
    "conflict mentioned."
)


def fallback_coordinates_from_text(text: str, index: int = 0) -> tuple[float, float]:
    """Regional hint for `text`, offset by a deterministic jitter derived from `index`."""
    lowered = (text or "").lower()
    base = DEFAULT_POINT
    for keys, point in REGION_HINTS:
        if any(key in lowered for key in keys):
            base = point
            break
    jitter = (index % JITTER_CYCLE) * JITTER_STEP
    return round(base[0] + jitter, 4), round(base[1] + jitter, 4)


def _coordinate(value, limit: float) -> Optional[float]:
    number = to_finite(value)
    if number is None or abs(number) > limit:
        return None
    return number


def _as_instant(value: Optional[str], default_day: Optional[str] = None) -> str:
    """ISO instant for `value`; unparseable values fall back to `default_day`, then now."""
    parsed = parse_instant(value) if value else None
    if parsed is None and default_day:
        parsed = parse_instant(default_day)
    if parsed is None:
        parsed = datetime.now(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_node_generation_prompt(
    query: str,
    raw_news: Sequence[OsintNewsItem],
    start_date: str,
    end_date: str,
) -> str:
    feed = "\n".join(
        f"{idx}. source={item.source} | title={item.title} | date={item.published_at or 'unknown'}"
        f" | snippet={item.snippet} | link={item.link}"
        for idx, item in enumerate(raw_news, start=1)
    )
    return "\n".join([
        "Analyze these news events. For each distinct conflict, generate a structured Tactical Node.",
        "If multiple reports describe the same event, consolidate them into a single high-confidence node.",
        "Use the actual event date from each news snippet/source field when available, not the current system date.",
        "Focus on Armed Conflict, Civil Unrest, and Cyber Warfare.",
        f"Scope query: {query}",
        f"Date window: {start_date} to {end_date}",
        "",
        "Return ONLY valid JSON:",
        '{ "nodes": [{ "lat": number, "lng": number, "title": string, '
        '"severity": "LOW|MEDIUM|HIGH|CRITICAL", "category": "CONFLICT|POLITICAL|CYBER|MARITIME", '
        '"timestamp": "ISO date", "summary": string, "actors": string[], "confidence": number, '
        '"sourceLinks": string[] }] }',
        "",
        "RAW NEWS FEED:",
        feed or "No entries.",
    ])


def build_live_conflict_prompt(raw: Sequence[OsintRawItem]) -> str:
    feed = "\n".join(
        f"{idx}. source={item.source} | date={item.date or 'unknown'} | title={item.title}"
        f" | snippet={item.snippet}"
        for idx, item in enumerate(raw, start=1)
    )
    return "\n".join([
        "Parse these OSINT conflict snippets.",
        "Return ONLY a valid JSON array. Do not return markdown or commentary.",
        "Each array object must have exactly these keys:",
        '{ "id": string, "title": string, "lat": number, "lng": number, '
        '"severity": "LOW|MEDIUM|HIGH|CRITICAL", "sitrep": string, "timestamp": string }',
        "Use geographically accurate coordinates for the conflict location in each item.",
        "",
        "OSINT FEED:",
        feed or "No entries.",
    ])


def parse_candidates(text: str, query: str, start_date: str) -> ParseResult[list[EventCandidate]]:
    """Validate node-generation output into EventCandidates."""
    try:
        payload = extract_json(text, "object")
    except LLMError as e:
        return ParseResult.failure(str(e))

    nodes = payload.get("nodes") if isinstance(payload, dict) else payload
    if not isinstance(nodes, list):
        return ParseResult.failure("payload has no 'nodes' array")

    candidates = []
    for idx, node in enumerate(safe_object_array(nodes)):
        summary = str(node.get("summary") or "OSINT event cluster identified.")
        title = str(node.get("title") or "Global Hotspot")
        fallback = fallback_coordinates_from_text(f"{title} {summary} {query}", idx)
        lat = _coordinate(node.get("lat"), 90)
        lng = _coordinate(node.get("lng"), 180)
        try:
            candidates.append(EventCandidate(
                lat=lat if lat is not None else fallback[0],
                lng=lng if lng is not None else fallback[1],
                title=title,
                severity=normalize_severity(node.get("severity")),
                category=normalize_category(node.get("category")),
                timestamp=_as_instant(node.get("timestamp"), start_date),
                summary=summary,
                actors=safe_array(node.get("actors")),
                confidence=clamp_score(node.get("confidence")),
                source_links=safe_array(node.get("sourceLinks")),
            ))
        except ValidationError as e:
            logger.debug("[nodes] Skipping candidate %d: %s", idx, e)
    return ParseResult.success(candidates)


def parse_live_nodes(text: str, raw: Sequence[OsintRawItem]) -> ParseResult[list[LiveNode]]:
    """Validate live-feed output (a JSON array) into LiveNodes."""
    try:
        payload = extract_json(text, "array")
    except LLMError as e:
        return ParseResult.failure(str(e))
    if not isinstance(payload, list):
        return ParseResult.failure("live payload is not an array")

    nodes = []
    for idx, item in enumerate(safe_object_array(payload)):
        source = raw[idx] if idx < len(raw) else None
        title = str(item.get("title") or (source.title if source else "") or "Global Conflict Update")
        sitrep = str(item.get("sitrep") or (source.snippet if source else "") or "No sitrep provided.")
        fallback = fallback_coordinates_from_text(f"{title} {sitrep}", idx)
        lat = _coordinate(item.get("lat"), 90)
        lng = _coordinate(item.get("lng"), 180)
        timestamp = str(item.get("timestamp") or (source.date if source else "") or "")
        try:
            nodes.append(LiveNode(
                id=str(item.get("id") or f"live-{idx + 1}"),
                title=title,
                lat=lat if lat is not None else fallback[0],
                lng=lng if lng is not None else fallback[1],
                severity=normalize_severity(item.get("severity")),
                sitrep=sitrep,
                timestamp=_as_instant(timestamp),
            ))
        except ValidationError as e:
            logger.debug("[live] Skipping node %d: %s", idx, e)
    return ParseResult.success(nodes)


class NodeGenerationAgent:
    """Raw news → EventCandidates (search path) or LiveNodes (live feed)."""

    def __init__(self, llm: Completer, chain: ModelChain, live_chain: Optional[ModelChain] = None):
        self._llm = llm
        self.chain = chain
        self.live_chain = live_chain or chain

    async def generate_nodes(
        self,
        query: str,
        raw_news: Sequence[OsintNewsItem],
        start_date: str,
        end_date: str,
    ) -> list[EventCandidate]:
        prompt = build_node_generation_prompt(query, raw_news, start_date, end_date)
        try:
            text = await self.chain.run(self._llm, user_message(prompt))
        except LLMError as e:
            logger.warning("[nodes] Generation call failed (%s), using coordinate fallback", e)
            return self.fallback_candidates(query, raw_news, start_date)

        result = parse_candidates(text, query, start_date)
        if not result.ok:
            logger.warning("[nodes] Generation parse failure (%s), using coordinate fallback", result.error)
            return self.fallback_candidates(query, raw_news, start_date)

        logger.info("[nodes] Generated %d candidates from %d news items", len(result.value), len(raw_news))
        return result.value

    @staticmethod
    def fallback_candidates(
        query: str,
        raw_news: Sequence[OsintNewsItem],
        start_date: str,
    ) -> list[EventCandidate]:
        """One low-confidence candidate per news item, capped."""
        candidates = []
        for idx, item in enumerate(raw_news[:MAX_FALLBACK_CANDIDATES]):
            lat, lng = fallback_coordinates_from_text(f"{item.title} {item.snippet} {query}", idx)
            candidates.append(EventCandidate(
                lat=lat,
                lng=lng,
                title=item.title,
                severity="MEDIUM",
                category=category_from_text(f"{item.title} {item.snippet}"),
                timestamp=_as_instant(item.published_at, item.query_date_context or start_date),
                summary=item.snippet,
                actors=[],
                confidence=FALLBACK_CONFIDENCE,
                source_links=[item.link] if item.link else [],
            ))
        return candidates

    async def parse_live_conflicts(self, raw: Sequence[OsintRawItem]) -> list[LiveNode]:
        """Live-feed parsing; provider failure propagates, parse failure degrades."""
        messages = [
            {"role": "system", "content": LIVE_SYSTEM_PROMPT},
            {"role": "user", "content": build_live_conflict_prompt(raw)},
        ]
        text = await self.live_chain.run(self._llm, messages, reasoning_effort="high")

        result = parse_live_nodes(text, raw)
        if result.ok:
            return result.value

        logger.warning("[live] Live conflict parsing failed (%s), using coordinate fallback", result.error)
        nodes = []
        for idx, item in enumerate(raw[:MAX_FALLBACK_LIVE_NODES]):
            lat, lng = fallback_coordinates_from_text(f"{item.title} {item.snippet}", idx)
            nodes.append(LiveNode(
                id=f"live-fallback-{idx + 1}",
                title=item.title,
                lat=lat,
                lng=lng,
                severity="MEDIUM",
                sitrep=item.snippet,
                timestamp=_as_instant(item.date),
            ))
        return nodes
