"""Sentinel — Prophet (Forecast) Agent.

Two stages over an OSINT batch:
  1. Prefilter – a cheap pass picks the items showing latent tension likely
     to escalate within 30 days (1-based indices). Falls back to the first
     PREFILTER_FALLBACK_COUNT items if the pass fails.
  2. Predict   – a reasoning pass turns the survivors into ProphetNodes.
     Unparseable output yields no forecasts; nothing is synthesized.
"""

import logging
from typing import Sequence

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
from backend.models import OsintNewsItem, ProphetNode
from fusion_engine.risk_calculator import clamp_score, to_finite

logger = logging.getLogger("sentinel.agent")

PREFILTER_FALLBACK_COUNT = 3


def build_prefilter_prompt(batch: Sequence[OsintNewsItem]) -> str:
    return "\n".join([
        "Select only items showing latent tension likely to escalate within 30 days.",
        'Return ONLY JSON: { "indices": number[] } where each number is 1-based.',
        "",
        *(f"{idx}. {item.title} | {item.snippet}" for idx, item in enumerate(batch, start=1)),
    ])


def build_prophet_prompt(candidates: Sequence[OsintNewsItem], temporal_date: str) -> str:
    feed = "\n".join(
        f"{idx}. {item.title} | {item.snippet} | {item.source} | {item.link}"
        for idx, item in enumerate(candidates, start=1)
    )
    return "\n".join([
        f"Temporal context date: {temporal_date}",
        "Based on news from 2020 up to the temporal context date, identify regions with high "
        "latent tension but no active kinetic conflict.",
        "Cross-reference these summaries with economic volatility and historical conflict escalation archetypes.",
        "Return ONLY valid JSON:",
        '{ "prophetNodes": [{ "title": string, "coordinates": [number, number], "confidence": number, '
        '"probabilityAnalysis": string, "leadingIndicators": string[], "sourceLinks": string[] }] }',
        "",
        "OSINT FEED:",
        feed or "No candidate feed.",
    ])


def parse_indices(text: str, batch_size: int) -> ParseResult[list[int]]:
    """0-based indices of selected items; invalid or out-of-range picks are dropped."""
    try:
        payload = extract_json(text, "object")
    except LLMError as e:
        return ParseResult.failure(str(e))
    raw = payload.get("indices") if isinstance(payload, dict) else payload
    if not isinstance(raw, list):
        return ParseResult.failure("payload has no 'indices' array")

    picks = []
    for value in raw:
        number = to_finite(value)
        if number is None or not number.is_integer():
            continue
        idx = int(number) - 1
        if 0 <= idx < batch_size and idx not in picks:
            picks.append(idx)
    return ParseResult.success(picks)


def parse_prophet_nodes(text: str, temporal_date: str) -> ParseResult[list[ProphetNode]]:
    try:
        payload = extract_json(text, "object")
    except LLMError as e:
        return ParseResult.failure(str(e))
    if not isinstance(payload, dict):
        return ParseResult.failure("payload is not an object")

    nodes = []
    for idx, node in enumerate(safe_object_array(payload.get("prophetNodes"))):
        coords = node.get("coordinates")
        coords = coords if isinstance(coords, list) else []
        lat = to_finite(coords[0]) if len(coords) > 0 else None
        lng = to_finite(coords[1]) if len(coords) > 1 else None
        try:
            nodes.append(ProphetNode(
                id=str(node.get("id") or ""),
                title=str(node.get("title") or "Latent Conflict Projection"),
                coordinates=(lat or 0.0, lng or 0.0),
                timestamp=f"{temporal_date}T00:00:00Z",
                probability_analysis=str(node.get("probabilityAnalysis") or "Elevated latent tension observed."),
                leading_indicators=safe_array(node.get("leadingIndicators")),
                confidence=clamp_score(node.get("confidence")),
                source_links=safe_array(node.get("sourceLinks")),
            ))
        except ValidationError as e:
            logger.debug("[prophet] Skipping node %d: %s", idx, e)
    return ParseResult.success(nodes)


class ProphetAgent:
    """Latent-tension prefilter plus forecast reasoning."""

    def __init__(self, llm: Completer, prefilter_chain: ModelChain, chain: ModelChain):
        self._llm = llm
        self.prefilter_chain = prefilter_chain
        self.chain = chain

    async def select_candidates(self, batch: Sequence[OsintNewsItem]) -> list[OsintNewsItem]:
        if not batch:
            return []
        try:
            text = await self.prefilter_chain.run(self._llm, user_message(build_prefilter_prompt(batch)))
        except LLMError as e:
            logger.warning("[prophet] Prefilter failed (%s), using first %d items", e, PREFILTER_FALLBACK_COUNT)
            return list(batch[:PREFILTER_FALLBACK_COUNT])

        result = parse_indices(text, len(batch))
        if not result.ok:
            logger.warning("[prophet] Prefilter parse failed (%s), using first %d items", result.error, PREFILTER_FALLBACK_COUNT)
            return list(batch[:PREFILTER_FALLBACK_COUNT])
        return [batch[idx] for idx in result.value]

    async def predict(self, candidates: Sequence[OsintNewsItem], temporal_date: str) -> list[ProphetNode]:
        """Provider failure propagates; unparseable output yields []."""
        prompt = build_prophet_prompt(candidates, temporal_date)
        text = await self.chain.run(self._llm, user_message(prompt))

        result = parse_prophet_nodes(text, temporal_date)
        if not result.ok:
            logger.debug("[prophet] Forecast parse failed: %s", result.error)
            return []
        logger.info("[prophet] %d forecast nodes from %d candidates", len(result.value), len(candidates))
        return result.value
