"""Sentinel — Reasoning (Deep-Analysis) Agent."""

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
    user_message,
)
from backend.models import Actors, AnalysisLink, IntelligenceAnalysis, OsintNewsItem, Sitrep
from fusion_engine.risk_calculator import clamp_score

logger = logging.getLogger("sentinel.agent")

NO_FACTS = "- No immediate facts captured."
NO_DEDUCTIONS = "- No strategic deductions captured."


def format_implications(facts: Sequence[str], deductions: Sequence[str]) -> str:
    """Two bullet lists under fixed headers; the UI parses this layout."""
    fact_lines = "\n".join(f"- {fact}" for fact in facts) or NO_FACTS
    deduction_lines = "\n".join(f"- {item}" for item in deductions) or NO_DEDUCTIONS
    return f"Immediate Facts:\n{fact_lines}\n\nStrategic Deductions:\n{deduction_lines}"


def default_analysis() -> IntelligenceAnalysis:
    """Uniform degraded result for empty input or any failure."""
    facts = ["Data stream degraded."]
    deductions = ["Maintain elevated surveillance posture."]
    return IntelligenceAnalysis(
        strategic_overview="Analysis pipeline produced partial output; fallback synthesis applied.",
        geopolitical_implications=format_implications(facts, deductions),
        recommended_response="Maintain ISR coverage and re-run deep analysis.",
        links=[],
        risk_score=50,
        immediate_facts=facts,
        strategic_deductions=deductions,
        actors=Actors(),
        reasoning_steps=["Fallback parser activated."],
    )


def osint_links(raw_osint: Sequence[OsintNewsItem]) -> list[AnalysisLink]:
    return [AnalysisLink(title=item.source, uri=item.link) for item in raw_osint if item.link]


def build_analysis_prompt(sitrep: Sitrep, raw_osint: Sequence[OsintNewsItem]) -> str:
    feed = "\n".join(
        f"{idx}. [{item.source}] {item.title} | {item.snippet} | {item.link}"
        for idx, item in enumerate(raw_osint, start=1)
    )
    entities = sitrep.entities
    return "\n".join([
        "Conduct a deep strategic analysis of the following OSINT news data.",
        "Think through the immediate tactical threat, identify the primary state/non-state actors involved, "
        "and deduce the long-term geopolitical implications for the region.",
        "Do not provide a surface-level summary; provide a logic-backed SITREP.",
        "",
        f"SITREP CONTEXT: {sitrep.title} | {sitrep.category.value} | {sitrep.timestamp}",
        f"THREAT LEVEL: {sitrep.threat_level.value}",
        f"COORDINATES: {sitrep.coordinates[0]}, {sitrep.coordinates[1]}",
        f"DESCRIPTION: {sitrep.description}",
        f"ENTITIES: people={', '.join(entities.people) or 'none'} | places={', '.join(entities.places) or 'none'}"
        f" | orgs={', '.join(entities.orgs) or 'none'}",
        "",
        "OSINT FEED:",
        feed or "No OSINT entries were returned.",
        "",
        "Return ONLY valid JSON with keys:",
        "{",
        '  "riskScore": number(0-100),',
        '  "immediateFacts": string[],',
        '  "strategicDeductions": string[],',
        '  "actors": { "state": string[], "nonState": string[] },',
        '  "reasoningSteps": string[],',
        '  "recommendedResponse": string,',
        '  "strategicOverview": string',
        "}",
    ])


def parse_analysis(text: str, raw_osint: Sequence[OsintNewsItem]) -> ParseResult[IntelligenceAnalysis]:
    try:
        payload = extract_json(text, "object")
    except LLMError as e:
        return ParseResult.failure(str(e))
    if not isinstance(payload, dict):
        return ParseResult.failure("payload is not an object")

    facts = safe_array(payload.get("immediateFacts"))
    deductions = safe_array(payload.get("strategicDeductions"))
    actors = payload.get("actors") if isinstance(payload.get("actors"), dict) else {}
    try:
        analysis = IntelligenceAnalysis(
            strategic_overview=str(payload.get("strategicOverview") or "Strategic posture updated."),
            geopolitical_implications=format_implications(facts, deductions),
            recommended_response=str(payload.get("recommendedResponse") or "Escalate regional monitoring cadence."),
            links=osint_links(raw_osint),
            risk_score=clamp_score(payload.get("riskScore")),
            immediate_facts=facts,
            strategic_deductions=deductions,
            actors=Actors(
                state=safe_array(actors.get("state")),
                non_state=safe_array(actors.get("nonState")),
            ),
            reasoning_steps=safe_array(payload.get("reasoningSteps")),
        )
    except ValidationError as e:
        return ParseResult.failure(str(e))
    return ParseResult.success(analysis)


class ReasoningAgent:
    """Structured strategic analysis of one sitrep and its supporting OSINT."""

    def __init__(self, llm: Completer, chain: ModelChain):
        self._llm = llm
        self.chain = chain

    async def analyze(self, sitrep: Sitrep, raw_osint: Sequence[OsintNewsItem]) -> IntelligenceAnalysis:
        if not raw_osint:
            logger.info("[reasoning] No OSINT grounding for %s, returning default analysis", sitrep.id)
            return default_analysis()

        try:
            text = await self.chain.run(self._llm, user_message(build_analysis_prompt(sitrep, raw_osint)))
        except LLMError as e:
            logger.warning("[reasoning] Analysis call failed for %s: %s", sitrep.id, e)
            return default_analysis()

        result = parse_analysis(text, raw_osint)
        if not result.ok:
            logger.warning("[reasoning] Analysis parse failure for %s: %s", sitrep.id, result.error)
            return default_analysis()
        return result.value
