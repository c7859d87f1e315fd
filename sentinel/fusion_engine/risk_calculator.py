"""Sentinel — Threat, Risk & Category Normalization."""

import math
from typing import Any, Optional

from backend.models import Category, ThreatLevel

DEFAULT_SCORE = 50

# Keyword buckets for category inference, checked in order; CONFLICT otherwise
CATEGORY_KEYWORDS = [
    (Category.CYBER, ("cyber", "hack")),
    (Category.MARITIME, ("naval", "sea", "maritime")),
    (Category.POLITICAL, ("election", "diplomatic", "sanction")),
]

# Forecast confidence at or above this reads as HIGH, below as MEDIUM
PROPHET_HIGH_CONFIDENCE = 70


def to_finite(value: Any) -> Optional[float]:
    """Coerce model output to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_score(value: Any, default: int = DEFAULT_SCORE) -> int:
    """Round to an integer in [0, 100]; non-numeric input yields `default`."""
    number = to_finite(value)
    if number is None:
        return default
    return max(0, min(100, math.floor(number + 0.5)))


def threat_level_from_risk(risk_score: float) -> ThreatLevel:
    """≥85 CRITICAL, ≥60 HIGH, ≥30 MEDIUM, else LOW."""
    return ThreatLevel.from_risk_score(risk_score)


def threat_level_from_confidence(confidence: float) -> ThreatLevel:
    return ThreatLevel.HIGH if confidence >= PROPHET_HIGH_CONFIDENCE else ThreatLevel.MEDIUM


def normalize_severity(value: Any) -> ThreatLevel:
    text = str(value or "").strip().upper()
    try:
        return ThreatLevel(text)
    except ValueError:
        return ThreatLevel.MEDIUM


def normalize_category(value: Any) -> Category:
    """Loose match of a model-supplied category label."""
    text = str(value or "").upper()
    for category in (Category.CYBER, Category.MARITIME, Category.POLITICAL):
        if category.value in text:
            return category
    return Category.CONFLICT


def category_from_text(text: str) -> Category:
    """Infer a category from free text (titles, snippets)."""
    lowered = (text or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return Category.CONFLICT
