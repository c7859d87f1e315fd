"""Sentinel — Unified Sitrep Schema & Data Models."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ThreatLevel(str, Enum):
    """Ordinal threat levels, LOW < MEDIUM < HIGH < CRITICAL."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_risk_score(cls, risk_score: float) -> "ThreatLevel":
        """Map a 0-100 risk score onto the threat ladder."""
        for threshold, level in RISK_THRESHOLDS:
            if risk_score >= threshold:
                return level
        return cls.LOW


# (minimum risk score, level), checked top-down
RISK_THRESHOLDS = [
    (85, ThreatLevel.CRITICAL),
    (60, ThreatLevel.HIGH),
    (30, ThreatLevel.MEDIUM),
]


class Category(str, Enum):
    """Sitrep categories (also the display filter buckets)."""
    CONFLICT = "CONFLICT"
    MARITIME = "MARITIME"
    CYBER = "CYBER"
    POLITICAL = "POLITICAL"


def _unique_names(values: Any) -> list[str]:
    """Drop blanks and repeated names, keeping first-seen order."""
    if not values:
        return []
    seen: set[str] = set()
    names = []
    for value in values:
        name = str(value).strip()
        if name and name not in seen:
            seen.add(name)
            names.append(name)
    return names


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─── OSINT ─────────────────────────────────────────

class OsintNewsItem(WireModel):
    """A single normalized news/report snippet from the search provider."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    title: str
    snippet: str = ""
    source: str = "Unknown Source"
    link: str = ""
    published_at: Optional[str] = None
    query_date_context: str = ""


class OsintRawItem(WireModel):
    """Raw item shape served by the live feed (date instead of publishedAt)."""
    title: str
    snippet: str = ""
    source: str = "Unknown Source"
    date: Optional[str] = None
    link: str = ""
    query_date_context: Optional[str] = None

    @classmethod
    def from_news_item(cls, item: OsintNewsItem, fallback_date: str) -> "OsintRawItem":
        return cls(
            title=item.title,
            snippet=item.snippet,
            source=item.source,
            date=item.published_at or fallback_date,
            link=item.link,
            query_date_context=item.query_date_context,
        )

    def to_news_item(self) -> OsintNewsItem:
        return OsintNewsItem(
            title=self.title,
            snippet=self.snippet,
            source=self.source,
            link=self.link,
            published_at=self.date,
            query_date_context=self.query_date_context or "",
        )


# ─── Sitreps ───────────────────────────────────────

class Entities(WireModel):
    """Named entities attached to a sitrep; each set keeps unique names only."""
    people: list[str] = Field(default_factory=list)
    places: list[str] = Field(default_factory=list)
    orgs: list[str] = Field(default_factory=list)

    @field_validator("people", "places", "orgs", mode="before")
    @classmethod
    def _dedupe(cls, value: Any) -> list[str]:
        return _unique_names(value)


class Sitrep(WireModel):
    """Canonical geolocated intelligence event."""
    id: str
    title: str
    coordinates: tuple[float, float]
    timestamp: str
    threat_level: ThreatLevel
    description: str = ""
    category: Category
    entities: Entities = Field(default_factory=Entities)
    is_new: Optional[bool] = None
    risk_score: Optional[int] = Field(default=None, ge=0, le=100)
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    raw_osint: list[OsintNewsItem] = Field(default_factory=list)
    is_prophet_node: bool = False
    probability_analysis: Optional[str] = None
    leading_indicators: Optional[list[str]] = None

    @field_validator("coordinates")
    @classmethod
    def _in_range(cls, value: tuple[float, float]) -> tuple[float, float]:
        lat, lng = value
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise ValueError(f"coordinates out of range: {value}")
        return value

    @model_validator(mode="after")
    def _threat_follows_risk(self) -> "Sitrep":
        if self.risk_score is not None:
            self.threat_level = ThreatLevel.from_risk_score(self.risk_score)
        return self


class ProphetNode(WireModel):
    """Forecast agent output before conversion into a Sitrep."""
    id: str = ""
    title: str
    coordinates: tuple[float, float]
    timestamp: str
    probability_analysis: str
    leading_indicators: list[str] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)
    source_links: list[str] = Field(default_factory=list)


# ─── Agent outputs ─────────────────────────────────

class EventCandidate(WireModel):
    """Structured, geolocated event proposed by node generation."""
    lat: float
    lng: float
    title: str
    severity: ThreatLevel
    category: Category
    timestamp: str
    summary: str
    actors: list[str] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)
    source_links: list[str] = Field(default_factory=list)


class LiveNode(WireModel):
    """Node shape served by the live global feed."""
    id: str
    title: str
    lat: float
    lng: float
    severity: ThreatLevel
    sitrep: str
    timestamp: str


class AnalysisLink(WireModel):
    title: str
    uri: str


class Actors(WireModel):
    state: list[str] = Field(default_factory=list)
    non_state: list[str] = Field(default_factory=list)

    @field_validator("state", "non_state", mode="before")
    @classmethod
    def _dedupe(cls, value: Any) -> list[str]:
        return _unique_names(value)


class IntelligenceAnalysis(WireModel):
    """Deep-analysis result for one sitrep."""
    strategic_overview: str
    geopolitical_implications: str
    recommended_response: str
    links: list[AnalysisLink] = Field(default_factory=list)
    risk_score: int = Field(ge=0, le=100)
    immediate_facts: list[str] = Field(default_factory=list)
    strategic_deductions: list[str] = Field(default_factory=list)
    actors: Actors = Field(default_factory=Actors)
    reasoning_steps: list[str] = Field(default_factory=list)


# ─── API request bodies ────────────────────────────

class SearchRequest(WireModel):
    query: str = ""
    temporal_date: Optional[str] = None
    time_period: str = "custom"
    start_date: str = "2020-01-01"
    end_date: Optional[str] = None
    regions: Optional[list[str]] = None
    max_nodes: Any = 20
    include_global_hotspots: bool = False


class AnalyzeRequest(WireModel):
    sitrep: Optional[Sitrep] = None
    raw_osint: Any = None


class ProphetRequest(WireModel):
    osint_batch: Any = None
    temporal_date: Optional[str] = None


class IngestRequest(WireModel):
    query: Optional[str] = None


# ─── API responses ─────────────────────────────────

class SearchResult(WireModel):
    sitreps: list[Sitrep] = Field(default_factory=list)
    center: tuple[float, float] = (20.0, 0.0)
    zoom: int = 2
    raw: list[OsintNewsItem] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class LiveMetadata(WireModel):
    source: str
    range_start: str
    range_end: str
    stale: Optional[bool] = None
    degraded: Optional[bool] = None


class LiveFeed(WireModel):
    nodes: list[LiveNode] = Field(default_factory=list)
    raw: list[OsintRawItem] = Field(default_factory=list)
    metadata: LiveMetadata
