"""Sentinel — Deduplication Keys.

Coordinate keys are the primary identity of a physical event; content
signatures (first supporting OSINT item) are the secondary one. News items
are keyed on link + lowercased title + lowercased source.
"""

from typing import Any, Iterable, Sequence

from backend.models import OsintNewsItem, Sitrep

# Decimal places for sitrep coordinate keys (~100 m)
SITREP_KEY_PRECISION = 3

# Decimal places for raw node-generation output (~1 km)
NODE_KEY_PRECISION = 2


def coordinate_key(lat: float, lng: float, precision: int = SITREP_KEY_PRECISION) -> str:
    return f"{float(lat):.{precision}f},{float(lng):.{precision}f}"


def sitrep_coordinate_key(sitrep: Sitrep) -> str:
    lat, lng = sitrep.coordinates
    return coordinate_key(lat, lng)


def news_identity_key(item: Any, include_date: bool = False) -> str:
    """`link|lower(title)|lower(source)`, optionally `|publishedAt`."""
    if isinstance(item, dict):
        link = item.get("link") or ""
        title = item.get("title") or ""
        source = item.get("source") or ""
        published = item.get("publishedAt") or item.get("date") or ""
    else:
        link = item.link or ""
        title = item.title or ""
        source = item.source or ""
        published = getattr(item, "published_at", None) or getattr(item, "date", None) or ""
    key = f"{link}|{title.lower()}|{source.lower()}"
    if include_date:
        key = f"{key}|{published}"
    return key


def dedupe_news(items: Iterable[Any], include_date: bool = False) -> list:
    """First occurrence per identity key wins."""
    seen: set[str] = set()
    unique = []
    for item in items:
        key = news_identity_key(item, include_date)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def _node_latlng(node: Any) -> tuple[float, float]:
    if isinstance(node, dict):
        return node["lat"], node["lng"]
    return node.lat, node.lng


def dedupe_nodes_by_coordinates(nodes: Sequence[Any]) -> list:
    """Collapse generated nodes that share a 2-decimal coordinate key."""
    seen: set[str] = set()
    unique = []
    for node in nodes:
        lat, lng = _node_latlng(node)
        key = coordinate_key(lat, lng, NODE_KEY_PRECISION)
        if key in seen:
            continue
        seen.add(key)
        unique.append(node)
    return unique


def content_signature(sitrep: Sitrep, coord_key: str) -> str:
    if sitrep.raw_osint:
        first: OsintNewsItem = sitrep.raw_osint[0]
        return news_identity_key(first)
    return f"{sitrep.id}|{coord_key}"


def dedupe_sitreps(sitreps: Iterable[Sitrep]) -> list[Sitrep]:
    """Two-level dedup in insertion order: coordinate key, then content signature.

    A record whose id was already kept is dropped as well, so ids stay unique.

    Confirmed and forecast (prophet) sitreps are keyed in separate pools, so a
    forecast never suppresses a confirmed event at the same spot or vice versa.
    """
    seen_ids: set[str] = set()
    seen_coords: dict[bool, set[str]] = {False: set(), True: set()}
    seen_signatures: dict[bool, set[str]] = {False: set(), True: set()}
    unique = []

    for sitrep in sitreps:
        if sitrep.id in seen_ids:
            continue
        pool = sitrep.is_prophet_node
        coord_key = sitrep_coordinate_key(sitrep)
        if coord_key in seen_coords[pool]:
            continue
        seen_coords[pool].add(coord_key)

        signature = content_signature(sitrep, coord_key)
        if signature in seen_signatures[pool]:
            continue
        seen_signatures[pool].add(signature)
        seen_ids.add(sitrep.id)
        unique.append(sitrep)

    return unique
