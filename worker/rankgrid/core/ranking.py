"""Rank lookup for a single grid point."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from rankgrid.core.models import Coordinate, GridSearchResult, PlaceResult

logger = logging.getLogger(__name__)

# search(lat, lng, keyword) -> listings ordered best first
RankingProvider = Callable[[float, float, str], Sequence[PlaceResult]]

_PROTOCOLS = ("https://", "http://")


def normalize_website(raw: Optional[str]) -> str:
    """Reduce a website to the form used for matching: no scheme, no www., lowercase, no trailing slash."""
    if not raw:
        return ""

    value = raw.strip().lower()
    for prefix in _PROTOCOLS:
        if value.startswith(prefix):
            value = value[len(prefix):]
            break
    if value.startswith("www."):
        value = value[len("www."):]
    return value.rstrip("/")


def find_target_rank(places: Sequence[PlaceResult], target_website: str) -> Tuple[Optional[int], Optional[PlaceResult]]:
    """Return the position and listing of the first place whose website matches the target."""
    target = normalize_website(target_website)
    if not target:
        return None, None

    for place in places:
        if place.website and normalize_website(place.website) == target:
            return place.position, place
    return None, None


def lookup_rank(
    point: Coordinate,
    keyword: str,
    target_website: str,
    provider: RankingProvider,
) -> GridSearchResult:
    """Query the provider at ``point`` and locate the target website.

    Provider failures are folded into ``error`` so one point never aborts a
    grid. The returned result carries placeholder bookkeeping fields
    (``point_id``, ``row``, ``col``) which the caller fills in.
    """
    result = GridSearchResult(point_id="", lat=point.latitude, lng=point.longitude, row=0, col=0)
    try:
        places: List[PlaceResult] = list(provider(point.latitude, point.longitude, keyword))
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Ranking lookup failed at %.6f,%.6f for keyword=%s: %s",
            point.latitude,
            point.longitude,
            keyword,
            exc,
        )
        result.error = str(exc) or exc.__class__.__name__
        return result

    result.places = places
    rank, matched = find_target_rank(places, target_website)
    result.rank = rank
    result.matched_place = matched
    return result
