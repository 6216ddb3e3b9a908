"""SerpAPI Google Maps client used as the local ranking provider."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, Iterable, List, Optional

from serpapi import GoogleSearch

from rankgrid.core.config import ConfigError, Settings, get_settings
from rankgrid.core.models import PlaceResult

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 1.2
# SerpAPI reports an empty result set as an error payload.
_NO_RESULTS_MARKERS = ("hasn't returned any results", "no results")


class SerpApiError(RuntimeError):
    """Raised when SerpAPI returns an error payload."""


def build_serpapi_params(keyword: str, lat: float, lng: float, api_key: str, zoom: int = 14) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine at a coordinate."""
    if not keyword or not keyword.strip():
        raise ValueError("Keyword must be provided for SerpAPI lookups.")
    if not api_key:
        raise ConfigError("SERPAPI_API_KEY must be set in the environment to run grid searches.")

    return {
        "engine": "google_maps",
        "q": keyword.strip(),
        "ll": f"@{lat:.7f},{lng:.7f},{zoom}z",
        "type": "search",
        "api_key": api_key,
    }


def fetch_from_serpapi(params: Dict[str, Any], retry_limit: int = 2) -> Dict[str, Any]:
    """Call SerpAPI Google Maps and return the raw JSON response with retry logic.

    SerpAPI charges per request, so every attempt is logged to keep usage
    visible. Transport failures and empty payloads are retried ``retry_limit``
    times with a jittered delay; the last failure is re-raised. An error
    payload (bad key, exhausted quota, rejected query) is final.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            logger.info("Calling SerpAPI (attempt %s) for q=%s ll=%s", attempt, params.get("q"), params.get("ll"))
            data = GoogleSearch(params).get_dict()
            if not data:
                raise SerpApiError("SerpAPI returned an empty payload.")
        except Exception as exc:  # noqa: BLE001
            logger.warning("SerpAPI request failed (attempt %s/%s): %s", attempt, retry_limit + 1, exc)
            if attempt > retry_limit:
                logger.error("SerpAPI request exhausted retries for q=%s ll=%s", params.get("q"), params.get("ll"))
                raise
            time.sleep(RETRY_DELAY_SECONDS + random.uniform(0, 0.8))
            continue

        if "error" in data:
            message = str(data.get("error") or data)
            if any(marker in message.lower() for marker in _NO_RESULTS_MARKERS):
                logger.info("SerpAPI found no results for q=%s ll=%s", params.get("q"), params.get("ll"))
                return {"local_results": []}
            logger.error("SerpAPI rejected q=%s ll=%s: %s", params.get("q"), params.get("ll"), message)
            raise SerpApiError(f"SerpAPI returned an error response: {message}")
        return data


def parse_local_results(data: Optional[Dict[str, Any]]) -> List[PlaceResult]:
    """Extract SerpAPI local/place results into PlaceResult objects ordered by position."""
    if not data:
        return []

    items = list(_extract_items(data))
    if not items:
        place_results = data.get("place_results")
        if isinstance(place_results, list):
            items = place_results
        elif isinstance(place_results, dict):
            items = [place_results]

    places: List[PlaceResult] = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            continue

        title = (raw.get("title") or raw.get("name") or "").strip()
        if not title:
            continue

        position = _safe_int(raw.get("position"))
        gps = raw.get("gps_coordinates") or {}
        places.append(
            PlaceResult(
                position=position if position and position > 0 else index,
                title=title,
                address=_strip_or_none(raw.get("address")),
                rating=_safe_float(raw.get("rating")),
                rating_count=_safe_int(raw.get("reviews_count") or raw.get("reviews")),
                website=_strip_or_none(raw.get("website")),
                phone_number=_strip_or_none(raw.get("phone")),
                latitude=_safe_float(gps.get("latitude")),
                longitude=_safe_float(gps.get("longitude")),
            )
        )

    places.sort(key=lambda place: place.position)
    return places


class SerpApiRankingProvider:
    """Callable ranking provider: ``provider(lat, lng, keyword) -> [PlaceResult]``."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def __call__(self, lat: float, lng: float, keyword: str) -> List[PlaceResult]:
        params = build_serpapi_params(
            keyword,
            lat,
            lng,
            api_key=self._settings.serpapi_api_key,
            zoom=self._settings.serpapi_zoom,
        )
        data = fetch_from_serpapi(params, retry_limit=self._settings.lookup_retry_limit)
        places = parse_local_results(data)
        logger.debug("SerpAPI returned %d listings at %.6f,%.6f", len(places), lat, lng)
        return places


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        for maybe in (local_results.get("places"), local_results.get("results"), local_results.get("local_results")):
            if isinstance(maybe, list):
                return maybe
    return []


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None
