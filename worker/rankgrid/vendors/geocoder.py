"""Client utilities for a Nominatim-compatible geocoding API."""

import logging
from typing import Any, Dict, List, Optional

import requests

from rankgrid.core.cache import TTLCache

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class GeocodingError(RuntimeError):
    """Raised when the geocoder is unreachable or answers with an error."""


def _to_match(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        lat = float(raw["lat"])
        lon = float(raw["lon"])
    except (KeyError, TypeError, ValueError):
        return None
    return {"display_name": raw.get("display_name") or f"{lat:.6f}, {lon:.6f}", "lat": lat, "lon": lon}


class Geocoder:
    """Forward and reverse geocoding with responses memoised in an injected cache."""

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        cache: TTLCache,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._cache = cache
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            response = self._session.get(f"{self.base_url}/{path}", params=params, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            logger.error("Geocoder request %s failed: %s", path, exc)
            raise GeocodingError(f"geocoding request failed: {exc}") from exc
        except ValueError as exc:
            logger.error("Geocoder returned invalid JSON for %s: %s", path, exc)
            raise GeocodingError("geocoder returned an invalid response") from exc

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must not be empty")

        key = ("search", query.lower(), limit)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        payload = self._get("search", {"q": query, "format": "json", "limit": limit})
        if not isinstance(payload, list):
            raise GeocodingError("geocoder returned an unexpected search payload")
        matches = [match for match in (_to_match(item) for item in payload if isinstance(item, dict)) if match]
        self._cache.set(key, matches)
        logger.info("Geocoded %r to %d matches", query, len(matches))
        return matches

    def reverse(self, lat: float, lon: float) -> Dict[str, Any]:
        key = ("reverse", round(lat, 6), round(lon, 6))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        payload = self._get("reverse", {"lat": lat, "lon": lon, "format": "json"})
        if not isinstance(payload, dict) or "error" in payload:
            message = payload.get("error") if isinstance(payload, dict) else "unexpected payload"
            raise GeocodingError(f"reverse geocoding failed: {message}")
        match = _to_match(payload) or {"display_name": f"{lat:.6f}, {lon:.6f}", "lat": lat, "lon": lon}
        self._cache.set(key, match)
        return match
