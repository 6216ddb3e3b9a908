"""Core data models shared by the grid ranking pipeline.

Every model converts to and from the camelCase JSON the browser client speaks.
The ``from_dict`` constructors validate their input and raise
:class:`ValidationError` with per-field details, so HTTP handlers and the
session store can reject malformed payloads at the boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

METERS_PER_MILE = 1609.34


class ValidationError(ValueError):
    """Raised when an incoming payload fails validation."""

    def __init__(self, message: str, details: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


def _field_error(field_name: str, message: str) -> ValidationError:
    return ValidationError(message, [{"field": field_name, "message": message}])


def _require_object(payload: Any, field_name: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError(f"Invalid {field_name}", [{"field": field_name, "message": "Expected an object"}])
    return payload


def _require_list(payload: Any, field_name: str) -> List[Any]:
    if not isinstance(payload, list):
        raise _field_error(field_name, f"{field_name} must be a list")
    return payload


def parse_number(value: Any, field_name: str) -> float:
    """Accept ints, floats and numeric strings; reject bools, blanks and NaN."""
    if isinstance(value, bool) or value is None:
        raise _field_error(field_name, f"{field_name} is required")
    if isinstance(value, str):
        if not value.strip():
            raise _field_error(field_name, f"{field_name} is required")
        try:
            value = float(value)
        except ValueError:
            raise _field_error(field_name, f"Invalid {field_name} format") from None
    if not isinstance(value, (int, float)):
        raise _field_error(field_name, f"Invalid {field_name} format")
    number = float(value)
    if not math.isfinite(number):
        raise _field_error(field_name, f"Invalid {field_name} format")
    return number


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class DistanceUnit(str, Enum):
    METERS = "meters"
    MILES = "miles"

    def to_meters(self, distance: float) -> float:
        if self is DistanceUnit.MILES:
            return distance * METERS_PER_MILE
        return distance


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    @classmethod
    def from_dict(cls, payload: Any) -> "Coordinate":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid coordinates", [{"field": "coordinates", "message": "Expected an object"}])

        details: List[Dict[str, str]] = []
        values: Dict[str, float] = {}
        for name, limit in (("latitude", 90.0), ("longitude", 180.0)):
            try:
                number = parse_number(payload.get(name), name)
            except ValidationError as exc:
                details.extend(exc.details)
                continue
            if not -limit <= number <= limit:
                label = name.capitalize()
                details.append({"field": name, "message": f"{label} must be between -{limit:g} and {limit:g}"})
                continue
            values[name] = number

        if details:
            raise ValidationError("Invalid coordinates", details)
        return cls(latitude=values["latitude"], longitude=values["longitude"])

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class CenterLocation:
    """Center coordinate of a campaign plus the geocoded address, when known."""

    latitude: float
    longitude: float
    address: Optional[str] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    @classmethod
    def from_dict(cls, payload: Any) -> "CenterLocation":
        payload = _require_object(payload, "centerLocation")
        if "latitude" not in payload and "lat" in payload:
            payload = {"latitude": payload.get("lat"), "longitude": payload.get("lng"), "address": payload.get("address")}
        coordinate = Coordinate.from_dict(payload)
        return cls(coordinate.latitude, coordinate.longitude, _optional_str(payload.get("address")))

    def to_dict(self) -> Dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, "address": self.address}


@dataclass(frozen=True)
class GridConfig:
    spacing: float
    distance_unit: DistanceUnit
    grid_size: int

    @property
    def half(self) -> int:
        return self.grid_size // 2

    @property
    def side(self) -> int:
        return 2 * self.half + 1

    @property
    def spacing_meters(self) -> float:
        return self.distance_unit.to_meters(self.spacing)

    @classmethod
    def from_dict(cls, payload: Any) -> "GridConfig":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid grid configuration", [{"field": "gridConfig", "message": "Expected an object"}])

        details: List[Dict[str, str]] = []
        spacing = None
        try:
            spacing = parse_number(payload.get("spacing"), "spacing")
            if spacing <= 0:
                details.append({"field": "spacing", "message": "spacing must be positive"})
        except ValidationError as exc:
            details.extend(exc.details)

        unit_raw = payload.get("distanceUnit", DistanceUnit.METERS.value)
        try:
            unit = DistanceUnit(str(unit_raw).lower())
        except ValueError:
            unit = None
            details.append({"field": "distanceUnit", "message": "distanceUnit must be 'meters' or 'miles'"})

        grid_size = None
        try:
            size_value = parse_number(payload.get("gridSize"), "gridSize")
            if size_value != int(size_value) or size_value < 1:
                details.append({"field": "gridSize", "message": "gridSize must be a positive integer"})
            else:
                grid_size = int(size_value)
        except ValidationError as exc:
            details.extend(exc.details)

        if details:
            raise ValidationError("Invalid grid configuration", details)
        return cls(spacing=spacing, distance_unit=unit, grid_size=grid_size)

    def to_dict(self) -> Dict[str, Any]:
        return {"spacing": self.spacing, "distanceUnit": self.distance_unit.value, "gridSize": self.grid_size}


@dataclass(frozen=True)
class GridPoint:
    id: str
    lat: float
    lng: float
    row: int
    col: int
    is_center: bool
    is_selected: bool = True

    def with_selection(self, selected: bool) -> "GridPoint":
        return replace(self, is_selected=selected)

    @classmethod
    def from_dict(cls, payload: Any) -> "GridPoint":
        if not isinstance(payload, dict):
            raise _field_error("gridPoints", "Each grid point must be an object")
        try:
            lat = parse_number(payload.get("lat"), "lat")
            lng = parse_number(payload.get("lng"), "lng")
            row = int(parse_number(payload.get("row"), "row"))
            col = int(parse_number(payload.get("col"), "col"))
        except ValidationError as exc:
            raise ValidationError("Invalid grid point", exc.details) from None
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise _field_error("gridPoints", f"Grid point {row}_{col} is outside valid coordinates")
        point_id = _optional_str(payload.get("id")) or f"{row}_{col}"
        is_selected = payload.get("isSelected", True)
        if not isinstance(is_selected, bool):
            raise _field_error("gridPoints", f"Grid point {point_id} isSelected must be true or false")
        return cls(
            id=point_id,
            lat=lat,
            lng=lng,
            row=row,
            col=col,
            is_center=row == 0 and col == 0,
            is_selected=is_selected,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lat": self.lat,
            "lng": self.lng,
            "row": self.row,
            "col": self.col,
            "isCenter": self.is_center,
            "isSelected": self.is_selected,
        }


@dataclass(slots=True)
class PlaceResult:
    """Normalized snapshot of one listing returned by the ranking provider."""

    position: int
    title: str
    address: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    website: Optional[str] = None
    phone_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PlaceResult":
        payload = _require_object(payload, "places")
        position = _optional_int(payload.get("position"))
        if position is None or position < 1:
            raise _field_error("position", "position must be a positive integer")
        return cls(
            position=position,
            title=str(payload.get("title") or ""),
            address=_optional_str(payload.get("address")),
            rating=_optional_float(payload.get("rating")),
            rating_count=_optional_int(payload.get("ratingCount")),
            website=_optional_str(payload.get("website")),
            phone_number=_optional_str(payload.get("phoneNumber")),
            latitude=_optional_float(payload.get("latitude")),
            longitude=_optional_float(payload.get("longitude")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "title": self.title,
            "address": self.address,
            "rating": self.rating,
            "ratingCount": self.rating_count,
            "website": self.website,
            "phoneNumber": self.phone_number,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass(slots=True)
class GridSearchResult:
    point_id: str
    lat: float
    lng: float
    row: int
    col: int
    rank: Optional[int] = None
    matched_place: Optional[PlaceResult] = None
    places: List[PlaceResult] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "GridSearchResult":
        payload = _require_object(payload, "results")
        matched = payload.get("matchedPlace")
        return cls(
            point_id=str(payload["pointId"]),
            lat=float(payload["lat"]),
            lng=float(payload["lng"]),
            row=int(payload["row"]),
            col=int(payload["col"]),
            rank=_optional_int(payload.get("rank")),
            matched_place=PlaceResult.from_dict(matched) if matched else None,
            places=[PlaceResult.from_dict(item) for item in _require_list(payload.get("places") or [], "places")],
            error=_optional_str(payload.get("error")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pointId": self.point_id,
            "lat": self.lat,
            "lng": self.lng,
            "row": self.row,
            "col": self.col,
            "rank": self.rank,
            "places": [place.to_dict() for place in self.places],
        }
        if self.matched_place is not None:
            data["matchedPlace"] = self.matched_place.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class SummaryStats:
    avg_rank: Optional[float]
    found_count: int
    not_found_count: int
    top3_count: int
    top3_percent: int
    top10_count: int
    top10_percent: int
    top20_count: int
    top20_percent: int

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SummaryStats":
        payload = _require_object(payload, "summary")
        avg_rank = payload.get("avgRank")
        return cls(
            avg_rank=float(avg_rank) if avg_rank is not None else None,
            found_count=int(payload["foundCount"]),
            not_found_count=int(payload["notFoundCount"]),
            top3_count=int(payload["top3Count"]),
            top3_percent=int(payload["top3Percent"]),
            top10_count=int(payload["top10Count"]),
            top10_percent=int(payload["top10Percent"]),
            top20_count=int(payload["top20Count"]),
            top20_percent=int(payload["top20Percent"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avgRank": self.avg_rank,
            "foundCount": self.found_count,
            "notFoundCount": self.not_found_count,
            "top3Count": self.top3_count,
            "top3Percent": self.top3_percent,
            "top10Count": self.top10_count,
            "top10Percent": self.top10_percent,
            "top20Count": self.top20_count,
            "top20Percent": self.top20_percent,
        }


@dataclass(slots=True)
class GridSearchResponse:
    keyword: str
    target_website: str
    total_points: int
    summary: SummaryStats
    results: List[GridSearchResult]

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "GridSearchResponse":
        payload = _require_object(payload, "response")
        return cls(
            keyword=str(payload["keyword"]),
            target_website=str(payload.get("targetWebsite") or ""),
            total_points=int(payload["totalPoints"]),
            summary=SummaryStats.from_dict(payload["summary"]),
            results=[GridSearchResult.from_dict(item) for item in _require_list(payload["results"], "results")],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyword": self.keyword,
            "targetWebsite": self.target_website,
            "totalPoints": self.total_points,
            "summary": self.summary.to_dict(),
            "results": [result.to_dict() for result in self.results],
        }


@dataclass(slots=True)
class ReportRequest:
    keyword: str
    target_website: str
    grid_points: List[GridPoint]
    center_location: Optional[CenterLocation]
    grid_config: Optional[GridConfig]
    created_at: str

    @property
    def selected_points(self) -> List[GridPoint]:
        return [point for point in self.grid_points if point.is_selected]

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ReportRequest":
        payload = _require_object(payload, "request")
        center = payload.get("centerLocation")
        grid_config = payload.get("gridConfig")
        return cls(
            keyword=str(payload["keyword"]),
            target_website=str(payload.get("targetWebsite") or ""),
            grid_points=[GridPoint.from_dict(item) for item in _require_list(payload["gridPoints"], "gridPoints")],
            center_location=CenterLocation.from_dict(center) if center else None,
            grid_config=GridConfig.from_dict(grid_config) if grid_config else None,
            created_at=str(payload["createdAt"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyword": self.keyword,
            "targetWebsite": self.target_website,
            "gridPoints": [point.to_dict() for point in self.grid_points],
            "centerLocation": self.center_location.to_dict() if self.center_location else None,
            "gridConfig": self.grid_config.to_dict() if self.grid_config else None,
            "createdAt": self.created_at,
        }


@dataclass(slots=True)
class StoredReport:
    """A campaign request together with the report produced for it."""

    request: ReportRequest
    response: GridSearchResponse

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StoredReport":
        payload = _require_object(payload, "report")
        return cls(
            request=ReportRequest.from_dict(payload["request"]),
            response=GridSearchResponse.from_dict(payload["response"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"request": self.request.to_dict(), "response": self.response.to_dict()}
