"""Spatial sampling grid around a campaign center."""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Tuple

from rankgrid.core.models import Coordinate, GridConfig, GridPoint, ValidationError

logger = logging.getLogger(__name__)

METERS_PER_DEGREE_LAT = 111320.0
# Below this cos(latitude) the longitude step blows up (within ~0.00006 deg of a pole).
_MIN_COS_LAT = 1e-6


class DegenerateGridError(ValidationError):
    """Raised when the grid geometry cannot be represented (e.g. at the poles)."""


def point_id(row: int, col: int) -> str:
    return f"{row}_{col}"


def grid_offsets(center: Coordinate, config: GridConfig) -> Tuple[float, float]:
    """Return the (latitude, longitude) degree step between neighbouring points."""
    if config.spacing <= 0:
        raise ValidationError("spacing must be positive", [{"field": "spacing", "message": "spacing must be positive"}])
    if config.grid_size < 1:
        raise ValidationError("gridSize must be at least 1", [{"field": "gridSize", "message": "gridSize must be at least 1"}])

    cos_lat = math.cos(math.radians(center.latitude))
    if abs(cos_lat) < _MIN_COS_LAT:
        raise DegenerateGridError(
            "Grid center is too close to a pole",
            [{"field": "latitude", "message": "Latitude is too close to a pole to build a grid"}],
        )

    spacing_meters = config.spacing_meters
    return spacing_meters / METERS_PER_DEGREE_LAT, spacing_meters / (METERS_PER_DEGREE_LAT * cos_lat)


def _wrap_longitude(lng: float) -> float:
    if -180.0 <= lng <= 180.0:
        return lng
    return (lng + 180.0) % 360.0 - 180.0


def generate_grid(center: Coordinate, config: GridConfig) -> List[GridPoint]:
    """Build the (2*half+1)^2 lattice of sample points in row-major order.

    Rows move north with increasing index, columns move east. The center
    point sits exactly on the input coordinate. All points start selected.
    """
    lat_offset, lng_offset = grid_offsets(center, config)
    half = config.half

    edge_lat = abs(center.latitude) + half * lat_offset
    if edge_lat > 90.0:
        raise DegenerateGridError(
            "Grid extends past a pole",
            [{"field": "gridSize", "message": "Grid rows would cross a pole; reduce spacing or grid size"}],
        )

    points: List[GridPoint] = []
    for row in range(-half, half + 1):
        for col in range(-half, half + 1):
            points.append(
                GridPoint(
                    id=point_id(row, col),
                    lat=center.latitude + row * lat_offset,
                    lng=_wrap_longitude(center.longitude + col * lng_offset),
                    row=row,
                    col=col,
                    is_center=row == 0 and col == 0,
                )
            )

    logger.debug(
        "Generated %dx%d grid around %.6f,%.6f (spacing=%s %s)",
        config.side,
        config.side,
        center.latitude,
        center.longitude,
        config.spacing,
        config.distance_unit.value,
    )
    return points


def select_points(points: Iterable[GridPoint], selected_ids: Iterable[str]) -> List[GridPoint]:
    """Return copies of ``points`` whose selection flag mirrors ``selected_ids``."""
    wanted = set(selected_ids)
    return [point.with_selection(point.id in wanted) for point in points]
