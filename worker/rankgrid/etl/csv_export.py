"""CSV rendering of a stored grid report."""

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from rankgrid.core.models import GridSearchResponse, GridSearchResult, ReportRequest

logger = logging.getLogger(__name__)

RANKED_HEADERS = [
    "Point ID",
    "Row",
    "Column",
    "Latitude",
    "Longitude",
    "Rank",
    "Business Name",
    "Address",
    "Rating",
    "Website",
]
COORDINATE_HEADERS = ["Point ID", "Row", "Column", "Latitude", "Longitude", "Is Center", "Is Selected"]


def report_filename(today: Optional[datetime] = None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"grid-report-{today.strftime('%Y-%m-%d')}.csv"


def _metadata_lines(request: ReportRequest, response: Optional[GridSearchResponse]) -> List[str]:
    lines = [
        f"# Report Generated: {request.created_at}",
        f"# Keyword: {request.keyword or 'Not specified'}",
        f"# Target Website: {request.target_website or 'Not specified'}",
    ]
    if request.grid_config is not None:
        size = request.grid_config.grid_size
        lines.append(f"# Grid Size: {size}x{size}")
        lines.append(f"# Spacing: {request.grid_config.spacing:g} {request.grid_config.distance_unit.value}")
    if request.center_location is not None:
        center = request.center_location
        label = f"{center.latitude:.6f}, {center.longitude:.6f}"
        if center.address:
            label = f"{label} ({center.address})"
        lines.append(f"# Center: {label}")
    if response is not None:
        summary = response.summary
        avg = f"{summary.avg_rank:.1f}" if summary.avg_rank is not None else "N/A"
        lines.append(f"# Points Searched: {response.total_points}")
        lines.append(f"# Average Rank: {avg}")
        lines.append(f"# Found: {summary.found_count} / Not Found: {summary.not_found_count}")
        lines.append(
            f"# Top 3: {summary.top3_percent}% / Top 10: {summary.top10_percent}% / Top 20: {summary.top20_percent}%"
        )
    return lines


def _ranked_row(result: GridSearchResult) -> List[Any]:
    place = result.matched_place
    rating = place.rating if place is not None and place.rating is not None else ""
    return [
        result.point_id,
        result.row,
        result.col,
        f"{result.lat:.6f}",
        f"{result.lng:.6f}",
        result.rank if result.rank is not None else "Not Found",
        place.title if place else "",
        (place.address or "") if place else "",
        rating,
        (place.website or "") if place else "",
    ]


def build_report_csv(request: ReportRequest, response: Optional[GridSearchResponse] = None) -> str:
    """Render metadata comments, a blank line, then one row per selected point.

    Without ranking results only the coordinates of the selected points are written.
    """
    buffer = io.StringIO()
    buffer.write("\n".join(_metadata_lines(request, response)))
    buffer.write("\n\n")

    writer = csv.writer(buffer, lineterminator="\n")
    if response is not None and response.results:
        writer.writerow(RANKED_HEADERS)
        for result in response.results:
            writer.writerow(_ranked_row(result))
        rows = len(response.results)
    else:
        writer.writerow(COORDINATE_HEADERS)
        selected = request.selected_points
        for point in selected:
            writer.writerow(
                [
                    point.id,
                    point.row,
                    point.col,
                    f"{point.lat:.6f}",
                    f"{point.lng:.6f}",
                    "Yes" if point.is_center else "No",
                    "Yes" if point.is_selected else "No",
                ]
            )
        rows = len(selected)

    logger.debug("Rendered report CSV with %d rows", rows)
    return buffer.getvalue()
