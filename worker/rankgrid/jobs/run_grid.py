"""CLI job to run a full grid ranking report and write it as CSV."""

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rankgrid.core.aggregation import GridSearchError, run_grid_search
from rankgrid.core.config import ConfigError, get_settings
from rankgrid.core.grid import generate_grid
from rankgrid.core.models import CenterLocation, DistanceUnit, GridConfig, GridSearchResponse, ReportRequest
from rankgrid.core.ranking import RankingProvider
from rankgrid.etl.csv_export import build_report_csv
from rankgrid.vendors.serpapi_maps import SerpApiRankingProvider

logger = logging.getLogger(__name__)


def run_grid_job(
    *,
    lat: float,
    lng: float,
    keyword: str,
    website: str,
    spacing: float,
    unit: str,
    grid_size: int,
    max_concurrency: int,
    output: Optional[str] = None,
    provider: Optional[RankingProvider] = None,
) -> GridSearchResponse:
    settings = get_settings()
    if provider is None:
        if not settings.serpapi_api_key:
            raise ConfigError("SERPAPI_API_KEY is required")
        provider = SerpApiRankingProvider(settings)

    center = CenterLocation.from_dict({"latitude": lat, "longitude": lng})
    grid_config = GridConfig.from_dict({"spacing": spacing, "distanceUnit": unit, "gridSize": grid_size})
    points = generate_grid(center.coordinate, grid_config)
    logger.info("Running %d-point grid for keyword=%s website=%s", len(points), keyword, website or "-")

    response = run_grid_search(points, keyword, website, provider, max_concurrency=max_concurrency)
    summary = response.summary
    logger.info(
        "Completed grid: found=%d/%d avg_rank=%s top3=%d%% top10=%d%% top20=%d%%",
        summary.found_count,
        response.total_points,
        summary.avg_rank,
        summary.top3_percent,
        summary.top10_percent,
        summary.top20_percent,
    )

    report_request = ReportRequest(
        keyword=response.keyword,
        target_website=response.target_website,
        grid_points=points,
        center_location=center,
        grid_config=grid_config,
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    body = build_report_csv(report_request, response)
    if output:
        Path(output).write_text(body, encoding="utf-8")
        logger.info("Wrote report CSV to %s", output)
    else:
        sys.stdout.write(body)
    return response


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run a local search ranking grid report")
    parser.add_argument("--lat", dest="lat", type=float, required=True, help="Center latitude")
    parser.add_argument("--lng", dest="lng", type=float, required=True, help="Center longitude")
    parser.add_argument("--keyword", dest="keyword", required=True, help="Search keyword, e.g. 'coffee shop'")
    parser.add_argument("--website", dest="website", default="", help="Target website to locate in results")
    parser.add_argument("--spacing", dest="spacing", type=float, default=500.0, help="Distance between grid points")
    parser.add_argument(
        "--unit",
        dest="unit",
        choices=[unit.value for unit in DistanceUnit],
        default=DistanceUnit.METERS.value,
        help="Unit of --spacing",
    )
    parser.add_argument("--grid-size", dest="grid_size", type=int, default=5, help="Points per grid side")
    parser.add_argument(
        "--max-concurrency",
        dest="max_concurrency",
        type=int,
        default=settings.max_concurrency,
        help="Maximum simultaneous ranking lookups",
    )
    parser.add_argument("--output", dest="output", help="CSV output path (stdout when omitted)")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    try:
        run_grid_job(
            lat=args.lat,
            lng=args.lng,
            keyword=args.keyword,
            website=args.website,
            spacing=args.spacing,
            unit=args.unit,
            grid_size=args.grid_size,
            max_concurrency=args.max_concurrency,
            output=args.output,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        raise SystemExit(2) from exc
    except GridSearchError as exc:
        logger.error("Grid search failed at every point: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
