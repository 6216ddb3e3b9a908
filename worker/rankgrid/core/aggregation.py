"""Fan-out of per-point rank lookups and the summary statistics over them."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

from rankgrid.core.models import (
    Coordinate,
    GridPoint,
    GridSearchResponse,
    GridSearchResult,
    SummaryStats,
    ValidationError,
)
from rankgrid.core.ranking import RankingProvider, lookup_rank

logger = logging.getLogger(__name__)

TOP_THRESHOLDS = (3, 10, 20)
DEFAULT_MAX_CONCURRENCY = 5
_CANCEL_POLL_SECONDS = 0.25


class GridSearchError(RuntimeError):
    """Raised when no grid point could be looked up at all."""


class GridSearchCancelled(RuntimeError):
    """Raised when a grid search is abandoned before it completes."""


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _percent(count: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(round_half_up(100 * count / total))


def summarize_results(results: Sequence[GridSearchResult]) -> SummaryStats:
    """Derive summary stats; top-N counts are cumulative (rank <= N), not exclusive bands."""
    total = len(results)
    ranks = [result.rank for result in results if result.rank is not None]
    found = len(ranks)
    avg_rank = round_half_up(sum(ranks) / found, 1) if found else None

    counts: Dict[int, int] = {
        threshold: sum(1 for rank in ranks if rank <= threshold) for threshold in TOP_THRESHOLDS
    }

    return SummaryStats(
        avg_rank=avg_rank,
        found_count=found,
        not_found_count=total - found,
        top3_count=counts[3],
        top3_percent=_percent(counts[3], total),
        top10_count=counts[10],
        top10_percent=_percent(counts[10], total),
        top20_count=counts[20],
        top20_percent=_percent(counts[20], total),
    )


def _lookup_point(point: GridPoint, keyword: str, target_website: str, provider: RankingProvider) -> GridSearchResult:
    result = lookup_rank(Coordinate(point.lat, point.lng), keyword, target_website, provider)
    result.point_id = point.id
    result.row = point.row
    result.col = point.col
    return result


def run_grid_search(
    points: Sequence[GridPoint],
    keyword: str,
    target_website: str,
    provider: RankingProvider,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    cancel_event: Optional[threading.Event] = None,
) -> GridSearchResponse:
    """Look up every selected point and aggregate the outcome into a report.

    At most ``max_concurrency`` lookups are in flight at once. Results are
    returned in the order of the selected input points, whatever order the
    lookups complete in. Setting ``cancel_event`` abandons the run: queued
    lookups are cancelled and :class:`GridSearchCancelled` is raised once the
    in-flight ones return.
    """
    keyword = (keyword or "").strip()
    target_website = (target_website or "").strip()
    if not keyword:
        raise ValidationError("keyword is required", [{"field": "keyword", "message": "keyword is required"}])

    selected = [point for point in points if point.is_selected]
    if not selected:
        raise ValidationError(
            "no grid points selected", [{"field": "gridPoints", "message": "select at least one grid point"}]
        )

    workers = max(1, min(max_concurrency, len(selected)))
    logger.info(
        "Starting grid search keyword=%s target=%s points=%d concurrency=%d",
        keyword,
        target_website or "-",
        len(selected),
        workers,
    )

    results: List[Optional[GridSearchResult]] = [None] * len(selected)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="grid-lookup")
    try:
        pending: Dict[Future, int] = {
            executor.submit(_lookup_point, point, keyword, target_website, provider): index
            for index, point in enumerate(selected)
        }
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                for future in pending:
                    future.cancel()
                logger.info("Grid search cancelled with %d lookups outstanding", len(pending))
                raise GridSearchCancelled("grid search was abandoned")
            done, _ = wait(pending, timeout=_CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                results[pending.pop(future)] = future.result()
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    ordered = [result for result in results if result is not None]
    failures = [result for result in ordered if result.error]
    if failures and len(failures) == len(ordered):
        logger.error("Grid search failed at every point: %s", failures[0].error)
        raise GridSearchError(failures[0].error)

    summary = summarize_results(ordered)
    logger.info(
        "Grid search finished keyword=%s found=%d/%d avg_rank=%s errors=%d",
        keyword,
        summary.found_count,
        len(ordered),
        summary.avg_rank,
        len(failures),
    )
    return GridSearchResponse(
        keyword=keyword,
        target_website=target_website,
        total_points=len(selected),
        summary=summary,
        results=ordered,
    )
