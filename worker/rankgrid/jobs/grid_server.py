"""HTTP entrypoint serving grid generation, grid searches, cached reports and collaborators."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, Response, current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from rankgrid.core.aggregation import GridSearchCancelled, GridSearchError, run_grid_search
from rankgrid.core.cache import TokenBucketLimiter, TTLCache
from rankgrid.core.config import Settings, get_settings
from rankgrid.core.favorites import build_favorites_store, parse_favorite_payload
from rankgrid.core.grid import generate_grid, select_points
from rankgrid.core.models import (
    CenterLocation,
    Coordinate,
    GridConfig,
    GridPoint,
    ReportRequest,
    StoredReport,
    ValidationError,
)
from rankgrid.core.ranking import RankingProvider
from rankgrid.core.session_store import SessionStoreRegistry
from rankgrid.etl.csv_export import build_report_csv, report_filename
from rankgrid.vendors.geocoder import Geocoder, GeocodingError
from rankgrid.vendors.serpapi_maps import SerpApiRankingProvider

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

_EXTENSION_KEY = "rankgrid"


@dataclass
class GridServices:
    """Collaborators the routes depend on; built once per app."""

    provider: RankingProvider
    sessions: SessionStoreRegistry
    favorites: Any
    geocoder: Geocoder
    geocode_limiter: TokenBucketLimiter
    max_concurrency: int = 5


def build_services(settings: Settings) -> GridServices:
    return GridServices(
        provider=SerpApiRankingProvider(settings),
        sessions=SessionStoreRegistry(maxsize=settings.session_store_size, ttl=settings.session_ttl),
        favorites=build_favorites_store(settings.database_url),
        geocoder=Geocoder(
            settings.geocoder_url,
            settings.geocoder_user_agent,
            cache=TTLCache(settings.geocode_cache_size, settings.geocode_cache_ttl),
        ),
        geocode_limiter=TokenBucketLimiter(settings.geocode_rate_per_minute),
        max_concurrency=settings.max_concurrency,
    )


# ---------- Helpers ----------


def _services() -> GridServices:
    return current_app.extensions[_EXTENSION_KEY]


def _error(message: str, status: int, details: Optional[List[Dict[str, str]]] = None) -> Tuple[Response, int]:
    body: Dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def _session_id() -> str:
    sid = session.get("sid")
    if not sid:
        sid = uuid.uuid4().hex
        session["sid"] = sid
        session.permanent = True
    return sid


def _client_id() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def _parse_search_payload(payload: Dict[str, Any]) -> ReportRequest:
    """Validate a grid-search body into a ReportRequest before anything is dispatched."""
    details: List[Dict[str, str]] = []

    keyword = str(payload.get("keyword") or "").strip()
    if not keyword:
        details.append({"field": "keyword", "message": "keyword is required"})
    target_website = str(payload.get("targetWebsite") or "").strip()

    raw_points = payload.get("gridPoints")
    points: List[GridPoint] = []
    if not isinstance(raw_points, list) or not raw_points:
        details.append({"field": "gridPoints", "message": "gridPoints must be a non-empty list"})
    else:
        for raw in raw_points:
            try:
                points.append(GridPoint.from_dict(raw))
            except ValidationError as exc:
                details.extend(exc.details)
                break

    selected_ids = payload.get("selectedPointIds")
    if points and isinstance(selected_ids, list):
        points = select_points(points, [str(item) for item in selected_ids])
    if points and not any(point.is_selected for point in points):
        details.append({"field": "gridPoints", "message": "select at least one grid point"})

    center = grid_config = None
    try:
        if payload.get("centerLocation"):
            center = CenterLocation.from_dict(payload["centerLocation"])
        if payload.get("gridConfig"):
            grid_config = GridConfig.from_dict(payload["gridConfig"])
    except ValidationError as exc:
        details.extend(exc.details)

    if details:
        raise ValidationError("Invalid grid search request", details)

    return ReportRequest(
        keyword=keyword,
        target_website=target_website,
        grid_points=points,
        center_location=center,
        grid_config=grid_config,
        created_at=datetime.now(timezone.utc).isoformat(),
    )


# ---------- Routes ----------


def register_routes(app: Flask) -> None:
    @app.get("/")
    def root() -> Any:
        """Simple root to avoid 404 on GET /"""
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        services = _services()
        return (
            jsonify(
                {
                    "status": "ok",
                    "max_concurrency": services.max_concurrency,
                    "active_sessions": len(services.sessions),
                    "revision": os.getenv("K_REVISION", "unknown"),
                }
            ),
            200,
        )

    @app.post("/api/validate-coordinates")
    def validate_coordinates() -> Any:
        payload = request.get_json(silent=True)
        try:
            coordinate = Coordinate.from_dict(payload)
        except ValidationError as exc:
            return _error("Invalid coordinates", 400, exc.details)
        return jsonify({"valid": True, "coordinates": coordinate.to_dict()}), 200

    @app.post("/api/grid")
    def build_grid() -> Any:
        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        try:
            center = Coordinate.from_dict(payload.get("center"))
            grid_config = GridConfig.from_dict(payload.get("gridConfig"))
            points = generate_grid(center, grid_config)
        except ValidationError as exc:
            return _error(exc.message, 400, exc.details)
        return jsonify({"gridPoints": [point.to_dict() for point in points]}), 200

    @app.post("/api/grid-search")
    def grid_search() -> Any:
        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        try:
            report_request = _parse_search_payload(payload)
        except ValidationError as exc:
            return _error(exc.message, 400, exc.details)

        services = _services()
        store = services.sessions.for_session(_session_id())
        token = store.begin()
        try:
            response = run_grid_search(
                report_request.grid_points,
                report_request.keyword,
                report_request.target_website,
                services.provider,
                max_concurrency=services.max_concurrency,
                cancel_event=token.cancel_event,
            )
        except GridSearchCancelled:
            return _error("grid search was abandoned", 409)
        except GridSearchError as exc:
            store.fail(token)
            return _error(str(exc), 502)
        except Exception:
            store.fail(token)
            raise

        if not store.save(StoredReport(request=report_request, response=response), token):
            return _error("grid search was abandoned", 409)
        return jsonify(response.to_dict()), 200

    @app.get("/api/report")
    def get_report() -> Any:
        report = _services().sessions.for_session(_session_id()).load()
        if report is None:
            return _error("no report for this session", 404)
        return jsonify(report.to_dict()), 200

    @app.delete("/api/report")
    def clear_report() -> Any:
        _services().sessions.discard(_session_id())
        return jsonify({"success": True}), 200

    @app.get("/api/report/export.csv")
    def export_report() -> Any:
        report = _services().sessions.for_session(_session_id()).load()
        if report is None:
            return _error("no report for this session", 404)
        body = build_report_csv(report.request, report.response)
        return Response(
            body,
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{report_filename()}"'},
        )

    @app.get("/api/geocode/search")
    def geocode_search() -> Any:
        services = _services()
        if not services.geocode_limiter.allow(_client_id()):
            return _error("too many geocoding requests", 429)
        query = (request.args.get("q") or "").strip()
        if not query:
            return _error("q is required", 400)
        try:
            matches = services.geocoder.search(query)
        except GeocodingError as exc:
            return _error(str(exc), 502)
        return jsonify(matches), 200

    @app.get("/api/geocode/reverse")
    def geocode_reverse() -> Any:
        services = _services()
        if not services.geocode_limiter.allow(_client_id()):
            return _error("too many geocoding requests", 429)
        try:
            coordinate = Coordinate.from_dict({"latitude": request.args.get("lat"), "longitude": request.args.get("lon")})
        except ValidationError as exc:
            return _error("Invalid coordinates", 400, exc.details)
        try:
            match = services.geocoder.reverse(coordinate.latitude, coordinate.longitude)
        except GeocodingError as exc:
            return _error(str(exc), 502)
        return jsonify(match), 200

    @app.get("/favorites")
    def list_favorites() -> Any:
        return jsonify([favorite.to_dict() for favorite in _services().favorites.list()]), 200

    @app.post("/favorites")
    def create_favorite() -> Any:
        try:
            fields = parse_favorite_payload(request.get_json(silent=True))
        except ValidationError as exc:
            return _error(exc.message, 400, exc.details)
        favorite = _services().favorites.create(**fields)
        return jsonify(favorite.to_dict()), 201

    @app.delete("/favorites/<favorite_id>")
    def delete_favorite(favorite_id: str) -> Any:
        if not _services().favorites.delete(favorite_id):
            return _error("favorite not found", 404)
        return jsonify({"success": True}), 200

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException) -> Any:
        return _error(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> Any:
        logger.exception("Unhandled error on %s %s: %s", request.method, request.path, exc)
        return _error("internal server error", 500)


def create_app(services: Optional[GridServices] = None, settings: Optional[Settings] = None) -> Flask:
    settings = settings or get_settings()
    app = Flask(__name__)
    app.secret_key = settings.session_secret
    app.extensions[_EXTENSION_KEY] = services or build_services(settings)
    register_routes(app)
    return app


app = create_app()


def main() -> None:
    """Bind on $PORT when the platform injects one, otherwise WORKER_PORT."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
