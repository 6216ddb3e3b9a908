"""Favorite coordinates: an in-memory store and a Postgres-backed one."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg2 import extras, pool

from rankgrid.core.models import Coordinate, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Favorite:
    id: str
    name: str
    latitude: float
    longitude: float
    address: Optional[str]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "createdAt": self.created_at,
        }


def parse_favorite_payload(payload: Any) -> Dict[str, Any]:
    """Validate a create-favorite body into ``name``/``latitude``/``longitude``/``address``."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid favorite", [{"field": "body", "message": "Expected an object"}])

    details: List[Dict[str, str]] = []
    name = str(payload.get("name") or "").strip()
    if not name:
        details.append({"field": "name", "message": "name is required"})
    try:
        coordinate: Optional[Coordinate] = Coordinate.from_dict(payload)
    except ValidationError as exc:
        coordinate = None
        details.extend(exc.details)
    if details:
        raise ValidationError("Invalid favorite", details)

    address = str(payload.get("address") or "").strip() or None
    return {"name": name, "latitude": coordinate.latitude, "longitude": coordinate.longitude, "address": address}


class InMemoryFavoritesStore:
    def __init__(self) -> None:
        self._items: Dict[str, Favorite] = {}
        self._lock = threading.Lock()

    def list(self) -> List[Favorite]:
        with self._lock:
            return list(self._items.values())

    def create(self, name: str, latitude: float, longitude: float, address: Optional[str] = None) -> Favorite:
        favorite = Favorite(
            id=uuid.uuid4().hex,
            name=name,
            latitude=latitude,
            longitude=longitude,
            address=address,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._items[favorite.id] = favorite
        logger.debug("Saved favorite %s (%s)", favorite.id, name)
        return favorite

    def delete(self, favorite_id: str) -> bool:
        with self._lock:
            return self._items.pop(favorite_id, None) is not None


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS favorites (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    latitude DOUBLE PRECISION NOT NULL,
    longitude DOUBLE PRECISION NOT NULL,
    address TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_SELECT_ALL = "SELECT id, name, latitude, longitude, address, created_at FROM favorites ORDER BY created_at;"

_INSERT = """
INSERT INTO favorites (id, name, latitude, longitude, address, created_at)
VALUES (%(id)s, %(name)s, %(latitude)s, %(longitude)s, %(address)s, %(created_at)s)
RETURNING id, name, latitude, longitude, address, created_at;
"""

_DELETE = "DELETE FROM favorites WHERE id = %(id)s;"


def _row_to_favorite(row: Dict[str, Any]) -> Favorite:
    created_at = row.get("created_at")
    if isinstance(created_at, datetime):
        created_at = created_at.isoformat()
    return Favorite(
        id=str(row["id"]),
        name=row["name"],
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        address=row.get("address"),
        created_at=str(created_at),
    )


class PostgresFavoritesStore:
    """Favorites persisted in a ``favorites`` table through a psycopg2 connection pool."""

    def __init__(self, database_url: str, minconn: int = 1, maxconn: int = 5) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: Optional[pool.SimpleConnectionPool] = None
        self._schema_ready = False

    def _get_pool(self) -> pool.SimpleConnectionPool:
        if self._pool is None:
            self._pool = pool.SimpleConnectionPool(
                self._minconn,
                self._maxconn,
                dsn=self._database_url,
                connect_timeout=10,
            )
            logger.info("Database connection pool initialised")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection."""
        pg_pool = self._get_pool()
        conn = pg_pool.getconn()
        try:
            if not self._schema_ready:
                with conn.cursor() as cur:
                    cur.execute(_CREATE_TABLE)
                conn.commit()
                self._schema_ready = True
            yield conn
        finally:
            pg_pool.putconn(conn)

    def list(self) -> List[Favorite]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_SELECT_ALL)
                rows = cur.fetchall()
        return [_row_to_favorite(row) for row in rows]

    def create(self, name: str, latitude: float, longitude: float, address: Optional[str] = None) -> Favorite:
        params = {
            "id": uuid.uuid4().hex,
            "name": name,
            "latitude": latitude,
            "longitude": longitude,
            "address": address,
            "created_at": datetime.now(timezone.utc),
        }
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_INSERT, params)
                row = cur.fetchone()
            conn.commit()
        logger.debug("Inserted favorite %s", params["id"])
        return _row_to_favorite(row)

    def delete(self, favorite_id: str) -> bool:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_DELETE, {"id": favorite_id})
                deleted = cur.rowcount > 0
            conn.commit()
        return deleted


def build_favorites_store(database_url: str):
    """Use Postgres when a database is configured, otherwise keep favorites in memory."""
    if database_url:
        return PostgresFavoritesStore(database_url)
    return InMemoryFavoritesStore()
