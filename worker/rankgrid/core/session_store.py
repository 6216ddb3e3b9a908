"""Per-browser-session storage of the most recent grid report.

A store moves through ``EMPTY -> PENDING -> POPULATED -> EMPTY``. Reports are
kept as versioned plain dicts and validated again on every load; anything
that does not match the current schema is dropped and the store reads as
empty.
"""

from __future__ import annotations

import abc
import copy
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from rankgrid.core.cache import TTLCache
from rankgrid.core.models import StoredReport

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class StoreState(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    POPULATED = "populated"


@dataclass
class RunToken:
    """Handle for one dispatched grid search; ``cancel_event`` fires when it is abandoned."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


def serialize_report(report: StoredReport) -> Dict[str, Any]:
    return {"version": SCHEMA_VERSION, **report.to_dict()}


def deserialize_report(blob: Any) -> Optional[StoredReport]:
    """Validate a persisted blob; return ``None`` when it is not a current-version report."""
    if not isinstance(blob, dict):
        logger.warning("Discarding stored report: expected a dict, got %s", type(blob).__name__)
        return None
    version = blob.get("version")
    if version != SCHEMA_VERSION:
        logger.warning("Discarding stored report with schema version %r (expected %d)", version, SCHEMA_VERSION)
        return None
    try:
        report = StoredReport.from_dict(blob)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Discarding corrupt stored report: %s", exc)
        return None
    if report.response.total_points != len(report.response.results):
        logger.warning("Discarding stored report: totalPoints does not match results")
        return None
    return report


class ReportSessionStore(abc.ABC):
    """Holds exactly one report for a browsing session."""

    @abc.abstractmethod
    def begin(self) -> RunToken:
        """Mark a search as dispatched and return its token."""

    @abc.abstractmethod
    def save(self, report: StoredReport, token: Optional[RunToken] = None) -> bool:
        """Store ``report``, overwriting any prior one. Returns False if ``token`` was abandoned."""

    @abc.abstractmethod
    def fail(self, token: RunToken) -> None:
        """Leave the pending state after ``token``'s search failed without a report."""

    @abc.abstractmethod
    def load(self) -> Optional[StoredReport]:
        """Return the current report, or None."""

    @abc.abstractmethod
    def clear(self) -> None:
        """Drop the report and abandon any in-flight search."""

    @property
    @abc.abstractmethod
    def state(self) -> StoreState:
        """Current lifecycle state."""


class InMemoryReportSessionStore(ReportSessionStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blob: Optional[Dict[str, Any]] = None
        self._token: Optional[RunToken] = None

    @property
    def state(self) -> StoreState:
        with self._lock:
            if self._token is not None:
                return StoreState.PENDING
            if self._blob is not None:
                return StoreState.POPULATED
            return StoreState.EMPTY

    def begin(self) -> RunToken:
        token = RunToken()
        with self._lock:
            if self._token is not None:
                self._token.cancel_event.set()
            self._token = token
        logger.debug("Report store pending run_id=%s", token.run_id)
        return token

    def save(self, report: StoredReport, token: Optional[RunToken] = None) -> bool:
        blob = serialize_report(report)
        with self._lock:
            if token is not None:
                if token.cancelled or self._token is not token:
                    logger.info("Ignoring report from abandoned run_id=%s", token.run_id)
                    return False
                self._token = None
            self._blob = blob
        return True

    def fail(self, token: RunToken) -> None:
        with self._lock:
            if self._token is token:
                self._token = None

    def load(self) -> Optional[StoredReport]:
        with self._lock:
            blob = copy.deepcopy(self._blob)
        if blob is None:
            return None
        report = deserialize_report(blob)
        if report is None:
            with self._lock:
                if self._blob == blob:
                    self._blob = None
        return report

    def clear(self) -> None:
        with self._lock:
            if self._token is not None:
                self._token.cancel_event.set()
                logger.info("Abandoning in-flight grid search run_id=%s", self._token.run_id)
            self._token = None
            self._blob = None


class SessionStoreRegistry:
    """Maps browser session ids to their report stores with bounded size and idle TTL.

    A store pushed out by either bound is cleared, which abandons its in-flight
    search so the run cannot finish into a store nobody can reach.
    """

    def __init__(self, maxsize: int = 1024, ttl: float = 6 * 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self._stores: TTLCache[InMemoryReportSessionStore] = TTLCache(
            maxsize, ttl, clock=clock, sliding=True, on_evict=self._evicted
        )

    def for_session(self, session_id: str) -> InMemoryReportSessionStore:
        return self._stores.get_or_create(session_id, InMemoryReportSessionStore)

    def discard(self, session_id: str) -> None:
        store = self._stores.pop(session_id)
        if store is not None:
            store.clear()

    def __len__(self) -> int:
        return len(self._stores)

    @staticmethod
    def _evicted(session_id: str, store: InMemoryReportSessionStore) -> None:
        logger.info("Dropping evicted report store for session %s", session_id)
        store.clear()
