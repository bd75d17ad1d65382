from __future__ import annotations

import json
import logging
import math
import sqlite3
import threading
from collections import OrderedDict

from jobboard.errors import AuthorizationError, StoreOperationError
from jobboard.repository import JobBoardRepository
from jobboard.session import SIGN_IN_REQUIRED, SessionCredentials

LISTING_VIEWS_TABLE = "job_postings"
VIEWS_ATTRIBUTE = "views"
DEFAULT_MAX_TRACKED_SESSIONS = 10_000
LOGGER = logging.getLogger("jobboard.store")


def coerce_numeric_id(job_id: object) -> int | None:
    if isinstance(job_id, bool):
        return None
    if isinstance(job_id, int):
        return job_id
    text = str(job_id).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def viewed_marker(job_id: str) -> str:
    return f"job_{job_id}_viewed"


class ViewCountAdapter:
    """Atomic view counter increments; every call it receives is counted."""

    def __init__(self, repository: JobBoardRepository) -> None:
        self.repository = repository

    def increment_views(
        self,
        job_id: object,
        *,
        credentials: SessionCredentials | None,
    ) -> int | None:
        if credentials is None or not credentials.is_live():
            raise AuthorizationError(SIGN_IN_REQUIRED)

        numeric_id = coerce_numeric_id(job_id)
        if numeric_id is None:
            LOGGER.error(json.dumps({"event": "view_increment_skipped", "job_id": str(job_id)}))
            return None

        try:
            updated = self.repository.increment_attribute(
                LISTING_VIEWS_TABLE,
                str(numeric_id),
                VIEWS_ATTRIBUTE,
                start=0,
                increment=1,
            )
        except (sqlite3.Error, RuntimeError) as exc:
            LOGGER.exception(json.dumps({"event": "view_increment_failed", "job_id": numeric_id}))
            raise StoreOperationError("Failed to increment view count") from exc
        return updated

    def current_views(self, job_id: object) -> int | None:
        numeric_id = coerce_numeric_id(job_id)
        if numeric_id is None:
            return None
        try:
            document = self.repository.get_item(LISTING_VIEWS_TABLE, str(numeric_id))
        except (sqlite3.Error, RuntimeError):
            LOGGER.warning(json.dumps({"event": "view_read_failed", "job_id": numeric_id}))
            return None
        if document is None:
            return None
        return int(document.get(VIEWS_ATTRIBUTE, 0))


class SessionViewMarkers:
    """In-memory "already counted" markers, one set per browsing session."""

    def __init__(self, max_sessions: int = DEFAULT_MAX_TRACKED_SESSIONS) -> None:
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, set[str]] = OrderedDict()
        self._lock = threading.Lock()

    def has(self, browsing_session: str, job_id: str) -> bool:
        with self._lock:
            markers = self._sessions.get(browsing_session)
            return markers is not None and viewed_marker(job_id) in markers

    def claim(self, browsing_session: str, job_id: str) -> bool:
        """Set the marker and report whether this caller was the one to set it."""
        with self._lock:
            markers = self._sessions.setdefault(browsing_session, set())
            self._sessions.move_to_end(browsing_session)
            marker = viewed_marker(job_id)
            if marker in markers:
                return False
            markers.add(marker)
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
            return True

    def release(self, browsing_session: str, job_id: str) -> None:
        with self._lock:
            markers = self._sessions.get(browsing_session)
            if markers is not None:
                markers.discard(viewed_marker(job_id))


class ViewRecorder:
    def __init__(self, adapter: ViewCountAdapter, markers: SessionViewMarkers) -> None:
        self.adapter = adapter
        self.markers = markers

    def record_view(
        self,
        browsing_session: str,
        job_id: str,
        *,
        credentials: SessionCredentials | None,
    ) -> int | None:
        """Count a detail view unless this browsing session already counted it.

        The marker is claimed before the increment so overlapping requests from
        one session count once; it is released again when the increment fails.
        Returns the updated counter, or ``None`` when nothing was counted.
        """
        if not self.markers.claim(browsing_session, job_id):
            LOGGER.info(json.dumps({"event": "view_already_counted", "job_id": job_id}))
            return None
        try:
            return self.adapter.increment_views(job_id, credentials=credentials)
        except (AuthorizationError, StoreOperationError) as exc:
            self.markers.release(browsing_session, job_id)
            LOGGER.warning(
                json.dumps({"event": "view_not_counted", "job_id": job_id, "error": str(exc)})
            )
            return None
