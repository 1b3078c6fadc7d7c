"""Per-session dashboard state.

Each browser session owns one SearchController. The controller keeps the form
values and the results of its last successful search, so a failed search
leaves the previously displayed data in place.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict

import httpx

from . import census_service
from .census_service import (
    ApiConfig,
    CensusRecord,
    FetchError,
    SearchValidationError,
)
from .schemas import Coordinates, DashboardView, KeyStats

logger = logging.getLogger(__name__)


class SearchInProgressError(RuntimeError):
    """Raised when a search is submitted while the previous one is still pending."""


class SearchController:
    def __init__(self, config: ApiConfig):
        self.config = config
        self.zip_code = ""
        self.api_key = ""
        self.error = ""
        self.loading = False
        self.searched_zip: str | None = None
        self.record: CensusRecord | None = None
        self.stats: KeyStats | None = None
        self.coordinates: Coordinates | None = None
        self._lock = threading.Lock()

    def search(self, client: httpx.Client, zip_code: str, api_key: str) -> None:
        with self._lock:
            if self.loading:
                raise SearchInProgressError("A search is already in progress.")

            self.zip_code = zip_code
            self.api_key = api_key
            try:
                census_service.validate_search_input(zip_code, api_key)
            except SearchValidationError as exc:
                self.error = str(exc)
                return

            self.loading = True
            self.error = ""

        try:
            result = census_service.run_search(
                client,
                zip_code=zip_code,
                api_key=api_key,
                config=self.config,
            )
        except FetchError as exc:
            logger.warning("Census profile fetch failed for zip %s: %s", zip_code.strip(), exc)
            with self._lock:
                self.error = str(exc)
        else:
            with self._lock:
                self.searched_zip = result.zip_code
                self.record = result.record
                self.stats = result.stats
                self.coordinates = result.coordinates
        finally:
            with self._lock:
                self.loading = False

    def view(self) -> DashboardView:
        with self._lock:
            return DashboardView(
                zip_code=self.zip_code,
                searched_zip=self.searched_zip,
                error=self.error,
                loading=self.loading,
                stats=self.stats,
                coordinates=self.coordinates,
                record=census_service.build_record_preview(self.record),
            )


class SessionStore:
    """Bounded in-memory map of session id -> SearchController, least recently used evicted first."""

    def __init__(self, config: ApiConfig, max_sessions: int = 1024):
        self.config = config
        self.max_sessions = max_sessions
        self._controllers: OrderedDict[str, SearchController] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, session_id: str | None) -> tuple[str, SearchController]:
        with self._lock:
            if session_id and session_id in self._controllers:
                self._controllers.move_to_end(session_id)
                return session_id, self._controllers[session_id]

            new_id = uuid.uuid4().hex
            controller = SearchController(self.config)
            self._controllers[new_id] = controller
            while len(self._controllers) > self.max_sessions:
                evicted, _ = self._controllers.popitem(last=False)
                logger.debug("Evicted dashboard session %s", evicted)
            return new_id, controller
