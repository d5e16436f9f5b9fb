from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from roomdesk.backend_client import BookingAPIClient
from roomdesk.errors import EmptyQuery, TransportError, ValidationError
from roomdesk.filters import FilterState
from roomdesk.models import (
    EMPTY_QUERY_POLICIES,
    SOURCE_ACTIVITY_LOG,
    SOURCE_CANCELLATION,
    SOURCE_LIVE_CALENDAR,
    SOURCE_LOGGED_EVENT,
    SOURCE_MISS_SYNC,
    ActivityEntry,
    ViewEvent,
    day_bounds_ms,
)
from roomdesk.normalizer import normalize_activity, normalize_events, sort_events


logger = logging.getLogger(__name__)


def _put(payload: dict[str, Any], key: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, str) and not value.strip():
        return
    payload[key] = value.strip() if isinstance(value, str) else value


def build_payload(filters: FilterState, source_kind: str) -> dict[str, Any]:
    """Request parameters for ``source_kind``; unset axes are left out entirely."""
    payload: dict[str, Any] = {}
    text = filters.text_query
    start = filters.start_date
    end = filters.end_date
    if source_kind == SOURCE_LIVE_CALENDAR:
        _put(payload, "roomEmail", filters.resource_id)
        _put(payload, "startDate", start.isoformat() if start else None)
        _put(payload, "endDate", end.isoformat() if end else None)
        _put(payload, "search", text)
    elif source_kind == SOURCE_LOGGED_EVENT:
        _put(payload, "eventId", text)
        _put(payload, "userId", filters.user_id)
        _put(payload, "resourceId", filters.resource_id)
        _put(payload, "startDate", day_bounds_ms(start) if start else None)
        _put(payload, "endDate", day_bounds_ms(end, is_end=True) if end else None)
    elif source_kind == SOURCE_CANCELLATION:
        _put(payload, "startTime", day_bounds_ms(start) if start else None)
        _put(payload, "endTime", day_bounds_ms(end, is_end=True) if end else None)
        _put(payload, "roomID", filters.resource_id)
        _put(payload, "eventId", text)
    elif source_kind == SOURCE_MISS_SYNC:
        _put(payload, "startDate", start.isoformat() if start else None)
        _put(payload, "endDate", end.isoformat() if end else None)
        _put(payload, "eventId", text)
        _put(payload, "roomId", filters.resource_id)
    elif source_kind == SOURCE_ACTIVITY_LOG:
        _put(payload, "user", text)
        _put(payload, "action", filters.action)
        _put(payload, "startDate", start.isoformat() if start else None)
        _put(payload, "endDate", end.isoformat() if end else None)
    else:
        raise ValueError(f"Unknown source kind: {source_kind}")
    return payload


def fetcher_for(client: BookingAPIClient, source_kind: str) -> Callable[[dict[str, Any]], list[dict[str, Any]]]:
    fetchers = {
        SOURCE_LIVE_CALENDAR: client.search_calendar,
        SOURCE_LOGGED_EVENT: client.search_events,
        SOURCE_CANCELLATION: client.cancelled_transactions,
        SOURCE_MISS_SYNC: client.miss_sync_events,
    }
    if source_kind not in fetchers:
        raise ValueError(f"Unknown source kind: {source_kind}")
    return fetchers[source_kind]


class GenerationCounter:
    """Numbers requests in issue order; only the latest number may update state."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def latest(self) -> int:
        return self._value

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._value


@dataclass
class QueryResult:
    generation: int
    events: list[ViewEvent] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)
    stale: bool = False
    warning: str = ""


class QueryOrchestrator:
    """Turns a filter state into one backend fetch and a list of view events.

    Each call takes a new generation number; a response that comes back after
    a newer call was issued is returned with ``stale=True`` and must be
    discarded by the caller. A failure raised for the current call carries its
    generation so the caller can check it again before acting on it.
    """

    def __init__(
        self,
        fetch: Callable[[dict[str, Any]], list[dict[str, Any]]],
        source_kind: str,
        *,
        empty_policy: str = "block",
        descending: bool = True,
    ) -> None:
        if empty_policy not in EMPTY_QUERY_POLICIES:
            raise ValueError(f"Unknown empty query policy: {empty_policy}")
        self._fetch = fetch
        self.source_kind = source_kind
        self.empty_policy = empty_policy
        self.descending = descending
        self._generations = GenerationCounter()

    @property
    def latest_generation(self) -> int:
        return self._generations.latest

    def is_current(self, generation: int) -> bool:
        return self._generations.is_current(generation)

    def search(self, filters: FilterState) -> QueryResult:
        warning = ""
        if filters.is_empty:
            if self.empty_policy == "block":
                raise EmptyQuery()
            warning = "No filter selected; searching everything"
            logger.warning(f"{self.source_kind}: {warning}")
        if self.source_kind == SOURCE_LIVE_CALENDAR and not filters.resource_id:
            raise ValidationError("A room is required to search its calendar")

        payload = build_payload(filters, self.source_kind)
        generation = self._generations.next()
        logger.info(f"{self.source_kind} search #{generation} with {sorted(payload)}")
        try:
            raw_items = self._fetch(payload)
        except TransportError as exc:
            if not self.is_current(generation):
                logger.info(f"{self.source_kind} search #{generation} failed after being superseded")
                return QueryResult(generation=generation, payload=payload, stale=True)
            exc.generation = generation
            raise
        events = sort_events(normalize_events(raw_items, self.source_kind), descending=self.descending)
        stale = not self.is_current(generation)
        if stale:
            logger.info(f"{self.source_kind} search #{generation} superseded; discarding {len(events)} events")
        return QueryResult(
            generation=generation,
            events=events,
            payload=payload,
            stale=stale,
            warning=warning,
        )


@dataclass
class ActivityPage:
    generation: int
    entries: list[ActivityEntry] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    stale: bool = False


class ActivityLogQuery:
    """One page of the activity log per call; the server filters and pages.

    Empty filters are allowed here: the log is bounded by its page size.
    """

    def __init__(self, fetch: Callable[[dict[str, Any]], tuple[list[dict[str, Any]], dict[str, Any]]]) -> None:
        self._fetch = fetch
        self._generations = GenerationCounter()

    def is_current(self, generation: int) -> bool:
        return self._generations.is_current(generation)

    def fetch_page(self, filters: FilterState, page: int, limit: int) -> ActivityPage:
        payload = {"page": page, "limit": limit}
        payload.update(build_payload(filters, SOURCE_ACTIVITY_LOG))
        generation = self._generations.next()
        logger.info(f"activity log page {page} #{generation} with {sorted(payload)}")
        try:
            raw_items, meta = self._fetch(payload)
        except TransportError as exc:
            if not self.is_current(generation):
                return ActivityPage(generation=generation, payload=payload, stale=True)
            exc.generation = generation
            raise
        return ActivityPage(
            generation=generation,
            entries=[normalize_activity(item) for item in raw_items],
            meta=meta,
            payload=payload,
            stale=not self.is_current(generation),
        )
