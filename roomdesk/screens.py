from __future__ import annotations

import calendar
import logging
import threading
import time
from datetime import date
from typing import Any, Callable

from roomdesk.backend_client import BookingAPIClient
from roomdesk.errors import EmptyQuery, TransportError, ValidationError
from roomdesk.filters import FilterState, UserPicker
from roomdesk.models import (
    PAGE_SIZE_OPTIONS,
    SOURCE_ACTIVITY_LOG,
    SOURCE_CANCELLATION,
    SOURCE_LIVE_CALENDAR,
    SOURCE_LOGGED_EVENT,
    SOURCE_MISS_SYNC,
    ActivityEntry,
    AppConfig,
    SyncStatus,
    ViewEvent,
    serialize_datetime,
)
from roomdesk.normalizer import last_updated, normalize_event, participant_ids, transaction_history
from roomdesk.notifications import NotificationCenter
from roomdesk.pagination import Paginator, RemotePaginator
from roomdesk.query import ActivityLogQuery, QueryOrchestrator, fetcher_for
from roomdesk.reconciler import RepairOutcome, SyncReconciler


logger = logging.getLogger(__name__)

SCREEN_CALENDAR = "calendar"
SCREEN_USER_EVENTS = "user-events"
SCREEN_CANCELLED = "cancelled"
SCREEN_MISS_SYNC = "miss-sync"
SCREEN_ACTIVITY_LOG = "activity-log"


class Screen:
    """One list-bearing screen: filters, query, pagination and notifications wired together."""

    def __init__(
        self,
        name: str,
        *,
        client: BookingAPIClient,
        filters: FilterState,
        orchestrator: QueryOrchestrator,
        paginator: Paginator[ViewEvent],
        notifications: NotificationCenter,
        reconciler: SyncReconciler | None = None,
        user_picker: UserPicker | None = None,
        local_id_filter: bool = False,
        noun: str = "events",
    ) -> None:
        self.name = name
        self.client = client
        self.filters = filters
        self.orchestrator = orchestrator
        self.paginator = paginator
        self.notifications = notifications
        self.reconciler = reconciler
        self.user_picker = user_picker
        self.local_id_filter = local_id_filter
        self.noun = noun
        self.events: list[ViewEvent] = []
        self.error = ""
        self.scroll_to_top = False
        self._searches_running = 0
        self._lock = threading.RLock()
        self.paginator.on_page_change = self._request_scroll

    @property
    def source_kind(self) -> str:
        return self.orchestrator.source_kind

    @property
    def loading(self) -> bool:
        return self._searches_running > 0

    def _request_scroll(self, _page: int) -> None:
        self.scroll_to_top = True

    def visible_events(self) -> list[ViewEvent]:
        with self._lock:
            events = list(self.events)
        if not self.local_id_filter:
            return events
        needle = self.filters.debounced_text_query.strip().lower()
        if not needle:
            return events
        return [event for event in events if needle in event.id.lower()]

    def _refresh_pages(self) -> None:
        self.paginator.set_items(self.visible_events())

    def search(self, *, raise_errors: bool = False) -> bool:
        """Run the current filters; returns False when nothing was applied.

        Errors are posted as notifications and, with ``raise_errors``, re-raised
        afterwards. Results from a search that is no longer the latest never
        touch the list.
        """
        self.filters.flush_text_query()
        with self._lock:
            self._searches_running += 1
        try:
            result = self.orchestrator.search(self.filters)
        except (EmptyQuery, ValidationError) as exc:
            self.notifications.error(str(exc))
            if raise_errors:
                raise
            return False
        except TransportError as exc:
            logger.error(f"{self.name}: search failed: {exc}")
            with self._lock:
                if exc.generation is not None and not self.orchestrator.is_current(exc.generation):
                    logger.info(f"{self.name}: dropping failure of superseded search #{exc.generation}")
                    return False
                self.events = []
                self.error = str(exc)
                self.paginator.set_items([])
                self.paginator.reset()
            self.notifications.error(f"Failed to fetch {self.noun}")
            if raise_errors:
                raise
            return False
        finally:
            with self._lock:
                self._searches_running -= 1

        if result.stale:
            return False
        if result.warning:
            self.notifications.warning(result.warning)
        with self._lock:
            if not self.orchestrator.is_current(result.generation):
                logger.info(f"{self.name}: dropping superseded search #{result.generation}")
                return False
            self.events = result.events
            self.error = ""
            self._refresh_pages()
            self.paginator.reset()
        self.filters.close_panel()
        if result.events:
            self.notifications.success(f"Found {len(result.events)} {self.noun}")
        else:
            self.notifications.info(f"No {self.noun} found")
        return True

    def clear(self) -> None:
        with self._lock:
            self.filters.reset()
            if self.user_picker is not None:
                self.user_picker.clear()
            self.events = []
            self.error = ""
            self.paginator.set_items([])
            self.paginator.reset()
        self.filters.open_panel()

    def change_page(self, page: int) -> bool:
        with self._lock:
            self._refresh_pages()
            return self.paginator.change_page(page)

    def set_page_size(self, page_size: int) -> None:
        if page_size not in PAGE_SIZE_OPTIONS:
            raise ValidationError(f"page size must be one of {PAGE_SIZE_OPTIONS}")
        with self._lock:
            self.paginator.set_page_size(page_size)
            self._refresh_pages()

    def find(self, event_id: str) -> ViewEvent | None:
        with self._lock:
            return next((event for event in self.events if event.id == event_id), None)

    def replace_event(self, updated: ViewEvent) -> None:
        with self._lock:
            self.events = [updated if event.id == updated.id else event for event in self.events]
            self._refresh_pages()

    def select_user(self, user: dict[str, Any]) -> None:
        if self.user_picker is None:
            raise ValidationError(f"{self.name} has no user filter")
        self.user_picker.select(user)
        self.filters.set_user_id(self.user_picker.selected_id)

    def _event_row(self, event: ViewEvent) -> dict[str, Any]:
        row = event.to_dict()
        if self.reconciler is not None:
            row["sync_status"] = SyncStatus.from_record(event.raw).to_dict()
            row["sync_state"] = self.reconciler.state(event)
            row["can_repair"] = self.reconciler.can_repair(event)
        return row

    def view(self) -> dict[str, Any]:
        with self._lock:
            self._refresh_pages()
            page = self.paginator.page()
            first, last = self.paginator.item_range()
            scroll, self.scroll_to_top = self.scroll_to_top, False
            return {
                "screen": self.name,
                "source": self.source_kind,
                "filters": self.filters.to_dict(),
                "loading": self.loading,
                "error": self.error,
                "scroll_to_top": scroll,
                "events": [self._event_row(event) for event in page.page_items],
                "pagination": {
                    "current_page": page.current_page,
                    "page_size": page.page_size,
                    "total_pages": page.total_pages,
                    "total_items": page.total_items,
                    "page_numbers": page.page_numbers,
                    "first_item": first,
                    "last_item": last,
                    "page_size_options": list(PAGE_SIZE_OPTIONS),
                },
            }

    def detail(self, event_id: str) -> dict[str, Any]:
        event = self.find(event_id)
        if event is None:
            raise KeyError(event_id)
        payload: dict[str, Any] = {
            "event": self._event_row(event),
            "history": [entry.to_dict() for entry in transaction_history(event.raw.get("transactions"))],
            "last_updated": serialize_datetime(last_updated(event.raw)),
            "participants": {},
        }
        user_ids = participant_ids(event.raw)
        if user_ids:
            try:
                users = self.client.users_by_ids(user_ids)
                payload["participants"] = {str(user.get("_id")): user for user in users}
            except TransportError as exc:
                logger.warning(f"{self.name}: user lookup for {event_id} failed: {exc}")
        if self.source_kind == SOURCE_CANCELLATION:
            try:
                payload["booking"] = self.client.cancelled_event_owner(event_id)
            except TransportError as exc:
                logger.warning(f"{self.name}: owner lookup for {event_id} failed: {exc}")
                payload["booking"] = None
        return payload

    def update_event(self, event_id: str, fields: dict[str, Any]) -> ViewEvent:
        if self.source_kind == SOURCE_LOGGED_EVENT:
            save = self.client.update_event
        elif self.source_kind == SOURCE_MISS_SYNC:
            save = self.client.update_miss_sync_event
        else:
            raise ValidationError(f"{self.name} events cannot be edited")
        current = self.find(event_id)
        if current is None:
            raise KeyError(event_id)
        # Backends that answer without a record get the requested fields merged locally.
        saved = save(event_id, fields) or {**current.raw, **fields}
        updated = normalize_event(saved, self.source_kind)
        self.replace_event(updated)
        self.notifications.success("Event updated")
        return updated

    def delete_event(self, event_id: str) -> bool:
        if self.source_kind != SOURCE_LIVE_CALENDAR:
            raise ValidationError(f"{self.name} events cannot be deleted")
        if self.find(event_id) is None:
            raise KeyError(event_id)
        deleted = self.client.delete_calendar_event(event_id, self.filters.resource_id)
        if not deleted:
            self.notifications.error("Failed to delete event. Please try again.")
            return False
        self.search()
        return True

    def repair(self, event_id: str) -> RepairOutcome:
        if self.reconciler is None:
            raise ValidationError(f"{self.name} has no sync repair")
        event = self.find(event_id)
        if event is None:
            raise KeyError(event_id)
        outcome = self.reconciler.repair(event)
        if outcome.applied:
            self.replace_event(outcome.event)
        return outcome


class ActivityLogScreen:
    """Audit log list; filtering and paging both happen on the server.

    Every page change is a new fetch, so page changes can fail the same way a
    search can.
    """

    def __init__(
        self,
        name: str,
        *,
        query: ActivityLogQuery,
        filters: FilterState,
        paginator: RemotePaginator,
        notifications: NotificationCenter,
    ) -> None:
        self.name = name
        self.query = query
        self.filters = filters
        self.paginator = paginator
        self.notifications = notifications
        self.entries: list[ActivityEntry] = []
        self.error = ""
        self.scroll_to_top = False
        self._loads_running = 0
        self._lock = threading.RLock()

    @property
    def source_kind(self) -> str:
        return SOURCE_ACTIVITY_LOG

    @property
    def loading(self) -> bool:
        return self._loads_running > 0

    def _load(self, page: int, raise_errors: bool) -> bool:
        self.filters.flush_text_query()
        with self._lock:
            self._loads_running += 1
        try:
            result = self.query.fetch_page(self.filters, page, self.paginator.page_size)
        except TransportError as exc:
            logger.error(f"{self.name}: loading page {page} failed: {exc}")
            with self._lock:
                if exc.generation is not None and not self.query.is_current(exc.generation):
                    return False
                self.error = str(exc)
            self.notifications.error("Failed to load activity logs")
            if raise_errors:
                raise
            return False
        finally:
            with self._lock:
                self._loads_running -= 1

        with self._lock:
            if result.stale or not self.query.is_current(result.generation):
                return False
            self.entries = result.entries
            self.error = ""
            self.paginator.update(result.meta, page)
        return True

    def search(self, *, raise_errors: bool = False) -> bool:
        loaded = self._load(1, raise_errors)
        if loaded:
            self.filters.close_panel()
        return loaded

    def change_page(self, page: int) -> bool:
        """Fetch ``page``; False when it is outside the last known page count."""
        if not self.paginator.in_range(page):
            return False
        if self._load(page, raise_errors=True):
            self.scroll_to_top = True
        return True

    def set_page_size(self, page_size: int) -> None:
        if page_size not in PAGE_SIZE_OPTIONS:
            raise ValidationError(f"page size must be one of {PAGE_SIZE_OPTIONS}")
        self.paginator.set_page_size(page_size)
        self._load(1, raise_errors=True)

    def clear(self) -> None:
        self.filters.reset()
        self.paginator.reset()
        self.filters.close_panel()
        self._load(1, raise_errors=False)

    def detail(self, entry_id: str) -> dict[str, Any]:
        with self._lock:
            entry = next((item for item in self.entries if item.id == entry_id), None)
        if entry is None:
            raise KeyError(entry_id)
        return {"entry": entry.to_dict()}

    def view(self) -> dict[str, Any]:
        with self._lock:
            first, last = self.paginator.item_range(len(self.entries))
            scroll, self.scroll_to_top = self.scroll_to_top, False
            return {
                "screen": self.name,
                "source": self.source_kind,
                "filters": self.filters.to_dict(),
                "loading": self.loading,
                "error": self.error,
                "scroll_to_top": scroll,
                "events": [entry.to_dict() for entry in self.entries],
                "pagination": {
                    "current_page": self.paginator.current_page,
                    "page_size": self.paginator.page_size,
                    "total_pages": self.paginator.total_pages,
                    "total_items": self.paginator.total_items,
                    "page_numbers": self.paginator.page_numbers(),
                    "first_item": first,
                    "last_item": last,
                    "page_size_options": list(PAGE_SIZE_OPTIONS),
                },
            }


def _month_bounds(today: date) -> tuple[date, date]:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def build_screens(
    config: AppConfig,
    client: BookingAPIClient,
    *,
    notifications: NotificationCenter | None = None,
    clock: Callable[[], float] = time.monotonic,
    today: date | None = None,
    narrow_viewport: bool = False,
) -> dict[str, Screen | ActivityLogScreen]:
    notifications = notifications or NotificationCenter(config.notifications.default_seconds, clock=clock)
    month_start, month_end = _month_bounds(today or date.today())

    def _screen(
        name: str,
        source_kind: str,
        *,
        descending: bool,
        noun: str,
        default_dates: bool = False,
        **kwargs: Any,
    ) -> Screen:
        filters = FilterState(
            debounce_ms=config.search.debounce_ms,
            narrow_viewport=narrow_viewport,
            clock=clock,
            default_start=month_start if default_dates else None,
            default_end=month_end if default_dates else None,
        )
        orchestrator = QueryOrchestrator(
            fetcher_for(client, source_kind),
            source_kind,
            empty_policy=config.search.policy_for(name),
            descending=descending,
        )
        paginator: Paginator[ViewEvent] = Paginator(
            config.pagination.page_size,
            max_visible=config.pagination.max_visible_pages,
        )
        return Screen(
            name,
            client=client,
            filters=filters,
            orchestrator=orchestrator,
            paginator=paginator,
            notifications=notifications,
            noun=noun,
            **kwargs,
        )

    user_picker = UserPicker(
        client.search_users,
        min_length=config.search.min_user_query_length,
        debounce_ms=config.search.debounce_ms,
        clock=clock,
    )
    reconciler = SyncReconciler(
        client.repair_sync,
        notifications,
        success_seconds=config.notifications.sync_success_seconds,
        failure_seconds=config.notifications.sync_failure_seconds,
    )
    return {
        SCREEN_CALENDAR: _screen(
            SCREEN_CALENDAR, SOURCE_LIVE_CALENDAR, descending=False, noun="events", default_dates=True
        ),
        SCREEN_USER_EVENTS: _screen(
            SCREEN_USER_EVENTS,
            SOURCE_LOGGED_EVENT,
            descending=True,
            noun="events",
            user_picker=user_picker,
            local_id_filter=True,
        ),
        SCREEN_CANCELLED: _screen(
            SCREEN_CANCELLED, SOURCE_CANCELLATION, descending=False, noun="cancelled events", default_dates=True
        ),
        SCREEN_MISS_SYNC: _screen(
            SCREEN_MISS_SYNC,
            SOURCE_MISS_SYNC,
            descending=True,
            noun="miss sync events",
            default_dates=True,
            reconciler=reconciler,
        ),
        SCREEN_ACTIVITY_LOG: ActivityLogScreen(
            SCREEN_ACTIVITY_LOG,
            query=ActivityLogQuery(client.activity_logs),
            filters=FilterState(debounce_ms=config.search.debounce_ms, narrow_viewport=narrow_viewport, clock=clock),
            paginator=RemotePaginator(
                config.pagination.activity_page_size,
                max_visible=config.pagination.max_visible_pages,
            ),
            notifications=notifications,
        ),
    }
