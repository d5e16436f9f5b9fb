from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable

from roomdesk.models import (
    SOURCE_CANCELLATION,
    SOURCE_LIVE_CALENDAR,
    SOURCE_LOGGED_EVENT,
    SOURCE_MISS_SYNC,
    ActivityEntry,
    Transaction,
    ViewEvent,
    normalize_time,
)


CANCELLED_SUBJECT_PREFIX = "Canceled:"
UNKNOWN_LOCATION = "Unknown Location"
UNTITLED_EVENT = "Untitled Event"
SYSTEM_USER = "System"

# First matching keyword group wins.
_ACTION_BADGES = (
    ("create", ("create", "add")),
    ("update", ("update", "edit")),
    ("delete", ("delete", "remove", "cancel")),
    ("login", ("login",)),
    ("logout", ("logout",)),
)

# Offset or Z designator at the end of an ISO datetime.
_TZ_SUFFIX_PATTERN = re.compile(r"(Z|[+-]\d{2}:?\d{2})$", re.IGNORECASE)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_utc_text(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    if "T" in text and not _TZ_SUFFIX_PATTERN.search(text):
        return text + "Z"
    return text


def _live_time(value: Any) -> datetime | None:
    if isinstance(value, dict):
        return normalize_time(_as_utc_text(value.get("dateTime")))
    return normalize_time(value)


def resolve_location(display: Any = None, resource_id: Any = None) -> str:
    if isinstance(display, dict):
        display = display.get("displayName")
    return _text(display) or _text(resource_id) or UNKNOWN_LOCATION


def is_live_cancelled(item: dict[str, Any]) -> bool:
    subject = item.get("subject")
    return isinstance(subject, str) and subject.startswith(CANCELLED_SUBJECT_PREFIX)


def filter_live_cancelled(items: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop calendar items the provider has already marked as cancelled.

    Those bookings are reported through the cancellation log instead.
    """
    return [item for item in items if not is_live_cancelled(item)]


def _room_label(room_id: str) -> str:
    return room_id.split("@")[0] if room_id else "Unknown Room"


def normalize_event(raw: dict[str, Any], source_kind: str) -> ViewEvent:
    raw = dict(raw or {})
    if source_kind == SOURCE_LIVE_CALENDAR:
        return ViewEvent(
            id=_text(raw.get("id")),
            title=_text(raw.get("subject")) or UNTITLED_EVENT,
            start=_live_time(raw.get("start")),
            end=_live_time(raw.get("end")),
            location=resolve_location(raw.get("location"), raw.get("resourceId")),
            is_cancelled=False,
            source=source_kind,
            raw=raw,
        )
    if source_kind == SOURCE_CANCELLATION:
        room_id = _text(raw.get("roomId"))
        return ViewEvent(
            id=_text(raw.get("eventId")) or _text(raw.get("_id")),
            title=f"Cancelled: {_room_label(room_id)}",
            start=normalize_time(raw.get("startTime")),
            end=normalize_time(raw.get("endTime")),
            location=resolve_location(None, room_id),
            is_cancelled=True,
            source=source_kind,
            raw=raw,
        )
    if source_kind in (SOURCE_LOGGED_EVENT, SOURCE_MISS_SYNC):
        return ViewEvent(
            id=_text(raw.get("_id")) or _text(raw.get("eventId")),
            title=_text(raw.get("title")) or UNTITLED_EVENT,
            start=normalize_time(raw.get("startTime")),
            end=normalize_time(raw.get("endTime")),
            location=resolve_location(raw.get("location"), raw.get("resourceId")),
            is_cancelled=bool(raw.get("cancelled", False)),
            source=source_kind,
            raw=raw,
        )
    raise ValueError(f"Unknown source kind: {source_kind}")


def normalize_events(items: Iterable[dict[str, Any]], source_kind: str) -> list[ViewEvent]:
    if source_kind == SOURCE_LIVE_CALENDAR:
        items = filter_live_cancelled(items)
    return [normalize_event(item, source_kind) for item in items]


def sort_events(events: list[ViewEvent], descending: bool = True) -> list[ViewEvent]:
    """Order by start time; events without a start always go last."""
    dated = [event for event in events if event.start is not None]
    undated = [event for event in events if event.start is None]
    dated.sort(key=lambda event: event.start, reverse=descending)
    return dated + undated


def normalize_transaction(raw: dict[str, Any]) -> Transaction:
    raw = raw or {}
    return Transaction(
        id=_text(raw.get("_id")),
        action=_text(raw.get("action")).lower(),
        time=normalize_time(raw.get("time")),
        event_id=_text(raw.get("eventId")),
        room_id=_text(raw.get("roomId")),
        subject=_text(raw.get("subject")),
        start_time=normalize_time(raw.get("startTime")),
        end_time=normalize_time(raw.get("endTime")),
        detail=raw.get("detail"),
    )


def transaction_history(raw_transactions: Any) -> list[Transaction]:
    """Audit entries newest first; entries with equal times keep their log order."""
    if not isinstance(raw_transactions, list):
        return []
    entries = [normalize_transaction(item) for item in raw_transactions if isinstance(item, dict)]
    dated = [entry for entry in entries if entry.time is not None]
    undated = [entry for entry in entries if entry.time is None]
    dated.sort(key=lambda entry: entry.time, reverse=True)
    return dated + undated


def last_updated(raw: dict[str, Any]) -> datetime | None:
    history = transaction_history(raw.get("transactions"))
    if history and history[0].time is not None:
        return history[0].time
    return normalize_time(raw.get("updateTime"))


def participant_ids(raw: dict[str, Any]) -> list[str]:
    ids: list[str] = []
    owner = raw.get("owner")
    if isinstance(owner, str) and owner.strip():
        ids.append(owner.strip())
    attendees = raw.get("attendees")
    if isinstance(attendees, list):
        for attendee in attendees:
            if isinstance(attendee, str) and attendee.strip():
                ids.append(attendee.strip())
    seen: set[str] = set()
    deduped: list[str] = []
    for user_id in ids:
        if user_id in seen:
            continue
        seen.add(user_id)
        deduped.append(user_id)
    return deduped


def action_badge(action: str) -> str:
    lowered = action.lower()
    for badge, keywords in _ACTION_BADGES:
        if any(keyword in lowered for keyword in keywords):
            return badge
    return ""


def normalize_activity(raw: dict[str, Any]) -> ActivityEntry:
    raw = raw or {}
    action = _text(raw.get("action"))
    return ActivityEntry(
        id=_text(raw.get("_id")),
        timestamp=normalize_time(raw.get("timestamp")),
        user=_text(raw.get("users")) or SYSTEM_USER,
        action=action,
        detail=_text(raw.get("detail")),
        badge=action_badge(action),
    )
