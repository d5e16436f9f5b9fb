from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


# Second-epoch values below this (year ~3000) are not plausible as milliseconds.
UNIX_MS_THRESHOLD = 32503680000

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SOURCE_LIVE_CALENDAR = "live_calendar"
SOURCE_LOGGED_EVENT = "logged_event"
SOURCE_CANCELLATION = "cancellation"
SOURCE_MISS_SYNC = "miss_sync"
SOURCE_ACTIVITY_LOG = "activity_log"

EMPTY_QUERY_POLICIES = {"block", "warn"}
PAGE_SIZE_OPTIONS = [10, 20, 50, 100]
SYNC_ID_FIELDS = ("globalSyncId", "resourceSyncId", "syncId")
ACTIVITY_ACTIONS = ("create", "update", "delete")

_FRACTION_PATTERN = re.compile(r"\.(\d+)")
_OFFSET_PATTERN = re.compile(r"([+-]\d{2}):?(\d{2})?$")


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _from_epoch_ms(value: int | float) -> datetime | None:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        return EPOCH + timedelta(milliseconds=value)
    except (OverflowError, ValueError):
        return None


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    if len(text) > 10 and text[10] in ("T", " "):
        # fromisoformat before 3.11 only takes 3 or 6 fraction digits and hh:mm offsets.
        clock = _FRACTION_PATTERN.sub(_pad_fraction, text[11:])
        clock = _OFFSET_PATTERN.sub(_colon_offset, clock)
        text = text[:11] + clock
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def _pad_fraction(match: re.Match[str]) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def _colon_offset(match: re.Match[str]) -> str:
    return f"{match.group(1)}:{match.group(2) or '00'}"


def normalize_time(value: Any) -> datetime | None:
    """Fold every time encoding the backend emits into an aware UTC datetime.

    Accepts ISO-8601 strings, epoch-millisecond numbers and ``{"unix": n}``
    wrappers, where ``n`` may be seconds or milliseconds. Anything that cannot
    be interpreted yields ``None``; this function never raises.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    if isinstance(value, date):
        return date_to_datetime(value)
    if isinstance(value, dict):
        unix = value.get("unix")
        if not _is_number(unix):
            return None
        if abs(unix) < UNIX_MS_THRESHOLD:
            unix = unix * 1000
        return _from_epoch_ms(unix)
    if _is_number(value):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return parse_iso_datetime(value)
        except ValueError:
            return None
    return None


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def date_to_datetime(value: datetime | date | None, is_end: bool = False) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    if is_end:
        return datetime.combine(value, time.max, tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return (_ensure_tz(value) - EPOCH) // timedelta(milliseconds=1)


def day_bounds_ms(value: date, is_end: bool = False) -> int:
    """Epoch milliseconds of the first (or last) millisecond of ``value``."""
    return to_epoch_ms(date_to_datetime(value, is_end=is_end))


def coerce_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


@dataclass
class BackendConfig:
    base_url: str = "http://localhost:5000"
    api_token: str = ""
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BackendConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "http://localhost:5000")).strip().rstrip("/")
            or "http://localhost:5000",
            api_token=str(data.get("api_token", "")).strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class SearchConfig:
    debounce_ms: int = 500
    min_user_query_length: int = 3
    empty_query_policy: str = "block"
    screen_policies: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SearchConfig":
        data = data or {}
        policy = str(data.get("empty_query_policy", "block")).strip().lower()
        if policy not in EMPTY_QUERY_POLICIES:
            policy = "block"
        raw_overrides = data.get("screen_policies", {})
        overrides: dict[str, str] = {}
        if isinstance(raw_overrides, dict):
            for key, value in raw_overrides.items():
                screen = str(key).strip()
                mode = str(value).strip().lower()
                if screen and mode in EMPTY_QUERY_POLICIES:
                    overrides[screen] = mode
        return cls(
            debounce_ms=max(0, int(data.get("debounce_ms", 500))),
            min_user_query_length=max(1, int(data.get("min_user_query_length", 3))),
            empty_query_policy=policy,
            screen_policies=overrides,
        )

    def policy_for(self, screen: str) -> str:
        return self.screen_policies.get(screen, self.empty_query_policy)


@dataclass
class PaginationConfig:
    page_size: int = 10
    max_visible_pages: int = 5
    activity_page_size: int = 20

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PaginationConfig":
        data = data or {}
        return cls(
            page_size=max(1, int(data.get("page_size", 10))),
            max_visible_pages=max(5, int(data.get("max_visible_pages", 5))),
            activity_page_size=max(1, int(data.get("activity_page_size", 20))),
        )


@dataclass
class NotificationConfig:
    default_seconds: float = 3.0
    sync_success_seconds: float = 8.0
    sync_failure_seconds: float = 10.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NotificationConfig":
        data = data or {}
        return cls(
            default_seconds=max(0.0, float(data.get("default_seconds", 3.0))),
            sync_success_seconds=max(0.0, float(data.get("sync_success_seconds", 8.0))),
            sync_failure_seconds=max(0.0, float(data.get("sync_failure_seconds", 10.0))),
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        return cls(level=str(data.get("level", "INFO")).strip().upper() or "INFO")


@dataclass
class AppConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            backend=BackendConfig.from_dict(data.get("backend")),
            search=SearchConfig.from_dict(data.get("search")),
            pagination=PaginationConfig.from_dict(data.get("pagination")),
            notifications=NotificationConfig.from_dict(data.get("notifications")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass(frozen=True)
class ViewEvent:
    id: str
    title: str
    start: datetime | None
    end: datetime | None
    location: str
    is_cancelled: bool = False
    source: str = SOURCE_LOGGED_EVENT
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start": serialize_datetime(self.start),
            "end": serialize_datetime(self.end),
            "location": self.location,
            "is_cancelled": self.is_cancelled,
            "source": self.source,
            "raw": self.raw,
        }

    def with_raw(self, raw: dict[str, Any]) -> "ViewEvent":
        return replace(self, raw=raw)

    def with_updates(self, **kwargs: Any) -> "ViewEvent":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class Transaction:
    id: str
    action: str
    time: datetime | None
    event_id: str = ""
    room_id: str = ""
    subject: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    detail: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "time": serialize_datetime(self.time),
            "event_id": self.event_id,
            "room_id": self.room_id,
            "subject": self.subject,
            "start_time": serialize_datetime(self.start_time),
            "end_time": serialize_datetime(self.end_time),
            "detail": self.detail,
        }


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


@dataclass(frozen=True)
class SyncStatus:
    global_ok: bool
    resource_ok: bool
    sync_ok: bool

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SyncStatus":
        return cls(
            global_ok=_has_value(record.get("globalSyncId")),
            resource_ok=_has_value(record.get("resourceSyncId")),
            sync_ok=_has_value(record.get("syncId")),
        )

    @property
    def all_ok(self) -> bool:
        return self.global_ok and self.resource_ok and self.sync_ok

    @property
    def missing(self) -> list[str]:
        flags = (self.global_ok, self.resource_ok, self.sync_ok)
        return [name for name, ok in zip(SYNC_ID_FIELDS, flags) if not ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_ok": self.global_ok,
            "resource_ok": self.resource_ok,
            "sync_ok": self.sync_ok,
        }


@dataclass(frozen=True)
class ActivityEntry:
    id: str
    timestamp: datetime | None
    user: str
    action: str
    detail: str = ""
    badge: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": serialize_datetime(self.timestamp),
            "user": self.user,
            "action": self.action,
            "detail": self.detail,
            "badge": self.badge,
        }
