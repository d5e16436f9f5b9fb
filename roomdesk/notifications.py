from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable


LEVELS = {"success", "error", "info", "warning"}


@dataclass(frozen=True)
class Notification:
    id: int
    level: str
    message: str
    created_at: float
    expires_at: float
    key: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "message": self.message,
            "key": self.key,
        }


class NotificationCenter:
    """Transient user-facing messages that expire on their own.

    A notification posted with a ``key`` replaces any live notification with
    the same key, so one record never shows two stale toasts.
    """

    def __init__(self, default_seconds: float = 3.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_seconds = default_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._items: dict[int, Notification] = {}

    def notify(self, level: str, message: str, *, seconds: float | None = None, key: str = "") -> Notification:
        if level not in LEVELS:
            level = "info"
        duration = self.default_seconds if seconds is None else seconds
        now = self._clock()
        with self._lock:
            if key:
                for existing in list(self._items.values()):
                    if existing.key == key:
                        del self._items[existing.id]
            item = Notification(
                id=next(self._ids),
                level=level,
                message=message,
                created_at=now,
                expires_at=now + duration,
                key=key,
            )
            self._items[item.id] = item
        return item

    def success(self, message: str, **kwargs: Any) -> Notification:
        return self.notify("success", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> Notification:
        return self.notify("error", message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> Notification:
        return self.notify("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> Notification:
        return self.notify("warning", message, **kwargs)

    def _expire(self) -> None:
        now = self._clock()
        for item_id in [k for k, v in self._items.items() if v.expires_at <= now]:
            del self._items[item_id]

    def active(self) -> list[Notification]:
        with self._lock:
            self._expire()
            return sorted(self._items.values(), key=lambda item: item.id)

    def by_key(self, key: str) -> Notification | None:
        with self._lock:
            self._expire()
            for item in self._items.values():
                if item.key == key:
                    return item
        return None

    def dismiss(self, notification_id: int) -> bool:
        with self._lock:
            return self._items.pop(int(notification_id), None) is not None

    def dismiss_key(self, key: str) -> bool:
        with self._lock:
            matches = [k for k, v in self._items.items() if v.key == key]
            for item_id in matches:
                del self._items[item_id]
            return bool(matches)
