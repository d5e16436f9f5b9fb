from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable

from roomdesk.errors import TransportError, ValidationError
from roomdesk.models import ACTIVITY_ACTIONS, coerce_date


logger = logging.getLogger(__name__)


class Debouncer:
    """Holds a value that only settles after the input has been quiet for ``delay_ms``.

    Nothing runs in the background: the pending value is committed the first
    time ``value`` is read after the deadline. Pushing again before that moves
    the deadline instead of queuing a second timer.
    """

    def __init__(self, delay_ms: int = 500, clock: Callable[[], float] = time.monotonic, initial: str = "") -> None:
        self.delay_seconds = max(0, delay_ms) / 1000.0
        self._clock = clock
        self._value = initial
        self._pending: str | None = None
        self._deadline = 0.0

    def push(self, value: str) -> None:
        self._pending = value
        self._deadline = self._clock() + self.delay_seconds

    def clear(self) -> None:
        self._pending = None
        self._value = ""

    def flush(self) -> str:
        if self._pending is not None:
            self._value = self._pending
            self._pending = None
        return self._value

    @property
    def pending(self) -> bool:
        self._settle()
        return self._pending is not None

    @property
    def value(self) -> str:
        self._settle()
        return self._value

    def _settle(self) -> None:
        if self._pending is not None and self._clock() >= self._deadline:
            self._value = self._pending
            self._pending = None


class FilterState:
    def __init__(
        self,
        *,
        debounce_ms: int = 500,
        narrow_viewport: bool = False,
        clock: Callable[[], float] = time.monotonic,
        default_start: date | None = None,
        default_end: date | None = None,
        default_resource_id: str = "",
    ) -> None:
        self._defaults = {
            "start": default_start,
            "end": default_end,
            "resource_id": default_resource_id,
        }
        self._text = ""
        self._debounced = Debouncer(debounce_ms, clock=clock)
        self.start_date: date | None = default_start
        self.end_date: date | None = default_end
        self.resource_id = default_resource_id
        self.user_id = ""
        self.action = ""
        self.panel_open = narrow_viewport
        self._narrow_viewport = narrow_viewport

    @property
    def text_query(self) -> str:
        return self._text

    @property
    def debounced_text_query(self) -> str:
        return self._debounced.value

    def set_text_query(self, value: str) -> None:
        text = str(value or "")
        if not text:
            self.clear_text_query()
            return
        self._text = text
        self._debounced.push(text)

    def clear_text_query(self) -> None:
        self._text = ""
        self._debounced.clear()

    def flush_text_query(self) -> str:
        return self._debounced.flush()

    def set_start_date(self, value: Any) -> None:
        self.start_date = coerce_date(value)

    def set_end_date(self, value: Any) -> None:
        self.end_date = coerce_date(value)

    def set_date_range(self, start: Any, end: Any) -> None:
        self.set_start_date(start)
        self.set_end_date(end)

    def set_resource_id(self, value: str | None) -> None:
        self.resource_id = str(value or "").strip()

    def set_user_id(self, value: str | None) -> None:
        self.user_id = str(value or "").strip()

    def set_action(self, value: str | None) -> None:
        action = str(value or "").strip().lower()
        if action and action not in ACTIVITY_ACTIONS:
            raise ValidationError(f"Unknown action: {value}")
        self.action = action

    def toggle_panel(self) -> None:
        self.panel_open = not self.panel_open

    def open_panel(self) -> None:
        self.panel_open = True

    def close_panel(self) -> None:
        self.panel_open = False

    def is_valid_range(self) -> bool:
        if self.start_date is None or self.end_date is None:
            return False
        return self.start_date <= self.end_date

    @property
    def is_empty(self) -> bool:
        return not (
            self._text.strip()
            or self.start_date is not None
            or self.end_date is not None
            or self.resource_id
            or self.user_id
            or self.action
        )

    def reset(self) -> None:
        self.clear_text_query()
        self.start_date = self._defaults["start"]
        self.end_date = self._defaults["end"]
        self.resource_id = self._defaults["resource_id"]
        self.user_id = ""
        self.action = ""
        self.panel_open = self._narrow_viewport

    def apply(self, values: dict[str, Any]) -> None:
        """Apply a partial update; keys that are absent leave their axis alone."""
        if "text_query" in values:
            self.set_text_query(values["text_query"])
        if "start_date" in values:
            self.set_start_date(values["start_date"])
        if "end_date" in values:
            self.set_end_date(values["end_date"])
        if "resource_id" in values:
            self.set_resource_id(values["resource_id"])
        if "user_id" in values:
            self.set_user_id(values["user_id"])
        if "action" in values:
            self.set_action(values["action"])
        if "panel_open" in values and values["panel_open"] is not None:
            self.panel_open = bool(values["panel_open"])

    def to_dict(self) -> dict[str, Any]:
        return {
            "text_query": self._text,
            "debounced_text_query": self.debounced_text_query,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "resource_id": self.resource_id,
            "user_id": self.user_id,
            "action": self.action,
            "panel_open": self.panel_open,
            "is_empty": self.is_empty,
            "valid_range": self.is_valid_range(),
        }


class UserPicker:
    """Typeahead for the owner/attendee filter."""

    def __init__(
        self,
        search: Callable[[str], list[dict[str, Any]]],
        *,
        min_length: int = 3,
        debounce_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._search = search
        self.min_length = min_length
        self._query = Debouncer(debounce_ms, clock=clock)
        self._raw = ""
        self._searched = ""
        self.results: list[dict[str, Any]] = []
        self.selected: dict[str, Any] | None = None

    @property
    def query(self) -> str:
        return self._raw

    @property
    def show_dropdown(self) -> bool:
        return bool(self.results) and self.selected is None

    def type(self, text: str) -> None:
        self._raw = str(text or "")
        self._query.push(self._raw)

    def refresh(self) -> list[dict[str, Any]]:
        """Run the lookup once the typed text has settled."""
        settled = self._query.value.strip()
        if self.selected is not None or len(settled) < self.min_length:
            self.results = []
            self._searched = ""
            return self.results
        if settled == self._searched:
            return self.results
        self._searched = settled
        try:
            self.results = self._search(settled)
        except TransportError as exc:
            logger.warning(f"user search failed for {settled!r}: {exc}")
            self.results = []
        return self.results

    def search_now(self, text: str) -> list[dict[str, Any]]:
        self.selected = None
        self.type(text)
        self._query.flush()
        return self.refresh()

    def select(self, user: dict[str, Any]) -> None:
        self.selected = user
        self._raw = str(user.get("email", "") or "")
        self._query.clear()
        self.results = []

    @property
    def selected_id(self) -> str:
        if not self.selected:
            return ""
        return str(self.selected.get("_id", "") or "")

    def clear(self) -> None:
        self._raw = ""
        self._query.clear()
        self._searched = ""
        self.selected = None
        self.results = []
