"""Error taxonomy for the console engine.

Screens catch these at their boundary and turn them into notifications; the
console API maps them to HTTP status codes.
"""
from __future__ import annotations

from typing import Any


class ConsoleError(Exception):
    """Base class for every error the engine raises on purpose."""


class EmptyQuery(ConsoleError):
    def __init__(self, message: str = "Please select at least one filter") -> None:
        super().__init__(message)


class ValidationError(ConsoleError):
    pass


class TransportError(ConsoleError):
    """Network failure, HTTP error status, or a ``success: false`` envelope."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        # Set by the query layer to the search that failed.
        self.generation: int | None = None

    def payload_errors(self) -> list[str]:
        if not isinstance(self.payload, dict):
            return []
        errors = self.payload.get("errors")
        if isinstance(errors, list):
            return [str(item) for item in errors if str(item).strip()]
        message = self.payload.get("message") or self.payload.get("error")
        if message:
            return [str(message)]
        return []


class SyncFailure(ConsoleError):
    def __init__(self, event_id: str, errors: list[str]) -> None:
        super().__init__(f"Sync failed for {event_id}: {'; '.join(errors) or 'unknown error'}")
        self.event_id = event_id
        self.errors = list(errors)
