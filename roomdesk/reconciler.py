from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from roomdesk.errors import SyncFailure, TransportError
from roomdesk.models import SYNC_ID_FIELDS, SyncStatus, ViewEvent
from roomdesk.notifications import NotificationCenter


logger = logging.getLogger(__name__)

ALL_SYNCED = "all_synced"
PARTIALLY_MISSING = "partially_missing"
SYNCING = "syncing"
SYNC_SUCCEEDED = "sync_succeeded"
SYNC_FAILED = "sync_failed"


@dataclass(frozen=True)
class SyncSucceeded:
    updated: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncFailed:
    errors: list[str] = field(default_factory=list)


@dataclass
class RepairOutcome:
    applied: bool
    reason: str
    event: ViewEvent
    state: str
    status: SyncStatus
    updated: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "reason": self.reason,
            "event": self.event.to_dict(),
            "state": self.state,
            "status": self.status.to_dict(),
            "updated": dict(self.updated),
            "errors": list(self.errors),
        }


def derived_state(record: dict[str, Any]) -> str:
    return ALL_SYNCED if SyncStatus.from_record(record).all_ok else PARTIALLY_MISSING


def parse_repair_response(payload: dict[str, Any]) -> SyncSucceeded | SyncFailed:
    if not payload.get("success"):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            return SyncFailed(errors=[str(item) for item in errors])
        return SyncFailed(errors=[str(payload.get("message") or "Sync failed")])
    updated = payload.get("updated") or {}
    if not isinstance(updated, dict):
        updated = {}
    return SyncSucceeded(updated={k: v for k, v in updated.items() if k in SYNC_ID_FIELDS})


def apply_repair(event: ViewEvent, result: SyncSucceeded | SyncFailed) -> ViewEvent:
    """Return ``event`` with the repair result folded into its raw record.

    Only identifiers present in ``updated`` change; a failure returns the
    event untouched.
    """
    if isinstance(result, SyncFailed) or not result.updated:
        return event
    raw = dict(event.raw)
    raw.update(result.updated)
    return event.with_raw(raw)


class SyncReconciler:
    def __init__(
        self,
        repair: Callable[[str], dict[str, Any]],
        notifications: NotificationCenter,
        *,
        success_seconds: float = 8.0,
        failure_seconds: float = 10.0,
    ) -> None:
        self._repair = repair
        self.notifications = notifications
        self.success_seconds = success_seconds
        self.failure_seconds = failure_seconds
        self._lock = threading.RLock()
        self._in_flight: set[str] = set()

    @staticmethod
    def _notice_key(event_id: str) -> str:
        return f"sync:{event_id}"

    def is_syncing(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._in_flight

    def state(self, event: ViewEvent) -> str:
        if self.is_syncing(event.id):
            return SYNCING
        notice = self.notifications.by_key(self._notice_key(event.id))
        if notice is not None:
            return SYNC_SUCCEEDED if notice.level == "success" else SYNC_FAILED
        return derived_state(event.raw)

    def can_repair(self, event: ViewEvent) -> bool:
        return not self.is_syncing(event.id) and not SyncStatus.from_record(event.raw).all_ok

    def dismiss(self, event_id: str) -> bool:
        return self.notifications.dismiss_key(self._notice_key(event_id))

    def _request_repair(self, event_id: str) -> SyncSucceeded:
        try:
            payload = self._repair(event_id)
        except TransportError as exc:
            raise SyncFailure(event_id, exc.payload_errors() or [str(exc)]) from exc
        result = parse_repair_response(payload)
        if isinstance(result, SyncFailed):
            raise SyncFailure(event_id, result.errors)
        return result

    def repair(self, event: ViewEvent) -> RepairOutcome:
        status = SyncStatus.from_record(event.raw)
        with self._lock:
            if event.id in self._in_flight:
                return RepairOutcome(
                    applied=False,
                    reason="already_syncing",
                    event=event,
                    state=SYNCING,
                    status=status,
                )
            if status.all_ok:
                return RepairOutcome(
                    applied=False,
                    reason="already_synced",
                    event=event,
                    state=ALL_SYNCED,
                    status=status,
                )
            self._in_flight.add(event.id)

        try:
            result = self._request_repair(event.id)
        except SyncFailure as exc:
            logger.warning(str(exc))
            self.notifications.error(
                f"Sync failed: {'; '.join(exc.errors)}",
                seconds=self.failure_seconds,
                key=self._notice_key(event.id),
            )
            return RepairOutcome(
                applied=False,
                reason="sync_failed",
                event=event,
                state=SYNC_FAILED,
                status=status,
                errors=exc.errors,
            )
        finally:
            with self._lock:
                self._in_flight.discard(event.id)

        patched = apply_repair(event, result)
        patched_status = SyncStatus.from_record(patched.raw)
        fields = ", ".join(sorted(result.updated)) or "nothing"
        logger.info(f"sync repair for {event.id} updated {fields}")
        self.notifications.success(
            f"Sync completed: updated {fields}",
            seconds=self.success_seconds,
            key=self._notice_key(event.id),
        )
        return RepairOutcome(
            applied=bool(result.updated),
            reason="applied" if result.updated else "no_changes",
            event=patched,
            state=SYNC_SUCCEEDED,
            status=patched_status,
            updated=dict(result.updated),
        )
