from __future__ import annotations

import logging
from typing import Any

import requests

from roomdesk.errors import TransportError
from roomdesk.models import BackendConfig


logger = logging.getLogger(__name__)


def _envelope_data(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class BookingAPIClient:
    """Thin wrapper over the booking backend's REST surface.

    One ``requests.Session`` is shared by every call so cookies issued by the
    backend are sent back on later requests.
    """

    def __init__(self, config: BackendConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if config.api_token:
            self.session.headers["Authorization"] = f"Bearer {config.api_token}"

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.session.request(
                method,
                self._url(path),
                timeout=self.config.timeout_seconds,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.error(f"{method} {path} failed: {type(exc).__name__}: {exc}")
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            message = f"HTTP {response.status_code}"
            if isinstance(payload, dict) and payload.get("message"):
                message = f"{message}: {payload['message']}"
            logger.error(f"{method} {path} returned {message}")
            raise TransportError(message, status_code=response.status_code, payload=payload)
        if payload is None:
            raise TransportError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            )
        return payload

    def _get_list(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._list_from(path, self._request("GET", path, params=params))

    def _list_from(self, path: str, payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, dict) and payload.get("success") is False:
            raise TransportError(
                str(payload.get("message") or "No data returned"),
                payload=payload,
            )
        data = _envelope_data(payload)
        if data is None:
            return []
        if not isinstance(data, list):
            raise TransportError(f"GET {path} returned {type(data).__name__}, expected a list")
        return [item for item in data if isinstance(item, dict)]

    # Activity log

    def activity_logs(self, params: dict[str, Any]) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        """One server-side page of the audit log and its ``{page, limit, total, pages}`` metadata."""
        payload = self._request("GET", "/api/activity-logs", params=params)
        items = self._list_from("/api/activity-logs", payload)
        meta = payload.get("pagination") if isinstance(payload, dict) else None
        return items, meta if isinstance(meta, dict) else {}

    # Live calendar

    def search_calendar(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._get_list("/api/calendar/events", params)

    def delete_calendar_event(self, event_id: str, room_email: str) -> bool:
        payload = self._request(
            "DELETE",
            f"/api/calendar/events/{event_id}",
            json={"roomEmail": room_email},
        )
        return bool(payload.get("success", True)) if isinstance(payload, dict) else True

    # Logged events

    def search_events(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._get_list("/api/events/search", params)

    def update_event(self, event_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload = self._request("PUT", f"/api/events/{event_id}", json=fields)
        data = _envelope_data(payload)
        return data if isinstance(data, dict) else {}

    # Cancellation log

    def cancelled_transactions(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._get_list("/api/cancelled-events", params)

    def cancelled_event_owner(self, event_id: str) -> dict[str, Any]:
        payload = self._request("GET", f"/api/cancelled-events/event-owner/{event_id}")
        data = _envelope_data(payload)
        return data if isinstance(data, dict) else {}

    # Missing-sync report

    def miss_sync_events(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._get_list("/api/events/miss-sync", params)

    def update_miss_sync_event(self, event_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload = self._request("PUT", f"/api/events/miss-sync/{event_id}", json=fields)
        data = _envelope_data(payload)
        return data if isinstance(data, dict) else {}

    def repair_sync(self, event_id: str) -> dict[str, Any]:
        payload = self._request("POST", f"/api/events/miss-sync/sync/{event_id}")
        return payload if isinstance(payload, dict) else {}

    # Users

    def users_by_ids(self, user_ids: list[str]) -> list[dict[str, Any]]:
        if not user_ids:
            return []
        payload = self._request("POST", "/api/users/by-ids", json={"userIds": list(user_ids)})
        data = _envelope_data(payload)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def search_users(self, query: str) -> list[dict[str, Any]]:
        return self._get_list("/api/users/search", {"q": query})

    # Session

    def current_user(self) -> dict[str, Any]:
        payload = self._request("GET", "/api/auth/me")
        if isinstance(payload, dict):
            user = payload.get("user", payload.get("data"))
            if isinstance(user, dict):
                return user
        return {}

    def logout(self) -> None:
        self._request("POST", "/api/auth/logout")
