from __future__ import annotations

import os
from datetime import date
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from roomdesk.backend_client import BookingAPIClient
from roomdesk.config_manager import ConfigManager
from roomdesk.errors import ConsoleError, EmptyQuery, TransportError, ValidationError
from roomdesk.notifications import NotificationCenter
from roomdesk.screens import (
    SCREEN_CALENDAR,
    SCREEN_MISS_SYNC,
    SCREEN_USER_EVENTS,
    ActivityLogScreen,
    Screen,
    build_screens,
)
from roomdesk.session import Session


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class SearchRequest(BaseModel):
    text_query: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    resource_id: str | None = None
    user_id: str | None = None
    action: str | None = None
    panel_open: bool | None = None


class PageRequest(BaseModel):
    page: int | None = Field(default=None, ge=1)
    page_size: int | None = Field(default=None, ge=1)


class EventUpdateRequest(BaseModel):
    fields: dict[str, Any] = Field(default_factory=dict)


class UserSelectRequest(BaseModel):
    user: dict[str, Any]


class AppContext:
    def __init__(self, config_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.rebuild()

    def rebuild(self) -> None:
        config = self.config_manager.load()
        self.client = BookingAPIClient(config.backend)
        self.session = Session(self.client)
        self.notifications = NotificationCenter(config.notifications.default_seconds)
        self.screens = build_screens(config, self.client, notifications=self.notifications)

    def screen(self, name: str) -> Screen | ActivityLogScreen:
        screen = self.screens.get(name)
        if screen is None:
            raise HTTPException(status_code=404, detail=f"unknown screen: {name}")
        return screen


def _http_error(exc: ConsoleError) -> HTTPException:
    if isinstance(exc, (EmptyQuery, ValidationError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransportError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def create_app() -> FastAPI:
    config_path = os.getenv("ROOMDESK_CONFIG_PATH", "config.yaml")
    context = AppContext(config_path=config_path)

    app = FastAPI(title="Roomdesk Console", version="0.1.0")
    app.state.context = context

    def _ctx() -> AppContext:
        return app.state.context

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return _ctx().config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        _ctx().config_manager.update(request.payload)
        _ctx().rebuild()
        return {"message": "config updated", "config": _ctx().config_manager.masked()}

    @app.get("/api/session")
    def get_session() -> dict[str, Any]:
        session = _ctx().session
        if not session.is_active:
            session.init()
        return {"active": session.is_active, "user": session.user}

    @app.delete("/api/session")
    def delete_session() -> dict[str, Any]:
        try:
            _ctx().session.teardown()
        except TransportError as exc:
            raise _http_error(exc) from exc
        return {"active": False}

    @app.get("/api/screens/{name}")
    def get_screen(name: str) -> dict[str, Any]:
        return _ctx().screen(name).view()

    @app.post("/api/screens/{name}/search")
    def search_screen(name: str, request: SearchRequest) -> dict[str, Any]:
        screen = _ctx().screen(name)
        try:
            screen.filters.apply(request.model_dump(exclude_unset=True))
            ok = screen.search(raise_errors=True)
        except ConsoleError as exc:
            raise _http_error(exc) from exc
        return {"ok": ok, "view": screen.view()}

    @app.post("/api/screens/{name}/page")
    def page_screen(name: str, request: PageRequest) -> dict[str, Any]:
        screen = _ctx().screen(name)
        try:
            if request.page_size is not None:
                screen.set_page_size(request.page_size)
            if request.page is not None and not screen.change_page(request.page):
                raise HTTPException(status_code=400, detail=f"page {request.page} is out of range")
        except ConsoleError as exc:
            raise _http_error(exc) from exc
        return screen.view()

    @app.post("/api/screens/{name}/clear")
    def clear_screen(name: str) -> dict[str, Any]:
        screen = _ctx().screen(name)
        screen.clear()
        return screen.view()

    @app.get("/api/screens/{name}/events/{event_id}")
    def event_detail(name: str, event_id: str) -> dict[str, Any]:
        try:
            return _ctx().screen(name).detail(event_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="event not found") from exc

    @app.put("/api/screens/{name}/events/{event_id}")
    def update_event(name: str, event_id: str, request: EventUpdateRequest) -> dict[str, Any]:
        screen = _ctx().screen(name)
        if not isinstance(screen, Screen):
            raise HTTPException(status_code=400, detail=f"{name} entries cannot be edited")
        try:
            updated = screen.update_event(event_id, request.fields)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="event not found") from exc
        except ConsoleError as exc:
            raise _http_error(exc) from exc
        return {"message": "event updated", "event": updated.to_dict()}

    @app.delete(f"/api/screens/{SCREEN_CALENDAR}/events/{{event_id}}")
    def delete_event(event_id: str) -> dict[str, Any]:
        screen = _ctx().screen(SCREEN_CALENDAR)
        try:
            deleted = screen.delete_event(event_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="event not found") from exc
        except ConsoleError as exc:
            raise _http_error(exc) from exc
        return {"deleted": deleted, "view": screen.view()}

    @app.post(f"/api/screens/{SCREEN_MISS_SYNC}/events/{{event_id}}/repair")
    def repair_event(event_id: str) -> dict[str, Any]:
        screen = _ctx().screen(SCREEN_MISS_SYNC)
        try:
            outcome = screen.repair(event_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="event not found") from exc
        if outcome.reason == "already_syncing":
            raise HTTPException(status_code=409, detail="sync already in progress")
        return outcome.to_dict()

    @app.get(f"/api/screens/{SCREEN_USER_EVENTS}/users")
    def search_users(q: str = "") -> dict[str, Any]:
        picker = _ctx().screen(SCREEN_USER_EVENTS).user_picker
        return {"users": picker.search_now(q), "min_length": picker.min_length}

    @app.post(f"/api/screens/{SCREEN_USER_EVENTS}/users/select")
    def select_user(request: UserSelectRequest) -> dict[str, Any]:
        screen = _ctx().screen(SCREEN_USER_EVENTS)
        screen.select_user(request.user)
        return screen.view()

    @app.get("/api/notifications")
    def notifications() -> dict[str, Any]:
        return {"notifications": [item.to_dict() for item in _ctx().notifications.active()]}

    @app.delete("/api/notifications/{notification_id}")
    def dismiss_notification(notification_id: int) -> dict[str, Any]:
        if not _ctx().notifications.dismiss(notification_id):
            raise HTTPException(status_code=404, detail="notification not found")
        return {"dismissed": notification_id}

    return app
