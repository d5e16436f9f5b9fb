from __future__ import annotations

import logging
from typing import Any

from roomdesk.backend_client import BookingAPIClient
from roomdesk.errors import TransportError


logger = logging.getLogger(__name__)


class Session:
    """The signed-in identity, passed explicitly to whatever needs it.

    ``init`` loads the current user from the backend; ``teardown`` logs out
    and forgets it. Nothing reads identity from module globals.
    """

    def __init__(self, client: BookingAPIClient) -> None:
        self.client = client
        self.user: dict[str, Any] | None = None

    @property
    def is_active(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> str:
        return str((self.user or {}).get("_id", "") or "")

    def init(self) -> dict[str, Any] | None:
        try:
            user = self.client.current_user()
        except TransportError as exc:
            logger.info(f"no active session: {exc}")
            self.user = None
            return None
        self.user = user or None
        return self.user

    def teardown(self) -> None:
        try:
            self.client.logout()
        finally:
            self.user = None
