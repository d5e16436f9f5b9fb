import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock
from urllib.parse import parse_qs, urlparse

import responses
import yaml
from fastapi.testclient import TestClient

from roomdesk.web_admin import create_app


BACKEND = "http://localhost:5000"


class WebAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = str(Path(self.temp_dir.name) / "config.yaml")
        env = mock.patch.dict(os.environ, {"ROOMDESK_CONFIG_PATH": self.config_path})
        env.start()
        self.addCleanup(env.stop)
        self.app = create_app()
        self.client = TestClient(self.app)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _screen(self, name: str):
        return self.app.state.context.screens[name]

    def test_healthz(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_config_token_is_masked_and_preserved(self) -> None:
        resp = self.client.put("/api/config", json={"payload": {"backend": {"api_token": "secret"}}})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["config"]["backend"]["api_token"], "***")

        resp = self.client.put(
            "/api/config",
            json={"payload": {"backend": {"api_token": "***"}, "pagination": {"page_size": 20}}},
        )
        self.assertEqual(resp.status_code, 200)
        saved = yaml.safe_load(Path(self.config_path).read_text(encoding="utf-8"))
        self.assertEqual(saved["backend"]["api_token"], "secret")
        self.assertEqual(self.client.get("/api/screens/user-events").json()["pagination"]["page_size"], 20)

    def test_unknown_screen(self) -> None:
        self.assertEqual(self.client.get("/api/screens/reports").status_code, 404)

    def test_empty_search_is_reported(self) -> None:
        resp = self.client.post("/api/screens/user-events/search", json={})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "Please select at least one filter")
        messages = [n["message"] for n in self.client.get("/api/notifications").json()["notifications"]]
        self.assertIn("Please select at least one filter", messages)

    @responses.activate
    def test_search_and_paginate(self) -> None:
        responses.add(
            responses.GET,
            f"{BACKEND}/api/events/search",
            json={"success": True, "data": [{"_id": f"e{i}", "startTime": 1714554000000 + i} for i in range(23)]},
            status=200,
        )
        resp = self.client.post(
            "/api/screens/user-events/search",
            json={"resource_id": "room1@example.com", "start_date": "2024-05-01"},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["view"]["pagination"]["total_pages"], 3)
        self.assertEqual(body["view"]["events"][0]["id"], "e22")
        self.assertIn("resourceId=room1%40example.com", responses.calls[0].request.url)

        resp = self.client.post("/api/screens/user-events/page", json={"page": 3})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()["events"]), 3)
        self.assertTrue(resp.json()["scroll_to_top"])

        self.assertEqual(self.client.post("/api/screens/user-events/page", json={"page": 4}).status_code, 400)
        self.assertEqual(self.client.post("/api/screens/user-events/page", json={"page_size": 15}).status_code, 400)

    @responses.activate
    def test_backend_failure_clears_list(self) -> None:
        responses.add(responses.GET, f"{BACKEND}/api/events/miss-sync", json={"message": "down"}, status=503)
        resp = self.client.post("/api/screens/miss-sync/search", json={"resource_id": "room1"})
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["detail"], "HTTP 503: down")
        view = self.client.get("/api/screens/miss-sync").json()
        self.assertEqual(view["error"], "HTTP 503: down")
        self.assertEqual(view["events"], [])

    def test_live_calendar_without_room_is_bad_request(self) -> None:
        resp = self.client.post("/api/screens/calendar/search", json={})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_action_is_bad_request(self) -> None:
        resp = self.client.post("/api/screens/activity-log/search", json={"action": "explode"})
        self.assertEqual(resp.status_code, 400)

    @responses.activate
    def test_repair_flow(self) -> None:
        responses.add(
            responses.GET,
            f"{BACKEND}/api/events/miss-sync",
            json={"data": [{"_id": "m1", "globalSyncId": None, "resourceSyncId": "r1", "syncId": None}]},
            status=200,
        )
        responses.add(
            responses.POST,
            f"{BACKEND}/api/events/miss-sync/sync/m1",
            json={"success": True, "updated": {"globalSyncId": "g1"}},
            status=200,
        )
        self.client.post("/api/screens/miss-sync/search", json={"resource_id": "room1"})

        resp = self.client.post("/api/screens/miss-sync/events/m1/repair")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["applied"])
        self.assertEqual(body["event"]["raw"]["globalSyncId"], "g1")
        self.assertFalse(body["status"]["sync_ok"])

        row = self.client.get("/api/screens/miss-sync").json()["events"][0]
        self.assertEqual(row["sync_state"], "sync_succeeded")
        self.assertTrue(row["can_repair"])

        self.assertEqual(self.client.post("/api/screens/miss-sync/events/nope/repair").status_code, 404)

    @responses.activate
    def test_repair_in_flight_conflict(self) -> None:
        responses.add(
            responses.GET,
            f"{BACKEND}/api/events/miss-sync",
            json={"data": [{"_id": "m1", "globalSyncId": None}]},
            status=200,
        )
        self.client.post("/api/screens/miss-sync/search", json={"resource_id": "room1"})
        self._screen("miss-sync").reconciler._in_flight.add("m1")

        resp = self.client.post("/api/screens/miss-sync/events/m1/repair")
        self.assertEqual(resp.status_code, 409)

    @responses.activate
    def test_session_without_login(self) -> None:
        responses.add(responses.GET, f"{BACKEND}/api/auth/me", json={"message": "unauthorized"}, status=401)
        resp = self.client.get("/api/session")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"active": False, "user": None})

    @responses.activate
    def test_user_lookup_and_select(self) -> None:
        responses.add(
            responses.GET,
            f"{BACKEND}/api/users/search",
            json={"data": [{"_id": "u1", "email": "alice@example.com"}]},
            status=200,
        )
        self.assertEqual(self.client.get("/api/screens/user-events/users", params={"q": "al"}).json()["users"], [])
        resp = self.client.get("/api/screens/user-events/users", params={"q": "alice"})
        self.assertEqual(resp.json()["users"][0]["_id"], "u1")

        resp = self.client.post(
            "/api/screens/user-events/users/select",
            json={"user": {"_id": "u1", "email": "alice@example.com"}},
        )
        self.assertEqual(resp.json()["filters"]["user_id"], "u1")

    @responses.activate
    def test_miss_sync_record_edit(self) -> None:
        responses.add(
            responses.GET,
            f"{BACKEND}/api/events/miss-sync",
            json={"data": [{"_id": "m1", "title": "Old", "globalSyncId": None}]},
            status=200,
        )
        responses.add(
            responses.PUT,
            f"{BACKEND}/api/events/miss-sync/m1",
            json={"success": True, "data": {"_id": "m1", "title": "New", "globalSyncId": None}},
            status=200,
        )
        self.client.post("/api/screens/miss-sync/search", json={})

        resp = self.client.put("/api/screens/miss-sync/events/m1", json={"fields": {"title": "New"}})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["event"]["title"], "New")
        self.assertEqual(self.client.put("/api/screens/cancelled/events/m1", json={"fields": {}}).status_code, 400)
        self.assertEqual(self.client.put("/api/screens/activity-log/events/m1", json={"fields": {}}).status_code, 400)

    @responses.activate
    def test_activity_log_pages_on_server(self) -> None:
        def page_of(request):
            page = int(parse_qs(urlparse(request.url).query)["page"][0])
            body = {
                "success": True,
                "data": [{"_id": f"log-{page}-{i}", "action": "update", "users": "alice"} for i in range(20)],
                "pagination": {"page": page, "limit": 20, "total": 45, "pages": 3},
            }
            return 200, {}, json.dumps(body)

        responses.add_callback(responses.GET, f"{BACKEND}/api/activity-logs", callback=page_of)

        resp = self.client.post("/api/screens/activity-log/search", json={})
        self.assertEqual(resp.status_code, 200)
        view = resp.json()["view"]
        self.assertEqual(view["pagination"]["total_pages"], 3)
        self.assertEqual(view["events"][0]["id"], "log-1-0")

        resp = self.client.post("/api/screens/activity-log/page", json={"page": 2})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["events"][0]["id"], "log-2-0")
        self.assertEqual(resp.json()["pagination"]["first_item"], 21)
        self.assertIn("page=2", responses.calls[-1].request.url)
        self.assertEqual(self.client.post("/api/screens/activity-log/page", json={"page": 4}).status_code, 400)

    @responses.activate
    def test_activity_log_page_failure_is_bad_gateway(self) -> None:
        responses.add(
            responses.GET,
            f"{BACKEND}/api/activity-logs",
            json={"success": True, "data": [], "pagination": {"page": 1, "limit": 20, "total": 40, "pages": 2}},
            status=200,
        )
        responses.add(responses.GET, f"{BACKEND}/api/activity-logs", json={"message": "down"}, status=500)
        self.client.post("/api/screens/activity-log/search", json={})
        resp = self.client.post("/api/screens/activity-log/page", json={"page": 2})
        self.assertEqual(resp.status_code, 502)

    def test_dismiss_unknown_notification(self) -> None:
        self.assertEqual(self.client.delete("/api/notifications/999").status_code, 404)


if __name__ == "__main__":
    unittest.main()
