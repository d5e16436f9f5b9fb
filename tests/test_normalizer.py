import unittest
from datetime import datetime, timezone

from roomdesk.models import SOURCE_CANCELLATION, SOURCE_LIVE_CALENDAR, SOURCE_LOGGED_EVENT
from roomdesk.normalizer import (
    filter_live_cancelled,
    action_badge,
    last_updated,
    normalize_activity,
    normalize_event,
    normalize_events,
    participant_ids,
    sort_events,
    transaction_history,
)


def _live(subject: str, **extra: object) -> dict:
    item = {
        "id": f"live-{subject}",
        "subject": subject,
        "start": {"dateTime": "2024-05-01T09:00:00.0000000", "timeZone": "UTC"},
        "end": {"dateTime": "2024-05-01T10:00:00.0000000", "timeZone": "UTC"},
        "location": {"displayName": "Room 1"},
    }
    item.update(extra)
    return item


class LiveCalendarTests(unittest.TestCase):
    def test_naive_provider_times_are_utc(self) -> None:
        event = normalize_event(_live("Standup"), SOURCE_LIVE_CALENDAR)
        self.assertEqual(event.start, datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(event.end, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(event.title, "Standup")
        self.assertEqual(event.location, "Room 1")
        self.assertFalse(event.is_cancelled)

    def test_explicit_offset_is_respected(self) -> None:
        item = _live("Offset", start={"dateTime": "2024-05-01T09:00:00+07:00"})
        event = normalize_event(item, SOURCE_LIVE_CALENDAR)
        self.assertEqual(event.start, datetime(2024, 5, 1, 2, 0, tzinfo=timezone.utc))

    def test_missing_fields_degrade(self) -> None:
        event = normalize_event({"id": "x"}, SOURCE_LIVE_CALENDAR)
        self.assertIsNone(event.start)
        self.assertIsNone(event.end)
        self.assertEqual(event.location, "Unknown Location")

    def test_cancelled_subjects_are_dropped(self) -> None:
        items = [_live("Canceled: Standup"), _live("Standup"), _live("canceled: lower")]
        kept = filter_live_cancelled(items)
        self.assertEqual([item["subject"] for item in kept], ["Standup", "canceled: lower"])

        events = normalize_events(items, SOURCE_LIVE_CALENDAR)
        self.assertEqual([event.title for event in events], ["Standup", "canceled: lower"])

    def test_subject_filter_does_not_touch_logged_events(self) -> None:
        items = [
            {"_id": "e1", "title": "Canceled: Standup", "cancelled": True},
            {"_id": "e2", "title": "Review", "cancelled": False},
        ]
        events = normalize_events(items, SOURCE_LOGGED_EVENT)
        self.assertEqual(len(events), 2)
        self.assertTrue(events[0].is_cancelled)
        self.assertFalse(events[1].is_cancelled)


class LoggedEventTests(unittest.TestCase):
    def test_logged_event_fields(self) -> None:
        raw = {
            "_id": "evt-1",
            "title": "",
            "startTime": {"unix": 1714554000},
            "endTime": {"unix": 1714557600000},
            "resourceId": "room1@example.com",
            "cancelled": True,
        }
        event = normalize_event(raw, SOURCE_LOGGED_EVENT)
        self.assertEqual(event.id, "evt-1")
        self.assertEqual(event.title, "Untitled Event")
        self.assertEqual(event.start, datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(event.end, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(event.location, "room1@example.com")
        self.assertTrue(event.is_cancelled)

    def test_raw_payload_is_copied(self) -> None:
        raw = {"_id": "evt-1", "title": "A"}
        event = normalize_event(raw, SOURCE_LOGGED_EVENT)
        raw["title"] = "B"
        self.assertEqual(event.raw["title"], "A")

    def test_sort_puts_latest_first_and_undated_last(self) -> None:
        events = normalize_events(
            [
                {"_id": "old", "startTime": 1000},
                {"_id": "none"},
                {"_id": "new", "startTime": 3000},
            ],
            SOURCE_LOGGED_EVENT,
        )
        self.assertEqual([e.id for e in sort_events(events)], ["new", "old", "none"])
        self.assertEqual([e.id for e in sort_events(events, descending=False)], ["old", "new", "none"])


class CancellationTests(unittest.TestCase):
    def test_transaction_as_event(self) -> None:
        raw = {
            "_id": "t1",
            "action": "cancel",
            "eventId": "evt-9",
            "roomId": "room1@example.com",
            "startTime": "2024-05-02T09:00:00Z",
            "endTime": "2024-05-02T10:00:00Z",
        }
        event = normalize_event(raw, SOURCE_CANCELLATION)
        self.assertEqual(event.id, "evt-9")
        self.assertEqual(event.title, "Cancelled: room1")
        self.assertTrue(event.is_cancelled)


class HistoryTests(unittest.TestCase):
    def test_history_newest_first_with_mixed_units(self) -> None:
        raw = {
            "transactions": [
                {"_id": "a", "action": "create", "time": {"unix": 1714550000}},
                {"_id": "b", "action": "update", "time": {"unix": 1714560000000}},
                {"_id": "c", "action": "cancel", "time": {"unix": 1714555000}},
                {"_id": "d", "action": "update"},
            ]
        }
        history = transaction_history(raw["transactions"])
        self.assertEqual([t.id for t in history], ["b", "c", "a", "d"])
        self.assertEqual(last_updated(raw), history[0].time)

    def test_equal_times_keep_log_order(self) -> None:
        history = transaction_history(
            [
                {"_id": "first", "action": "create", "time": {"unix": 1714550000}},
                {"_id": "second", "action": "update", "time": {"unix": 1714550000}},
            ]
        )
        self.assertEqual([t.id for t in history], ["first", "second"])

    def test_last_updated_falls_back_to_update_time(self) -> None:
        self.assertEqual(
            last_updated({"updateTime": "2024-05-01T00:00:00Z"}),
            datetime(2024, 5, 1, tzinfo=timezone.utc),
        )

    def test_participants_deduplicated(self) -> None:
        raw = {"owner": "u1", "attendees": ["u2", "u1", "", None, "u3"]}
        self.assertEqual(participant_ids(raw), ["u1", "u2", "u3"])


class ActivityTests(unittest.TestCase):
    def test_entry_fields(self) -> None:
        entry = normalize_activity(
            {"_id": "l1", "timestamp": 1714554000000, "users": "alice", "action": "EDIT_EVENT", "detail": "title"}
        )
        self.assertEqual(entry.id, "l1")
        self.assertEqual(entry.timestamp, datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(entry.user, "alice")
        self.assertEqual(entry.badge, "update")
        self.assertEqual(entry.detail, "title")

    def test_missing_user_is_system(self) -> None:
        entry = normalize_activity({"_id": "l2", "action": "sync"})
        self.assertEqual(entry.user, "System")
        self.assertIsNone(entry.timestamp)
        self.assertEqual(entry.badge, "")

    def test_badges(self) -> None:
        self.assertEqual(action_badge("Add room"), "create")
        self.assertEqual(action_badge("CANCEL_BOOKING"), "delete")
        self.assertEqual(action_badge("remove"), "delete")
        self.assertEqual(action_badge("login"), "login")
        self.assertEqual(action_badge("logout"), "logout")
        self.assertEqual(action_badge(""), "")


if __name__ == "__main__":
    unittest.main()
