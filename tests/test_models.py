import unittest
from datetime import date, datetime, timezone

from coursesync.models import AppConfig, LogicalEvent, SyncRecord, SyncResult, TodoistConfig


class ModelsTests(unittest.TestCase):
    def test_todoist_defaults_and_clamping(self) -> None:
        cfg = TodoistConfig.from_dict({"priority": 9, "base_url": "https://api.todoist.com/rest/v2/"})
        self.assertEqual(cfg.priority, 4)
        self.assertEqual(cfg.base_url, "https://api.todoist.com/rest/v2")
        self.assertEqual(cfg.task_label, "שיעורי בית")
        self.assertEqual(TodoistConfig.from_dict({"priority": 0}).priority, 1)

    def test_sync_config_normalized(self) -> None:
        cfg = AppConfig.from_dict(
            {"sync": {"interval_seconds": 5, "all_day_due": "weird", "zero_length": "DROP", "dry_run": "yes"}}
        ).sync
        self.assertEqual(cfg.interval_seconds, 60)
        self.assertEqual(cfg.all_day_due, "date")
        self.assertEqual(cfg.zero_length, "drop")
        self.assertTrue(cfg.dry_run)
        self.assertEqual(AppConfig.from_dict({"sync": {"interval_seconds": 0}}).sync.interval_seconds, 0)

    def test_directory_entries_cleaned(self) -> None:
        cfg = AppConfig.from_dict({"courses": {"directory": {1040041: "Calculus 1", "": "x", "1140051": ""}}})
        self.assertEqual(cfg.courses.directory, {"1040041": "Calculus 1"})

    def test_sync_record_legacy_keys(self) -> None:
        record = SyncRecord.from_dict({"id": 12345, "sig": "abc"})
        self.assertEqual(record, SyncRecord("12345", "abc"))
        self.assertEqual(record.to_dict(), {"remote_task_id": "12345", "signature": "abc"})
        self.assertTrue(SyncRecord("1", "recovered_from_api").recovered)

    def test_logical_event_to_dict(self) -> None:
        event = LogicalEvent(
            uid="u1",
            title="Calculus 1 - HW1",
            due_at=date(2025, 1, 10),
            opens_at=datetime(2025, 1, 1, 9, tzinfo=timezone.utc),
            block="BEGIN:VEVENT\r\nEND:VEVENT",
        )
        payload = event.to_dict()
        self.assertEqual(payload["due_at"], "2025-01-10")
        self.assertEqual(payload["opens_at"], "2025-01-01T09:00:00+00:00")
        self.assertNotIn("block", payload)

    def test_sync_result_changes_applied(self) -> None:
        result = SyncResult(status="success", message="", duration_ms=1, trigger="manual", created=2, updated=1, skipped=5)
        self.assertEqual(result.changes_applied, 3)
        self.assertEqual(result.to_dict()["changes_applied"], 3)


if __name__ == "__main__":
    unittest.main()
