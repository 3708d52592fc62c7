import hashlib
import unittest
from datetime import date, datetime, timezone
from typing import Any, Optional

from coursesync.errors import RemoteApiError, RemoteNotFound
from coursesync.models import RECOVERED_SIGNATURE, AppConfig, LogicalEvent, SyncRecord
from coursesync.reconciler import (
    CREATE,
    FAILED,
    HEAL_DELETE,
    SKIP,
    UPDATE,
    SyncReconciler,
    build_task_payload,
    event_signature,
    extract_task_uid,
    idempotency_key,
)

T0 = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
T1 = datetime(2025, 1, 10, 23, 59, tzinfo=timezone.utc)


class FakeTaskAPI:
    def __init__(self) -> None:
        self.active_tasks: list[dict[str, Any]] = []
        self.created: list[tuple[dict[str, Any], str]] = []
        self.updated: list[tuple[str, dict[str, Any]]] = []
        self.missing_ids: set[str] = set()
        self.fail_with: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self._next_id = 100

    def list_active_tasks(self, filter_tag: str) -> list[dict[str, Any]]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.active_tasks)

    def create_task(self, payload: dict[str, Any], idempotency_key: str) -> dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append((payload, idempotency_key))
        self._next_id += 1
        return {"id": str(self._next_id)}

    def update_task(self, task_id: str, payload: dict[str, Any]) -> None:
        if task_id in self.missing_ids:
            raise RemoteNotFound(f"POST tasks/{task_id} returned 404", status=404)
        if self.fail_with is not None:
            raise self.fail_with
        self.updated.append((task_id, payload))


def _event(uid: str = "uid-1", title: str = "Calculus 1 - HW1", **kwargs: Any) -> LogicalEvent:
    kwargs.setdefault("due_at", T1)
    kwargs.setdefault("opens_at", T0)
    return LogicalEvent(uid=uid, title=title, **kwargs)


class SignatureTests(unittest.TestCase):
    def test_signature_tracks_visible_fields(self) -> None:
        base = _event()
        self.assertEqual(event_signature(base), event_signature(_event()))
        self.assertNotEqual(event_signature(base), event_signature(_event(title="Calculus 1 - HW2")))
        self.assertNotEqual(event_signature(base), event_signature(_event(opens_at=None)))
        self.assertNotEqual(event_signature(base), event_signature(_event(due_at=T0)))
        self.assertEqual(event_signature(base), event_signature(_event(course_name="ignored")))

    def test_idempotency_key_is_deterministic(self) -> None:
        self.assertEqual(idempotency_key("uid-1"), hashlib.md5(b"uid-1").hexdigest())
        self.assertEqual(idempotency_key("uid-1"), idempotency_key("uid-1"))
        self.assertNotEqual(idempotency_key("uid-1"), idempotency_key("uid-2"))


class PayloadTests(unittest.TestCase):
    def test_timed_due_payload(self) -> None:
        config = AppConfig.from_dict({"todoist": {"task_label": "homework"}})
        payload = build_task_payload(_event(course_name="Calculus 1"), config)
        self.assertEqual(payload["content"], "Calculus 1 - HW1")
        self.assertEqual(payload["due_datetime"], "2025-01-10T23:59:00Z")
        self.assertNotIn("due_date", payload)
        self.assertEqual(payload["labels"], ["homework", "Calculus 1"])
        self.assertEqual(payload["priority"], 4)
        self.assertIn("Opens: 2025-01-01T09:00:00+00:00", payload["description"])
        self.assertEqual(extract_task_uid(payload["description"]), "uid-1")

    def test_all_day_due_modes(self) -> None:
        event = _event(opens_at=date(2025, 1, 10), due_at=date(2025, 1, 11))
        as_date = build_task_payload(event, AppConfig())
        self.assertEqual(as_date["due_date"], "2025-01-10")
        self.assertNotIn("due_datetime", as_date)

        config = AppConfig.from_dict({"sync": {"all_day_due": "datetime"}})
        as_datetime = build_task_payload(event, config)
        self.assertEqual(as_datetime["due_datetime"], "2025-01-10T23:59:00")

    def test_payload_without_opening(self) -> None:
        payload = build_task_payload(_event(opens_at=None), AppConfig())
        self.assertIn("Opens: N/A", payload["description"])
        self.assertEqual(payload["labels"], [AppConfig().todoist.task_label])

    def test_extract_task_uid(self) -> None:
        self.assertEqual(extract_task_uid("📅 Opens: N/A\n🔑 UID: 123@moodle.ac.il"), "123@moodle.ac.il")
        self.assertIsNone(extract_task_uid("no marker"))
        self.assertIsNone(extract_task_uid(None))


class SyncReconcilerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.api = FakeTaskAPI()
        self.config = AppConfig()

    def test_create_when_no_record(self) -> None:
        records: dict[str, SyncRecord] = {}
        reconciler = SyncReconciler(self.api, self.config, records)
        outcome = reconciler.reconcile_event(_event())
        self.assertEqual(outcome.action, CREATE)
        self.assertEqual(outcome.task_id, "101")
        self.assertEqual(records["uid-1"], SyncRecord("101", event_signature(_event())))
        self.assertEqual(self.api.created[0][1], idempotency_key("uid-1"))
        self.assertTrue(reconciler.changed)

    def test_skip_when_signature_matches(self) -> None:
        records = {"uid-1": SyncRecord("7", event_signature(_event()))}
        reconciler = SyncReconciler(self.api, self.config, records)
        outcomes = reconciler.reconcile([_event()])
        self.assertEqual([o.action for o in outcomes], [SKIP])
        self.assertEqual(self.api.created, [])
        self.assertEqual(self.api.updated, [])
        self.assertFalse(reconciler.changed)

    def test_update_when_signature_differs(self) -> None:
        records = {"uid-1": SyncRecord("7", "stale")}
        reconciler = SyncReconciler(self.api, self.config, records)
        outcome = reconciler.reconcile_event(_event())
        self.assertEqual(outcome.action, UPDATE)
        self.assertEqual(self.api.updated[0][0], "7")
        self.assertEqual(records["uid-1"].signature, event_signature(_event()))
        self.assertTrue(reconciler.changed)

    def test_record_without_task_id_is_created(self) -> None:
        records = {"uid-1": SyncRecord("", "stale")}
        outcome = SyncReconciler(self.api, self.config, records).reconcile_event(_event())
        self.assertEqual(outcome.action, CREATE)
        self.assertEqual(records["uid-1"].remote_task_id, "101")

    def test_update_not_found_drops_record_then_recreates(self) -> None:
        records = {"uid-1": SyncRecord("7", "stale")}
        self.api.missing_ids.add("7")
        reconciler = SyncReconciler(self.api, self.config, records)
        outcomes = reconciler.reconcile([_event()])
        self.assertEqual(outcomes[0].action, HEAL_DELETE)
        self.assertNotIn("uid-1", records)
        self.assertTrue(reconciler.changed)
        self.assertEqual(reconciler.issues[0].kind, "remote_not_found")

        next_run = SyncReconciler(self.api, self.config, records)
        self.assertEqual(next_run.reconcile_event(_event()).action, CREATE)
        self.assertEqual(records["uid-1"].remote_task_id, "101")

    def test_remote_failure_leaves_records_untouched(self) -> None:
        records = {"uid-2": SyncRecord("9", "stale")}
        self.api.fail_with = RemoteApiError("HTTP 500: boom", status=500)
        reconciler = SyncReconciler(self.api, self.config, records)
        outcomes = reconciler.reconcile([_event(), _event(uid="uid-2")])
        self.assertEqual([o.action for o in outcomes], [FAILED, FAILED])
        self.assertEqual(records, {"uid-2": SyncRecord("9", "stale")})
        self.assertFalse(reconciler.changed)
        self.assertEqual([issue.scope for issue in reconciler.issues], ["uid-1", "uid-2"])

    def test_timeout_on_one_event_does_not_stop_others(self) -> None:
        api = self.api
        original_create = api.create_task

        def create_task(payload: dict[str, Any], key: str) -> dict[str, Any]:
            if payload["content"] == "slow":
                raise RemoteApiError("POST tasks timed out", timeout=True)
            return original_create(payload, key)

        api.create_task = create_task
        records: dict[str, SyncRecord] = {}
        outcomes = SyncReconciler(api, self.config, records).reconcile(
            [_event(uid="a", title="slow"), _event(uid="b", title="fast")]
        )
        self.assertEqual([o.action for o in outcomes], [FAILED, CREATE])
        self.assertEqual(outcomes[0].issue.context, {"timeout": True})
        self.assertEqual(list(records), ["b"])

    def test_unexpected_error_is_isolated_to_its_event(self) -> None:
        api = self.api
        original_create = api.create_task

        def create_task(payload: dict[str, Any], key: str) -> dict[str, Any]:
            if payload["content"] == "broken":
                raise KeyError("id")
            return original_create(payload, key)

        api.create_task = create_task
        records: dict[str, SyncRecord] = {}
        reconciler = SyncReconciler(api, self.config, records)
        outcomes = reconciler.reconcile([_event(uid="a", title="broken"), _event(uid="b", title="fine")])
        self.assertEqual([o.action for o in outcomes], [FAILED, CREATE])
        self.assertEqual(reconciler.issues[0].kind, "unexpected_error")
        self.assertEqual(reconciler.issues[0].scope, "a")
        self.assertEqual(list(records), ["b"])
        self.assertTrue(reconciler.changed)

    def test_heal_recovers_records_and_forces_update(self) -> None:
        self.api.active_tasks = [
            {"id": "55", "description": "📅 Opens: N/A\n🔑 UID: uid-1"},
            {"id": "56", "description": "created by hand"},
        ]
        records: dict[str, SyncRecord] = {}
        reconciler = SyncReconciler(self.api, self.config, records)
        self.assertEqual(reconciler.heal(), 1)
        self.assertEqual(records, {"uid-1": SyncRecord("55", RECOVERED_SIGNATURE)})
        self.assertTrue(records["uid-1"].recovered)

        outcome = reconciler.reconcile_event(_event())
        self.assertEqual(outcome.action, UPDATE)
        self.assertEqual(self.api.created, [])
        self.assertEqual(self.api.updated[0][0], "55")

    def test_heal_keeps_existing_records(self) -> None:
        self.api.active_tasks = [{"id": "55", "description": "🔑 UID: uid-1"}]
        records = {"uid-1": SyncRecord("7", "sig")}
        reconciler = SyncReconciler(self.api, self.config, records)
        self.assertEqual(reconciler.heal(), 0)
        self.assertEqual(records["uid-1"].remote_task_id, "7")
        self.assertFalse(reconciler.changed)

    def test_heal_listing_failure_is_reported(self) -> None:
        self.api.list_error = RemoteApiError("HTTP 503: unavailable", status=503)
        reconciler = SyncReconciler(self.api, self.config, {})
        self.assertEqual(reconciler.heal(), 0)
        self.assertEqual(reconciler.issues[0].scope, "heal")
        self.assertEqual(reconciler.issues[0].kind, "remote_api_error")

    def test_dry_run_sends_nothing(self) -> None:
        config = AppConfig.from_dict({"sync": {"dry_run": True}})
        records = {"uid-2": SyncRecord("9", "stale")}
        reconciler = SyncReconciler(self.api, config, records)
        outcomes = reconciler.reconcile([_event(), _event(uid="uid-2")])
        self.assertEqual([(o.action, o.dry_run) for o in outcomes], [(CREATE, True), (UPDATE, True)])
        self.assertEqual(self.api.created, [])
        self.assertEqual(self.api.updated, [])
        self.assertEqual(records, {"uid-2": SyncRecord("9", "stale")})
        self.assertFalse(reconciler.changed)


if __name__ == "__main__":
    unittest.main()
