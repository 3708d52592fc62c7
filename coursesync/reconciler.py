from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Protocol

from coursesync.errors import UNEXPECTED_ERROR, RemoteApiError, RemoteNotFound
from coursesync.models import (
    RECOVERED_SIGNATURE,
    AppConfig,
    LogicalEvent,
    SyncIssue,
    SyncRecord,
    Timestamp,
    serialize_timestamp,
)

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
SKIP = "skip"
HEAL_DELETE = "heal_delete"
FAILED = "failed"

UID_MARKER = "UID:"
UID_MARKER_PATTERN = re.compile(rf"{re.escape(UID_MARKER)}\s*(\S+)")


class TaskAPI(Protocol):
    def list_active_tasks(self, filter_tag: str) -> list[dict[str, Any]]: ...

    def create_task(self, payload: dict[str, Any], idempotency_key: str) -> dict[str, Any]: ...

    def update_task(self, task_id: str, payload: dict[str, Any]) -> None: ...


@dataclass
class ReconcileOutcome:
    uid: str
    action: str
    task_id: str = ""
    issue: SyncIssue | None = None
    dry_run: bool = False


def _hash_text(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()  # nosec B324


def event_signature(event: LogicalEvent) -> str:
    return _hash_text(
        f"{event.title}|{serialize_timestamp(event.due_at)}|{serialize_timestamp(event.opens_at) or 'N/A'}"
    )


def idempotency_key(uid: str) -> str:
    return hashlib.md5(uid.encode("utf-8")).hexdigest()  # nosec B324


def _is_date_only(value: Timestamp | None) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def _all_day_due_date(event: LogicalEvent) -> date:
    # DTEND of an all-day event is exclusive.
    due = event.due_at
    if _is_date_only(event.opens_at) and due > event.opens_at:
        return due - timedelta(days=1)
    return due


def _todoist_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        return value.isoformat()
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_task_payload(event: LogicalEvent, config: AppConfig) -> dict[str, Any]:
    labels = [config.todoist.task_label]
    if event.course_name:
        labels.append(event.course_name)
    payload: dict[str, Any] = {
        "content": event.title,
        "description": (
            f"📅 Opens: {serialize_timestamp(event.opens_at) or 'N/A'}\n"
            f"🔑 {UID_MARKER} {event.uid}"
        ),
        "priority": config.todoist.priority,
        "labels": labels,
    }
    if _is_date_only(event.due_at):
        due_day = _all_day_due_date(event)
        if config.sync.all_day_due == "datetime":
            payload["due_datetime"] = f"{due_day.isoformat()}T23:59:00"
        else:
            payload["due_date"] = due_day.isoformat()
    else:
        payload["due_datetime"] = _todoist_datetime(event.due_at)
    return payload


def extract_task_uid(description: str | None) -> str | None:
    match = UID_MARKER_PATTERN.search(description or "")
    return match.group(1) if match else None


class SyncReconciler:
    def __init__(self, task_api: TaskAPI, config: AppConfig, records: dict[str, SyncRecord]) -> None:
        self.task_api = task_api
        self.config = config
        self.records = records
        self.changed = False
        self.dry_run = config.sync.dry_run
        self.issues: list[SyncIssue] = []

    def heal(self) -> int:
        """Recreate records for live tasks that carry our UID marker but are missing locally."""
        try:
            tasks = self.task_api.list_active_tasks(self.config.todoist.task_label)
        except RemoteApiError as exc:
            logger.warning(f"Could not fetch active tasks, proceeding with local records only: {exc}")
            self.issues.append(exc.to_issue("heal"))
            return 0
        healed = 0
        for task in tasks:
            uid = extract_task_uid(task.get("description"))
            task_id = str(task.get("id") or "")
            if not uid or not task_id or uid in self.records:
                continue
            self.records[uid] = SyncRecord(remote_task_id=task_id, signature=RECOVERED_SIGNATURE)
            self.changed = True
            healed += 1
        if healed:
            logger.info(f"Recovered {healed} records from active tasks")
        return healed

    def reconcile_event(self, event: LogicalEvent) -> ReconcileOutcome:
        uid = event.uid
        signature = event_signature(event)
        record = self.records.get(uid)
        payload = build_task_payload(event, self.config)

        if record is not None and record.remote_task_id:
            if record.signature == signature:
                return ReconcileOutcome(uid=uid, action=SKIP, task_id=record.remote_task_id)
            if record.recovered:
                logger.info(f"Task {record.remote_task_id} for {uid} was recovered from the task list; refreshing it")
            if self.dry_run:
                logger.info(f"[dry run] Would update task {record.remote_task_id} for {uid}")
                return ReconcileOutcome(uid=uid, action=UPDATE, task_id=record.remote_task_id, dry_run=True)
            try:
                self.task_api.update_task(record.remote_task_id, payload)
            except RemoteNotFound as exc:
                logger.info(f"Task {record.remote_task_id} ({uid}) no longer exists; dropping record")
                del self.records[uid]
                self.changed = True
                return ReconcileOutcome(
                    uid=uid,
                    action=HEAL_DELETE,
                    task_id=record.remote_task_id,
                    issue=exc.to_issue(uid),
                )
            except RemoteApiError as exc:
                logger.warning(f"Update failed for {uid}: {exc}")
                return ReconcileOutcome(uid=uid, action=FAILED, task_id=record.remote_task_id, issue=exc.to_issue(uid))
            self.records[uid] = SyncRecord(remote_task_id=record.remote_task_id, signature=signature)
            self.changed = True
            return ReconcileOutcome(uid=uid, action=UPDATE, task_id=record.remote_task_id)

        if self.dry_run:
            logger.info(f"[dry run] Would create task: {json.dumps(event.to_dict(), ensure_ascii=False)}")
            return ReconcileOutcome(uid=uid, action=CREATE, dry_run=True)
        try:
            created = self.task_api.create_task(payload, idempotency_key(uid))
        except RemoteApiError as exc:
            logger.warning(f"Create failed for {uid}: {exc}")
            return ReconcileOutcome(uid=uid, action=FAILED, issue=exc.to_issue(uid))
        task_id = str(created["id"])
        self.records[uid] = SyncRecord(remote_task_id=task_id, signature=signature)
        self.changed = True
        return ReconcileOutcome(uid=uid, action=CREATE, task_id=task_id)

    def reconcile(self, events: Iterable[LogicalEvent]) -> list[ReconcileOutcome]:
        outcomes: list[ReconcileOutcome] = []
        for event in events:
            try:
                outcome = self.reconcile_event(event)
            except Exception as exc:
                logger.exception(f"Unexpected failure reconciling {event.uid}")
                issue = SyncIssue(
                    kind=UNEXPECTED_ERROR,
                    scope=event.uid,
                    message=f"{type(exc).__name__}: {exc}",
                )
                outcome = ReconcileOutcome(uid=event.uid, action=FAILED, issue=issue)
            if outcome.issue is not None:
                self.issues.append(outcome.issue)
            outcomes.append(outcome)
        return outcomes
