from __future__ import annotations

import logging
from typing import Iterable

from coursesync.errors import ParseSkip
from coursesync.models import LogicalEvent, SyncIssue

logger = logging.getLogger(__name__)


class DedupLedger:
    """One logical event per uid; a later insertion replaces the earlier one whole."""

    def __init__(self) -> None:
        self.events: dict[str, LogicalEvent] = {}
        self.issues: list[SyncIssue] = []
        self.replaced = 0

    def add(self, event: LogicalEvent) -> None:
        if not event.uid:
            issue = ParseSkip("Event has no UID", title=event.title).to_issue("dedupe")
            self.issues.append(issue)
            logger.warning(f"Dropping event without UID: {event.title!r}")
            return
        if event.uid in self.events:
            self.replaced += 1
        self.events[event.uid] = event

    def extend(self, events: Iterable[LogicalEvent]) -> None:
        for event in events:
            self.add(event)


def dedupe(events: Iterable[LogicalEvent]) -> dict[str, LogicalEvent]:
    ledger = DedupLedger()
    ledger.extend(events)
    return ledger.events
