from __future__ import annotations

import logging
import re
from typing import Mapping

from coursesync.courses import CourseDirectory, resolve_course_id, resolve_course_name
from coursesync.errors import ParseSkip
from coursesync.ics_fields import get_field, parse_timestamp, set_field, set_raw_property
from coursesync.markers import TitleClassifier
from coursesync.models import AppConfig, LogicalEvent
from coursesync.pairing import OpenKey, OpenTime

logger = logging.getLogger(__name__)


def _phrase_pattern(phrases: list[str]) -> re.Pattern[str] | None:
    cleaned = sorted({p for p in phrases if p}, key=len, reverse=True)
    if not cleaned:
        return None
    return re.compile("|".join(re.escape(p) for p in cleaned), re.IGNORECASE)


class EventNormalizer:
    def __init__(
        self,
        config: AppConfig,
        directory: CourseDirectory,
        open_index: Mapping[OpenKey, OpenTime],
        classifier: TitleClassifier | None = None,
    ) -> None:
        self.directory = directory
        self.open_index = open_index
        self.classifier = classifier or TitleClassifier(config.titles)
        self.ignored_phrases = [p.casefold() for p in config.courses.ignored_phrases]
        self.canonical_verb = config.titles.canonical_verb
        self.drop_zero_length = config.sync.zero_length == "drop"
        self._submission = _phrase_pattern(config.titles.submission_phrases)
        self._submission_marker = (
            re.compile(rf"(?::| - )\s*(?:{self._submission.pattern})", re.IGNORECASE)
            if self._submission is not None
            else None
        )

    def is_ignored(self, summary: str) -> bool:
        folded = summary.casefold()
        return any(phrase in folded for phrase in self.ignored_phrases)

    def rewrite_title(self, summary: str, course_name: str | None) -> str:
        title = summary
        if course_name and not title.startswith(course_name):
            title = f"{course_name} - {title}"
        if self._submission_marker is not None and self._submission_marker.search(title):
            title = self._submission.sub(self.canonical_verb, title)
        return title

    def normalize(self, block: str) -> LogicalEvent | None:
        """Return the logical event for ``block`` or None when policy drops it.

        Raises ParseSkip when the block has no usable due time.
        """
        summary = get_field(block, "SUMMARY") or ""
        if self.is_ignored(summary):
            logger.debug(f"Ignoring event by phrase: {summary!r}")
            return None
        marker = self.classifier.classify(summary)
        if marker.is_opens:
            return None

        uid = get_field(block, "UID") or ""
        course_id = resolve_course_id(block, self.directory)
        course_name = resolve_course_name(course_id, self.directory)

        if marker.is_due and course_id:
            opening = self.open_index.get((course_id, marker.bare_title))
            if opening is not None:
                block = set_raw_property(block, "DTSTART", opening.raw_property)

        title = self.rewrite_title(summary, course_name)
        if title != summary:
            block = set_field(block, "SUMMARY", title)

        due_at = parse_timestamp(block, "DTEND")
        if due_at is None:
            raise ParseSkip("Event has no due time", uid=uid, summary=summary)
        opens_at = parse_timestamp(block, "DTSTART")
        if self.drop_zero_length and opens_at is not None and opens_at == due_at:
            logger.debug(f"Dropping zero-length event {uid}")
            return None

        return LogicalEvent(
            uid=uid,
            title=title,
            due_at=due_at,
            opens_at=opens_at,
            course_id=course_id,
            course_name=course_name,
            block=block,
        )
