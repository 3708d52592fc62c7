from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from coursesync.courses import CourseDirectory, resolve_course_id
from coursesync.ics_fields import get_field, get_raw_property, parse_timestamp
from coursesync.markers import TitleClassifier
from coursesync.models import Timestamp

logger = logging.getLogger(__name__)

OpenKey = tuple[str, str]


@dataclass(frozen=True)
class OpenTime:
    raw_property: str
    opens_at: Timestamp | None


def build_open_index(
    blocks: Iterable[str],
    directory: CourseDirectory,
    classifier: TitleClassifier,
) -> dict[OpenKey, OpenTime]:
    index: dict[OpenKey, OpenTime] = {}
    for block in blocks:
        marker = classifier.classify(get_field(block, "SUMMARY"))
        if not marker.is_opens:
            continue
        course_id = resolve_course_id(block, directory)
        raw_start = get_raw_property(block, "DTSTART")
        if not course_id or raw_start is None:
            continue
        index[(course_id, marker.bare_title)] = OpenTime(
            raw_property=raw_start,
            opens_at=parse_timestamp(block, "DTSTART"),
        )
    logger.debug(f"Indexed {len(index)} opening times")
    return index
