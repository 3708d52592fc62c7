from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable, Mapping

import requests

from coursesync.errors import DirectoryLoadError
from coursesync.ics_fields import get_field

logger = logging.getLogger(__name__)

CATEGORY_ID_PATTERN = re.compile(r"(?<!\d)(\d{6,9})(?=[.,;/\s]|$)")
SUMMARY_ID_PATTERN = re.compile(r"\((\d{6,9})\)")
COURSE_ID_RUN_PATTERN = re.compile(r"(?<!\d)\d{6,9}(?!\d)")
YEAR_TOKEN_PATTERN = re.compile(r"^20\d{2}")


def clean_course_id(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.lstrip("0") or text


class CourseDirectory:
    """Read-only course id -> display name table, keyed without zero padding."""

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._names: dict[str, str] = {}
        for key, name in (entries or {}).items():
            course_id = clean_course_id(key)
            if course_id and name:
                self._names[course_id] = str(name)

    def name_for(self, course_id: str | None) -> str | None:
        cleaned = clean_course_id(course_id)
        if cleaned is None:
            return None
        return self._names.get(cleaned)

    def __contains__(self, course_id: object) -> bool:
        return isinstance(course_id, str) and self.name_for(course_id) is not None

    def __len__(self) -> int:
        return len(self._names)

    def merged(self, overrides: Mapping[str, str]) -> "CourseDirectory":
        combined = CourseDirectory()
        combined._names = dict(self._names)
        combined._names.update(CourseDirectory(overrides)._names)
        return combined


CourseFields = dict[str, str]
ResolverStrategy = Callable[[CourseFields, CourseDirectory], "str | None"]


def _course_fields(block: str) -> CourseFields:
    return {
        "CATEGORIES": get_field(block, "CATEGORIES") or "",
        "SUMMARY": get_field(block, "SUMMARY") or "",
        "UID": get_field(block, "UID") or "",
    }


def from_categories(fields: CourseFields, directory: CourseDirectory) -> str | None:
    match = CATEGORY_ID_PATTERN.search(fields["CATEGORIES"])
    return match.group(1) if match else None


def from_summary_parentheses(fields: CourseFields, directory: CourseDirectory) -> str | None:
    match = SUMMARY_ID_PATTERN.search(fields["SUMMARY"])
    return match.group(1) if match else None


def from_candidate_runs(fields: CourseFields, directory: CourseDirectory) -> str | None:
    combined = " ".join([fields["CATEGORIES"], fields["SUMMARY"], fields["UID"]])
    candidates = COURSE_ID_RUN_PATTERN.findall(combined)
    if not candidates:
        return None
    for candidate in candidates:
        if candidate in directory:
            return candidate
    if len(candidates) > 1 and YEAR_TOKEN_PATTERN.match(candidates[0]):
        return candidates[1]
    return candidates[0]


COURSE_ID_STRATEGIES: tuple[ResolverStrategy, ...] = (
    from_categories,
    from_summary_parentheses,
    from_candidate_runs,
)


def resolve_course_id(
    block: str,
    directory: CourseDirectory,
    strategies: Iterable[ResolverStrategy] = COURSE_ID_STRATEGIES,
) -> str | None:
    fields = _course_fields(block)
    for strategy in strategies:
        found = strategy(fields, directory)
        if found:
            return clean_course_id(found)
    return None


def resolve_course_name(course_id: str | None, directory: CourseDirectory) -> str | None:
    return directory.name_for(course_id)


def _directory_entries(payload: Any) -> dict[str, str]:
    if isinstance(payload, dict):
        return {str(key): str(value) for key, value in payload.items() if value}
    if isinstance(payload, list):
        entries: dict[str, str] = {}
        for item in payload:
            if not isinstance(item, dict):
                continue
            course_id = str(item.get("id", "")).strip()
            name = str(item.get("name", "")).strip()
            if course_id and name:
                entries[course_id] = name
        return entries
    raise DirectoryLoadError("Course directory payload must be an object or a list.")


def fetch_course_directory(url: str, timeout: int = 30) -> dict[str, str]:
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise DirectoryLoadError(f"Could not load course directory: {exc}", url=url) from exc
    entries = _directory_entries(payload)
    logger.info(f"Loaded {len(entries)} courses from remote directory")
    return entries


def load_course_directory(static_entries: Mapping[str, str], url: str = "", timeout: int = 30) -> CourseDirectory:
    """Static entries win over remote ones; a remote failure raises DirectoryLoadError."""
    directory = CourseDirectory(static_entries)
    if not url:
        return directory
    remote = CourseDirectory(fetch_course_directory(url, timeout=timeout))
    return remote.merged(static_entries)
