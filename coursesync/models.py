from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Union

Timestamp = Union[datetime, date]

RECOVERED_SIGNATURE = "recovered_from_api"

DEFAULT_OPENS_PATTERNS = [
    r"נפתח ב[:\s]+(?P<title>.+)",
    r"^opens?(?: on)?[:\s]+(?P<title>.+)$",
    r"^(?P<title>.+?)\s+opens$",
]
DEFAULT_DUE_PATTERNS = [
    r"תאריך הגשה[:\s]+(?P<title>.+)",
    r"^due(?: on)?[:\s]+(?P<title>.+)$",
    r"^(?P<title>.+?)\s+is due$",
]
DEFAULT_SUBMISSION_PHRASES = ["יש להגיש", "תאריך הגשה", "must submit", "due on"]
DEFAULT_IGNORED_PHRASES = ["לזום", "שעת קבלה", "זום", "zoom"]
DEFAULT_SOURCES = [
    {"name": "Moodle", "url_env": "MOODLE_URL"},
    {"name": "Grades", "url_env": "GRADES_URL"},
]

ALL_DAY_DUE_MODES = {"date", "datetime"}
ZERO_LENGTH_MODES = {"keep", "drop"}


def serialize_timestamp(value: Timestamp | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _clean_list(values: Any, fallback: list[str]) -> list[str]:
    if values is None:
        return list(fallback)
    if isinstance(values, str):
        values = values.split(",")
    return [str(x).strip() for x in values if str(x).strip()]


@dataclass
class SourceConfig:
    name: str = ""
    url: str = ""
    url_env: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SourceConfig":
        data = data or {}
        return cls(
            name=str(data.get("name", "")).strip(),
            url=str(data.get("url", "") or "").strip(),
            url_env=str(data.get("url_env", "") or "").strip(),
        )


@dataclass
class TodoistConfig:
    api_token: str = ""
    base_url: str = "https://api.todoist.com/rest/v2"
    task_label: str = "שיעורי בית"
    priority: int = 4
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TodoistConfig":
        data = data or {}
        return cls(
            api_token=str(data.get("api_token", "") or "").strip(),
            base_url=str(data.get("base_url", "https://api.todoist.com/rest/v2")).strip().rstrip("/")
            or "https://api.todoist.com/rest/v2",
            task_label=str(data.get("task_label", "שיעורי בית")).strip() or "שיעורי בית",
            priority=min(4, max(1, int(data.get("priority", 4)))),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class CoursesConfig:
    directory: dict[str, str] = field(default_factory=dict)
    directory_url: str = ""
    ignored_phrases: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORED_PHRASES))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CoursesConfig":
        data = data or {}
        raw_directory = data.get("directory", {})
        directory: dict[str, str] = {}
        if isinstance(raw_directory, dict):
            for key, value in raw_directory.items():
                course_id = str(key).strip()
                name = str(value or "").strip()
                if course_id and name:
                    directory[course_id] = name
        return cls(
            directory=directory,
            directory_url=str(data.get("directory_url", "") or "").strip(),
            ignored_phrases=_clean_list(data.get("ignored_phrases"), DEFAULT_IGNORED_PHRASES),
        )


@dataclass
class TitleRulesConfig:
    opens_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_OPENS_PATTERNS))
    due_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_DUE_PATTERNS))
    submission_phrases: list[str] = field(default_factory=lambda: list(DEFAULT_SUBMISSION_PHRASES))
    canonical_verb: str = "להגיש"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TitleRulesConfig":
        data = data or {}
        return cls(
            opens_patterns=_clean_list(data.get("opens_patterns"), DEFAULT_OPENS_PATTERNS),
            due_patterns=_clean_list(data.get("due_patterns"), DEFAULT_DUE_PATTERNS),
            submission_phrases=_clean_list(data.get("submission_phrases"), DEFAULT_SUBMISSION_PHRASES),
            canonical_verb=str(data.get("canonical_verb", "להגיש")).strip() or "להגיש",
        )


@dataclass
class SyncConfig:
    interval_seconds: int = 0
    dry_run: bool = False
    all_day_due: str = "date"
    zero_length: str = "keep"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        all_day_due = str(data.get("all_day_due", "date")).strip().lower()
        if all_day_due not in ALL_DAY_DUE_MODES:
            all_day_due = "date"
        zero_length = str(data.get("zero_length", "keep")).strip().lower()
        if zero_length not in ZERO_LENGTH_MODES:
            zero_length = "keep"
        interval = int(data.get("interval_seconds", 0) or 0)
        return cls(
            interval_seconds=max(60, interval) if interval > 0 else 0,
            dry_run=_as_bool(data.get("dry_run", False)),
            all_day_due=all_day_due,
            zero_length=zero_length,
        )


@dataclass
class PathsConfig:
    state_path: str = "todoist_state.json"
    cache_path: str = "calendar.ics"
    prodid: str = "-//CourseSync Merged//EN"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PathsConfig":
        data = data or {}
        return cls(
            state_path=str(data.get("state_path", "todoist_state.json")).strip() or "todoist_state.json",
            cache_path=str(data.get("cache_path", "calendar.ics")).strip() or "calendar.ics",
            prodid=str(data.get("prodid", "-//CourseSync Merged//EN")).strip() or "-//CourseSync Merged//EN",
        )


@dataclass
class AppConfig:
    todoist: TodoistConfig = field(default_factory=TodoistConfig)
    sources: list[SourceConfig] = field(
        default_factory=lambda: [SourceConfig.from_dict(item) for item in DEFAULT_SOURCES]
    )
    courses: CoursesConfig = field(default_factory=CoursesConfig)
    titles: TitleRulesConfig = field(default_factory=TitleRulesConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        raw_sources = data.get("sources")
        if not isinstance(raw_sources, list):
            raw_sources = DEFAULT_SOURCES
        return cls(
            todoist=TodoistConfig.from_dict(data.get("todoist")),
            sources=[SourceConfig.from_dict(item) for item in raw_sources if isinstance(item, dict)],
            courses=CoursesConfig.from_dict(data.get("courses")),
            titles=TitleRulesConfig.from_dict(data.get("titles")),
            sync=SyncConfig.from_dict(data.get("sync")),
            paths=PathsConfig.from_dict(data.get("paths")),
            log_level=str(data.get("log_level", "INFO")).strip().upper() or "INFO",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass
class LogicalEvent:
    uid: str
    title: str
    due_at: Timestamp
    opens_at: Timestamp | None = None
    course_id: str | None = None
    course_name: str | None = None
    block: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["due_at"] = serialize_timestamp(self.due_at)
        payload["opens_at"] = serialize_timestamp(self.opens_at)
        payload.pop("block")
        return payload


@dataclass
class SyncRecord:
    remote_task_id: str
    signature: str

    @property
    def recovered(self) -> bool:
        return self.signature == RECOVERED_SIGNATURE

    def to_dict(self) -> dict[str, str]:
        return {"remote_task_id": self.remote_task_id, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncRecord":
        task_id = data.get("remote_task_id", data.get("id", ""))
        signature = data.get("signature", data.get("sig", ""))
        return cls(remote_task_id=str(task_id or ""), signature=str(signature or ""))


@dataclass
class SyncIssue:
    kind: str
    scope: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    trigger: str
    events: int = 0
    ignored: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    healed: int = 0
    failed: int = 0
    records_saved: bool = False
    cache_written: bool = False
    issues: list[SyncIssue] = field(default_factory=list)
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def changes_applied(self) -> int:
        return self.created + self.updated + self.deleted

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["run_at"] = serialize_timestamp(self.run_at)
        payload["changes_applied"] = self.changes_applied
        return payload
