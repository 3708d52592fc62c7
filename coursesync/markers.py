from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from coursesync.models import TitleRulesConfig

OPENS = "opens"
DUE = "due"
PLAIN = "plain"

COURSE_PREFIX_PATTERN = re.compile(r"^.*? - ")


@dataclass(frozen=True)
class TitleMarker:
    kind: str
    bare_title: str = ""

    @property
    def is_opens(self) -> bool:
        return self.kind == OPENS

    @property
    def is_due(self) -> bool:
        return self.kind == DUE


def _compile(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


class TitleClassifier:
    def __init__(self, rules: TitleRulesConfig) -> None:
        self.opens_patterns = _compile(rules.opens_patterns)
        self.due_patterns = _compile(rules.due_patterns)

    def classify(self, summary: str | None) -> TitleMarker:
        text = (summary or "").strip()
        if not text:
            return TitleMarker(PLAIN)
        # Feeds prefix titles with "<course> - "; the bare form is tried first.
        stripped = COURSE_PREFIX_PATTERN.sub("", text, count=1)
        candidates = [stripped, text] if stripped != text else [text]
        for kind, patterns in ((OPENS, self.opens_patterns), (DUE, self.due_patterns)):
            for candidate in candidates:
                for pattern in patterns:
                    match = pattern.search(candidate)
                    if match and match.group("title").strip():
                        return TitleMarker(kind, match.group("title").strip())
        return TitleMarker(PLAIN)
