from __future__ import annotations

import errno
import json
import logging
from pathlib import Path
from typing import Iterable, Mapping

from coursesync.errors import FetchError, RecordStoreCorrupt
from coursesync.ics_fields import build_calendar, extract_events
from coursesync.models import SyncRecord

logger = logging.getLogger(__name__)


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    try:
        tmp_path.replace(path)
    except OSError as exc:
        # Some bind-mounted single files in containers cannot be atomically replaced.
        if exc.errno != errno.EBUSY:
            raise
        path.write_text(text, encoding="utf-8")
        if tmp_path.exists():
            tmp_path.unlink()


class RecordStore:
    """uid -> SyncRecord map persisted as one JSON object."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, SyncRecord]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise RecordStoreCorrupt(f"Unreadable record store: {exc}", path=str(self.path)) from exc
        if not isinstance(data, dict):
            raise RecordStoreCorrupt("Record store root must be an object.", path=str(self.path))
        records: dict[str, SyncRecord] = {}
        for uid, raw in data.items():
            if not isinstance(raw, dict):
                logger.warning(f"Skipping malformed record for {uid}")
                continue
            records[str(uid)] = SyncRecord.from_dict(raw)
        return records

    def save(self, records: Mapping[str, SyncRecord]) -> None:
        payload = {uid: record.to_dict() for uid, record in records.items()}
        _atomic_write_text(self.path, json.dumps(payload, ensure_ascii=False, indent=2))
        logger.info(f"Saved {len(payload)} sync records")


class CalendarCache:
    """The merged calendar written after each run and read back first on the next."""

    def __init__(self, path: str, prodid: str) -> None:
        self.path = Path(path)
        self.prodid = prodid

    def read_blocks(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise FetchError(f"Unreadable calendar cache: {exc}", path=str(self.path)) from exc
        return extract_events(text)

    def write(self, blocks: Iterable[str]) -> bool:
        blocks = list(blocks)
        if not blocks:
            logger.warning("No events collected; keeping the previous calendar cache")
            return False
        _atomic_write_text(self.path, build_calendar(blocks, self.prodid))
        return True
