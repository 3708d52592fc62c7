"""Line-level access to VEVENT blocks.

Feeds are treated as text, not parsed as a whole calendar: a block is
whatever sits between ``BEGIN:VEVENT`` and ``END:VEVENT`` and a property is
the first line shaped ``NAME[;params]:value``. Values are never unescaped.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

from icalendar.prop import vDate, vDatetime

from coursesync.models import Timestamp

logger = logging.getLogger(__name__)

EVENT_PATTERN = re.compile(r"BEGIN:VEVENT[\s\S]+?END:VEVENT", re.IGNORECASE)
BEGIN_EVENT_PATTERN = re.compile(r"^BEGIN:VEVENT[ \t]*(?=\r?$)", re.IGNORECASE | re.MULTILINE)


def _property_pattern(name: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(name)}(?P<params>;[^:\r\n]*)?:(?P<value>[^\r\n]*)(?=\r?$)",
        re.IGNORECASE | re.MULTILINE,
    )


def extract_events(text: str | None) -> list[str]:
    if not text:
        return []
    return EVENT_PATTERN.findall(text)


def get_field(block: str, name: str) -> str | None:
    match = _property_pattern(name).search(block or "")
    if not match:
        return None
    return match.group("value").strip()


def get_field_params(block: str, name: str) -> dict[str, str]:
    match = _property_pattern(name).search(block or "")
    if not match or not match.group("params"):
        return {}
    params: dict[str, str] = {}
    for part in match.group("params").split(";"):
        if "=" not in part:
            continue
        key, _, value = part.partition("=")
        params[key.strip().upper()] = value.strip().strip('"')
    return params


def get_raw_property(block: str, name: str) -> str | None:
    """Return everything after the property name, e.g. ``;TZID=Asia/Jerusalem:20250101T090000``."""
    match = _property_pattern(name).search(block or "")
    if not match:
        return None
    return f"{match.group('params') or ''}:{match.group('value').strip()}"


def set_raw_property(block: str, name: str, tail: str) -> str:
    line = f"{name.upper()}{tail}"
    pattern = _property_pattern(name)
    if pattern.search(block):
        return pattern.sub(lambda _match: line, block, count=1)
    newline = "\r\n" if "\r\n" in block else "\n"
    begin = BEGIN_EVENT_PATTERN.search(block)
    if begin is None:
        return block
    insert_at = begin.end()
    return f"{block[:insert_at]}{newline}{line}{block[insert_at:]}"


def set_field(block: str, name: str, value: str) -> str:
    match = _property_pattern(name).search(block or "")
    params = match.group("params") if match and match.group("params") else ""
    return set_raw_property(block, name, f"{params}:{value}")


def parse_timestamp(block: str, name: str) -> Timestamp | None:
    value = get_field(block, name)
    if not value:
        return None
    params = get_field_params(block, name)
    try:
        if params.get("VALUE", "").upper() == "DATE" or re.fullmatch(r"\d{8}", value):
            return vDate.from_ical(value)
        return vDatetime.from_ical(value, timezone=params.get("TZID") or None)
    except Exception as exc:
        logger.debug(f"Unparseable {name} value {value!r}: {exc}")
        return None


def build_calendar(blocks: Iterable[str], prodid: str) -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", f"PRODID:{prodid}", "METHOD:PUBLISH"]
    lines.extend(blocks)
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines)
