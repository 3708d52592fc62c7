from __future__ import annotations

import logging

import requests

from coursesync.errors import FetchError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; coursesync)"


def _decode_raw_ical(raw_data: bytes | str) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


class CalendarFetcher:
    def __init__(self, timeout: int = 30) -> None:
        self.timeout = timeout

    def fetch_text(self, url: str) -> str:
        # Calendar export URLs embed auth tokens; keep them out of messages.
        try:
            response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        except requests.Timeout as exc:
            raise FetchError("Calendar request timed out", timeout=True) from exc
        except requests.RequestException as exc:
            raise FetchError(f"Calendar request failed: {type(exc).__name__}") from exc
        if not response.ok:
            raise FetchError(f"Calendar request returned HTTP {response.status_code}", status=response.status_code)
        text = _decode_raw_ical(response.content)
        logger.debug(f"Fetched {len(text)} characters")
        return text
