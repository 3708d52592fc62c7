from __future__ import annotations

import json
import logging
import threading
from typing import Optional

from coursesync.errors import MissingCredentialError
from coursesync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, interval_seconds: int) -> None:
        self.sync_engine = sync_engine
        self.interval_seconds = max(1, int(interval_seconds))
        self.fatal_error: Optional[Exception] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self.fatal_error = None
        self._thread = threading.Thread(target=self._loop, name="coursesync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        trigger = "startup"
        while not self._stop_event.is_set():
            try:
                result = self.sync_engine.run_once(trigger=trigger)
            except MissingCredentialError as exc:
                logger.error(f"Stopping scheduler: {exc}")
                self.fatal_error = exc
                break
            except Exception:
                # A broken config file is retried on the next tick.
                logger.exception(f"Run could not start ({trigger})")
            else:
                logger.info(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
            trigger = "scheduled"
            if self._stop_event.wait(timeout=self.interval_seconds):
                break
