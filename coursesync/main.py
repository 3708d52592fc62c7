from __future__ import annotations

import json
import logging
import sys

from coursesync.config_manager import ConfigManager
from coursesync.errors import MissingCredentialError
from coursesync.scheduler import SyncScheduler
from coursesync.sync_engine import SyncEngine

logger = logging.getLogger("coursesync")


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def main() -> int:
    config_manager = ConfigManager()
    config = config_manager.load()
    setup_logging(config.log_level)
    logger.debug(f"Effective config: {json.dumps(config_manager.masked(), ensure_ascii=False)}")

    if not config.todoist.api_token:
        logger.error("Missing TODOIST_API_KEY")
        return 1

    engine = SyncEngine(config_manager)
    if config.sync.interval_seconds > 0:
        scheduler = SyncScheduler(engine, config.sync.interval_seconds)
        scheduler.start()
        try:
            scheduler.join()
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping scheduler")
            scheduler.stop()
        return 1 if scheduler.fatal_error is not None else 0

    try:
        result = engine.run_once(trigger="manual")
    except MissingCredentialError as exc:
        logger.error(str(exc))
        return 1
    logger.info(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
