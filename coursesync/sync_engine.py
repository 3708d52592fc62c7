from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from coursesync.config_manager import ConfigManager
from coursesync.courses import CourseDirectory, load_course_directory
from coursesync.errors import (
    CacheWriteError,
    DirectoryLoadError,
    FetchError,
    MissingCredentialError,
    ParseSkip,
    RecordStoreCorrupt,
    RecordStoreWriteError,
)
from coursesync.fetcher import CalendarFetcher
from coursesync.ics_fields import extract_events
from coursesync.ledger import DedupLedger
from coursesync.markers import TitleClassifier
from coursesync.models import AppConfig, SyncIssue, SyncResult
from coursesync.normalizer import EventNormalizer
from coursesync.pairing import build_open_index
from coursesync.reconciler import CREATE, FAILED, HEAL_DELETE, SKIP, UPDATE, SyncReconciler, TaskAPI
from coursesync.state_store import CalendarCache, RecordStore
from coursesync.todoist_client import TodoistClient

logger = logging.getLogger(__name__)


def _duration_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


class SyncEngine:
    def __init__(
        self,
        config_manager: ConfigManager,
        task_api: TaskAPI | None = None,
        fetcher: CalendarFetcher | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.task_api = task_api
        self.fetcher = fetcher

    def _load_directory(self, config: AppConfig, issues: list[SyncIssue]) -> CourseDirectory:
        try:
            return load_course_directory(
                config.courses.directory,
                config.courses.directory_url,
                timeout=config.todoist.timeout_seconds,
            )
        except DirectoryLoadError as exc:
            logger.warning(f"Course directory unavailable, using static entries only: {exc}")
            issues.append(exc.to_issue("directory"))
            return CourseDirectory(config.courses.directory)

    def _collect_blocks(
        self,
        config: AppConfig,
        cache: CalendarCache,
        fetcher: CalendarFetcher,
        issues: list[SyncIssue],
    ) -> list[str]:
        blocks: list[str] = []
        try:
            cached = cache.read_blocks()
            blocks.extend(cached)
            logger.info(f"Loaded {len(cached)} events from calendar cache")
        except FetchError as exc:
            logger.warning(f"Calendar cache unreadable: {exc}")
            issues.append(exc.to_issue("cache"))

        for source in config.sources:
            if not source.url:
                logger.info(f"Source {source.name} has no URL configured; skipping")
                continue
            try:
                text = fetcher.fetch_text(source.url)
            except FetchError as exc:
                logger.error(f"Fetch failed: {source.name}: {exc}")
                exc.context["source"] = source.name
                issues.append(exc.to_issue(source.name))
                continue
            fetched = extract_events(text)
            logger.info(f"Fetched {len(fetched)} events from {source.name}")
            blocks.extend(fetched)
        return blocks

    def _save_records(
        self,
        config: AppConfig,
        record_store: RecordStore,
        reconciler: SyncReconciler,
        issues: list[SyncIssue],
    ) -> bool:
        """Persist records when this run changed them; progress made before a failure is kept."""
        if not reconciler.changed or config.sync.dry_run:
            return False
        try:
            record_store.save(reconciler.records)
        except OSError as exc:
            logger.error(f"Could not save sync records: {exc}")
            issues.append(RecordStoreWriteError(str(exc), path=config.paths.state_path).to_issue("records"))
            return False
        return True

    def run_once(self, trigger: str = "manual") -> SyncResult:
        started_at = datetime.now(timezone.utc)
        config = self.config_manager.load()
        if not config.todoist.api_token:
            raise MissingCredentialError("Missing TODOIST_API_KEY; refusing to start.")

        issues: list[SyncIssue] = []
        record_store = RecordStore(config.paths.state_path)
        reconciler: SyncReconciler | None = None
        try:
            task_api = self.task_api or TodoistClient(config.todoist)
            fetcher = self.fetcher or CalendarFetcher(timeout=config.todoist.timeout_seconds)
            cache = CalendarCache(config.paths.cache_path, config.paths.prodid)

            try:
                records = record_store.load()
                logger.info(f"Loaded {len(records)} sync records")
            except RecordStoreCorrupt as exc:
                logger.warning(f"Corrupt record store, starting empty: {exc}")
                issues.append(exc.to_issue("records"))
                records = {}

            reconciler = SyncReconciler(task_api, config, records)
            healed = reconciler.heal()
            directory = self._load_directory(config, issues)
            blocks = self._collect_blocks(config, cache, fetcher, issues)

            classifier = TitleClassifier(config.titles)
            open_index = build_open_index(blocks, directory, classifier)
            normalizer = EventNormalizer(config, directory, open_index, classifier)
            ledger = DedupLedger()
            ignored = 0
            for block in blocks:
                try:
                    event = normalizer.normalize(block)
                except ParseSkip as exc:
                    logger.info(f"Skipping event: {exc}")
                    issues.append(exc.to_issue("normalize"))
                    continue
                if event is None:
                    ignored += 1
                    continue
                ledger.add(event)
            issues.extend(ledger.issues)
            events = ledger.events
            if ledger.replaced:
                logger.info(f"Merged {ledger.replaced} duplicate events by UID")

            cache_written = False
            try:
                cache_written = cache.write(event.block for event in events.values())
            except OSError as exc:
                logger.error(f"Could not write calendar cache: {exc}")
                issues.append(CacheWriteError(str(exc), path=config.paths.cache_path).to_issue("cache"))

            outcomes = reconciler.reconcile(events.values())
            issues.extend(reconciler.issues)

            records_saved = self._save_records(config, record_store, reconciler, issues)

            counts = Counter(outcome.action for outcome in outcomes)
            status = "partial" if issues else "success"
            message = (
                f"Done: +{counts[CREATE]} | ~{counts[UPDATE]} | ={counts[SKIP]} | "
                f"-{counts[HEAL_DELETE]} | !{counts[FAILED]}"
            )
            logger.info(message)
            return SyncResult(
                status=status,
                message=message,
                duration_ms=_duration_ms(started_at),
                trigger=trigger,
                events=len(events),
                ignored=ignored,
                created=counts[CREATE],
                updated=counts[UPDATE],
                skipped=counts[SKIP],
                deleted=counts[HEAL_DELETE],
                healed=healed,
                failed=counts[FAILED],
                records_saved=records_saved,
                cache_written=cache_written,
                issues=issues,
            )
        except Exception as exc:
            logger.exception("Sync run failed")
            records_saved = False
            if reconciler is not None:
                records_saved = self._save_records(config, record_store, reconciler, issues)
            return SyncResult(
                status="failed",
                message=f"{type(exc).__name__}: {exc}",
                duration_ms=_duration_ms(started_at),
                trigger=trigger,
                records_saved=records_saved,
                issues=issues,
            )
