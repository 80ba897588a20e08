"""Rules sync orchestration: index, download, validate, store."""

import logging
import threading
import uuid
from collections import deque
from datetime import datetime
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from ..config import SyncConfig, get_config
from ..database.session import get_session
from ..search.models import ContentType
from .downloader import SrdDownloader, validate_content
from .models import (
    SrdContent,
    SrdIndexEntry,
    SyncError,
    SyncErrorSeverity,
    SyncHistory,
    SyncProgress,
    SyncResult,
    SyncStatus,
)
from .processor import RulesContentProcessor

logger = logging.getLogger(__name__)


class RulesSyncService:
    """Runs syncs and tracks their progress and history.

    Syncs are blocking and meant to run on a worker thread (FastAPI background
    tasks do this for plain functions). Each sync gets its own cancel event;
    the download loop checks it between items.
    """

    def __init__(
        self,
        downloader: SrdDownloader | None = None,
        processor: RulesContentProcessor | None = None,
        session_factory: Callable[[], Session] | None = None,
        config: SyncConfig | None = None,
    ):
        self.config = config or get_config().sync
        self.downloader = downloader or SrdDownloader(self.config)
        self.processor = processor or RulesContentProcessor()
        self._session_factory = session_factory or get_session
        self._lock = threading.Lock()
        self._active: dict[str, SyncProgress] = {}
        self._cancel_events: dict[str, threading.Event] = {}
        self._history: deque[SyncHistory] = deque(maxlen=self.config.history_limit)

    # -- lifecycle ----------------------------------------------------------

    def create_sync(self) -> str:
        """Register a pending sync so its progress is visible before it starts."""
        sync_id = uuid.uuid4().hex
        with self._lock:
            self._active[sync_id] = SyncProgress(sync_id, current_operation="Queued")
            self._cancel_events[sync_id] = threading.Event()
        return sync_id

    def _begin(self, sync_id: str | None) -> tuple[SyncProgress, threading.Event]:
        with self._lock:
            if sync_id is None or sync_id not in self._active:
                sync_id = sync_id or uuid.uuid4().hex
                self._active[sync_id] = SyncProgress(sync_id)
                self._cancel_events[sync_id] = threading.Event()
            progress = self._active[sync_id]
            if not self._cancel_events[sync_id].is_set():
                progress.status = SyncStatus.IN_PROGRESS
            return progress, self._cancel_events[sync_id]

    def _finish(self, result: SyncResult, content_type: ContentType, initiated_by: str) -> None:
        with self._lock:
            self._active.pop(result.sync_id, None)
            self._cancel_events.pop(result.sync_id, None)
            self._history.append(
                SyncHistory(
                    sync_id=result.sync_id,
                    content_type=content_type,
                    status=result.status,
                    items_processed=result.items_processed,
                    items_failed=result.items_failed,
                    start_time=result.start_time,
                    end_time=result.end_time,
                    error_summary=result.error_message,
                    initiated_by=initiated_by or "System",
                )
            )

    # -- public operations --------------------------------------------------

    def sync_all(self, sync_id: str | None = None, initiated_by: str = "System") -> SyncResult:
        """Sync every content type that has an index page."""
        logger.info("Starting full content sync")
        return self._run(sync_id, ContentType.ALL, self.downloader.get_content_index, initiated_by)

    def sync_content_type(
        self, content_type: ContentType, sync_id: str | None = None, initiated_by: str = "System"
    ) -> SyncResult:
        logger.info(f"Starting {content_type.name} sync")
        return self._run(
            sync_id,
            content_type,
            lambda: self.downloader.get_content_index([content_type]),
            initiated_by,
        )

    def sync_from_url(
        self,
        url: str,
        content_type: ContentType | None = None,
        sync_id: str | None = None,
        initiated_by: str = "System",
    ) -> SyncResult:
        """Sync a single page. A given content type overrides detection."""
        logger.info(f"Starting single URL sync for {url}")
        entry = SrdIndexEntry(name=url, url=url, content_type=content_type or ContentType.ALL)
        return self._run(sync_id, content_type or ContentType.ALL, lambda: [entry], initiated_by)

    def get_progress(self, sync_id: str) -> SyncProgress:
        """Progress of an active sync; unknown ids report Completed."""
        with self._lock:
            progress = self._active.get(sync_id)
        return progress or SyncProgress(sync_id, status=SyncStatus.COMPLETED)

    def get_history(self, page_size: int = 20, page: int = 1) -> list[SyncHistory]:
        with self._lock:
            history = sorted(self._history, key=lambda h: h.start_time, reverse=True)
        skip = (max(1, page) - 1) * page_size
        return history[skip : skip + page_size]

    def cancel_sync(self, sync_id: str) -> bool:
        """Request cancellation; False when the sync is not active."""
        with self._lock:
            progress = self._active.get(sync_id)
            if progress is None:
                return False
            self._cancel_events[sync_id].set()
            progress.status = SyncStatus.CANCELLED
            progress.current_operation = "Cancellation requested"
        logger.info(f"Cancellation requested for sync {sync_id}")
        return True

    # -- internals ----------------------------------------------------------

    def _run(
        self,
        sync_id: str | None,
        content_type: ContentType,
        fetch_index: Callable[[], list[SrdIndexEntry]],
        initiated_by: str,
    ) -> SyncResult:
        progress, cancel = self._begin(sync_id)
        result = SyncResult(progress.sync_id, status=SyncStatus.IN_PROGRESS)

        try:
            progress.current_operation = "Fetching content index"
            index = fetch_index()
            progress.total_items = len(index)

            downloaded = self._download(index, result, progress, cancel)
            if downloaded and not cancel.is_set():
                self._process(downloaded, result, progress, cancel)

            if cancel.is_set():
                result.status = SyncStatus.CANCELLED
                result.error_message = "Sync was cancelled"
            elif not result.errors:
                result.status = SyncStatus.COMPLETED
            elif result.items_processed > 0:
                result.status = SyncStatus.PARTIALLY_COMPLETED
            else:
                result.status = SyncStatus.FAILED
            if result.errors and result.error_message is None:
                result.error_message = "; ".join(e.error_message for e in result.errors)
        except Exception as e:
            logger.exception(f"Sync {result.sync_id} failed")
            result.status = SyncStatus.FAILED
            result.error_message = str(e)
        finally:
            result.end_time = datetime.utcnow()
            progress.status = result.status
            self._finish(result, content_type, initiated_by)

        logger.info(
            f"Sync {result.sync_id} finished with {result.status.name}. "
            f"Processed: {result.items_processed}, Failed: {result.items_failed}"
        )
        return result

    def _download(
        self,
        index: list[SrdIndexEntry],
        result: SyncResult,
        progress: SyncProgress,
        cancel: threading.Event,
    ) -> list[SrdContent]:
        downloaded = []
        for position, entry in enumerate(index):
            if cancel.is_set():
                break
            progress.current_operation = f"Downloading {entry.content_type.name}: {entry.name}"

            try:
                content = self.downloader.download_content(entry.url)
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Failed to download {entry.name} from {entry.url}: {e}")
                result.items_failed += 1
                result.errors.append(SyncError(entry.url, entry.name, entry.content_type, str(e)))
            else:
                if entry.content_type != ContentType.ALL:
                    content.content_type = entry.content_type
                validation = validate_content(content)
                if validation.is_valid:
                    downloaded.append(content)
                    result.items_processed += 1
                else:
                    result.items_failed += 1
                    result.errors.append(
                        SyncError(
                            entry.url,
                            entry.name,
                            content.content_type,
                            validation.error_message,
                            SyncErrorSeverity.WARNING,
                        )
                    )

            progress.processed_items = result.items_processed + result.items_failed
            progress.failed_items = result.items_failed
            progress.recent_operations.append(f"Processed {entry.name}")

            # Polite delay between requests; returns early on cancel
            if position < len(index) - 1:
                cancel.wait(self.config.request_delay_ms / 1000)
        return downloaded

    def _process(
        self,
        downloaded: list[SrdContent],
        result: SyncResult,
        progress: SyncProgress,
        cancel: threading.Event,
    ) -> None:
        by_type: dict[ContentType, list[SrdContent]] = {}
        for content in downloaded:
            by_type.setdefault(content.content_type, []).append(content)

        session = self._session_factory()
        try:
            for content_type, items in by_type.items():
                if cancel.is_set():
                    break
                progress.current_operation = f"Processing {content_type.name} data"
                processed = self.processor.process(session, items, cancel)
                for key, count in processed.statistics.items():
                    result.metadata[f"{content_type.name}_{key}"] = count
                result.items_skipped += processed.items_skipped
                # Counted as processed once downloaded; a storage failure moves it to failed
                result.items_processed = max(0, result.items_processed - processed.items_failed)
                result.items_failed += processed.items_failed
                for error in processed.errors:
                    result.errors.append(SyncError(error.item_name, error.item_name, content_type, error.error_message))
                progress.processed_items = result.items_processed + result.items_failed
                progress.failed_items = result.items_failed
        finally:
            session.close()
