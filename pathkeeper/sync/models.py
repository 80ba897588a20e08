"""Sync results, progress and downloaded content."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Any

from ..search.models import ContentType


class SyncStatus(IntEnum):
    PENDING = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    FAILED = 4
    CANCELLED = 5
    PARTIALLY_COMPLETED = 6


class SyncErrorSeverity(IntEnum):
    WARNING = 1
    ERROR = 2
    CRITICAL = 3


class ProcessingErrorType(IntEnum):
    VALIDATION = 1
    DATA_CONFLICT = 2
    DATABASE = 3
    PARSE = 4
    NETWORK = 5


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class SrdIndexEntry:
    """A link found on an index page."""

    name: str
    url: str
    content_type: ContentType
    checksum: str = ""


@dataclass
class SrdContent:
    """A downloaded and parsed rules page."""

    id: str
    name: str
    content_type: ContentType
    source_url: str
    raw_content: str
    parsed_data: dict[str, Any] = field(default_factory=dict)
    traits: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    checksum: str = ""
    last_modified: datetime = field(default_factory=datetime.utcnow)

    @property
    def level(self) -> int | None:
        value = str(self.parsed_data.get("level", "")).strip()
        return int(value) if value.isdigit() else None


@dataclass
class ValidationMessage:
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class SrdValidationResult:
    detected_type: ContentType
    errors: list[ValidationMessage] = field(default_factory=list)
    warnings: list[ValidationMessage] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_message(self) -> str:
        return "; ".join(e.message for e in self.errors)


@dataclass
class ProcessingError:
    item_name: str
    error_message: str
    error_type: ProcessingErrorType

    def to_dict(self) -> dict[str, Any]:
        return {"item_name": self.item_name, "error_message": self.error_message, "type": self.error_type.name}


@dataclass
class ProcessingResult:
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    errors: list[ProcessingError] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return not self.errors

    @property
    def statistics(self) -> dict[str, int]:
        return {
            "created": self.items_created,
            "updated": self.items_updated,
            "skipped": self.items_skipped,
            "failed": self.items_failed,
        }


@dataclass
class SyncError:
    item_id: str
    item_name: str
    content_type: ContentType
    error_message: str
    severity: SyncErrorSeverity = SyncErrorSeverity.ERROR
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "content_type": self.content_type.name,
            "error_message": self.error_message,
            "severity": self.severity.name,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SyncResult:
    sync_id: str
    status: SyncStatus = SyncStatus.PENDING
    items_processed: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    error_message: str | None = None
    errors: list[SyncError] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: datetime | None = None

    @property
    def is_success(self) -> bool:
        return self.status == SyncStatus.COMPLETED

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time if self.end_time else timedelta(0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "status": self.status.name,
            "is_success": self.is_success,
            "items_processed": self.items_processed,
            "items_skipped": self.items_skipped,
            "items_failed": self.items_failed,
            "error_message": self.error_message,
            "errors": [e.to_dict() for e in self.errors],
            "metadata": dict(self.metadata),
            "start_time": self.start_time.isoformat(),
            "end_time": _iso(self.end_time),
            "duration_seconds": self.duration.total_seconds(),
        }


@dataclass
class SyncProgress:
    sync_id: str
    status: SyncStatus = SyncStatus.PENDING
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    current_operation: str = ""
    start_time: datetime = field(default_factory=datetime.utcnow)
    recent_operations: deque[str] = field(default_factory=lambda: deque(maxlen=10))

    @property
    def percentage_complete(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return self.processed_items / self.total_items * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "status": self.status.name,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "failed_items": self.failed_items,
            "percentage_complete": round(self.percentage_complete, 2),
            "current_operation": self.current_operation,
            "start_time": self.start_time.isoformat(),
            "recent_operations": list(self.recent_operations),
        }


@dataclass
class SyncHistory:
    sync_id: str
    content_type: ContentType
    status: SyncStatus
    items_processed: int
    items_failed: int
    start_time: datetime
    end_time: datetime | None
    error_summary: str | None = None
    initiated_by: str = "System"

    def to_dict(self) -> dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "content_type": self.content_type.name,
            "status": self.status.name,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "start_time": self.start_time.isoformat(),
            "end_time": _iso(self.end_time),
            "error_summary": self.error_summary,
            "initiated_by": self.initiated_by,
        }
