"""Rules content sync from Archives of Nethys."""

from .downloader import SrdDownloader, extract_content, validate_content
from .models import SyncProgress, SyncResult, SyncStatus
from .processor import RulesContentProcessor
from .service import RulesSyncService

__all__ = [
    "RulesContentProcessor",
    "RulesSyncService",
    "SrdDownloader",
    "SyncProgress",
    "SyncResult",
    "SyncStatus",
    "extract_content",
    "validate_content",
]
