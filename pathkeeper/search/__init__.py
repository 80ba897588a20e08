"""Omni search across rules content and custom definitions."""

from .models import ContentType, SearchDocument, SearchQuery, SearchResult, SearchSortOrder
from .query_parser import parse_query
from .service import OmniSearchService

__all__ = [
    "ContentType",
    "OmniSearchService",
    "SearchDocument",
    "SearchQuery",
    "SearchResult",
    "SearchSortOrder",
    "parse_query",
]
