"""Search documents, queries and results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any


class ContentType(IntEnum):
    """Kind of rules content."""

    ALL = 0
    CLASSES = 1
    SPELLS = 2
    FEATS = 3
    EQUIPMENT = 4
    WEAPONS = 5
    ARMOR = 6
    ANCESTRY = 7
    BACKGROUNDS = 8
    TRAITS = 9
    CONDITIONS = 10
    ACTIONS = 11
    RULES = 12

    @property
    def label(self) -> str:
        return self.name.title()

    @classmethod
    def parse(cls, value: Any) -> "ContentType":
        """Resolve from a member, an integer or a case-insensitive name.

        Raises:
            ValueError: If the value names no content type
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) or str(value).strip().isdigit():
            return cls(int(value))
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown content type: {value}") from None


class SearchSortOrder(IntEnum):
    RELEVANCE = 1
    ALPHABETICAL = 2
    LEVEL = 3
    CONTENT_TYPE = 4
    SOURCE = 5
    DATE_MODIFIED = 6


class FacetType(IntEnum):
    TERMS = 1
    RANGE = 2


@dataclass
class SearchDocument:
    """A piece of content in the search index."""

    id: str
    title: str
    content: str = ""
    description: str = ""
    content_type: ContentType = ContentType.RULES
    category: str = ""
    level: int = 0
    traits: list[str] = field(default_factory=list)
    source: str = ""
    rarity: str = "Common"
    url: str = ""
    keywords: list[str] = field(default_factory=list)
    custom_fields: dict[str, Any] = field(default_factory=dict)
    is_custom: bool = False
    last_modified: datetime = field(default_factory=datetime.utcnow)

    @property
    def searchable_text(self) -> str:
        return f"{self.title} {self.content} {self.description} {' '.join(self.keywords)}"


@dataclass
class ParsedQuery:
    """A query string split into its parts."""

    main_query: str = ""
    terms: list[str] = field(default_factory=list)
    phrases: list[str] = field(default_factory=list)
    required_terms: list[str] = field(default_factory=list)
    excluded_terms: list[str] = field(default_factory=list)
    has_wildcards: bool = False
    is_fuzzy: bool = False

    @property
    def is_match_all(self) -> bool:
        return not (self.terms or self.phrases or self.required_terms)


@dataclass
class SearchQuery:
    """Search request with filters, sorting and paging."""

    query: str = ""
    content_types: list[ContentType] = field(default_factory=list)
    sort_by: SearchSortOrder = SearchSortOrder.RELEVANCE
    page_size: int = 20
    page_number: int = 1
    include_facets: bool = True
    required_traits: list[str] = field(default_factory=list)
    excluded_traits: list[str] = field(default_factory=list)
    min_level: int | None = None
    max_level: int | None = None
    source: str | None = None
    include_custom: bool = True


@dataclass
class SearchHit:
    document: SearchDocument
    score: float

    def to_dict(self) -> dict[str, Any]:
        doc = self.document
        return {
            "id": doc.id,
            "title": doc.title,
            "description": doc.description,
            "content_type": doc.content_type.name,
            "category": doc.category,
            "level": doc.level,
            "traits": list(doc.traits),
            "source": doc.source,
            "url": doc.url,
            "score": round(self.score, 4),
            "is_custom": doc.is_custom,
            "fields": dict(doc.custom_fields),
        }


@dataclass
class FacetValue:
    value: str
    display_value: str
    count: int
    is_selected: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "display_value": self.display_value,
            "count": self.count,
            "is_selected": self.is_selected,
        }


@dataclass
class SearchFacet:
    name: str
    display_name: str
    facet_type: FacetType
    values: list[FacetValue]
    is_multi_select: bool = True

    @property
    def total_values(self) -> int:
        return len(self.values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "type": self.facet_type.name,
            "is_multi_select": self.is_multi_select,
            "total_values": self.total_values,
            "values": [v.to_dict() for v in self.values],
        }


@dataclass
class SearchResult:
    hits: list[SearchHit]
    total_hits: int
    page_number: int
    page_size: int
    search_time_ms: float = 0.0
    facets: list[SearchFacet] = field(default_factory=list)
    did_you_mean: str | None = None

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return -(-self.total_hits // self.page_size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [h.to_dict() for h in self.hits],
            "total_hits": self.total_hits,
            "page_number": self.page_number,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "search_time_ms": round(self.search_time_ms, 3),
            "facets": [f.to_dict() for f in self.facets],
            "did_you_mean": self.did_you_mean,
        }


@dataclass
class AutocompleteSuggestion:
    text: str
    display_text: str
    content_type: ContentType
    category: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "display_text": self.display_text,
            "content_type": self.content_type.name,
            "category": self.category,
            "score": self.score,
            "metadata": dict(self.metadata),
        }


@dataclass
class SearchStats:
    total_documents: int
    documents_by_type: dict[str, int]
    documents_by_source: dict[str, int]
    total_searches: int
    average_search_time_ms: float
    popular_queries: list[str]
    last_index_update: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_documents": self.total_documents,
            "documents_by_type": dict(self.documents_by_type),
            "documents_by_source": dict(self.documents_by_source),
            "total_searches": self.total_searches,
            "average_search_time_ms": round(self.average_search_time_ms, 3),
            "popular_queries": list(self.popular_queries),
            "last_index_update": self.last_index_update.isoformat() if self.last_index_update else None,
        }
