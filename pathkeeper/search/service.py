"""In-memory omni search over synced rules and custom content."""

import logging
import math
import re
import threading
import time
from collections import Counter, deque
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from ..config import SearchConfig, get_config
from ..database.models import CustomDefinition, RuleEntry
from ..rules.enums import CustomDefinitionType
from .models import (
    AutocompleteSuggestion,
    ContentType,
    FacetType,
    FacetValue,
    ParsedQuery,
    SearchDocument,
    SearchFacet,
    SearchHit,
    SearchQuery,
    SearchResult,
    SearchSortOrder,
    SearchStats,
)
from .query_parser import parse_query

logger = logging.getLogger(__name__)

TERM_PATTERN = re.compile(r"\b\w{2,}\b")
TAG_PATTERN = re.compile(r"<[^>]+>")

COMMON_SEARCH_TERMS = (
    "fighter", "wizard", "cleric", "rogue", "barbarian", "ranger",
    "fireball", "heal", "magic missile", "shield",
    "sword", "armor", "potion", "ring",
    "human", "elf", "dwarf", "halfling",
    "noble", "criminal", "scholar", "warrior",
)

# name -> (display name, facet type, multi select, sort order)
FACETS = {
    "contentType": ("Content Type", FacetType.TERMS, True, 1),
    "level": ("Level", FacetType.RANGE, True, 2),
    "traits": ("Traits", FacetType.TERMS, True, 3),
    "source": ("Source", FacetType.TERMS, False, 4),
    "rarity": ("Rarity", FacetType.TERMS, True, 5),
    "category": ("Category", FacetType.TERMS, True, 6),
}

CUSTOM_CONTENT_TYPES = {
    CustomDefinitionType.CLASS: ContentType.CLASSES,
    CustomDefinitionType.ARCHETYPE: ContentType.FEATS,
    CustomDefinitionType.FEAT: ContentType.FEATS,
    CustomDefinitionType.SPELL: ContentType.SPELLS,
    CustomDefinitionType.ITEM: ContentType.EQUIPMENT,
    CustomDefinitionType.WEAPON: ContentType.WEAPONS,
    CustomDefinitionType.ARMOR: ContentType.ARMOR,
    CustomDefinitionType.OPERATION: ContentType.RULES,
    CustomDefinitionType.BACKGROUND: ContentType.BACKGROUNDS,
    CustomDefinitionType.ANCESTRY: ContentType.ANCESTRY,
    CustomDefinitionType.HERITAGE: ContentType.ANCESTRY,
    CustomDefinitionType.TRAIT: ContentType.TRAITS,
}

SEED_DOCUMENTS = (
    SearchDocument(
        id="fighter",
        title="Fighter",
        content="Core martial class with weapon proficiency and combat flexibility",
        description="Masters of weapons and armor, fighters are versatile combatants",
        content_type=ContentType.CLASSES,
        category="Core Class",
        level=1,
        source="Core Rulebook",
        keywords=["martial", "weapons", "armor", "combat"],
    ),
    SearchDocument(
        id="fireball",
        title="Fireball",
        content="3rd-level evocation spell that creates a fiery explosion",
        description="A classic blast spell that deals fire damage in an area",
        content_type=ContentType.SPELLS,
        category="Evocation",
        level=3,
        traits=["Evocation", "Fire"],
        source="Core Rulebook",
        keywords=["fire", "damage", "area", "explosion"],
    ),
    SearchDocument(
        id="longsword",
        title="Longsword",
        content="Versatile martial melee weapon",
        description="A classic one-handed sword that can be used with two hands",
        content_type=ContentType.WEAPONS,
        category="Martial Melee",
        level=0,
        traits=["Versatile P"],
        source="Core Rulebook",
        keywords=["sword", "versatile", "martial", "melee"],
    ),
)


def extract_terms(text: str) -> set[str]:
    """Distinct lowercase words of two or more characters."""
    return {m.lower() for m in TERM_PATTERN.findall(text)}


def levenshtein(source: str, target: str) -> int:
    """Edit distance between two strings."""
    if not source:
        return len(target)
    if not target:
        return len(source)
    previous = list(range(len(target) + 1))
    for i, s in enumerate(source, 1):
        current = [i]
        for j, t in enumerate(target, 1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (s != t)))
        previous = current
    return previous[-1]


class OmniSearchService:
    """Search index with relevance scoring, facets and autocomplete."""

    def __init__(self, config: SearchConfig | None = None, seed: bool = True):
        self.config = config or get_config().search
        self._documents: dict[str, SearchDocument] = {}
        self._term_index: dict[str, set[str]] = {}
        self._doc_terms: dict[str, set[str]] = {}
        # Guards the three index maps; rebuilds run off the event loop
        self._lock = threading.RLock()
        self._history: deque[str] = deque(maxlen=self.config.recent_query_limit)
        self._total_searches = 0
        self._average_ms = 0.0
        self.last_index_update: datetime | None = None
        if seed:
            self.index_documents(SEED_DOCUMENTS)

    # -- indexing -----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._documents)

    def index_document(self, document: SearchDocument) -> None:
        """Add or replace a document."""
        terms = extract_terms(document.searchable_text)
        with self._lock:
            if document.id in self._documents:
                self.remove_document(document.id)
            self._documents[document.id] = document
            self._doc_terms[document.id] = terms
            for term in terms:
                self._term_index.setdefault(term, set()).add(document.id)
        self.last_index_update = datetime.utcnow()

    def index_documents(self, documents) -> None:
        for document in documents:
            self.index_document(document)

    def remove_document(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)
            for term in self._doc_terms.pop(document_id, set()):
                ids = self._term_index.get(term)
                if ids is not None:
                    ids.discard(document_id)
                    if not ids:
                        del self._term_index[term]

    def clear(self) -> None:
        with self._lock:
            self._documents = {}
            self._term_index = {}
            self._doc_terms = {}

    def rebuild_index(self, session: Session) -> int:
        """Reindex from synced rules and custom definitions.

        Returns:
            Number of indexed documents
        """
        logger.info("Starting search index rebuild")
        staging = OmniSearchService(self.config, seed=False)
        for entry in session.query(RuleEntry).all():
            staging.index_document(document_from_rule(entry))
        for definition in session.query(CustomDefinition).filter(CustomDefinition.is_public.is_(True)).all():
            staging.index_document(document_from_custom(definition))

        if not staging._documents:
            logger.info("No content to index, loading seed documents")
            staging.index_documents(SEED_DOCUMENTS)

        # Searches keep using the old maps until the new ones are complete
        with self._lock:
            self._documents = staging._documents
            self._term_index = staging._term_index
            self._doc_terms = staging._doc_terms
        self.last_index_update = datetime.utcnow()

        logger.info(f"Search index rebuild completed. Indexed {len(staging._documents)} documents")
        return len(staging._documents)

    # -- search -------------------------------------------------------------

    def search(self, query: SearchQuery) -> SearchResult:
        """Run a search with filters, sorting, paging and optional facets."""
        started = time.perf_counter()
        parsed = parse_query(query.query)
        page_size = max(1, min(query.page_size, self.config.max_page_size))
        page_number = max(1, query.page_number)

        with self._lock:
            if parsed.is_match_all:
                scored = {doc_id: 1.0 for doc_id in self._documents}
            else:
                scored = self._score(parsed)

            hits = [
                SearchHit(self._documents[doc_id], score)
                for doc_id, score in scored.items()
                if self._matches_terms(doc_id, parsed) and self._matches_filters(self._documents[doc_id], query)
            ]
        hits = sort_hits(hits, query.sort_by)

        skip = (page_number - 1) * page_size
        result = SearchResult(
            hits=hits[skip : skip + page_size],
            total_hits=len(hits),
            page_number=page_number,
            page_size=page_size,
            facets=build_facets(hits, query) if query.include_facets else [],
            did_you_mean=did_you_mean(parsed.main_query),
        )
        result.search_time_ms = (time.perf_counter() - started) * 1000
        self._record_search(query.query, result.search_time_ms)
        logger.debug(f"Search '{query.query}' found {result.total_hits} results in {result.search_time_ms:.2f}ms")
        return result

    def _score(self, parsed: ParsedQuery) -> dict[str, float]:
        """Sum of tf * log(N/df) per term plus a boost for each matched phrase."""
        scores: dict[str, float] = {}
        total = len(self._documents)

        for term in parsed.terms + parsed.required_terms:
            ids = self._term_index.get(term)
            if not ids:
                continue
            idf = math.log(total / len(ids))
            pattern = re.compile(re.escape(term))
            for doc_id in ids:
                tf = len(pattern.findall(self._documents[doc_id].searchable_text.lower()))
                scores[doc_id] = scores.get(doc_id, 0.0) + tf * idf

        for phrase in parsed.phrases:
            for doc_id, document in self._documents.items():
                if phrase in document.content.lower() or phrase in document.title.lower():
                    scores[doc_id] = scores.get(doc_id, 0.0) + 2.0

        return scores

    def _matches_terms(self, doc_id: str, parsed: ParsedQuery) -> bool:
        terms = self._doc_terms.get(doc_id, set())
        if any(t not in terms for t in parsed.required_terms):
            return False
        return not any(t in terms for t in parsed.excluded_terms)

    @staticmethod
    def _matches_filters(document: SearchDocument, query: SearchQuery) -> bool:
        if query.content_types and ContentType.ALL not in query.content_types:
            if document.content_type not in query.content_types:
                return False
        if query.min_level is not None and document.level < query.min_level:
            return False
        if query.max_level is not None and document.level > query.max_level:
            return False

        traits = {t.lower() for t in document.traits}
        if query.required_traits and not all(t.lower() in traits for t in query.required_traits):
            return False
        if query.excluded_traits and any(t.lower() in traits for t in query.excluded_traits):
            return False
        if query.source and document.source.lower() != query.source.strip().lower():
            return False
        if not query.include_custom and document.is_custom:
            return False
        return True

    # -- autocomplete -------------------------------------------------------

    def autocomplete(self, partial: str, max_suggestions: int | None = None) -> list[AutocompleteSuggestion]:
        """Suggest titles and common terms for a partial query of 2+ characters."""
        limit = max_suggestions or self.config.autocomplete_limit
        text = (partial or "").strip().lower()
        if len(text) < 2:
            return []

        with self._lock:
            documents = list(self._documents.values())
        matching = [
            doc
            for doc in documents
            if text in doc.title.lower()
            or text in doc.description.lower()
            or any(text in k.lower() for k in doc.keywords)
            or any(text in t.lower() for t in doc.traits)
        ]
        matching.sort(key=lambda doc: autocomplete_score(doc, text), reverse=True)

        suggestions = [
            AutocompleteSuggestion(
                text=doc.title,
                display_text=autocomplete_display(doc),
                content_type=doc.content_type,
                category=doc.category,
                score=autocomplete_score(doc, text),
                metadata={"level": doc.level, "traits": list(doc.traits), "source": doc.source},
            )
            for doc in matching[:limit]
        ]

        for term in COMMON_SEARCH_TERMS:
            if len(suggestions) >= limit:
                break
            if term.startswith(text):
                suggestions.append(
                    AutocompleteSuggestion(
                        text=term,
                        display_text=term,
                        content_type=ContentType.RULES,
                        category="Search Term",
                        score=0.5,
                    )
                )
        return suggestions

    # -- statistics ---------------------------------------------------------

    def _record_search(self, query: str, elapsed_ms: float) -> None:
        self._history.append(query)
        self._total_searches += 1
        n = self._total_searches
        self._average_ms = (self._average_ms * (n - 1) + elapsed_ms) / n

    def popular_queries(self, count: int = 10) -> list[str]:
        counts = Counter(q.lower() for q in self._history)
        return [q for q, _ in counts.most_common(count)]

    def get_stats(self) -> SearchStats:
        with self._lock:
            docs = list(self._documents.values())
        return SearchStats(
            total_documents=len(docs),
            documents_by_type=dict(Counter(d.content_type.name for d in docs)),
            documents_by_source=dict(Counter(d.source for d in docs)),
            total_searches=self._total_searches,
            average_search_time_ms=self._average_ms,
            popular_queries=self.popular_queries(),
            last_index_update=self.last_index_update,
        )


def sort_hits(hits: list[SearchHit], sort_by: SearchSortOrder) -> list[SearchHit]:
    keys: dict[SearchSortOrder, Callable[[SearchHit], object]] = {
        SearchSortOrder.ALPHABETICAL: lambda h: h.document.title,
        SearchSortOrder.LEVEL: lambda h: (h.document.level, h.document.title),
        SearchSortOrder.CONTENT_TYPE: lambda h: (h.document.content_type, h.document.title),
        SearchSortOrder.SOURCE: lambda h: (h.document.source, h.document.title),
    }
    if sort_by == SearchSortOrder.RELEVANCE:
        return sorted(hits, key=lambda h: h.score, reverse=True)
    if sort_by == SearchSortOrder.DATE_MODIFIED:
        return sorted(hits, key=lambda h: h.document.last_modified, reverse=True)
    return sorted(hits, key=keys[sort_by])


def build_facets(hits: list[SearchHit], query: SearchQuery) -> list[SearchFacet]:
    """Facet counts over every matching hit, not just the current page."""
    counters: dict[str, Counter] = {name: Counter() for name in FACETS}
    for hit in hits:
        doc = hit.document
        counters["contentType"][doc.content_type.name] += 1
        counters["level"][str(doc.level)] += 1
        counters["traits"].update(doc.traits)
        if doc.source:
            counters["source"][doc.source] += 1
        if doc.rarity:
            counters["rarity"][doc.rarity] += 1
        if doc.category:
            counters["category"][doc.category] += 1

    selected = {
        "contentType": {t.name for t in query.content_types},
        "traits": set(query.required_traits),
        "source": {query.source} if query.source else set(),
    }

    facets = []
    for name, (display_name, facet_type, multi_select, _) in sorted(FACETS.items(), key=lambda kv: kv[1][3]):
        counter = counters[name]
        if name == "level":
            ordered = sorted(counter.items(), key=lambda kv: int(kv[0]))
        else:
            ordered = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
        values = [
            FacetValue(
                value=value,
                display_value=ContentType[value].label if name == "contentType" else value,
                count=count,
                is_selected=value in selected.get(name, set()),
            )
            for value, count in ordered
        ]
        facets.append(SearchFacet(name, display_name, facet_type, values, multi_select))
    return facets


def did_you_mean(query: str) -> str | None:
    """Closest common term within two edits, if it differs from the query."""
    text = (query or "").strip().lower()
    if not text:
        return None
    for term in COMMON_SEARCH_TERMS:
        if abs(len(term) - len(text)) <= 2 and levenshtein(text, term) <= 2:
            return term if term != text else None
    return None


def autocomplete_score(document: SearchDocument, text: str) -> float:
    title = document.title.lower()
    score = 0.0
    if title == text:
        score += 10.0
    elif title.startswith(text):
        score += 5.0
    elif text in title:
        score += 2.0
    if any(k.lower().startswith(text) for k in document.keywords):
        score += 3.0
    if any(t.lower().startswith(text) for t in document.traits):
        score += 1.0
    if document.content_type in (ContentType.CLASSES, ContentType.SPELLS):
        score += 0.5
    return score


def autocomplete_display(document: SearchDocument) -> str:
    parts = [document.title]
    if document.category:
        parts.append(f"({document.category})")
    if document.level > 0:
        parts.append(f"Level {document.level}")
    return " ".join(parts)


def document_from_rule(entry: RuleEntry) -> SearchDocument:
    """Search document for a synced rules entry."""
    data = entry.data or {}
    try:
        content_type = ContentType.parse(entry.content_type)
    except ValueError:
        content_type = ContentType.RULES
    metadata = data.get("metadata", {})
    return SearchDocument(
        id=f"rule-{entry.id}",
        title=entry.name,
        content=TAG_PATTERN.sub(" ", entry.raw_content or ""),
        description=str(data.get("description", "")),
        content_type=content_type,
        category=content_type.label,
        level=entry.level or 0,
        traits=list(entry.traits or []),
        source=metadata.get("sourceBook") or entry.source or "",
        url=entry.url or "",
        keywords=list(entry.traits or []),
        last_modified=entry.updated_at or datetime.utcnow(),
    )


def document_from_custom(definition: CustomDefinition) -> SearchDocument:
    """Search document for a user-authored custom definition."""
    type_name = definition.type.name.lower() if definition.type else "item"
    return SearchDocument(
        id=f"custom-{definition.id}",
        title=definition.name,
        content=" ".join(str(v) for v in (definition.json_data or {}).values()),
        description=definition.description or "",
        content_type=CUSTOM_CONTENT_TYPES.get(definition.type, ContentType.RULES),
        category=definition.category or "",
        level=definition.level or 0,
        traits=list(definition.traits or []),
        source=definition.source or "Custom",
        rarity=definition.rarity or "Common",
        url=f"/custom/{type_name}/{definition.id}",
        keywords=list(definition.tags or []),
        custom_fields={
            "version": definition.version,
            "isPublic": definition.is_public,
            "isApproved": definition.is_approved,
        },
        is_custom=True,
        last_modified=definition.updated_at or datetime.utcnow(),
    )
