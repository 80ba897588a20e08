"""Download and parse rules pages from Archives of Nethys."""

import base64
import hashlib
import logging
import re
import time
import uuid
from datetime import datetime
from html import unescape

import httpx

from ..config import SyncConfig, get_config
from ..search.models import ContentType
from .models import SrdContent, SrdIndexEntry, SrdValidationResult, ValidationMessage

logger = logging.getLogger(__name__)

INDEX_PAGES = {
    ContentType.CLASSES: "Classes",
    ContentType.SPELLS: "Spells",
    ContentType.FEATS: "Feats",
    ContentType.EQUIPMENT: "Equipment",
    ContentType.ANCESTRY: "Ancestries",
    ContentType.BACKGROUNDS: "Backgrounds",
}

# Checked in order; every marker in a group must appear in the page
HTML_MARKERS = (
    (ContentType.CLASSES, ("Hit Points", "Key Ability"), ()),
    (ContentType.SPELLS, ("Traditions", "Cast"), ()),
    (ContentType.FEATS, ("Prerequisites", "Frequency"), ()),
    (ContentType.EQUIPMENT, ("Price",), ("Bulk", "Usage")),
    (ContentType.ANCESTRY, ("Ability Boosts", "Languages"), ()),
    (ContentType.BACKGROUNDS, ("Skill Feats", "Lore"), ()),
)

VALUE = r"[:\s]*([^<\n]+)"

# field -> (pattern, default)
FIELD_PATTERNS: dict[ContentType, dict[str, tuple[str, str]]] = {
    ContentType.CLASSES: {
        "hit_points": (r"Hit Points[:\s]*(\d+)", "8"),
        "key_ability": (r"Key Ability" + VALUE, ""),
        "class_dc": (r"Class DC" + VALUE, ""),
        "skills": (r"Skills[:\s]*(\d+)", "2"),
    },
    ContentType.SPELLS: {
        "traditions": (r"Traditions" + VALUE, ""),
        "cast": (r"Cast" + VALUE, ""),
        "range": (r"Range" + VALUE, ""),
        "area": (r"Area" + VALUE, ""),
        "duration": (r"Duration" + VALUE, ""),
        "level": (r"Spell (\d+)", "1"),
    },
    ContentType.FEATS: {
        "prerequisites": (r"Prerequisites" + VALUE, ""),
        "frequency": (r"Frequency" + VALUE, ""),
        "trigger": (r"Trigger" + VALUE, ""),
        "requirements": (r"Requirements" + VALUE, ""),
        "level": (r"Feat (\d+)", "1"),
    },
    ContentType.EQUIPMENT: {
        "price": (r"Price" + VALUE, ""),
        "bulk": (r"Bulk" + VALUE, ""),
        "usage": (r"Usage" + VALUE, ""),
        "category": (r"Category" + VALUE, ""),
        "level": (r"Item (\d+)", "0"),
    },
    ContentType.ANCESTRY: {
        "ability_boosts": (r"Ability Boosts" + VALUE, ""),
        "ability_flaw": (r"Ability Flaw" + VALUE, ""),
        "hit_points": (r"Hit Points[:\s]*(\d+)", "8"),
        "size": (r"Size" + VALUE, "Medium"),
        "speed": (r"Speed" + VALUE, "25 feet"),
        "languages": (r"Languages" + VALUE, ""),
    },
    ContentType.BACKGROUNDS: {
        "ability_boosts": (r"Ability Boosts?" + VALUE, ""),
        "skill_training": (r"Skill (?:Training|Feats?)" + VALUE, ""),
        "lore": (r"Lore" + VALUE, ""),
    },
}

REQUIRED_FIELDS = {
    ContentType.CLASSES: ("hit_points", "key_ability"),
    ContentType.SPELLS: ("level", "traditions"),
    ContentType.FEATS: ("level",),
    ContentType.EQUIPMENT: ("price", "level"),
    ContentType.ANCESTRY: ("hit_points", "size"),
    ContentType.BACKGROUNDS: ("ability_boosts", "skill_training"),
}

ID_PATTERN = re.compile(r"ID=(\d+)")
H1_PATTERN = re.compile(r"<h1[^>]*>(.+?)</h1>", re.IGNORECASE | re.DOTALL)
TITLE_PATTERN = re.compile(r"<title[^>]*>(.+?)</title>", re.IGNORECASE | re.DOTALL)
TRAIT_PATTERN = re.compile(r"<span[^>]*class=['\"]trait['\"][^>]*>([^<]+)</span>", re.IGNORECASE)
SOURCE_PATTERN = re.compile(r"Source" + VALUE, re.IGNORECASE)
PARAGRAPH_PATTERN = re.compile(r"<p[^>]*>(.+?)</p>", re.IGNORECASE | re.DOTALL)
TAG_PATTERN = re.compile(r"<[^>]+>")


def checksum(text: str) -> str:
    """Base64 SHA-256 digest of the text."""
    return base64.b64encode(hashlib.sha256(text.encode("utf-8")).digest()).decode("ascii")


def clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", unescape(TAG_PATTERN.sub(" ", text))).strip()


def detect_content_type(url: str, html: str) -> ContentType:
    """Content type from the URL, falling back to page markers."""
    for content_type, page in INDEX_PAGES.items():
        if f"{page}.aspx" in url:
            return content_type
    for content_type, required, any_of in HTML_MARKERS:
        if all(m in html for m in required) and (not any_of or any(m in html for m in any_of)):
            return content_type
    return ContentType.RULES


def extract_name(html: str) -> str:
    match = H1_PATTERN.search(html)
    if match:
        return clean_text(match.group(1))
    match = TITLE_PATTERN.search(html)
    if match:
        return clean_text(match.group(1)).split(" - ")[0].strip()
    return "Unknown"


def extract_fields(html: str, content_type: ContentType) -> dict[str, str]:
    fields = {}
    for name, (pattern, default) in FIELD_PATTERNS.get(content_type, {}).items():
        match = re.search(pattern, html, re.IGNORECASE)
        fields[name] = clean_text(match.group(1)) if match else default
    paragraph = PARAGRAPH_PATTERN.search(html)
    if paragraph:
        fields["description"] = clean_text(paragraph.group(1))[:500]
    return fields


def extract_content(html: str, url: str) -> SrdContent:
    """Parse a downloaded page into an SrdContent."""
    match = ID_PATTERN.search(url)
    content_type = detect_content_type(url, html)
    metadata = {"source": "Archives of Nethys", "extractedAt": datetime.utcnow().isoformat()}
    source = SOURCE_PATTERN.search(html)
    if source:
        metadata["sourceBook"] = clean_text(source.group(1))

    return SrdContent(
        id=match.group(1) if match else uuid.uuid4().hex,
        name=extract_name(html),
        content_type=content_type,
        source_url=url,
        raw_content=html,
        parsed_data=extract_fields(html, content_type),
        traits=[clean_text(t) for t in TRAIT_PATTERN.findall(html)],
        metadata=metadata,
        checksum=checksum(html),
    )


def validate_content(content: SrdContent) -> SrdValidationResult:
    """Errors for unusable content, warnings for fields the parser missed."""
    result = SrdValidationResult(detected_type=content.content_type)
    if not content.name.strip():
        result.errors.append(ValidationMessage("name", "Content name is required"))
    if not content.raw_content.strip():
        result.errors.append(ValidationMessage("raw_content", "Raw content cannot be empty"))

    for name in REQUIRED_FIELDS.get(content.content_type, ()):
        if not str(content.parsed_data.get(name, "")).strip():
            result.warnings.append(ValidationMessage(name, f"{name} not found in {content.content_type.label.lower()} data"))

    logger.debug(
        f"Validated {content.name}: {len(result.errors)} errors, {len(result.warnings)} warnings"
    )
    return result


class SrdDownloader:
    """Polite HTTP client for the rules site."""

    def __init__(self, config: SyncConfig | None = None, client: httpx.Client | None = None):
        self.config = config or get_config().sync
        self.client = client or httpx.Client(
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.timeout_seconds,
            follow_redirects=True,
        )

    def close(self) -> None:
        self.client.close()

    def index_url(self, content_type: ContentType) -> str:
        """URL of the index page listing every entry of a type.

        Raises:
            ValueError: If the type has no index page
        """
        page = INDEX_PAGES.get(content_type)
        if page is None:
            raise ValueError(f"No index page for content type: {content_type.name}")
        return f"{self.config.base_url}/{page}.aspx"

    def fetch(self, url: str) -> str:
        """GET a page, retrying transport and server errors.

        Raises:
            httpx.HTTPError: When every attempt fails
        """
        attempt = 1
        while True:
            try:
                response = self.client.get(url)
                response.raise_for_status()
                return response.text
            except httpx.HTTPError as e:
                if attempt >= self.config.max_retries:
                    logger.error(f"Failed to download {url}: {e}")
                    raise
                logger.warning(f"Attempt {attempt} for {url} failed: {e}")
                attempt += 1
                self.pause()

    def pause(self) -> None:
        if self.config.request_delay_ms > 0:
            time.sleep(self.config.request_delay_ms / 1000)

    def download_content(self, url: str) -> SrdContent:
        logger.info(f"Downloading content from {url}")
        content = extract_content(self.fetch(url), url)
        logger.info(f"Downloaded {content.content_type.name} '{content.name}' from {url}")
        return content

    def extract_links(self, html: str, content_type: ContentType) -> list[SrdIndexEntry]:
        """Entry links on an index page, absolute and without duplicates."""
        page = INDEX_PAGES.get(content_type)
        target = rf"[^'\"]*{page}\.aspx\?ID=\d+" if page else r"[^'\"]*\?ID=\d+"
        pattern = re.compile(rf"<a[^>]*href=['\"]({target})['\"][^>]*>([^<]+)</a>", re.IGNORECASE)

        entries: list[SrdIndexEntry] = []
        seen: set[str] = set()
        for href, text in pattern.findall(html):
            url = href if href.startswith("http") else f"{self.config.base_url}/{href.lstrip('/')}"
            if url in seen:
                continue
            seen.add(url)
            name = clean_text(text)
            entries.append(SrdIndexEntry(name, url, content_type, checksum(name + url)))
        return entries

    def get_content_index(self, content_types: list[ContentType] | None = None) -> list[SrdIndexEntry]:
        """Fetch the index pages and collect their entry links."""
        types = content_types or list(INDEX_PAGES)
        index = []
        for content_type in types:
            index.extend(self.extract_links(self.fetch(self.index_url(content_type)), content_type))
        logger.info(f"Fetched {len(index)} items from content index")
        return index
