"""Tests for rules content download, processing and sync orchestration."""

import httpx
import pytest

from pathkeeper.config import SyncConfig
from pathkeeper.database.models import RuleEntry
from pathkeeper.database.session import session_scope
from pathkeeper.search.models import ContentType
from pathkeeper.sync import (
    RulesContentProcessor,
    RulesSyncService,
    SrdDownloader,
    SyncStatus,
    extract_content,
    validate_content,
)
from pathkeeper.sync.downloader import checksum, detect_content_type
from pathkeeper.sync.models import SrdContent

BASE_URL = "https://srd.test"

HEAL_PAGE = (
    "<html><head><title>Heal - Spells - Archives of Nethys</title></head><body>"
    "<h1>Heal</h1>"
    '<span class="trait">Healing</span><span class="trait">Vitality</span>'
    "Source: Player Core<br>"
    "Traditions: divine, primal<br>"
    "Cast: 1 to 3 actions<br>"
    "Spell 1"
    "<p>You channel <i>vital</i> energy.</p>"
    "</body></html>"
)

SPELL_INDEX = (
    '<a href="Spells.aspx?ID=1">Heal</a>'
    '<a href="/Spells.aspx?ID=2">Fear</a>'
    '<a href="Spells.aspx?ID=1">Heal</a>'
    '<a href="Feats.aspx?ID=9">Power Attack</a>'
)


def make_downloader(handler) -> SrdDownloader:
    config = SyncConfig(base_url=BASE_URL, request_delay_ms=0, max_retries=2)
    return SrdDownloader(config, client=httpx.Client(transport=httpx.MockTransport(handler)))


def site(pages: dict[str, str], calls: list[str] | None = None):
    """Mock transport handler serving ``pages`` by URL; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        if url in pages:
            return httpx.Response(200, text=pages[url])
        return httpx.Response(404, text="Not Found")

    return handler


class TestExtractContent:
    def test_spell_page(self):
        content = extract_content(HEAL_PAGE, f"{BASE_URL}/Spells.aspx?ID=1")
        assert content.id == "1"
        assert content.name == "Heal"
        assert content.content_type == ContentType.SPELLS
        assert content.traits == ["Healing", "Vitality"]
        assert content.metadata["sourceBook"] == "Player Core"
        assert content.parsed_data["traditions"] == "divine, primal"
        assert content.parsed_data["description"] == "You channel vital energy."
        assert content.level == 1
        assert content.checksum == checksum(HEAL_PAGE)

    def test_name_from_title(self):
        content = extract_content("<title>Goblin - Monsters</title>", f"{BASE_URL}/Monsters.aspx")
        assert content.name == "Goblin"
        assert content.content_type == ContentType.RULES
        assert len(content.id) == 32

    def test_detect_from_markers(self):
        assert detect_content_type(f"{BASE_URL}/Other.aspx", "Price 5 gp; Bulk L") == ContentType.EQUIPMENT
        assert detect_content_type(f"{BASE_URL}/Other.aspx", "Price 5 gp") == ContentType.RULES
        assert detect_content_type(f"{BASE_URL}/Feats.aspx?ID=3", "") == ContentType.FEATS


class TestValidateContent:
    def test_errors_for_missing_name_and_content(self):
        content = SrdContent(id="1", name=" ", content_type=ContentType.RULES, source_url="", raw_content="")
        result = validate_content(content)
        assert not result.is_valid
        assert [e.field for e in result.errors] == ["name", "raw_content"]

    def test_warnings_for_missing_fields(self):
        content = SrdContent(
            id="1",
            name="Heal",
            content_type=ContentType.SPELLS,
            source_url="",
            raw_content="<p>x</p>",
            parsed_data={"level": "1", "traditions": ""},
        )
        result = validate_content(content)
        assert result.is_valid
        assert result.warnings[0].message == "traditions not found in spells data"


class TestSrdDownloader:
    def test_extract_links(self):
        entries = make_downloader(site({})).extract_links(SPELL_INDEX, ContentType.SPELLS)
        assert [(e.name, e.url) for e in entries] == [
            ("Heal", f"{BASE_URL}/Spells.aspx?ID=1"),
            ("Fear", f"{BASE_URL}/Spells.aspx?ID=2"),
        ]

    def test_index_url(self):
        downloader = make_downloader(site({}))
        assert downloader.index_url(ContentType.FEATS) == f"{BASE_URL}/Feats.aspx"
        with pytest.raises(ValueError):
            downloader.index_url(ContentType.CONDITIONS)

    def test_fetch_retries(self):
        calls = []

        def flaky(request):
            calls.append(request.url)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, text="ok")

        assert make_downloader(flaky).fetch(f"{BASE_URL}/Spells.aspx") == "ok"
        assert len(calls) == 2

    def test_fetch_gives_up(self):
        calls = []
        downloader = make_downloader(site({}, calls))
        with pytest.raises(httpx.HTTPStatusError):
            downloader.fetch(f"{BASE_URL}/Missing.aspx")
        assert len(calls) == 2


class TestRulesContentProcessor:
    def test_create_skip_update(self, temp_db):
        processor = RulesContentProcessor()
        url = f"{BASE_URL}/Spells.aspx?ID=1"

        with session_scope() as session:
            first = processor.process(session, [extract_content(HEAL_PAGE, url)])
            again = processor.process(session, [extract_content(HEAL_PAGE, url)])
            changed = processor.process(session, [extract_content(HEAL_PAGE.replace("Spell 1", "Spell 2"), url)])

        assert first.statistics == {"created": 1, "updated": 0, "skipped": 0, "failed": 0}
        assert again.items_skipped == 1
        assert changed.items_updated == 1

        with session_scope() as session:
            entry = session.query(RuleEntry).one()
            assert entry.content_type == "SPELLS"
            assert entry.level == 2
            assert entry.traits == ["Healing", "Vitality"]
            assert entry.data["metadata"]["sourceBook"] == "Player Core"


class TestRulesSyncService:
    def make_service(self, pages, calls=None) -> RulesSyncService:
        config = SyncConfig(base_url=BASE_URL, request_delay_ms=0, max_retries=1)
        downloader = SrdDownloader(config, client=httpx.Client(transport=httpx.MockTransport(site(pages, calls))))
        return RulesSyncService(downloader=downloader, config=config)

    def test_partial_sync(self, temp_db):
        service = self.make_service(
            {f"{BASE_URL}/Spells.aspx": SPELL_INDEX, f"{BASE_URL}/Spells.aspx?ID=1": HEAL_PAGE}
        )
        result = service.sync_content_type(ContentType.SPELLS, initiated_by="gm")

        assert result.status == SyncStatus.PARTIALLY_COMPLETED
        assert result.items_processed == 1
        assert result.items_failed == 1
        assert result.errors[0].item_name == "Fear"
        assert result.metadata["SPELLS_created"] == 1

        history = service.get_history()
        assert [(h.status, h.initiated_by) for h in history] == [(SyncStatus.PARTIALLY_COMPLETED, "gm")]
        assert service.get_progress(result.sync_id).status == SyncStatus.COMPLETED

    def test_unchanged_content_is_skipped(self, temp_db):
        pages = {f"{BASE_URL}/Spells.aspx?ID=1": HEAL_PAGE}
        service = self.make_service(pages)
        first = service.sync_from_url(f"{BASE_URL}/Spells.aspx?ID=1")
        second = service.sync_from_url(f"{BASE_URL}/Spells.aspx?ID=1")

        assert first.status == SyncStatus.COMPLETED
        assert second.items_skipped == 1
        assert second.metadata["SPELLS_skipped"] == 1

    def test_content_type_override(self, temp_db):
        url = f"{BASE_URL}/Spells.aspx?ID=1"
        service = self.make_service({url: HEAL_PAGE})
        service.sync_from_url(url, ContentType.RULES)
        with session_scope() as session:
            assert session.query(RuleEntry).one().content_type == "RULES"

    def test_index_failure(self, temp_db):
        result = self.make_service({}).sync_content_type(ContentType.FEATS)
        assert result.status == SyncStatus.FAILED
        assert "404" in result.error_message

    def test_cancel_before_start(self, temp_db):
        calls = []
        service = self.make_service({}, calls)
        sync_id = service.create_sync()
        assert service.get_progress(sync_id).current_operation == "Queued"
        assert service.cancel_sync(sync_id)

        result = service.sync_from_url(f"{BASE_URL}/Spells.aspx?ID=1", sync_id=sync_id)
        assert result.status == SyncStatus.CANCELLED
        assert calls == []

    def test_cancel_while_downloading(self, temp_db):
        pages = {f"{BASE_URL}/Spells.aspx": SPELL_INDEX, f"{BASE_URL}/Spells.aspx?ID=1": HEAL_PAGE}
        calls = []
        service = self.make_service(pages, calls)
        sync_id = service.create_sync()

        def cancel_on_first_page(request):
            if str(request.url).endswith("ID=1"):
                service.cancel_sync(sync_id)
            return site(pages, calls)(request)

        service.downloader.client = httpx.Client(transport=httpx.MockTransport(cancel_on_first_page))
        result = service.sync_content_type(ContentType.SPELLS, sync_id=sync_id)

        assert result.status == SyncStatus.CANCELLED
        assert not any(url.endswith("ID=2") for url in calls)
        with session_scope() as session:
            assert session.query(RuleEntry).count() == 0

    def test_cancel_unknown_sync(self):
        service = RulesSyncService(config=SyncConfig())
        assert service.cancel_sync("missing") is False
        service.downloader.close()


class FailingProcessor(RulesContentProcessor):
    """Refuses to store entries with the given names."""

    def __init__(self, *names):
        self.names = set(names)

    def _upsert(self, session, item):
        if item.name in self.names:
            raise ValueError(f"cannot store {item.name}")
        return super()._upsert(session, item)


class TestStorageFailures:
    def make_service(self, pages, processor) -> RulesSyncService:
        config = SyncConfig(base_url=BASE_URL, request_delay_ms=0, max_retries=1)
        downloader = SrdDownloader(config, client=httpx.Client(transport=httpx.MockTransport(site(pages))))
        return RulesSyncService(downloader=downloader, processor=processor, config=config)

    def test_storage_failure_counts_as_failed(self, temp_db):
        pages = {
            f"{BASE_URL}/Spells.aspx": SPELL_INDEX,
            f"{BASE_URL}/Spells.aspx?ID=1": HEAL_PAGE,
            f"{BASE_URL}/Spells.aspx?ID=2": HEAL_PAGE.replace("Heal", "Fear"),
        }
        service = self.make_service(pages, FailingProcessor("Fear"))
        result = service.sync_content_type(ContentType.SPELLS)

        assert result.status == SyncStatus.PARTIALLY_COMPLETED
        assert result.items_processed == 1
        assert result.items_failed == 1
        assert result.errors[0].error_message == "cannot store Fear"

    def test_nothing_stored_is_a_failure(self, temp_db):
        url = f"{BASE_URL}/Spells.aspx?ID=1"
        result = self.make_service({url: HEAL_PAGE}, FailingProcessor("Heal")).sync_from_url(url)

        assert result.status == SyncStatus.FAILED
        assert result.items_processed == 0
        assert result.items_failed == 1
