"""Store downloaded rules content in the rules library."""

import logging
import threading

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database.models import RuleEntry
from .models import ProcessingError, ProcessingErrorType, ProcessingResult, SrdContent

logger = logging.getLogger(__name__)


class RulesContentProcessor:
    """Upserts SrdContent into RuleEntry rows keyed by (content_type, name)."""

    def process(
        self,
        session: Session,
        items: list[SrdContent],
        cancel_event: threading.Event | None = None,
    ) -> ProcessingResult:
        """Create, update or skip each item by comparing checksums.

        Args:
            session: Open database session; each item is committed on its own
            items: Downloaded content
            cancel_event: Stops processing early when set

        Returns:
            Counts per outcome and any per-item errors
        """
        logger.info(f"Processing {len(items)} rules entries")
        result = ProcessingResult()

        for item in items:
            if cancel_event is not None and cancel_event.is_set():
                break
            try:
                outcome = self._upsert(session, item)
                session.commit()
            except (SQLAlchemyError, ValueError, TypeError) as e:
                session.rollback()
                logger.error(f"Failed to process {item.name}: {e}")
                result.items_failed += 1
                result.errors.append(ProcessingError(item.name, str(e), ProcessingErrorType.DATABASE))
                continue

            if outcome == "created":
                result.items_created += 1
            elif outcome == "updated":
                result.items_updated += 1
            else:
                result.items_skipped += 1

        logger.info(
            f"Processed rules entries. Created: {result.items_created}, Updated: {result.items_updated}, "
            f"Skipped: {result.items_skipped}, Failed: {result.items_failed}"
        )
        return result

    def _upsert(self, session: Session, item: SrdContent) -> str:
        entry = (
            session.query(RuleEntry)
            .filter(RuleEntry.content_type == item.content_type.name, RuleEntry.name == item.name)
            .first()
        )
        if entry is not None and entry.checksum == item.checksum:
            return "skipped"

        outcome = "updated"
        if entry is None:
            entry = RuleEntry(content_type=item.content_type.name, name=item.name)
            session.add(entry)
            outcome = "created"

        entry.external_id = item.id
        entry.url = item.source_url
        entry.raw_content = item.raw_content
        entry.data = {**item.parsed_data, "metadata": dict(item.metadata)}
        entry.traits = list(item.traits)
        entry.level = item.level
        entry.checksum = item.checksum
        session.flush()
        return outcome
