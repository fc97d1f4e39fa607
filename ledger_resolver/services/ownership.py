from __future__ import annotations

import logging

from opentelemetry import trace

from ledger_resolver.core.type_tags import type_matches
from ledger_resolver.services.decoder import build_record, decode
from ledger_resolver.services.ledger_client import LedgerReader
from ledger_resolver.services.records import CanonicalRecord, ResolverConfig

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class OwnershipScanner:
    """Last-resort lookup over everything a party owns.

    Ownership can lag the registry table, so results may be stale; callers only
    reach this after the direct and table paths found nothing.
    """

    def __init__(self, ledger: LedgerReader, config: ResolverConfig) -> None:
        self.ledger = ledger
        self.config = config

    async def scan_owned(self, owner_id: str, type_filter: str | None = None) -> list[CanonicalRecord]:
        type_filter = type_filter or self.config.record_type
        records: list[CanonicalRecord] = []
        cursor: str | None = None
        with tracer.start_as_current_span("resolver.ownership") as span:
            span.set_attribute("resolver.owner_id", owner_id)
            for _ in range(self.config.owned_objects_max_pages):
                page = await self.ledger.list_owned_objects(
                    owner_id,
                    type_filter,
                    cursor=cursor,
                    limit=self.config.owned_objects_page_size,
                )
                for obj in page.objects:
                    if not type_matches(obj.type, type_filter):
                        continue
                    record = build_record(decode(obj.content), identifier=obj.object_id)
                    if record is not None:
                        records.append(record)
                if not page.has_next_page or not page.next_cursor:
                    break
                cursor = page.next_cursor
            else:
                logger.info(
                    "owned object scan capped owner=%s pages=%s",
                    owner_id,
                    self.config.owned_objects_max_pages,
                )
            span.set_attribute("resolver.records", len(records))
        return records
