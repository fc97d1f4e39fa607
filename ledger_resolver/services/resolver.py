"""Resolution cascade for table-backed ledger records.

``ProjectResolver.resolve`` runs the locators in a fixed order and stops at the
first confident match:

1. direct object fetch
2. registry table scan
3. creation-event lookup
4. objects owned by the registry
5. objects owned by the requester

Absence at any step is a value, not an exception. Transport failures are never
caught here; they abort the whole call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from functools import lru_cache
import logging
from typing import Any, Literal

from opentelemetry import trace

from ledger_resolver.core.config import get_settings
from ledger_resolver.core.ids import MatchKind, match_kind, normalize
from ledger_resolver.core.type_tags import type_matches
from ledger_resolver.services.decoder import AttributeMap, build_record, decode
from ledger_resolver.services.events import (
    CreationEvent,
    correlate,
    find_event_for_identifier,
    parse_creation_events,
)
from ledger_resolver.services.ledger_client import LedgerClient, LedgerReader, LedgerTransportError, ResolutionError
from ledger_resolver.services.locators import DirectLocator, MalformedContainerError, TableLocator
from ledger_resolver.services.ownership import OwnershipScanner
from ledger_resolver.services.records import CanonicalRecord, ResolutionContext, ResolverConfig

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

__all__ = [
    "LedgerTransportError",
    "MalformedContainerError",
    "ProjectResolver",
    "ResolutionError",
    "ResolutionResult",
    "decode_only",
    "get_resolver",
]

ResolutionStatus = Literal["found", "not_found", "found_but_unavailable"]
ResolutionSource = Literal["direct", "table", "events", "registry_owned", "requester_owned"]


@dataclass(slots=True)
class ResolutionResult:
    status: ResolutionStatus
    identifier: str
    record: CanonicalRecord | None = None
    source: ResolutionSource | None = None
    match_kind: MatchKind | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.status == "found"


@dataclass(slots=True)
class _EventProbe:
    matched: bool = False
    record: CanonicalRecord | None = None
    match_kind: MatchKind | None = None


class _CallState:
    """Per-call cache so one resolve issues at most one event query."""

    def __init__(self, ledger: LedgerReader, config: ResolverConfig) -> None:
        self._ledger = ledger
        self._config = config
        self._events: list[CreationEvent] | None = None

    async def events(self) -> list[CreationEvent]:
        if self._events is not None:
            return self._events
        if self._config.creation_event_type is None:
            self._events = []
            return self._events
        raw_events = await self._ledger.query_creation_events(
            self._config.creation_event_type,
            self._config.event_window,
            descending=True,
        )
        self._events = parse_creation_events(raw_events, window=self._config.event_window)
        return self._events


def decode_only(raw: Any) -> AttributeMap:
    return decode(raw)


class ProjectResolver:
    def __init__(self, ledger: LedgerReader, config: ResolverConfig) -> None:
        self.ledger = ledger
        self.config = config
        self.direct = DirectLocator(ledger, config)
        self.table = TableLocator(ledger, config)
        self.scanner = OwnershipScanner(ledger, config)

    async def resolve(
        self,
        identifier: str,
        context: ResolutionContext,
        *,
        timeout_seconds: float | None = None,
    ) -> ResolutionResult:
        if timeout_seconds is None:
            return await self._resolve(identifier, context)
        # Outstanding fetches are cancelled on expiry; a partial scan is never returned.
        async with asyncio.timeout(timeout_seconds):
            return await self._resolve(identifier, context)

    async def _resolve(self, identifier: str, context: ResolutionContext) -> ResolutionResult:
        identifier = identifier.strip()
        if not normalize(identifier):
            return ResolutionResult(status="not_found", identifier=identifier, metadata={"reason": "empty_identifier"})

        with tracer.start_as_current_span("resolver.resolve") as span:
            span.set_attribute("resolver.identifier", identifier)
            result = await self._cascade(identifier, context)
            span.set_attribute("resolver.status", result.status)
            if result.source is not None:
                span.set_attribute("resolver.source", result.source)
            if result.match_kind is not None:
                span.set_attribute("resolver.match_kind", result.match_kind)
        logger.info(
            "resolved id=%s status=%s source=%s match=%s",
            identifier,
            result.status,
            result.source,
            result.match_kind,
        )
        return result

    async def _cascade(self, identifier: str, context: ResolutionContext) -> ResolutionResult:
        state = _CallState(self.ledger, self.config)
        metadata: dict[str, Any] = {"registry_id": context.registry_id}
        unavailable_sources: list[str] = []

        record = await self.direct.try_direct(identifier)
        if record is not None:
            record = await self._with_numeric_key(record, state)
            return _found(identifier, record, "direct", "exact", metadata)

        handle_id: str | None = None
        try:
            lookup = await self.table.try_table(identifier, context.registry_id, events=await state.events())
        except MalformedContainerError as exc:
            logger.warning("table lookup skipped registry=%s: %s", context.registry_id, exc)
            metadata["malformed_container"] = str(exc)
        else:
            handle_id = lookup.handle_id
            metadata["entries_scanned"] = lookup.entries_scanned
            metadata["table_truncated"] = lookup.truncated
            if lookup.record is not None:
                record = await self._with_numeric_key(lookup.record, state)
                return _found(identifier, record, "table", lookup.match_kind, metadata)
            if lookup.unavailable:
                unavailable_sources.append("table")

        probe = await self._probe_events(identifier, context.registry_id, handle_id, await state.events())
        if probe.record is not None:
            return _found(identifier, probe.record, "events", probe.match_kind, metadata)
        if probe.matched:
            unavailable_sources.append("events")

        owners: list[tuple[ResolutionSource, str | None]] = [
            ("registry_owned", context.registry_id),
            ("requester_owned", context.requester_id),
        ]
        for source, owner_id in owners:
            if not owner_id:
                continue
            records = await self.scanner.scan_owned(owner_id)
            chosen = _pick_record(identifier, records)
            if chosen is not None:
                owned_record, kind = chosen
                owned_record = await self._with_numeric_key(owned_record, state)
                return _found(identifier, owned_record, source, kind, metadata)

        if unavailable_sources:
            metadata["unavailable_sources"] = unavailable_sources
            return ResolutionResult(
                status="found_but_unavailable",
                identifier=identifier,
                metadata=metadata,
            )
        return ResolutionResult(status="not_found", identifier=identifier, metadata=metadata)

    async def _probe_events(
        self,
        identifier: str,
        registry_id: str,
        handle_id: str | None,
        events: Sequence[CreationEvent],
    ) -> _EventProbe:
        with tracer.start_as_current_span("resolver.events") as span:
            hit = find_event_for_identifier(identifier, events)
            if hit is None:
                span.set_attribute("resolver.outcome", "no_event")
                return _EventProbe()
            event, kind = hit
            if kind == "suffix":
                logger.warning("suffix-only event match id=%s event=%s", identifier, event.identifiers())

            key = event.numeric_key
            if key is None and event.owner and event.title:
                # A key-less event can only borrow a key from a sibling event for the same record.
                siblings = [other for other in events if other is not event]
                key = correlate(event.owner, event.title, siblings, object_id=event.object_id)
            if key is None:
                span.set_attribute("resolver.outcome", "unavailable")
                return _EventProbe(matched=True, match_kind=kind)

            # Without a recognizable table handle, entries are read off the registry itself.
            parent_id = handle_id or registry_id
            value = await self.ledger.get_entry_value(parent_id, key)
            if value is None or not type_matches(value.type, self.config.record_type, include_arguments=True):
                span.set_attribute("resolver.outcome", "unavailable")
                return _EventProbe(matched=True, match_kind=kind)

            attributes = decode(value.content)
            record = build_record(
                attributes,
                identifier=(attributes.get("embedded_id") if attributes else None) or event.object_id or value.object_id,
                numeric_key=key,
            )
            span.set_attribute("resolver.outcome", "found" if record is not None else "unavailable")
            return _EventProbe(matched=True, record=record, match_kind=kind)

    async def _with_numeric_key(self, record: CanonicalRecord, state: _CallState) -> CanonicalRecord:
        if record.numeric_key is not None or not self.config.correlate_direct_keys:
            return record
        key = correlate(record.owner, record.title, await state.events(), object_id=record.identifier)
        if key is None:
            return record
        return replace(record, numeric_key=key)


def _pick_record(identifier: str, records: Sequence[CanonicalRecord]) -> tuple[CanonicalRecord, MatchKind] | None:
    suffix_hit: CanonicalRecord | None = None
    for record in records:
        kind = match_kind(identifier, record.identifier)
        if kind == "exact":
            return record, "exact"
        if kind == "suffix" and suffix_hit is None:
            suffix_hit = record
    if suffix_hit is None:
        return None
    logger.warning("suffix-only owned object match id=%s candidate=%s", identifier, suffix_hit.identifier)
    return suffix_hit, "suffix"


def _found(
    identifier: str,
    record: CanonicalRecord,
    source: ResolutionSource,
    kind: MatchKind | None,
    metadata: dict[str, Any],
) -> ResolutionResult:
    return ResolutionResult(
        status="found",
        identifier=identifier,
        record=record,
        source=source,
        match_kind=kind,
        metadata=metadata,
    )


@lru_cache
def get_resolver() -> ProjectResolver:
    settings = get_settings()
    ledger = LedgerClient(settings.rpc_url, timeout_seconds=settings.rpc_timeout_seconds)
    return ProjectResolver(ledger, ResolverConfig.from_settings(settings))
