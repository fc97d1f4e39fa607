from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import logging
from typing import Any

from opentelemetry import trace

from ledger_resolver.core.ids import MatchKind, coerce_u64, looks_like_object_id, match_kind, numeric_key_identifiers
from ledger_resolver.core.type_tags import type_matches
from ledger_resolver.services.decoder import AttributeMap, build_record, decode, unwrap
from ledger_resolver.services.events import CreationEvent, find_correlated_event
from ledger_resolver.services.ledger_client import LedgerObject, LedgerReader, ResolutionError, TableEntry
from ledger_resolver.services.records import CanonicalRecord, ResolverConfig

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HANDLE_ID_KEYS = ("id", "objectId")


class MalformedContainerError(ResolutionError):
    """Raised when a registry's table attribute has no recognizable handle id."""


@dataclass(slots=True)
class MatchCandidate:
    position: int
    entry: TableEntry
    raw: LedgerObject | None
    attributes: AttributeMap
    identifiers: list[str] = field(default_factory=list)
    correlated_identifiers: list[str] = field(default_factory=list)
    numeric_key: int | None = None
    correlated: CreationEvent | None = None

    @property
    def decodable(self) -> bool:
        return bool(self.attributes)


@dataclass(slots=True)
class TableLookup:
    handle_id: str | None = None
    record: CanonicalRecord | None = None
    match_kind: MatchKind | None = None
    unavailable: bool = False
    entries_scanned: int = 0
    truncated: bool = False


class DirectLocator:
    def __init__(self, ledger: LedgerReader, config: ResolverConfig) -> None:
        self.ledger = ledger
        self.config = config

    async def try_direct(self, identifier: str) -> CanonicalRecord | None:
        with tracer.start_as_current_span("resolver.direct") as span:
            span.set_attribute("resolver.identifier", identifier)
            obj = await self.ledger.get_object_by_key(identifier)
            if obj is None:
                span.set_attribute("resolver.outcome", "missing")
                return None
            if not type_matches(obj.type, self.config.record_type):
                logger.debug("direct lookup hit non-record type id=%s type=%s", identifier, obj.type)
                span.set_attribute("resolver.outcome", "wrong_type")
                return None
            record = build_record(decode(obj.content), identifier=obj.object_id)
            span.set_attribute("resolver.outcome", "found" if record is not None else "undecodable")
            return record


class TableLocator:
    def __init__(self, ledger: LedgerReader, config: ResolverConfig) -> None:
        self.ledger = ledger
        self.config = config

    async def try_table(
        self,
        identifier: str,
        registry_id: str,
        *,
        events: Sequence[CreationEvent] = (),
    ) -> TableLookup:
        """Scan one page of the registry table for ``identifier``.

        Raises MalformedContainerError when the registry has no usable table handle.
        """
        with tracer.start_as_current_span("resolver.table") as span:
            span.set_attribute("resolver.identifier", identifier)
            span.set_attribute("resolver.registry_id", registry_id)
            handle_id = await self.resolve_handle(registry_id)
            if handle_id is None:
                span.set_attribute("resolver.outcome", "registry_missing")
                return TableLookup()

            page = await self.ledger.list_entries(handle_id, self.config.table_page_size)
            entries = page.entries[: self.config.table_page_size]
            if page.has_next_page:
                logger.info(
                    "table scan capped handle=%s page_size=%s; later entries not scanned",
                    handle_id,
                    self.config.table_page_size,
                )
            values = await self._fetch_values(handle_id, entries)
            candidates = [
                self._candidate(position, entry, value, events)
                for position, (entry, value) in enumerate(zip(entries, values))
            ]
            lookup = select_candidate(identifier, candidates)
            lookup.handle_id = handle_id
            lookup.entries_scanned = len(entries)
            lookup.truncated = page.has_next_page
            span.set_attribute("resolver.entries_scanned", len(entries))
            span.set_attribute("resolver.outcome", _lookup_outcome(lookup))
            return lookup

    async def resolve_handle(self, registry_id: str) -> str | None:
        registry = await self.ledger.get_container_handle(registry_id)
        if registry is None:
            logger.info("registry object not found id=%s", registry_id)
            return None
        return extract_table_handle(registry.content, self.config.table_field_name)

    async def _fetch_values(self, handle_id: str, entries: Sequence[TableEntry]) -> list[LedgerObject | None]:
        if not entries:
            return []
        semaphore = asyncio.Semaphore(self.config.fetch_concurrency)

        async def fetch(entry: TableEntry) -> LedgerObject | None:
            async with semaphore:
                return await self.ledger.get_entry_value(handle_id, entry.enumeration_key)

        # Results are index-aligned with entries so selection never depends on completion order.
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(fetch(entry)) for entry in entries]
        except ExceptionGroup as failures:
            raise failures.exceptions[0]
        return [task.result() for task in tasks]

    def _candidate(
        self,
        position: int,
        entry: TableEntry,
        value: LedgerObject | None,
        events: Sequence[CreationEvent],
    ) -> MatchCandidate:
        entry_key = coerce_enumeration_key(entry.enumeration_key)
        attributes: AttributeMap = {}
        if value is not None and type_matches(value.type, self.config.record_type, include_arguments=True):
            attributes = decode(value.content)

        embedded_id = attributes.get("embedded_id") if attributes else None
        field_object_id = value.object_id if value is not None else entry.value_ref
        own_key = entry_key
        if own_key is None and attributes:
            own_key = attributes.get("numeric_key")

        correlated: CreationEvent | None = None
        if attributes:
            correlated = find_correlated_event(
                attributes.get("owner", ""),
                attributes.get("title", ""),
                events,
                numeric_key=own_key,
                object_id=embedded_id,
            )
        numeric_key = own_key
        if numeric_key is None and correlated is not None:
            numeric_key = correlated.numeric_key

        identifiers: list[str] = []
        if embedded_id:
            identifiers.append(embedded_id)
        if field_object_id:
            identifiers.append(field_object_id)
        if own_key is not None:
            identifiers.extend(numeric_key_identifiers(own_key))
        identifiers = _dedupe(identifiers)
        borrowed = correlated.identifiers() if correlated is not None else []

        return MatchCandidate(
            position=position,
            entry=entry,
            raw=value,
            attributes=attributes,
            identifiers=identifiers,
            correlated_identifiers=[item for item in _dedupe(borrowed) if item not in identifiers],
            numeric_key=numeric_key,
            correlated=correlated,
        )


def select_candidate(identifier: str, candidates: Sequence[MatchCandidate]) -> TableLookup:
    """Pick the best match, breaking ties by enumeration order.

    Exact matches beat suffix matches, and an entry's own identifiers beat the
    ones borrowed from a correlated creation event.
    """
    best: tuple[int, int, int] | None = None
    chosen: MatchCandidate | None = None
    for candidate in candidates:
        rank = _match_rank(identifier, candidate)
        if rank is None:
            continue
        ordered = (*rank, candidate.position)
        if best is None or ordered < best:
            best = ordered
            chosen = candidate

    if chosen is None or best is None:
        return TableLookup()
    kind: MatchKind = "exact" if best[0] == 0 else "suffix"
    if kind == "suffix":
        logger.warning(
            "suffix-only identifier match id=%s candidate=%s position=%s",
            identifier,
            (chosen.identifiers or chosen.correlated_identifiers or [None])[0],
            chosen.position,
        )
    if not chosen.decodable:
        return TableLookup(match_kind=kind, unavailable=True)
    return TableLookup(record=candidate_record(chosen), match_kind=kind)


def candidate_record(candidate: MatchCandidate) -> CanonicalRecord | None:
    attributes = candidate.attributes
    correlated_id = candidate.correlated.object_id if candidate.correlated is not None else None
    field_object_id = candidate.raw.object_id if candidate.raw is not None else candidate.entry.value_ref
    identifier = (
        attributes.get("embedded_id")
        or correlated_id
        or field_object_id
        or (numeric_key_identifiers(candidate.numeric_key)[-1] if candidate.numeric_key is not None else None)
    )
    return build_record(attributes, identifier=identifier, numeric_key=candidate.numeric_key)


def extract_table_handle(registry_content: Any, field_name: str) -> str:
    fields = unwrap(registry_content)
    table = fields.get(field_name) if fields else None
    if not isinstance(table, Mapping):
        raise MalformedContainerError(f"registry attribute {field_name!r} is missing or not a table")

    inner = table.get("fields")
    if isinstance(inner, Mapping) and inner.get("id") is not None:
        raw_handle = inner.get("id")
    elif table.get("id") is not None:
        raw_handle = table.get("id")
    else:
        raise MalformedContainerError(f"registry attribute {field_name!r} has no handle id")

    if isinstance(raw_handle, str):
        if looks_like_object_id(raw_handle):
            return raw_handle.strip()
        raise MalformedContainerError(f"unrecognized table handle {raw_handle!r}")
    if isinstance(raw_handle, Mapping):
        for key in HANDLE_ID_KEYS:
            value = raw_handle.get(key)
            if looks_like_object_id(value):
                return value.strip()
        for value in raw_handle.values():
            if looks_like_object_id(value):
                return value.strip()
    raise MalformedContainerError(f"unrecognized table handle shape for {field_name!r}")


def coerce_enumeration_key(name: Any) -> int | None:
    """Decode a table entry key given as a number, ``{"value": ...}`` or any map holding one.

    Wrapper keys nest: ``{"type": "...::Name", "value": {"type": "u64", "value": "7"}}``.
    """
    if not isinstance(name, Mapping):
        return coerce_u64(name)
    if "value" in name:
        wrapped = coerce_enumeration_key(name["value"])
        if wrapped is not None:
            return wrapped
    for value in name.values():
        if isinstance(value, (int, float, str)):
            scanned = coerce_u64(value)
            if scanned is not None:
                return scanned
    return None


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    deduped: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        deduped.append(value)
    return deduped


def _lookup_outcome(lookup: TableLookup) -> str:
    if lookup.record is not None:
        return "found"
    if lookup.unavailable:
        return "unavailable"
    return "no_match"


def _match_rank(identifier: str, candidate: MatchCandidate) -> tuple[int, int] | None:
    ranks: list[tuple[int, int]] = []
    for tier, values in enumerate((candidate.identifiers, candidate.correlated_identifiers)):
        for value in values:
            kind = match_kind(identifier, value)
            if kind is not None:
                ranks.append((0 if kind == "exact" else 1, tier))
    return min(ranks) if ranks else None
