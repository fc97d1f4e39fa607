from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import Any

from ledger_resolver.core.ids import MatchKind, coerce_u64, looks_like_object_id, match_kind, numeric_key_identifiers

logger = logging.getLogger(__name__)

EVENT_KEY_FIELDS = ("project_id", "projectId")
EVENT_OBJECT_ID_FIELDS = ("project_object_id", "projectObjectId", "object_id", "objectId")


@dataclass(slots=True, frozen=True)
class CreationEvent:
    owner: str | None
    title: str | None
    numeric_key: int | None
    object_id: str | None

    def identifiers(self) -> list[str]:
        candidates: list[str] = []
        if self.object_id:
            candidates.append(self.object_id)
        if self.numeric_key is not None:
            candidates.extend(numeric_key_identifiers(self.numeric_key))
        return candidates


def parse_creation_event(raw: Any) -> CreationEvent | None:
    if not isinstance(raw, dict):
        return None
    parsed = raw.get("parsedJson")
    body = parsed if isinstance(parsed, dict) else raw

    numeric_key: int | None = None
    object_id: str | None = None
    for key in EVENT_KEY_FIELDS:
        value = body.get(key)
        if value is None:
            continue
        # project_id is a table key in newer packages and an object id in older ones.
        if looks_like_object_id(value):
            object_id = object_id or str(value).strip()
        elif numeric_key is None:
            numeric_key = coerce_u64(value)
    for key in EVENT_OBJECT_ID_FIELDS:
        value = body.get(key)
        if object_id is None and looks_like_object_id(value):
            object_id = str(value).strip()

    owner = body.get("owner")
    title = body.get("title")
    return CreationEvent(
        owner=owner if isinstance(owner, str) else None,
        title=title if isinstance(title, str) else None,
        numeric_key=numeric_key,
        object_id=object_id,
    )


def parse_creation_events(raw_events: Sequence[Any], *, window: int = 100) -> list[CreationEvent]:
    events: list[CreationEvent] = []
    for raw in raw_events[:window]:
        event = parse_creation_event(raw)
        if event is not None:
            events.append(event)
    return events


def find_correlated_event(
    owner: str,
    title: str,
    events: Sequence[CreationEvent],
    *,
    numeric_key: int | None = None,
    object_id: str | None = None,
) -> CreationEvent | None:
    """Return the first event whose owner and title both equal the given values.

    Events that contradict a known ``numeric_key`` or ``object_id`` are skipped,
    so an entry never borrows the identity of a same-titled sibling.
    (owner, title) is otherwise assumed unique; when it is not, the first event
    in scan order wins and the collision is logged.
    """
    if not owner or not title:
        return None
    found = [
        event
        for event in events
        if event.owner == owner
        and event.title == title
        and _consistent(event, numeric_key=numeric_key, object_id=object_id)
    ]
    if not found:
        return None
    if len(found) > 1:
        logger.warning(
            "ambiguous creation event correlation owner=%s title=%r candidates=%s",
            owner,
            title,
            len(found),
        )
    return found[0]


def correlate(
    owner: str,
    title: str,
    events: Sequence[CreationEvent],
    *,
    object_id: str | None = None,
) -> int | None:
    event = find_correlated_event(owner, title, events, object_id=object_id)
    return event.numeric_key if event is not None else None


def find_event_for_identifier(identifier: str, events: Sequence[CreationEvent]) -> tuple[CreationEvent, MatchKind] | None:
    """Locate the creation event emitted for ``identifier``; exact matches beat suffix matches."""
    suffix_hit: CreationEvent | None = None
    for event in events:
        kinds = {match_kind(identifier, candidate) for candidate in event.identifiers()}
        if "exact" in kinds:
            return event, "exact"
        if "suffix" in kinds and suffix_hit is None:
            suffix_hit = event
    if suffix_hit is not None:
        return suffix_hit, "suffix"
    return None


def _consistent(event: CreationEvent, *, numeric_key: int | None, object_id: str | None) -> bool:
    if numeric_key is not None and event.numeric_key is not None and event.numeric_key != numeric_key:
        return False
    if object_id and event.object_id and match_kind(object_id, event.object_id) != "exact":
        return False
    return True
