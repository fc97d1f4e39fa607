"""Field decoding for raw ledger payloads.

Record attributes arrive in one of three shapes:

- flat: the attribute map itself.
- single-wrapped: ``{"fields": {...}}``, the content of a plain Move object.
- double-wrapped: ``{"fields": {"name": ..., "value": {"fields": {...}}}}``, the
  content of a dynamic-field entry inside a table.

The shape is detected once and decoding dispatches on it. Attribute names have
changed over time, so every attribute is read through an ordered alias list.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
import math
from typing import Any, TypedDict

from ledger_resolver.core.ids import coerce_u64
from ledger_resolver.services.records import CanonicalRecord

DEFAULT_TITLE = "Untitled Project"
DEFAULT_CATEGORY = "General"
DEFAULT_EXPERIENCE_LEVEL = "Unknown"
DEFAULT_STATUS = "Open"

TITLE_KEYS = ("title",)
SUMMARY_KEYS = ("short_summary", "shortSummary")
DESCRIPTION_KEYS = ("description",)
CATEGORY_KEYS = ("category",)
EXPERIENCE_KEYS = ("experience_level", "experienceLevel")
BUDGET_MIN_KEYS = ("budget_min", "budgetMin")
BUDGET_MAX_KEYS = ("budget_max", "budgetMax")
TIMELINE_KEYS = ("timeline_weeks", "timelineWeeks")
SKILLS_KEYS = ("required_skills", "requiredSkills")
SKILLS_FALLBACK_KEYS = ("skills",)
OWNER_KEYS = ("owner",)
STATUS_KEYS = ("applications_status", "applicationsStatus")
CREATED_KEYS = ("creation_timestamp", "creationTimestamp")
ATTACHMENT_KEYS = ("attachments_walrus_blob_ids", "attachmentsWalrusBlobIds", "attachments")
NUMERIC_KEY_KEYS = ("project_id", "projectId")


class PayloadShape(str, Enum):
    EMPTY = "empty"
    FLAT = "flat"
    SINGLE_WRAPPED = "single_wrapped"
    DOUBLE_WRAPPED = "double_wrapped"


class AttributeMap(TypedDict, total=False):
    embedded_id: str | None
    numeric_key: int | None
    title: str
    short_summary: str
    description: str
    category: str
    experience_level: str
    budget_min: int
    budget_max: int
    timeline_weeks: int
    required_skills: list[str]
    owner: str
    applications_status: str
    creation_timestamp: int
    attachments: list[str]


def detect_shape(raw: Any) -> PayloadShape:
    if not isinstance(raw, Mapping) or not raw:
        return PayloadShape.EMPTY
    inner = raw.get("fields")
    if isinstance(inner, Mapping):
        if isinstance(inner.get("value"), Mapping):
            return PayloadShape.DOUBLE_WRAPPED
        return PayloadShape.SINGLE_WRAPPED
    if "fields" in raw:
        # A wrapper whose body is missing or not a map carries no attributes.
        return PayloadShape.EMPTY
    return PayloadShape.FLAT


def unwrap(raw: Any) -> Mapping[str, Any]:
    shape = detect_shape(raw)
    if shape is PayloadShape.EMPTY:
        return {}
    if shape is PayloadShape.FLAT:
        return raw
    inner = raw["fields"]
    if shape is PayloadShape.SINGLE_WRAPPED:
        return inner
    value = inner["value"]
    leaf = value.get("fields")
    if isinstance(leaf, Mapping):
        return leaf
    return value


def decode(raw: Any) -> AttributeMap:
    """Flatten ``raw`` into an attribute map; an empty map means nothing decodable."""
    fields = unwrap(raw)
    if not fields:
        return {}

    return {
        "embedded_id": extract_embedded_id(fields),
        "numeric_key": coerce_u64(_first_present(fields, NUMERIC_KEY_KEYS)),
        "title": _text(fields, TITLE_KEYS, default=DEFAULT_TITLE),
        "short_summary": _text(fields, SUMMARY_KEYS, default=""),
        "description": _text(fields, DESCRIPTION_KEYS, default=""),
        "category": _text(fields, CATEGORY_KEYS, default=DEFAULT_CATEGORY),
        "experience_level": _text(fields, EXPERIENCE_KEYS, default=DEFAULT_EXPERIENCE_LEVEL),
        "budget_min": _number(fields, BUDGET_MIN_KEYS),
        "budget_max": _number(fields, BUDGET_MAX_KEYS),
        "timeline_weeks": _number(fields, TIMELINE_KEYS),
        "required_skills": _skills(fields),
        "owner": _text(fields, OWNER_KEYS, default=""),
        "applications_status": _text(fields, STATUS_KEYS, default=DEFAULT_STATUS),
        "creation_timestamp": _number(fields, CREATED_KEYS),
        "attachments": _string_list(_first_present(fields, ATTACHMENT_KEYS)),
    }


def extract_embedded_id(fields: Mapping[str, Any]) -> str | None:
    raw_id = fields.get("id")
    if isinstance(raw_id, Mapping):
        raw_id = raw_id.get("id")
    if isinstance(raw_id, str) and raw_id.strip():
        return raw_id.strip()
    return None


def build_record(
    attributes: AttributeMap,
    *,
    identifier: str | None,
    numeric_key: int | None = None,
) -> CanonicalRecord | None:
    if not attributes or not identifier:
        return None
    key = numeric_key if numeric_key is not None else attributes.get("numeric_key")
    return CanonicalRecord(
        identifier=identifier,
        numeric_key=coerce_u64(key),
        title=attributes.get("title", DEFAULT_TITLE),
        summary=attributes.get("short_summary", ""),
        description=attributes.get("description", ""),
        category=attributes.get("category", DEFAULT_CATEGORY),
        experience_level=attributes.get("experience_level", DEFAULT_EXPERIENCE_LEVEL),
        budget_min=attributes.get("budget_min", 0),
        budget_max=attributes.get("budget_max", 0),
        timeline_weeks=attributes.get("timeline_weeks", 0),
        required_skills=list(attributes.get("required_skills", [])),
        owner=attributes.get("owner", ""),
        application_status=attributes.get("applications_status", DEFAULT_STATUS),
        created_at_ms=attributes.get("creation_timestamp", 0),
        attachments=list(attributes.get("attachments", [])),
    )


def coerce_number(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        number = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return 0
        if raw.isdigit():
            return int(raw)
        try:
            number = float(raw)
        except ValueError:
            return 0
    else:
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, int(number))


def _first_present(fields: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in fields and fields[key] is not None:
            return fields[key]
    return None


def _text(fields: Mapping[str, Any], keys: tuple[str, ...], *, default: str) -> str:
    for key in keys:
        value = fields.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return default


def _number(fields: Mapping[str, Any], keys: tuple[str, ...]) -> int:
    return coerce_number(_first_present(fields, keys))


def _skills(fields: Mapping[str, Any]) -> list[str]:
    if any(key in fields for key in SKILLS_KEYS):
        primary = _first_present(fields, SKILLS_KEYS)
        return _string_list(primary) if _is_sequence(primary) else []
    fallback = _first_present(fields, SKILLS_FALLBACK_KEYS)
    if _is_sequence(fallback):
        return _string_list(fallback)
    if isinstance(fallback, str) and fallback.strip():
        return [fallback.strip()]
    return []


def _string_list(value: Any) -> list[str]:
    if not _is_sequence(value):
        return []
    return [str(item) for item in value if item is not None]


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))
