from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ledger_resolver.core.config import Settings


@dataclass(slots=True, frozen=True)
class CanonicalRecord:
    identifier: str
    numeric_key: int | None
    title: str
    summary: str
    description: str
    category: str
    experience_level: str
    budget_min: int
    budget_max: int
    timeline_weeks: int
    required_skills: list[str] = field(default_factory=list)
    owner: str = ""
    application_status: str = "Open"
    created_at_ms: int = 0
    attachments: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class ResolutionContext:
    registry_id: str
    requester_id: str | None = None


@dataclass(slots=True, frozen=True)
class ResolverConfig:
    record_type: str
    creation_event_type: str | None
    table_field_name: str
    table_page_size: int = 200
    event_window: int = 100
    fetch_concurrency: int = 8
    owned_objects_page_size: int = 50
    owned_objects_max_pages: int = 10
    correlate_direct_keys: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> ResolverConfig:
        if settings.package_id:
            record_type = f"{settings.package_id}::{settings.record_module}::{settings.record_type_name}"
            creation_event_type: str | None = (
                f"{settings.package_id}::{settings.record_module}::{settings.creation_event_name}"
            )
        else:
            # Events can only be queried by fully qualified type.
            record_type = f"{settings.record_module}::{settings.record_type_name}"
            creation_event_type = None
        return cls(
            record_type=record_type,
            creation_event_type=creation_event_type,
            table_field_name=settings.table_field_name,
            table_page_size=settings.table_page_size,
            event_window=settings.event_window,
            fetch_concurrency=settings.fetch_concurrency,
            owned_objects_page_size=settings.owned_objects_page_size,
            owned_objects_max_pages=settings.owned_objects_max_pages,
            correlate_direct_keys=settings.correlate_direct_keys,
        )
