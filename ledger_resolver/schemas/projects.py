from typing import Any, Literal

from pydantic import BaseModel, Field

ResolutionStatus = Literal["found", "not_found", "found_but_unavailable"]
MatchKind = Literal["exact", "suffix"]


class ProjectOut(BaseModel):
    identifier: str
    numeric_key: int | None = None
    title: str
    summary: str = ""
    description: str = ""
    category: str = "General"
    experience_level: str = "Unknown"
    budget_min: int = Field(default=0, ge=0)
    budget_max: int = Field(default=0, ge=0)
    timeline_weeks: int = Field(default=0, ge=0)
    required_skills: list[str] = Field(default_factory=list)
    owner: str = ""
    application_status: str = "Open"
    created_at_ms: int = 0
    attachments: list[str] = Field(default_factory=list)


class ResolutionOut(BaseModel):
    status: ResolutionStatus
    identifier: str
    source: str | None = None
    match_kind: MatchKind | None = None
    project: ProjectOut


class DecodeRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class DecodeOut(BaseModel):
    shape: str
    attributes: dict[str, Any] = Field(default_factory=dict)
