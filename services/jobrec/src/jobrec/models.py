from __future__ import annotations

import json
from enum import Enum

from pydantic import AliasChoices, BaseModel, Field, field_serializer


class JobListing(BaseModel):
    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "item_id"))
    title: str | None = None
    company_name: str | None = None
    location: str | None = None
    via: str | None = None
    description: str | None = None
    job_highlights: list[str] | None = None
    url: str | None = None
    keywords: set[str] = Field(default_factory=set)
    favorite: bool = False

    @field_serializer("keywords")
    def serialize_keywords(self, keywords: set[str]) -> list[str]:
        return sorted(keywords)

    def keyword_source_text(self) -> str:
        return ". ".join([self.description or "", *(self.job_highlights or [])])


def dump_listings(listings: list[JobListing]) -> str:
    return json.dumps(
        [listing.model_dump(mode="json", exclude_none=True) for listing in listings]
    )


def load_listings(blob: str) -> list[JobListing]:
    return [JobListing.model_validate(item) for item in json.loads(blob)]


class ResultResponse(BaseModel):
    result: str


class LoginRequest(BaseModel):
    user_id: str = ""
    password: str = ""


class LoginResponse(BaseModel):
    status: str
    user_id: str
    name: str


class RegisterRequest(BaseModel):
    user_id: str = ""
    password: str = ""
    first_name: str = ""
    last_name: str = ""


class HistoryRequest(BaseModel):
    user_id: str = ""
    favorite: list[JobListing] = Field(default_factory=list)


class RegistrationOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    routes: dict[str, dict[str, float | int]]
    failures_by_kind: dict[str, int]
