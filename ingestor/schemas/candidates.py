from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from ingestor.services.relative_time import to_jst_iso


class CandidatePayload(BaseModel):
    """One post as emitted by the scraper sidecar, before fallback synthesis."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    author_id: str | None = Field(default=None, validation_alias=AliasChoices("author_id", "userId", "user_id"))
    text: str = ""
    permalink: str | None = Field(default=None, validation_alias=AliasChoices("permalink", "url"))
    raw_time_text: str | None = Field(default=None, validation_alias=AliasChoices("raw_time_text", "postTime"))
    captured_at: datetime | None = Field(default=None, validation_alias=AliasChoices("captured_at", "fetchedAt"))
    media: list[str] = Field(default_factory=list, validation_alias=AliasChoices("media", "images"))
    links: list[str] = Field(default_factory=list, validation_alias=AliasChoices("links", "urls"))
    hashtags: list[str] = Field(default_factory=list)

    @field_validator("media", mode="before")
    @classmethod
    def _flatten_images(cls, value: Any) -> Any:
        # image entries arrive either as bare URLs or as {"src": ..., "alt": ...}
        if not isinstance(value, list):
            return value
        flattened: list[str] = []
        for item in value:
            if isinstance(item, dict):
                src = item.get("src")
                if isinstance(src, str) and src and not src.startswith("data:image"):
                    flattened.append(src)
            elif isinstance(item, str) and item:
                flattened.append(item)
        return flattened


class RawCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str
    text: str
    permalink: str | None = None
    raw_time_text: str | None = None
    media: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    hashtags: set[str] = Field(default_factory=set)
    captured_at: datetime
    # placeholder author ids are per-position, not per-person
    author_synthesized: bool = Field(default=False, exclude=True)

    def has_source(self) -> bool:
        return bool(self.permalink or self.media or self.links)


class NormalizedRecord(RawCandidate):
    posted_at: datetime
    processed: bool = False
    query: str | None = None
    batch_id: str | None = None

    @field_serializer("captured_at", "posted_at", when_used="json")
    def _serialize_instant(self, value: datetime) -> str:
        return to_jst_iso(value)

    @field_serializer("hashtags", when_used="json")
    def _serialize_hashtags(self, value: set[str]) -> list[str]:
        return sorted(value)


class BlacklistEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    author_id: str
    reason: str
    banned_at: datetime


class ModerationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    banned_phrases: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("banned_phrases", "bannedPhrases", "texts"),
    )
    banned_url_fragments: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("banned_url_fragments", "bannedUrlFragments", "urls"),
    )

    @field_validator("banned_phrases", "banned_url_fragments")
    @classmethod
    def _drop_blank_entries(cls, value: list[str]) -> list[str]:
        # a blank entry is a substring of every post
        return [item for item in value if item.strip()]


class RunSummary(BaseModel):
    batch_id: str
    scraped: int = 0
    accepted: int = 0
    discarded: int = 0
    auto_banned: int = 0
    failed: int = 0
    discard_reasons: dict[str, int] = Field(default_factory=dict)
    started_at: datetime
    finished_at: datetime | None = None

    def discard(self, reason: str) -> None:
        self.discarded += 1
        self.discard_reasons[reason] = self.discard_reasons.get(reason, 0) + 1
