"""Domain DTOs for the ingestion pipeline."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ingestion.db.models import ItemCategory, Park


class FetchResult(BaseModel):
    """Body of a fetched page; always untrusted text."""

    url: str
    status: int
    body: str
    via_proxy: bool = False


class FeedEntryDTO(BaseModel):
    """Normalized feed/listing entry pointing at one article."""

    title: str = ""
    link: str
    content: str = ""
    published_at: Optional[datetime] = None
    enclosure_url: Optional[str] = None
    fingerprint: str = Field(..., description="sha256 of link+title, used to drop repeated entries")


class ReleaseCandidate(BaseModel):
    """One extracted product mention, consumed immediately by the canonicalizer."""

    title: str = Field(..., min_length=1, max_length=512)
    description: str = ""
    park: Park
    category: ItemCategory = ItemCategory.OTHER
    price_estimate: Optional[float] = Field(default=None, ge=0)
    image_url: str = ""
    source_url: str
    source_name: Optional[str] = None
    article_title: Optional[str] = None
    raw_content: str = ""
    is_limited_edition: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str) -> str:
        s = " ".join(v.split())
        if not s:
            raise ValueError("title must not be blank")
        return s


class MergeOutcome(BaseModel):
    """Result of folding one candidate into the catalog."""

    kind: Literal["inserted", "merged"]
    release_id: uuid.UUID
    canonical_name: str
    matched_by: Optional[Literal["canonical", "fuzzy"]] = None
    similarity: Optional[float] = None

    @property
    def inserted(self) -> bool:
        return self.kind == "inserted"


class SourceReport(BaseModel):
    """Per-source counters collected by the processing run."""

    source_id: uuid.UUID
    source_name: str
    articles_processed: int = 0
    items_created: int = 0
    items_merged: int = 0
    errors: List[str] = Field(default_factory=list)


class RunReport(BaseModel):
    """Aggregate report of one processing run."""

    model_config = ConfigDict(extra="forbid")

    sources_processed: int = 0
    articles_processed: int = 0
    items_created: int = 0
    items_merged: int = 0
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    trace_id: Optional[str] = None

    def absorb(self, report: SourceReport) -> None:
        self.sources_processed += 1
        self.articles_processed += report.articles_processed
        self.items_created += report.items_created
        self.items_merged += report.items_merged
        self.errors.extend(f"[{report.source_name}] {e}" for e in report.errors)
