from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ingestion.db.models import SourceKind


class ProcessRequest(BaseModel):
    source_id: Optional[uuid.UUID] = Field(default=None, description="Limit the run to one source")
    force: bool = Field(default=False, description="Ignore polling intervals")
    enqueue: bool = Field(default=False, description="Hand the run to a Celery worker instead of running inline")


class ProcessQueued(BaseModel):
    task_id: str
    status: str = "queued"


class ReceiptSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    article_url: str
    title: str
    items_found: int
    error: Optional[str] = None
    processed_at: datetime


class SourceSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    url: str
    kind: SourceKind
    park_scope: str
    polling_interval_minutes: int
    last_checked_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ProcessStats(BaseModel):
    pending_review: int
    added_today: int
    active_sources: int


class ProcessStatus(BaseModel):
    sources: list[SourceSummary]
    recent_articles: list[ReceiptSummary]
    stats: ProcessStats


class NotificationSummary(BaseModel):
    release_id: uuid.UUID
    matched: int
    sent: int
    failed: int
    skipped: int
    errors: list[str] = Field(default_factory=list)
