"""Repository helpers for configured content sources."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import Source, SourceKind
from ingestion.settings import SourceConfig


class SourceNotFound(LookupError):
    """The requested source id does not exist."""


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def sync_sources(session: Session, configs: Iterable[SourceConfig]) -> int:
    """Upsert configured sources by URL; returns the number of new rows."""
    existing = {src.url: src for src in session.scalars(select(Source))}
    created = 0
    for config in configs:
        source = existing.get(config.url)
        if source is None:
            source = Source(url=config.url)
            session.add(source)
            existing[config.url] = source
            created += 1
        source.name = config.name
        source.kind = SourceKind(config.kind)
        source.park_scope = config.park_scope
        source.polling_interval_minutes = int(config.polling_interval_minutes)
        source.active = config.active
    session.flush()
    return created


def get_source(session: Session, source_id: uuid.UUID) -> Source:
    source = session.get(Source, source_id)
    if source is None:
        raise SourceNotFound(f"unknown source id: {source_id}")
    return source


def list_active(session: Session) -> List[Source]:
    stmt = select(Source).where(Source.active.is_(True)).order_by(Source.name, Source.id)
    return list(session.scalars(stmt))


def is_due(source: Source, now: Optional[datetime] = None) -> bool:
    """True when the polling interval has elapsed since the last attempt."""
    if source.last_checked_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    elapsed = now - _as_utc(source.last_checked_at)
    return elapsed >= timedelta(minutes=int(source.polling_interval_minutes))


def mark_checked(session: Session, source_id: uuid.UUID, *, error: Optional[str] = None) -> None:
    source = session.get(Source, source_id)
    if source is None:
        return
    source.last_checked_at = datetime.now(timezone.utc)
    source.last_error = error[:1024] if error else None
