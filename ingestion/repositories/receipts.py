"""Processing receipts: the per-article idempotence guard."""

from __future__ import annotations

import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ingestion.db.models import ProcessingReceipt


def has_receipt(session: Session, article_url: str) -> bool:
    stmt = select(ProcessingReceipt.id).where(ProcessingReceipt.article_url == article_url).limit(1)
    return session.execute(stmt).first() is not None


def existing_receipt_urls(session: Session, urls: Iterable[str]) -> set[str]:
    stmt = select(ProcessingReceipt.article_url).where(ProcessingReceipt.article_url.in_(list(urls)))
    return {row[0] for row in session.execute(stmt)}


def record_receipt(
    session: Session,
    *,
    article_url: str,
    source_id: Optional[uuid.UUID],
    title: str,
    items_found: int,
    error: Optional[str] = None,
) -> bool:
    """Insert the receipt inside a savepoint.

    Returns False when another worker already recorded the same URL.
    """
    receipt = ProcessingReceipt(
        article_url=article_url,
        source_id=source_id,
        title=title[:512],
        items_found=items_found,
        error=error[:1024] if error else None,
    )
    try:
        with session.begin_nested():
            session.add(receipt)
    except IntegrityError:
        return False
    return True


def recent_receipts(session: Session, *, limit: int = 20) -> List[ProcessingReceipt]:
    stmt = select(ProcessingReceipt).order_by(ProcessingReceipt.processed_at.desc()).limit(limit)
    return list(session.scalars(stmt))
