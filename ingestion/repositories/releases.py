"""Repository helpers for the release catalog."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ingestion.db.models import Park, Release, ReleaseSighting, ReleaseStatus
from ingestion.models.domain import ReleaseCandidate

MAX_CHAIN = 64


def find_unmerged_by_canonical(session: Session, canonical_name: str) -> Optional[Release]:
    stmt = (
        select(Release)
        .where(Release.canonical_name == canonical_name, Release.merged_into_id.is_(None))
        .order_by(Release.created_at, Release.id)
        .limit(1)
    )
    return session.scalars(stmt).first()


def unmerged_in_park(session: Session, park: Park) -> List[Release]:
    """Unmerged releases of a park, oldest first."""
    stmt = (
        select(Release)
        .where(Release.park == park, Release.merged_into_id.is_(None))
        .order_by(Release.created_at, Release.id)
    )
    return list(session.scalars(stmt))


def insert_release(
    session: Session,
    candidate: ReleaseCandidate,
    canonical_name: str,
    *,
    merged_into_id: Optional[uuid.UUID] = None,
) -> Release:
    release = Release(
        title=candidate.title,
        canonical_name=canonical_name,
        description=candidate.description,
        image_url=candidate.image_url or "",
        original_image_url=candidate.image_url or None,
        park=candidate.park,
        category=candidate.category,
        price_estimate=candidate.price_estimate,
        is_limited_edition=candidate.is_limited_edition,
        tags=list(candidate.tags),
        status=ReleaseStatus.PENDING,
        merged_into_id=merged_into_id,
        source_url=candidate.source_url,
        source_name=candidate.source_name,
        raw_content=candidate.raw_content or None,
    )
    session.add(release)
    session.flush()
    return release


def apply_image(release: Release, image_url: str) -> bool:
    """Fill missing image fields; never replaces an existing image."""
    if not image_url:
        return False
    changed = False
    if not release.original_image_url:
        release.original_image_url = image_url
        changed = True
    if not release.image_url:
        release.image_url = image_url
        changed = True
    return changed


def add_sighting(
    session: Session,
    release_id: uuid.UUID,
    *,
    source_url: str,
    source_name: Optional[str],
    article_title: Optional[str],
) -> bool:
    exists = session.execute(
        select(ReleaseSighting.id).where(
            ReleaseSighting.release_id == release_id, ReleaseSighting.source_url == source_url
        )
    ).first()
    if exists is not None:
        return False
    try:
        with session.begin_nested():
            session.add(
                ReleaseSighting(
                    release_id=release_id,
                    source_url=source_url,
                    source_name=source_name,
                    article_title=(article_title or "")[:512] or None,
                )
            )
    except IntegrityError:
        return False
    return True


def resolve_root(session: Session, release_id: uuid.UUID) -> Release:
    """Follow ``merged_into_id`` to the surviving release."""
    release = session.get(Release, release_id)
    if release is None:
        raise LookupError(f"unknown release id: {release_id}")
    seen = {release.id}
    while release.merged_into_id is not None and len(seen) <= MAX_CHAIN:
        parent = session.get(Release, release.merged_into_id)
        if parent is None or parent.id in seen:
            break
        seen.add(parent.id)
        release = parent
    return release


def merge_releases(session: Session, source_id: uuid.UUID, target_id: uuid.UUID) -> Release:
    """Fold ``source_id`` into the root of ``target_id`` and flatten pointers."""
    root = resolve_root(session, target_id)
    if root.id == source_id:
        return root
    source = session.get(Release, source_id)
    if source is None:
        raise LookupError(f"unknown release id: {source_id}")
    session.execute(
        update(Release)
        .where(Release.merged_into_id == source_id)
        .values(merged_into_id=root.id)
        .execution_options(synchronize_session="fetch")
    )
    source.merged_into_id = root.id
    apply_image(root, source.original_image_url or source.image_url)
    session.flush()
    return root


def approved_since(session: Session, since: datetime) -> List[Release]:
    stmt = (
        select(Release)
        .where(
            Release.status == ReleaseStatus.APPROVED,
            Release.merged_into_id.is_(None),
            Release.created_at >= since,
        )
        .order_by(Release.created_at, Release.id)
    )
    return list(session.scalars(stmt))


def count_pending(session: Session) -> int:
    stmt = select(func.count(Release.id)).where(
        Release.status == ReleaseStatus.PENDING, Release.merged_into_id.is_(None)
    )
    return int(session.scalar(stmt) or 0)


def count_created_since(session: Session, since: datetime) -> int:
    stmt = select(func.count(Release.id)).where(Release.created_at >= since, Release.merged_into_id.is_(None))
    return int(session.scalar(stmt) or 0)
