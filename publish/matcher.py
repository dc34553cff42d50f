from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import CustomerInterest, NotificationRecord, Release, ReleaseStatus

ANY_PARK = "all"


@dataclass(frozen=True)
class CustomerMatch:
    customer_id: str
    release_id: uuid.UUID
    score: int
    reasons: tuple[str, ...] = field(default_factory=tuple)


def score_interest(release: Release, interest: CustomerInterest) -> CustomerMatch | None:
    """Apply the interest gate; returns None when the interest does not match."""
    if not interest.notify:
        return None

    reasons: list[str] = []
    park = (interest.park or "").strip().lower()
    if park and park != ANY_PARK:
        if park != release.park.value:
            return None
        reasons.append(f"park:{park}")

    category = (interest.category or "").strip().lower()
    if category:
        if category != release.category.value:
            return None
        reasons.append(f"category:{category}")

    keywords = [kw.strip().lower() for kw in (interest.keywords or []) if kw and kw.strip()]
    if keywords:
        haystack = f"{release.title} {release.description or ''}".lower()
        matched = [kw for kw in keywords if kw in haystack]
        if not matched:
            return None
        reasons.extend(f"keyword:{kw}" for kw in matched)

    return CustomerMatch(
        customer_id=interest.customer_id,
        release_id=release.id,
        score=len(reasons),
        reasons=tuple(reasons),
    )


def _already_notified(session: Session, release_id: uuid.UUID) -> set[str]:
    stmt = select(NotificationRecord.customer_id).where(NotificationRecord.release_id == release_id)
    return set(session.scalars(stmt))


def is_matchable(release: Release) -> bool:
    return release.status == ReleaseStatus.APPROVED and release.merged_into_id is None


def match_customers(
    session: Session,
    release: Release,
    interests: Iterable[CustomerInterest] | None = None,
) -> list[CustomerMatch]:
    """Customers to notify for an approved, unmerged release, best score first."""
    if not is_matchable(release):
        return []
    if interests is None:
        interests = session.scalars(select(CustomerInterest).where(CustomerInterest.notify.is_(True)))
    notified = _already_notified(session, release.id)

    best: dict[str, CustomerMatch] = {}
    for interest in interests:
        if interest.customer_id in notified:
            continue
        match = score_interest(release, interest)
        if match is None:
            continue
        current = best.get(match.customer_id)
        if current is None or match.score > current.score:
            best[match.customer_id] = match
    return sorted(best.values(), key=lambda m: (-m.score, m.customer_id))
