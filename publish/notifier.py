from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ingestion.db.models import NotificationRecord, Release
from ingestion.repositories.releases import approved_since, resolve_root
from publish.matcher import CustomerMatch, match_customers

logger = logging.getLogger(__name__)


class NotificationSendFailure(Exception):
    """A sender could not deliver one notification."""


class NotificationSender(Protocol):
    def send(self, customer_id: str, release: Release, match: CustomerMatch) -> None: ...  # noqa: D401


class LoggingSender:
    """Default sender; delivery channels live outside this service."""

    def send(self, customer_id: str, release: Release, match: CustomerMatch) -> None:
        logger.info(
            "notify.send",
            extra={
                "customer_id": customer_id,
                "release_id": str(release.id),
                "title": release.title,
                "reasons": list(match.reasons),
            },
        )


@dataclass
class NotificationReport:
    matched: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def absorb(self, other: "NotificationReport") -> None:
        self.matched += other.matched
        self.sent += other.sent
        self.failed += other.failed
        self.skipped += other.skipped
        self.errors.extend(other.errors)


def _claim(session: Session, release_id: uuid.UUID, customer_id: str) -> NotificationRecord | None:
    record = NotificationRecord(release_id=release_id, customer_id=customer_id, delivered=False)
    try:
        with session.begin_nested():
            session.add(record)
    except IntegrityError:
        return None
    return record


def notify_release(
    session: Session,
    release_id: uuid.UUID,
    sender: NotificationSender | None = None,
) -> NotificationReport:
    """Notify every matching customer at most once for a release."""
    sender = sender or LoggingSender()
    report = NotificationReport()
    release = resolve_root(session, release_id)
    matches = match_customers(session, release)
    report.matched = len(matches)

    for match in matches:
        record = _claim(session, release.id, match.customer_id)
        if record is None:
            report.skipped += 1
            continue
        # the claim must be durable before anything leaves the process
        session.commit()
        try:
            sender.send(match.customer_id, release, match)
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, NotificationSendFailure):
                error = str(exc)
            else:
                error = f"{exc.__class__.__name__}: {exc}"
            record.error = error[:512]
            report.failed += 1
            report.errors.append(f"{match.customer_id}: {error}")
            logger.warning(
                "notify.failed",
                extra={"customer_id": match.customer_id, "release_id": str(release.id), "error": error},
            )
            continue
        record.delivered = True
        record.sent_at = datetime.now(timezone.utc)
        report.sent += 1
    session.commit()

    logger.info(
        "notify.release.done",
        extra={
            "release_id": str(release.id),
            "matched": report.matched,
            "sent": report.sent,
            "failed": report.failed,
            "skipped": report.skipped,
        },
    )
    return report


def notify_recent_approved(
    session: Session,
    *,
    hours_back: int = 24,
    sender: NotificationSender | None = None,
    now: datetime | None = None,
) -> NotificationReport:
    """Run ``notify_release`` for approved releases created within the window."""
    since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours_back)
    total = NotificationReport()
    for release in approved_since(session, since):
        total.absorb(notify_release(session, release.id, sender))
    return total
