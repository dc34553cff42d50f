"""Celery tasks for the notification stage."""

from __future__ import annotations

import uuid
from typing import Callable

from celery import shared_task

from ingestion.db.models import Base, JobStage
from ingestion.db.session import get_engine, session_scope
from ingestion.repositories.runs import JobRunRecorder
from ingestion.settings import get_settings
from ingestion.utils.logging import get_logger
from publish.notifier import NotificationReport, NotificationSender, notify_recent_approved

# Sender factory injection point for tests (returns a sender or None for the logging sender)
SENDER_FACTORY: Callable[[], NotificationSender | None] | None = None


def notify_recent_approved_core(hours_back: int | None = None) -> NotificationReport:
    Base.metadata.create_all(bind=get_engine())
    logger = get_logger(__name__)
    hours = hours_back or get_settings().notify_lookback_hours
    trace_id = str(uuid.uuid4())
    sender = SENDER_FACTORY() if SENDER_FACTORY else None
    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.NOTIFY,
        source=None,
        task_name="notify_recent_approved",
        trace_id=trace_id,
    ) as recorder:
        report = notify_recent_approved(session, hours_back=int(hours), sender=sender)
        recorder.stats = {
            "matched": report.matched,
            "sent": report.sent,
            "failed": report.failed,
            "skipped": report.skipped,
        }
    logger.info("notify.sweep.done", extra={"trace_id": trace_id, "hours_back": hours, **recorder.stats})
    return report


@shared_task(name="publish.tasks.notify_recent_approved")
def notify_recent_approved_task(hours_back: int | None = None) -> dict:  # pragma: no cover - wrapper
    report = notify_recent_approved_core(hours_back)
    return {
        "matched": report.matched,
        "sent": report.sent,
        "failed": report.failed,
        "skipped": report.skipped,
        "errors": report.errors,
    }
