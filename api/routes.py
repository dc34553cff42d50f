from __future__ import annotations

import hmac
import uuid
from datetime import datetime, timezone
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ingestion.models.domain import RunReport
from ingestion.repositories import receipts as receipt_repo
from ingestion.repositories import releases as release_repo
from ingestion.repositories import sources as source_repo
from ingestion.repositories.sources import SourceNotFound
from ingestion.settings import get_settings
from ingestion.tasks.process import process_sources, process_sources_core
from publish.notifier import notify_release

from .database import session_dependency
from .models import (
    NotificationSummary,
    ProcessQueued,
    ProcessRequest,
    ProcessStats,
    ProcessStatus,
    ReceiptSummary,
    SourceSummary,
)

router = APIRouter(prefix="/api")

SessionDep = Annotated[Session, Depends(session_dependency)]


def require_trigger_secret(x_api_key: Annotated[Optional[str], Header(alias="X-Api-Key")] = None) -> None:
    secret = get_settings().process_trigger_secret
    if secret is None or not secret.get_secret_value():
        raise HTTPException(status_code=503, detail="trigger secret is not configured")
    if x_api_key is None or not hmac.compare_digest(
        x_api_key.encode("utf-8"), secret.get_secret_value().encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="invalid api key")


TriggerAuth = Depends(require_trigger_secret)


@router.post(
    "/releases/process",
    response_model=Union[RunReport, ProcessQueued],
    dependencies=[TriggerAuth],
)
def trigger_process_route(payload: Optional[ProcessRequest] = None) -> Union[RunReport, ProcessQueued]:
    request = payload or ProcessRequest()
    source_id = str(request.source_id) if request.source_id else None
    if request.enqueue:
        result = process_sources.delay(source_id, request.force)
        return ProcessQueued(task_id=str(result.id))
    try:
        return process_sources_core(source_id, force=request.force)
    except SourceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/releases/process", response_model=ProcessStatus, dependencies=[TriggerAuth])
def process_status_route(session: SessionDep) -> ProcessStatus:
    sources = source_repo.list_active(session)
    start_of_day = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return ProcessStatus(
        sources=[SourceSummary.model_validate(s) for s in sources],
        recent_articles=[ReceiptSummary.model_validate(r) for r in receipt_repo.recent_receipts(session)],
        stats=ProcessStats(
            pending_review=release_repo.count_pending(session),
            added_today=release_repo.count_created_since(session, start_of_day),
            active_sources=len(sources),
        ),
    )


@router.post(
    "/releases/{release_id}/notify",
    response_model=NotificationSummary,
    dependencies=[TriggerAuth],
)
def notify_release_route(release_id: uuid.UUID, session: SessionDep) -> NotificationSummary:
    try:
        report = notify_release(session, release_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return NotificationSummary(
        release_id=release_id,
        matched=report.matched,
        sent=report.sent,
        failed=report.failed,
        skipped=report.skipped,
        errors=report.errors,
    )
