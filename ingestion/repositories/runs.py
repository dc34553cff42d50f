"""Job run bookkeeping."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ingestion.db.models import JobRun, JobStage, JobStatus


class JobRunRecorder:
    """Context manager to record job run lifecycle."""

    def __init__(
        self,
        session: Session,
        *,
        stage: JobStage = JobStage.PROCESS,
        source: str | None,
        task_name: str,
        trace_id: str | None = None,
    ) -> None:
        self._session = session
        self._job = JobRun(
            stage=stage,
            status=JobStatus.RUNNING,
            source=source,
            task_name=task_name,
            trace_id=trace_id,
            started_at=datetime.now(timezone.utc),
        )
        self.cancelled = False
        self.stats: Dict[str, Any] = {}

    def __enter__(self) -> "JobRunRecorder":
        self._session.add(self._job)
        # Commit initial RUNNING state so we have a durable record even if later work fails
        self._session.commit()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc is not None:
            self._job.status = JobStatus.FAILED
            self._job.error_message = str(exc)[:512]
        elif self.cancelled:
            self._job.status = JobStatus.CANCELLED
        else:
            self._job.status = JobStatus.SUCCEEDED
        self._job.stats = dict(self.stats) or None
        self._job.finished_at = datetime.now(timezone.utc)
        self._session.add(self._job)
        # Commit final state before outer transaction may roll back
        try:
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            if exc is None:
                raise

    @property
    def job(self) -> JobRun:
        return self._job


def recent_runs(session: Session, stage: JobStage, *, limit: int = 10) -> List[JobRun]:
    stmt = select(JobRun).where(JobRun.stage == stage).order_by(JobRun.started_at.desc()).limit(limit)
    return list(session.scalars(stmt))
