from __future__ import annotations

import pytest

from ingestion.db.models import JobRun, JobStage, JobStatus
from ingestion.repositories.runs import JobRunRecorder, recent_runs


def test_recorder_marks_success_with_stats(db_session):
    with JobRunRecorder(db_session, source=None, task_name="process_sources", trace_id="t-1") as recorder:
        assert recorder.job.status == JobStatus.RUNNING
        recorder.stats = {"items_created": 3}

    job = db_session.query(JobRun).one()
    assert job.status == JobStatus.SUCCEEDED
    assert job.stats == {"items_created": 3}
    assert job.finished_at is not None


def test_recorder_marks_failure_and_reraises(db_session):
    with pytest.raises(RuntimeError):
        with JobRunRecorder(db_session, source="src", task_name="process_sources"):
            raise RuntimeError("database went away")

    job = db_session.query(JobRun).one()
    assert job.status == JobStatus.FAILED
    assert job.error_message == "database went away"


def test_recorder_marks_cancelled(db_session):
    with JobRunRecorder(db_session, stage=JobStage.NOTIFY, source=None, task_name="notify") as recorder:
        recorder.cancelled = True

    assert recent_runs(db_session, JobStage.NOTIFY)[0].status == JobStatus.CANCELLED
    assert recent_runs(db_session, JobStage.PROCESS) == []
