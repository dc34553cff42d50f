"""Database utilities for the release catalog."""

from .models import (  # noqa: F401
    Base,
    CustomerInterest,
    ItemCategory,
    JobRun,
    JobStage,
    JobStatus,
    NotificationRecord,
    Park,
    ProcessingReceipt,
    Release,
    ReleaseSighting,
    ReleaseStatus,
    Source,
    SourceKind,
)
from .session import get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "CustomerInterest",
    "ItemCategory",
    "JobRun",
    "JobStage",
    "JobStatus",
    "NotificationRecord",
    "Park",
    "ProcessingReceipt",
    "Release",
    "ReleaseSighting",
    "ReleaseStatus",
    "Source",
    "SourceKind",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
