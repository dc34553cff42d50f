from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ingestion.db.models import Base, ItemCategory, Park  # noqa: E402
from ingestion.db.session import get_engine, get_sessionmaker  # noqa: E402
from ingestion.models.domain import ReleaseCandidate  # noqa: E402
from ingestion.settings import reset_settings_cache  # noqa: E402
from llm.settings import reset_extraction_settings_cache  # noqa: E402


@pytest.fixture()
def release_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point settings at a throwaway SQLite file and a fake OpenAI key."""
    db_path = tmp_path / "releases.db"
    monkeypatch.setenv("INGESTION_REDIS_URL", "redis://localhost:6379/15")
    monkeypatch.setenv("POSTGRES_DSN", f"sqlite:///{db_path}")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-123")
    monkeypatch.setenv("RUN_MAX_WORKERS", "1")
    monkeypatch.setenv("FETCH_MAX_ATTEMPTS", "1")
    monkeypatch.setenv("PROCESS_TRIGGER_SECRET", "trigger-secret")
    monkeypatch.setenv("SOURCE_REGISTRY", "[]")
    reset_settings_cache()
    reset_extraction_settings_cache()
    yield db_path
    reset_settings_cache()
    reset_extraction_settings_cache()


@pytest.fixture()
def db_session(release_env: Path) -> Iterator:
    Base.metadata.create_all(bind=get_engine())
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_candidate():
    def _make(title: str, **overrides) -> ReleaseCandidate:
        data = {
            "title": title,
            "description": "",
            "park": Park.DISNEY,
            "category": ItemCategory.OTHER,
            "source_url": "https://blog.example.com/post-1",
            "source_name": "Example Blog",
            "article_title": "New merchandise arriving",
        }
        data.update(overrides)
        return ReleaseCandidate(**data)

    return _make
