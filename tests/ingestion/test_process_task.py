from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from ingestion.connectors.base import FetchBlockedError, FetchNetworkError
from ingestion.db.models import JobRun, JobStatus, ProcessingReceipt, Release, Source
from ingestion.db.session import get_sessionmaker
from ingestion.models.domain import FetchResult
from ingestion.repositories.sources import SourceNotFound
from ingestion.services.park_locks import InMemoryParkLocks
from ingestion.settings import reset_settings_cache
from ingestion.tasks import process as process_mod
from llm.client.openai_client import PermanentLLMError

FEED_URL = "https://blog.example.com/feed/"
FIGMENT_URL = "https://blog.example.com/2025/03/figment-popcorn-bucket/"
LOUNGEFLY_URL = "https://blog.example.com/2025/03/haunted-mansion-loungefly/"

RSS = f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Park Blog</title>
<item><title>New Figment Popcorn Bucket Arrives at EPCOT</title><link>{FIGMENT_URL}</link>
<description>Festival merchandise</description></item>
<item><title>Ride Refurbishment Schedule</title><link>https://blog.example.com/2025/03/refurb/</link>
<description>Nothing</description></item>
<item><title>Loungefly Haunted Mansion Backpack Now Available</title><link>{LOUNGEFLY_URL}</link>
<description>Bag news</description></item>
</channel></rss>
"""

FIGMENT_PAGE = """<html><body><nav>Menu</nav><article>
<h1>New Figment Popcorn Bucket Arrives at EPCOT</h1>
<p>The Figment popcorn bucket is back for the festival at $25.</p>
<img src="https://cdn.example.com/uploads/figment-popcorn-bucket.jpg?w=1024" alt="Figment Popcorn Bucket">
</article></body></html>"""

LOUNGEFLY_PAGE = """<html><body><article>
<h1>Loungefly Haunted Mansion Backpack Now Available</h1>
<p>A new Loungefly backpack joins the EPCOT Figment popcorn bucket on shelves.</p>
</article></body></html>"""

PRODUCTS: Dict[str, Dict[str, Any]] = {
    FIGMENT_URL: {
        "is_merchandise_related": True,
        "products": [
            {"name": "Figment Popcorn Bucket", "park": "disney_epcot", "category": "popcorn_bucket", "price": 25},
            {"name": "   ", "park": "disney_epcot"},
        ],
    },
    LOUNGEFLY_URL: {
        "is_merchandise_related": True,
        "products": [
            {"name": "Haunted Mansion Loungefly Backpack", "park": "disney_mk", "category": "loungefly"},
            {"name": "EPCOT Figment Popcorn Bucket", "park": "disney_epcot", "category": "popcorn_bucket"},
            {"name": "Disneyland Anniversary Ears", "park": "disneyland_ca", "category": "ears"},
        ],
    },
}


class FakeFetcher:
    def __init__(self, pages: Dict[str, object]) -> None:
        self.pages = pages
        self.calls: list[str] = []

    def __enter__(self) -> "FakeFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        body = self.pages[url]
        if isinstance(body, Exception):
            raise body
        return FetchResult(url=url, status=200, body=body)


class FakeProvider:
    def __init__(self, products: Dict[str, Dict[str, Any]], failing: tuple[str, ...] = ()) -> None:
        self.products = products
        self.failing = failing
        self.urls: list[str] = []

    def __call__(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        user = payload["messages"][1]["content"]
        url = next(line[len("[URL] "):] for line in user.splitlines() if line.startswith("[URL] "))
        self.urls.append(url)
        if url in self.failing:
            raise PermanentLLMError("model refused")
        return {
            "choices": [{"message": {"content": json.dumps(self.products[url])}}],
            "usage": {"prompt_tokens": 1200, "completion_tokens": 300},
            "model": "gpt-4o-mini",
        }


@pytest.fixture()
def pipeline_env(release_env, monkeypatch):
    monkeypatch.setenv(
        "SOURCE_REGISTRY",
        json.dumps([{"name": "Park Blog", "url": FEED_URL, "kind": "feed", "park_scope": "disney"}]),
    )
    reset_settings_cache()
    pages: Dict[str, object] = {FEED_URL: RSS, FIGMENT_URL: FIGMENT_PAGE, LOUNGEFLY_URL: LOUNGEFLY_PAGE}
    fetcher = FakeFetcher(pages)
    provider = FakeProvider(PRODUCTS)
    monkeypatch.setattr(process_mod, "FETCHER_FACTORY", lambda _settings: fetcher)
    monkeypatch.setattr(process_mod, "PROVIDER_FACTORY", lambda: provider)
    monkeypatch.setattr(process_mod, "LOCKS_FACTORY", lambda _settings: InMemoryParkLocks())
    return fetcher, provider


def _session():
    return get_sessionmaker()()


def test_run_extracts_and_deduplicates(pipeline_env):
    fetcher, provider = pipeline_env

    report = process_mod.process_sources_core()

    assert report.sources_processed == 1
    assert report.articles_processed == 2
    assert report.items_created == 2
    assert report.items_merged == 1
    assert report.errors == []
    assert report.cancelled is False
    assert sorted(provider.urls) == sorted([FIGMENT_URL, LOUNGEFLY_URL])

    with _session() as session:
        releases = list(session.scalars(select(Release).order_by(Release.created_at)))
        assert [r.title for r in releases] == ["Figment Popcorn Bucket", "Haunted Mansion Loungefly Backpack"]
        assert releases[0].image_url == "https://cdn.example.com/uploads/figment-popcorn-bucket.jpg?w=1024"
        assert releases[0].price_estimate == 25
        assert {r.park.value for r in releases} == {"disney"}
        receipts = {r.article_url: r.items_found for r in session.scalars(select(ProcessingReceipt))}
        assert receipts == {FIGMENT_URL: 1, LOUNGEFLY_URL: 2}
        source = session.scalars(select(Source)).one()
        assert source.last_checked_at is not None
        assert source.last_error is None
        job = session.scalars(select(JobRun)).one()
        assert job.status == JobStatus.SUCCEEDED
        assert job.stats["items_created"] == 2


def test_second_run_skips_articles_with_receipts(pipeline_env):
    _fetcher, provider = pipeline_env
    process_mod.process_sources_core()
    calls = len(provider.urls)

    report = process_mod.process_sources_core(force=True)

    assert report.sources_processed == 1
    assert report.articles_processed == 0
    assert report.items_created == 0
    assert len(provider.urls) == calls


def test_sources_not_due_are_skipped_unless_forced(pipeline_env):
    process_mod.process_sources_core()

    assert process_mod.process_sources_core().sources_processed == 0
    assert process_mod.process_sources_core(force=True).sources_processed == 1


def test_blocked_feed_records_source_error(pipeline_env):
    fetcher, _provider = pipeline_env
    fetcher.pages[FEED_URL] = FetchBlockedError("blocked fetching feed: HTTP 403", url=FEED_URL, status=403)

    report = process_mod.process_sources_core()

    assert report.sources_processed == 1
    assert report.articles_processed == 0
    assert len(report.errors) == 1
    assert report.errors[0].startswith("[Park Blog] feed fetch failed")
    with _session() as session:
        source = session.scalars(select(Source)).one()
        assert source.last_checked_at is not None
        assert "HTTP 403" in source.last_error


def test_article_fetch_failure_leaves_no_receipt(pipeline_env):
    fetcher, _provider = pipeline_env
    fetcher.pages[LOUNGEFLY_URL] = FetchNetworkError("upstream error", url=LOUNGEFLY_URL, status=502)

    report = process_mod.process_sources_core()

    assert report.articles_processed == 1
    assert report.items_created == 1
    assert any("upstream error" in e for e in report.errors)
    with _session() as session:
        urls = set(session.scalars(select(ProcessingReceipt.article_url)))
        assert urls == {FIGMENT_URL}


def test_model_failure_is_receipted_with_error(pipeline_env, monkeypatch):
    provider = FakeProvider(PRODUCTS, failing=(FIGMENT_URL,))
    monkeypatch.setattr(process_mod, "PROVIDER_FACTORY", lambda: provider)

    report = process_mod.process_sources_core()

    assert report.articles_processed == 2
    assert report.items_created == 2
    with _session() as session:
        receipt = session.scalars(
            select(ProcessingReceipt).where(ProcessingReceipt.article_url == FIGMENT_URL)
        ).one()
        assert receipt.items_found == 0
        assert receipt.error == "model refused"


def test_cancelled_run_processes_nothing(pipeline_env):
    _fetcher, provider = pipeline_env
    stop = threading.Event()
    stop.set()

    report = process_mod.process_sources_core(cancel_event=stop)

    assert report.cancelled is True
    assert report.sources_processed == 0
    assert provider.urls == []
    with _session() as session:
        assert session.scalars(select(JobRun)).one().status == JobStatus.CANCELLED


def test_explicit_source_id(pipeline_env):
    process_mod.process_sources_core()
    with _session() as session:
        source_id = session.scalars(select(Source.id)).one()

    report = process_mod.process_sources_core(str(source_id))

    assert report.sources_processed == 0

    forced = process_mod.process_sources_core(str(source_id), force=True)

    assert forced.sources_processed == 1


@pytest.mark.parametrize("bad_id", ["not-a-uuid", str(uuid.uuid4())])
def test_unknown_source_id_raises(pipeline_env, bad_id):
    with pytest.raises(SourceNotFound):
        process_mod.process_sources_core(bad_id)


def test_malformed_model_answer_does_not_stop_the_run(pipeline_env, monkeypatch):
    provider = FakeProvider(PRODUCTS)

    def answer(payload: Dict[str, Any]) -> Dict[str, Any]:
        envelope = provider(payload)
        if provider.urls[-1] == FIGMENT_URL:
            return {"choices": [], "usage": {}}
        return envelope

    monkeypatch.setattr(process_mod, "PROVIDER_FACTORY", lambda: answer)

    report = process_mod.process_sources_core()

    assert report.articles_processed == 2
    assert report.items_created == 2
    with _session() as session:
        receipts = {r.article_url: r.error for r in session.scalars(select(ProcessingReceipt))}
        assert receipts == {FIGMENT_URL: "LLM response has no choices", LOUNGEFLY_URL: None}
        assert session.scalars(select(JobRun)).one().status == JobStatus.SUCCEEDED


def test_unexpected_article_error_is_reported_and_run_continues(pipeline_env):
    fetcher, _provider = pipeline_env
    fetcher.pages[FIGMENT_URL] = ValueError("unreadable markup")

    report = process_mod.process_sources_core()

    assert report.articles_processed == 1
    assert report.items_created == 2
    assert any("ValueError: unreadable markup" in e for e in report.errors)


def test_storage_outage_aborts_run_and_keeps_last_checked(pipeline_env, db_session, monkeypatch):
    checked = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    db_session.add(Source(name="Park Blog", url=FEED_URL, last_checked_at=checked))
    db_session.commit()

    def outage(self, candidate):
        raise OperationalError("INSERT INTO releases", {}, Exception("disk I/O error"))

    monkeypatch.setattr(process_mod.Canonicalizer, "submit", outage)

    with pytest.raises(OperationalError):
        process_mod.process_sources_core(force=True)

    with _session() as session:
        source = session.scalars(select(Source)).one()
        assert source.last_checked_at.replace(tzinfo=None) == checked.replace(tzinfo=None)
        assert source.last_error is None
        job = session.scalars(select(JobRun)).one()
        assert job.status == JobStatus.FAILED
        assert "disk I/O error" in job.error_message
