from __future__ import annotations

from ingestion.db.models import ProcessingReceipt
from ingestion.repositories.receipts import (
    existing_receipt_urls,
    has_receipt,
    recent_receipts,
    record_receipt,
)


def test_record_receipt_is_idempotent(db_session):
    first = record_receipt(
        db_session, article_url="https://blog.example.com/a", source_id=None, title="A", items_found=2
    )
    second = record_receipt(
        db_session, article_url="https://blog.example.com/a", source_id=None, title="A again", items_found=0
    )
    db_session.commit()

    assert first is True
    assert second is False
    assert has_receipt(db_session, "https://blog.example.com/a")
    assert db_session.query(ProcessingReceipt).count() == 1
    assert db_session.query(ProcessingReceipt).one().items_found == 2


def test_failed_inference_still_leaves_a_receipt(db_session):
    record_receipt(
        db_session,
        article_url="https://blog.example.com/b",
        source_id=None,
        title="B" * 600,
        items_found=0,
        error="LLM retry limit exceeded",
    )
    db_session.commit()

    receipt = db_session.query(ProcessingReceipt).one()
    assert receipt.error == "LLM retry limit exceeded"
    assert len(receipt.title) == 512


def test_existing_receipt_urls_and_recent(db_session):
    for url in ("https://blog.example.com/1", "https://blog.example.com/2"):
        record_receipt(db_session, article_url=url, source_id=None, title=url, items_found=0)
    db_session.commit()

    found = existing_receipt_urls(db_session, ["https://blog.example.com/2", "https://blog.example.com/3"])

    assert found == {"https://blog.example.com/2"}
    assert not has_receipt(db_session, "https://blog.example.com/3")
    assert [r.article_url for r in recent_receipts(db_session, limit=1)] == ["https://blog.example.com/2"]
