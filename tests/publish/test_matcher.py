from __future__ import annotations

import uuid

from ingestion.db.models import CustomerInterest, ItemCategory, Park, Release, ReleaseStatus
from publish.matcher import match_customers, score_interest


def _release(**overrides) -> Release:
    data = {
        "id": uuid.uuid4(),
        "title": "Figment Popcorn Bucket",
        "canonical_name": "figmentpopcornbucket",
        "description": "Purple dragon bucket for the EPCOT festival.",
        "park": Park.DISNEY,
        "category": ItemCategory.POPCORN_BUCKET,
        "status": ReleaseStatus.APPROVED,
        "merged_into_id": None,
    }
    data.update(overrides)
    return Release(**data)


def _interest(customer_id: str, **overrides) -> CustomerInterest:
    data = {"customer_id": customer_id, "keywords": [], "notify": True}
    data.update(overrides)
    return CustomerInterest(**data)


def test_score_counts_matched_criteria():
    match = score_interest(
        _release(), _interest("c1", park="disney", category="popcorn_bucket", keywords=["Figment", "dragon", "stitch"])
    )

    assert match is not None
    assert match.score == 4
    assert match.reasons == ("park:disney", "category:popcorn_bucket", "keyword:figment", "keyword:dragon")


def test_any_park_and_empty_interest_match_with_zero_score():
    assert score_interest(_release(), _interest("c1", park="all")).score == 0
    assert score_interest(_release(), _interest("c1")).score == 0


def test_gate_rejects_mismatches():
    release = _release()

    assert score_interest(release, _interest("c1", park="universal")) is None
    assert score_interest(release, _interest("c1", category="plush")) is None
    assert score_interest(release, _interest("c1", keywords=["stitch"])) is None
    assert score_interest(release, _interest("c1", notify=False)) is None


def test_match_customers_keeps_best_interest_per_customer(db_session):
    release = _release()
    db_session.add(release)
    db_session.flush()
    interests = [
        _interest("bob", park="disney"),
        _interest("alice", park="disney", category="popcorn_bucket"),
        _interest("bob", keywords=["figment", "bucket"], category="popcorn_bucket"),
        _interest("carol", park="seaworld"),
    ]

    matches = match_customers(db_session, release, interests)

    assert [(m.customer_id, m.score) for m in matches] == [("bob", 3), ("alice", 2)]


def test_only_approved_unmerged_releases_match(db_session):
    interests = [_interest("alice")]

    assert match_customers(db_session, _release(status=ReleaseStatus.PENDING), interests) == []
    assert match_customers(db_session, _release(merged_into_id=uuid.uuid4()), interests) == []
