"""Canonicalization and deduplication of release candidates.

Matching is deterministic:

1. ``canonical_name``: lowercase title with every non-alphanumeric character
   removed.
2. Exact match on an unmerged release with the same canonical name.
3. Fuzzy match within the candidate's park: word-overlap ratio
   ``|A & B| / min(|A|, |B|)`` at or above the configured threshold. The oldest
   matching release wins.
4. Otherwise a new ``pending`` release is inserted.

The whole read-decide-write step runs under a park lock and commits before the
lock is released. The partial unique index on ``canonical_name`` is the final
guard; a violation is retried once as a match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, ContextManager, FrozenSet, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ingestion.db.models import Release
from ingestion.models.domain import MergeOutcome, ReleaseCandidate
from ingestion.repositories import releases as release_repo
from ingestion.services.park_locks import ParkLocks
from ingestion.settings import Settings
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[\W_]")
_TOKEN_SPLIT = re.compile(r"[\W_]+")


def canonical_name(title: str) -> str:
    return _NON_ALNUM.sub("", title.lower())


def tokenize(title: str, min_length: int = 3) -> FrozenSet[str]:
    return frozenset(t for t in _TOKEN_SPLIT.split(title.lower()) if len(t) >= min_length)


def overlap_ratio(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


@dataclass(frozen=True)
class MatchPolicy:
    threshold: float = 0.7
    min_token_length: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "MatchPolicy":
        return cls(
            threshold=float(settings.dedup_similarity_threshold),
            min_token_length=int(settings.dedup_min_token_length),
        )


def find_match(
    session: Session, candidate: ReleaseCandidate, policy: MatchPolicy
) -> Tuple[Optional[Release], Optional[str], Optional[float]]:
    """Return ``(release, matched_by, similarity)`` for the candidate, if any."""
    name = canonical_name(candidate.title)
    exact = release_repo.find_unmerged_by_canonical(session, name)
    if exact is not None:
        return exact, "canonical", 1.0

    tokens = tokenize(candidate.title, policy.min_token_length)
    if not tokens:
        return None, None, None
    for existing in release_repo.unmerged_in_park(session, candidate.park):
        ratio = overlap_ratio(tokens, tokenize(existing.title, policy.min_token_length))
        if ratio >= policy.threshold:
            return existing, "fuzzy", ratio
    return None, None, None


class Canonicalizer:
    """Folds candidates into the catalog, one park-locked transaction each."""

    def __init__(
        self,
        session_factory: Callable[[], ContextManager[Session]],
        locks: ParkLocks,
        *,
        policy: Optional[MatchPolicy] = None,
        record_merged_rows: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self._locks = locks
        self._policy = policy or MatchPolicy()
        self._record_merged_rows = record_merged_rows

    def submit(self, candidate: ReleaseCandidate) -> MergeOutcome:
        with self._locks.hold(candidate.park):
            try:
                with self._session_factory() as session:
                    return self.match_or_insert(session, candidate)
            except IntegrityError:
                logger.info(
                    "canonicalize.retry",
                    extra={"canonical_name": canonical_name(candidate.title), "park": candidate.park.value},
                )
                with self._session_factory() as session:
                    return self.match_or_insert(session, candidate)

    def match_or_insert(self, session: Session, candidate: ReleaseCandidate) -> MergeOutcome:
        name = canonical_name(candidate.title)
        existing, matched_by, similarity = find_match(session, candidate, self._policy)
        if existing is None:
            release = release_repo.insert_release(session, candidate, name)
            release_repo.add_sighting(
                session,
                release.id,
                source_url=candidate.source_url,
                source_name=candidate.source_name,
                article_title=candidate.article_title,
            )
            logger.info(
                "canonicalize.inserted",
                extra={"release_id": str(release.id), "canonical_name": name, "park": candidate.park.value},
            )
            return MergeOutcome(kind="inserted", release_id=release.id, canonical_name=name)

        release_repo.apply_image(existing, candidate.image_url)
        release_repo.add_sighting(
            session,
            existing.id,
            source_url=candidate.source_url,
            source_name=candidate.source_name,
            article_title=candidate.article_title,
        )
        if self._record_merged_rows:
            # merged rows are outside the partial unique index
            release_repo.insert_release(session, candidate, name, merged_into_id=existing.id)
        session.flush()
        logger.info(
            "canonicalize.merged",
            extra={
                "release_id": str(existing.id),
                "canonical_name": name,
                "matched_by": matched_by,
                "similarity": similarity,
            },
        )
        return MergeOutcome(
            kind="merged",
            release_id=existing.id,
            canonical_name=existing.canonical_name,
            matched_by=matched_by,
            similarity=similarity,
        )
