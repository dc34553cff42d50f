"""Candidate extraction: one article in, zero or more release candidates out.

Every examined article leaves exactly one processing receipt, written before
``extract`` returns, whether inference succeeded or not. An article that
already has a receipt is skipped without calling the model.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, ContextManager, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from extraction.models.domain import CandidatePayload, ExtractionInput
from ingestion.db.models import ItemCategory, Park
from ingestion.models.domain import ReleaseCandidate
from ingestion.repositories import receipts
from ingestion.services.canonicalizer import canonical_name
from ingestion.utils.logging import get_logger
from llm.client.openai_client import LLMError, OpenAIClient

logger = get_logger(__name__)

NICKELODEON_BRANDS = ("spongebob", "nickelodeon", "patrick star", "bikini bottom")
NON_THEME_PARK_BRANDS = ("warner bros", "six flags", "cedar fair", "busch gardens")
RAW_CONTENT_CHARS = 5000


class ExtractionFailure(Exception):
    """The model's answer could not be used for this article."""


@dataclass(frozen=True)
class ArticleSource:
    """The parts of a source the extractor needs."""

    id: Optional[uuid.UUID]
    name: str
    park_scope: str = "all"


def map_park(location: str, park_scope: str) -> Park:
    code = (location or "").strip().lower()
    if code.startswith("disney"):
        return Park.DISNEY
    if code.startswith("universal"):
        return Park.UNIVERSAL
    if code == "seaworld":
        return Park.SEAWORLD
    if park_scope in {p.value for p in Park}:
        return Park(park_scope)
    return Park.DISNEY


def map_category(value: str) -> ItemCategory:
    try:
        return ItemCategory((value or "").strip().lower())
    except ValueError:
        return ItemCategory.OTHER


def _absolute(url: Optional[str]) -> str:
    if url and url.startswith(("http://", "https://")):
        return url
    return ""


class CandidateExtractor:
    def __init__(
        self,
        client: OpenAIClient,
        session_factory: Callable[[], ContextManager[Session]],
        *,
        excluded_locations: Sequence[str] = (),
        max_chars: int = 15000,
    ) -> None:
        self._client = client
        self._session_factory = session_factory
        self._excluded_locations = {loc.lower() for loc in excluded_locations}
        self._max_chars = max_chars

    def extract(
        self,
        *,
        article_url: str,
        article_title: str,
        content: str,
        source: ArticleSource,
    ) -> Tuple[ReleaseCandidate, ...]:
        with self._session_factory() as session:
            if receipts.has_receipt(session, article_url):
                logger.info("extract.already_processed", extra={"url": article_url})
                return ()

        error: Optional[str] = None
        candidates: Tuple[ReleaseCandidate, ...] = ()
        try:
            candidates = self._infer(article_url, article_title, content, source)
        except (ExtractionFailure, LLMError) as exc:
            error = str(exc) or exc.__class__.__name__
            logger.warning("extract.failed", extra={"url": article_url, "error": error})
        except Exception as exc:  # noqa: BLE001
            error = f"{exc.__class__.__name__}: {exc}"
            logger.exception("extract.unexpected_error", extra={"url": article_url, "error": error})

        with self._session_factory() as session:
            recorded = receipts.record_receipt(
                session,
                article_url=article_url,
                source_id=source.id,
                title=article_title,
                items_found=len(candidates),
                error=error,
            )
        if not recorded:
            logger.info("extract.receipt_race", extra={"url": article_url})
            return ()
        return candidates

    def _infer(
        self, article_url: str, article_title: str, content: str, source: ArticleSource
    ) -> Tuple[ReleaseCandidate, ...]:
        if not content.strip():
            raise ExtractionFailure("article has no readable content")
        inp = ExtractionInput(
            article_url=article_url,
            article_title=article_title,
            source_name=source.name,
            content=content,
            max_chars=self._max_chars,
        )
        response = self._client.extract(inp)
        for violation in response.violations:
            logger.info(
                "extract.schema_violation",
                extra={"url": article_url, "index": violation.index, "errors": violation.errors},
            )
        if not response.is_merchandise_related:
            return ()
        out = []
        for payload in response.valid:
            candidate = self._to_candidate(payload, article_url, article_title, content, source)
            if candidate is not None:
                out.append(candidate)
        logger.info(
            "extract.done",
            extra={
                "url": article_url,
                "candidates": len(out),
                "violations": len(response.violations),
                "model": response.llm_model,
                "cost": response.llm_cost,
            },
        )
        return tuple(out)

    def _to_candidate(
        self,
        payload: CandidatePayload,
        article_url: str,
        article_title: str,
        content: str,
        source: ArticleSource,
    ) -> Optional[ReleaseCandidate]:
        location = payload.park.strip().lower()
        name = payload.name.lower()
        if not canonical_name(payload.name):
            logger.info("extract.unusable_title", extra={"url": article_url, "item": payload.name})
            return None
        if location in self._excluded_locations:
            logger.info("extract.excluded_location", extra={"url": article_url, "item": payload.name, "park": location})
            return None
        if any(brand in name for brand in NON_THEME_PARK_BRANDS):
            logger.info("extract.excluded_brand", extra={"url": article_url, "item": payload.name})
            return None
        if any(brand in name for brand in NICKELODEON_BRANDS):
            park = Park.UNIVERSAL
        else:
            park = map_park(location, source.park_scope)
        return ReleaseCandidate(
            title=payload.name,
            description=payload.description.strip(),
            park=park,
            category=map_category(payload.category),
            price_estimate=payload.price,
            image_url=_absolute(payload.image_url),
            source_url=article_url,
            source_name=source.name,
            article_title=article_title,
            raw_content=content[:RAW_CONTENT_CHARS],
            is_limited_edition=payload.is_limited_edition,
            tags=payload.tags,
        )
