"""Processing run: poll sources, extract candidates, fold them into the catalog."""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from celery import shared_task
from sqlalchemy.exc import DBAPIError, IntegrityError

from extraction.extractor import ArticleSource, CandidateExtractor
from ingestion.connectors.base import ConnectorError, FetchFailure
from ingestion.connectors.feed import FeedConnector
from ingestion.connectors.fetcher import PageFetcher
from ingestion.db.models import Base, JobStage, Source
from ingestion.db.session import get_engine, session_scope
from ingestion.models.domain import RunReport, SourceReport
from ingestion.repositories import sources as source_repo
from ingestion.repositories.receipts import existing_receipt_urls
from ingestion.repositories.runs import JobRunRecorder
from ingestion.services.article_reader import article_text, main_content_html
from ingestion.services.canonicalizer import Canonicalizer, MatchPolicy
from ingestion.services.entry_filter import EntryFilter
from ingestion.services.image_resolver import ImageCandidate, ImageResolver, pick_image
from ingestion.services.park_locks import InMemoryParkLocks, ParkLocks, RedisParkLocks, build_park_locks
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger
from llm.client.openai_client import OpenAIClient, ProviderFn
from llm.settings import get_extraction_settings

logger = get_logger(__name__)


# Injection points for tests (fetcher, LLM provider, park locks)
FETCHER_FACTORY: Callable[[Settings], PageFetcher] | None = None
PROVIDER_FACTORY: Callable[[], Optional[ProviderFn]] | None = None
LOCKS_FACTORY: Callable[[Settings], ParkLocks] | None = None


def _halted(events: tuple[threading.Event, ...]) -> bool:
    return any(e.is_set() for e in events)


def _ensure_schema() -> None:
    # For local runs/tests, ensure schema exists (idempotent)
    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def _build_fetcher(settings: Settings) -> PageFetcher:
    if FETCHER_FACTORY is not None:
        return FETCHER_FACTORY(settings)
    return PageFetcher(settings)


def _build_locks(settings: Settings) -> InMemoryParkLocks | RedisParkLocks | ParkLocks:
    if LOCKS_FACTORY is not None:
        return LOCKS_FACTORY(settings)
    return build_park_locks(settings)


class SourcePipeline:
    """Processes one source at a time; shared by the run's worker threads."""

    def __init__(
        self,
        settings: Settings,
        *,
        fetcher: PageFetcher,
        extractor: CandidateExtractor,
        canonicalizer: Canonicalizer,
        trace_id: str,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._connector = FeedConnector(fetcher, max_entries=int(settings.max_articles_per_source))
        self._filter = EntryFilter.from_settings(settings)
        self._extractor = extractor
        self._resolver = ImageResolver(fetcher)
        self._canonicalizer = canonicalizer
        self._trace_id = trace_id

    def process_source(self, source: Source, *halts: threading.Event) -> Optional[SourceReport]:
        if _halted(halts):
            return None
        report = SourceReport(source_id=source.id, source_name=source.name)
        extra = {"trace_id": self._trace_id, "source": source.name}
        logger.info("process.source.start", extra={**extra, "url": source.url})

        try:
            entries = self._connector.list_entries(source, max_attempts=int(self._settings.fetch_max_attempts))
        except ConnectorError as exc:
            message = f"feed fetch failed: {exc}"
            logger.warning("process.source.feed_failed", extra={**extra, "error": str(exc)})
            report.errors.append(message)
            with session_scope() as session:
                source_repo.mark_checked(session, source.id, error=message)
            return report

        accepted = []
        for entry in entries:
            reason = self._filter.rejection_reason(entry)
            if reason is None:
                accepted.append(entry)
            else:
                logger.debug("process.entry.skipped", extra={**extra, "url": entry.link, "reason": reason})

        with session_scope() as session:
            done = existing_receipt_urls(session, [e.link for e in accepted]) if accepted else set()

        article_source = ArticleSource(id=source.id, name=source.name, park_scope=source.park_scope)
        for entry in accepted:
            if _halted(halts):
                logger.info("process.source.cancelled", extra=extra)
                break
            if entry.link in done:
                continue
            try:
                self._process_article(article_source, entry.link, entry.title, entry.content, entry.enclosure_url, report)
            except FetchFailure as exc:
                report.errors.append(f"{entry.title or entry.link}: {exc}")
                logger.info("process.article.fetch_failed", extra={**extra, "url": entry.link, "error": str(exc)})
            except DBAPIError:
                raise
            except Exception as exc:  # noqa: BLE001
                report.errors.append(f"{entry.title or entry.link}: {exc.__class__.__name__}: {exc}")
                logger.exception("process.article.failed", extra={**extra, "url": entry.link, "error": str(exc)})

        with session_scope() as session:
            source_repo.mark_checked(session, source.id, error=report.errors[0] if report.errors else None)
        logger.info(
            "process.source.done",
            extra={
                **extra,
                "articles": report.articles_processed,
                "items_created": report.items_created,
                "items_merged": report.items_merged,
                "errors": len(report.errors),
            },
        )
        return report

    def _process_article(
        self,
        source: ArticleSource,
        url: str,
        title: str,
        feed_content: str,
        enclosure_url: Optional[str],
        report: SourceReport,
    ) -> None:
        page = self._fetcher.fetch(url)
        main_html = main_content_html(page.body)
        text = article_text(page.body) or " ".join(feed_content.split())
        candidates = self._extractor.extract(
            article_url=url,
            article_title=title or "Untitled",
            content=text,
            source=source,
        )
        report.articles_processed += 1
        if not candidates:
            return

        images = self._resolver.resolve_candidates(main_html, url)
        if enclosure_url and not images:
            images = [ImageCandidate(url=enclosure_url)]
        for candidate in candidates:
            if not candidate.image_url and images:
                candidate = candidate.model_copy(update={"image_url": pick_image(candidate.title, images)})
            try:
                outcome = self._canonicalizer.submit(candidate)
            except IntegrityError as exc:
                report.errors.append(f"{candidate.title}: {exc.orig}")
                continue
            if outcome.inserted:
                report.items_created += 1
            else:
                report.items_merged += 1


def _select_sources(source_id: Optional[str], force: bool) -> List[Source]:
    with session_scope() as session:
        if source_id is not None:
            try:
                wanted = uuid.UUID(str(source_id))
            except ValueError as exc:
                raise source_repo.SourceNotFound(f"unknown source id: {source_id}") from exc
            sources = [source_repo.get_source(session, wanted)]
        else:
            sources = source_repo.list_active(session)
    if force:
        return sources
    return [s for s in sources if source_repo.is_due(s)]


def process_sources_core(
    source_id: Optional[str] = None,
    *,
    force: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> RunReport:
    """Run one processing pass; test-friendly."""
    _ensure_schema()
    settings = get_settings()
    trace_id = str(uuid.uuid4())
    stop = cancel_event or threading.Event()

    with session_scope() as session:
        created = source_repo.sync_sources(session, settings.source_registry)
    if created:
        logger.info("process.sources.synced", extra={"trace_id": trace_id, "new_sources": created})

    sources = _select_sources(source_id, force)
    report = RunReport(trace_id=trace_id)
    logger.info(
        "process.start",
        extra={"trace_id": trace_id, "sources": len(sources), "force": force, "source_id": source_id},
    )

    extraction_settings = get_extraction_settings()
    provider = PROVIDER_FACTORY() if PROVIDER_FACTORY else None
    extractor = CandidateExtractor(
        OpenAIClient(extraction_settings, provider=provider),
        session_scope,
        excluded_locations=settings.excluded_locations,
        max_chars=int(extraction_settings.extraction_max_chars),
    )
    canonicalizer = Canonicalizer(
        session_scope,
        _build_locks(settings),
        policy=MatchPolicy.from_settings(settings),
        record_merged_rows=settings.dedup_record_merged_rows,
    )

    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.PROCESS,
        source=str(source_id) if source_id else None,
        task_name="process_sources",
        trace_id=trace_id,
    ) as recorder, _build_fetcher(settings) as fetcher:
        pipeline = SourcePipeline(
            settings,
            fetcher=fetcher,
            extractor=extractor,
            canonicalizer=canonicalizer,
            trace_id=trace_id,
        )
        _run_pool(pipeline, sources, stop, report, int(settings.run_max_workers))
        report.cancelled = stop.is_set()
        recorder.cancelled = report.cancelled
        recorder.stats = report.model_dump(exclude={"errors", "trace_id"})

    logger.info(
        "process.done",
        extra={
            "trace_id": trace_id,
            "sources": report.sources_processed,
            "articles": report.articles_processed,
            "items_created": report.items_created,
            "items_merged": report.items_merged,
            "errors": len(report.errors),
            "cancelled": report.cancelled,
        },
    )
    return report


def _run_pool(
    pipeline: SourcePipeline,
    sources: List[Source],
    stop: threading.Event,
    report: RunReport,
    max_workers: int,
) -> None:
    if not sources:
        return
    abort = threading.Event()
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="process") as pool:
        futures: Dict[Future, Source] = {pool.submit(pipeline.process_source, src, stop, abort): src for src in sources}
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        failed = next((f for f in done if f.exception() is not None), None)
        if failed is not None:
            abort.set()
            for future in pending:
                future.cancel()
            wait(pending)
            raise failed.exception()  # type: ignore[misc]
    for future in futures:
        source_report = future.result()
        if source_report is not None:
            report.absorb(source_report)


@shared_task(name="ingestion.tasks.process.process_sources")
def process_sources(source_id: Optional[str] = None, force: bool = False) -> dict:  # pragma: no cover - wrapper
    return process_sources_core(source_id, force=force).model_dump(mode="json")
