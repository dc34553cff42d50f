"""Connector abstraction, fetch errors, and helpers."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ingestion.db.models import Source
from ingestion.models.domain import FeedEntryDTO


class ConnectorError(Exception):
    """Base connector error."""


class TransientError(ConnectorError):
    """Retryable error (e.g., rate limit, network hiccup)."""


class PermanentError(ConnectorError):
    """Non-retryable error (e.g., 4xx semantics)."""


class FetchFailure(ConnectorError):
    """A page or feed could not be retrieved."""

    kind = "network"

    def __init__(self, message: str, *, url: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class FetchNetworkError(FetchFailure, TransientError):
    """Transport error or 5xx response."""


class FetchTimeoutError(FetchFailure, TransientError):
    """The bounded request timeout elapsed."""

    kind = "timeout"


class FetchBlockedError(FetchFailure, PermanentError):
    """The site refused the request (403/429)."""

    kind = "blocked"


class FetchHTTPError(FetchFailure, PermanentError):
    """Any other 4xx answer."""


def _fingerprint(url: str, title: str) -> str:
    data = (url.strip() + "\n" + title.strip()).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, tuple) and len(value) >= 6:
        # feedparser *_parsed values are UTC struct_time
        return datetime(*value[:6], tzinfo=timezone.utc)
    return None


class BaseConnector(ABC):
    """Lists article entries of a source, with retry and normalization hooks."""

    def list_entries(self, source: Source, *, max_attempts: int = 2) -> List[FeedEntryDTO]:
        attempts = 0
        last_error: Optional[Exception] = None
        while attempts < max_attempts:
            attempts += 1
            try:
                raw = self._fetch_raw(source)
                return self._normalize_and_dedupe(raw)
            except TransientError as exc:
                last_error = exc
                if attempts >= max_attempts:
                    raise
            except PermanentError:
                raise
        assert last_error is not None
        raise last_error

    @abstractmethod
    def _fetch_raw(self, source: Source) -> List[Dict[str, Any]]:
        """Return a list of raw entry dicts from the upstream."""

    def _normalize_and_dedupe(self, items: Iterable[Dict[str, Any]]) -> List[FeedEntryDTO]:
        seen: set[str] = set()
        normalized: List[FeedEntryDTO] = []
        for item in items:
            dto = self._normalize_item(item)
            if dto is None or dto.fingerprint in seen:
                continue
            seen.add(dto.fingerprint)
            normalized.append(dto)
        return normalized

    def _normalize_item(self, item: Dict[str, Any]) -> Optional[FeedEntryDTO]:
        link = str(item.get("link") or item.get("url") or "").strip()
        if not link.startswith(("http://", "https://")):
            return None
        title = " ".join(str(item.get("title") or "").split())
        content = str(item.get("content") or item.get("summary") or item.get("description") or "").strip()
        published_at = _coerce_datetime(
            item.get("published_at") or item.get("published_parsed") or item.get("updated_parsed")
        )
        return FeedEntryDTO(
            title=title,
            link=link,
            content=content,
            published_at=published_at,
            enclosure_url=item.get("enclosure_url"),
            fingerprint=_fingerprint(link, title),
        )
