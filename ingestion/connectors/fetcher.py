"""HTTP page fetcher with browser identity and fetch-proxy fallback.

Policy
- Every request goes out directly first, with a realistic browser header set.
- 403/429 from a host on the proxy blocklist is routed once through the
  fetch-proxy; the host is not asked again directly.
- Transport errors, timeouts and 5xx on blocklisted hosts take the same single
  proxy route; elsewhere they are retried up to ``fetch_max_attempts``.
- Without a proxy key the original failure is raised.
"""

from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import urlsplit

import httpx

from ingestion.models.domain import FetchResult
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

from .base import (
    FetchBlockedError,
    FetchFailure,
    FetchHTTPError,
    FetchNetworkError,
    FetchTimeoutError,
    TransientError,
)

logger = get_logger(__name__)

MAX_BODY_CHARS = 5_000_000
BLOCKED_STATUSES = (403, 429)


def browser_headers(user_agent: str) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
    }


def host_of(url: str) -> str:
    host = (urlsplit(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


class PageFetcher:
    """Synchronous fetcher shared by feed listing, articles and image re-fetch."""

    def __init__(self, settings: Optional[Settings] = None, *, client: Optional[httpx.Client] = None) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.Client(
            timeout=float(self._settings.fetch_timeout_seconds),
            follow_redirects=True,
        )
        self._owns_client = client is None

    def __enter__(self) -> "PageFetcher":
        return self

    def __exit__(self, *exc_info) -> None:  # noqa: ANN002
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def is_proxied_host(self, url: str) -> bool:
        host = host_of(url)
        return any(host == domain or host.endswith("." + domain) for domain in self._settings.fetch_proxy_domains)

    def fetch(self, url: str) -> FetchResult:
        if self.is_proxied_host(url):
            try:
                return self._direct(url)
            except FetchHTTPError:
                raise
            except FetchFailure as exc:
                return self._via_proxy(url, exc)
        return self._direct_with_retry(url)

    def _direct_with_retry(self, url: str) -> FetchResult:
        attempts = 0
        max_attempts = int(self._settings.fetch_max_attempts)
        while True:
            attempts += 1
            try:
                return self._direct(url)
            except TransientError as exc:
                if attempts >= max_attempts:
                    raise
                logger.info("fetch.retry", extra={"url": url, "attempt": attempts, "error": str(exc)})

    def _direct(self, url: str) -> FetchResult:
        headers = browser_headers(self._settings.fetch_user_agent)
        return self._request(url, url, headers=headers, via_proxy=False)

    def _via_proxy(self, url: str, cause: FetchFailure) -> FetchResult:
        key = self._settings.fetch_proxy_api_key
        if key is None or not key.get_secret_value():
            logger.warning("fetch.proxy_unavailable", extra={"url": url, "error": str(cause)})
            raise cause
        logger.info("fetch.proxy", extra={"url": url, "reason": cause.kind})
        params = {"api_key": key.get_secret_value(), "url": url}
        return self._request(self._settings.fetch_proxy_endpoint, url, params=params, via_proxy=True)

    def _request(
        self,
        request_url: str,
        target_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        via_proxy: bool,
    ) -> FetchResult:
        try:
            resp = self._client.get(request_url, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"timeout fetching {target_url}", url=target_url) from exc
        except httpx.HTTPError as exc:
            raise FetchNetworkError(f"network error fetching {target_url}: {exc}", url=target_url) from exc

        status = resp.status_code
        if status in BLOCKED_STATUSES:
            raise FetchBlockedError(f"blocked fetching {target_url}: HTTP {status}", url=target_url, status=status)
        if status >= 500:
            raise FetchNetworkError(f"upstream error fetching {target_url}: HTTP {status}", url=target_url, status=status)
        if status >= 400:
            raise FetchHTTPError(f"HTTP {status} fetching {target_url}", url=target_url, status=status)
        return FetchResult(url=target_url, status=status, body=resp.text[:MAX_BODY_CHARS], via_proxy=via_proxy)
