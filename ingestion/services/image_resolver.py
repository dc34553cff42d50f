"""Image URL resolution for extracted releases.

Candidates come from the article's ``<img>`` tags (largest ``srcset`` variant,
then lazy-load attributes, then ``src``), with ``og:image`` as a last resort.
When the stored content has no usable image the article is fetched again and
parsed once more. Only URLs are returned; bytes are never downloaded here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from ingestion.connectors.base import FetchFailure
from ingestion.models.domain import FetchResult
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)

MIN_DIMENSION = 100
MAX_IMAGES = 20
DENYLIST = (
    "avatar",
    "logo",
    "icon",
    "favicon",
    "gravatar",
    "emoji",
    "subscribe",
    "spinner",
    "placeholder",
    "pixel",
    "get-away-today",
)
_TOKEN_RE = re.compile(r"[a-z0-9]+")


class ImageResolutionFailure(Exception):
    """No image could be resolved for an article."""


class Fetcher(Protocol):
    def fetch(self, url: str) -> FetchResult: ...  # noqa: D401


@dataclass(frozen=True)
class ImageCandidate:
    url: str
    alt: str = ""


def normalize_image_url(url: str) -> str:
    """Drop query string and fragment (resize/crop parameters)."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _largest_from_srcset(srcset: str) -> Optional[str]:
    best_url: Optional[str] = None
    best_width = -1.0
    for position, part in enumerate(p.strip() for p in srcset.split(",")):
        if not part:
            continue
        pieces = part.split()
        url = pieces[0]
        width = float(position)
        if len(pieces) > 1:
            descriptor = pieces[1].lower()
            try:
                if descriptor.endswith("w"):
                    width = float(descriptor[:-1])
                elif descriptor.endswith("x"):
                    width = float(descriptor[:-1]) * 1000
            except ValueError:
                pass
        if width >= best_width:
            best_url, best_width = url, width
    return best_url


def _too_small(tag) -> bool:  # noqa: ANN001
    for attr in ("width", "height"):
        raw = str(tag.get(attr) or "").strip().lower().removesuffix("px")
        if raw.isdigit() and int(raw) < MIN_DIMENSION:
            return True
    return False


def _denied(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in DENYLIST)


def extract_image_candidates(content: str, base_url: str) -> List[ImageCandidate]:
    """Parse image candidates from HTML, in priority order, deduplicated."""
    if not content or "<" not in content:
        return []
    soup = BeautifulSoup(content, "html.parser")
    found: List[ImageCandidate] = []
    seen: set[str] = set()

    def _add(raw: Optional[str], alt: str = "") -> None:
        if not raw:
            return
        raw = raw.strip()
        if not raw or raw.startswith("data:") or _denied(raw):
            return
        absolute = urljoin(base_url, raw)
        if urlsplit(absolute).scheme not in ("http", "https"):
            return
        normalized = normalize_image_url(absolute)
        if normalized in seen:
            return
        seen.add(normalized)
        found.append(ImageCandidate(url=absolute, alt=alt))

    for tag in soup.find_all("img"):
        if _too_small(tag):
            continue
        srcset = tag.get("srcset") or tag.get("data-srcset")
        src = (
            (_largest_from_srcset(srcset) if srcset else None)
            or tag.get("data-src")
            or tag.get("data-lazy-src")
            or tag.get("src")
        )
        _add(src, alt=" ".join(str(tag.get("alt") or "").split()))

    for meta in soup.find_all("meta", attrs={"property": "og:image"}):
        _add(meta.get("content"))

    return found[:MAX_IMAGES]


class ImageResolver:
    """Resolve candidate image URLs for an article."""

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    def resolve_candidates(self, content: str, article_url: str) -> List[ImageCandidate]:
        candidates = extract_image_candidates(content, article_url)
        if candidates:
            return candidates
        try:
            refetched = self._fetcher.fetch(article_url)
            candidates = extract_image_candidates(refetched.body, article_url)
            if not candidates:
                raise ImageResolutionFailure(f"no usable image in {article_url}")
        except (FetchFailure, ImageResolutionFailure) as exc:
            logger.info("images.unresolved", extra={"url": article_url, "error": str(exc)})
            return []
        return candidates

    def resolve(self, content: str, article_url: str) -> List[str]:
        return [c.url for c in self.resolve_candidates(content, article_url)]


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 2}


def pick_image(title: str, candidates: Sequence[ImageCandidate]) -> str:
    """Pick the candidate whose alt text or file name shares most title words."""
    if not candidates:
        return ""
    wanted = _tokens(title)
    best = candidates[0]
    best_score = 0
    for candidate in candidates:
        filename = urlsplit(candidate.url).path.rsplit("/", 1)[-1]
        score = len(wanted & (_tokens(candidate.alt) | _tokens(filename)))
        if score > best_score:
            best, best_score = candidate, score
    return best.url
