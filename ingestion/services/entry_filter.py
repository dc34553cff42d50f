"""Keyword pre-filter applied to feed entries before an article is fetched."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ingestion.models.domain import FeedEntryDTO
from ingestion.settings import Settings


@dataclass(frozen=True)
class EntryFilter:
    merch_keywords: Sequence[str]
    excluded_region_keywords: Sequence[str]
    discount_keywords: Sequence[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> "EntryFilter":
        return cls(
            merch_keywords=tuple(settings.merch_keywords),
            excluded_region_keywords=tuple(settings.excluded_region_keywords),
            discount_keywords=tuple(settings.discount_keywords),
        )

    def rejection_reason(self, entry: FeedEntryDTO) -> Optional[str]:
        """Return why the entry is skipped, or None when it should be examined."""
        title = entry.title.lower()
        if not any(kw in title for kw in self.merch_keywords) and "merchandise" not in entry.content.lower():
            return "not_merchandise"
        if any(kw in title for kw in self.excluded_region_keywords):
            return "excluded_region"
        if any(kw in title for kw in self.discount_keywords):
            return "discount"
        return None

    def accepts(self, entry: FeedEntryDTO) -> bool:
        return self.rejection_reason(entry) is None
