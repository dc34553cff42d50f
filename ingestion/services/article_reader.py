"""Plain-text extraction of an article page's main content."""

from __future__ import annotations

from bs4 import BeautifulSoup

NOISE_SELECTORS = (
    "script, style, noscript, nav, footer, aside, form, .ad, .advertisement, .sidebar",
    # related-article blocks cause false product matches
    ".related-posts, .related-articles, .related, .yarpp-related, .jp-relatedposts, "
    "[class*='related-post'], [class*='related-article'], .more-stories, "
    ".recommended-posts, .you-may-also-like",
)
MAIN_SELECTOR = "article, .post-content, .entry-content, main"


def main_content_html(html: str) -> str:
    """Return the HTML of the main content block with noise removed."""
    soup = BeautifulSoup(html, "html.parser")
    for selector in NOISE_SELECTORS:
        for node in soup.select(selector):
            node.decompose()
    main = soup.select_one(MAIN_SELECTOR) or soup.body or soup
    return str(main)


def article_text(html: str) -> str:
    """Whitespace-collapsed text of the main content block."""
    soup = BeautifulSoup(main_content_html(html), "html.parser")
    return " ".join(soup.get_text(" ").split())
