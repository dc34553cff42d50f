"""Prompt templates/builders.

Builds the system/user messages asking the model for structured JSON. Article
content is cut to ``max_chars``.
"""

from __future__ import annotations

from typing import List

from extraction.models.domain import ExtractionInput

CATEGORIES = (
    "loungefly, ears, spirit_jersey, popcorn_bucket, pins, plush, apparel, "
    "drinkware, collectible, home_decor, toys, jewelry, other"
)
PARK_CODES = (
    "disney_mk, disney_epcot, disney_hs, disney_ak, disney_springs, "
    "universal_usf, universal_ioa, universal_citywalk, seaworld, multiple, "
    "disneyland_ca, dca_ca, universal_hollywood"
)

JSON_SCHEMA_SNIPPET = (
    "{"
    '"products": array<object> where object = {'
    '"name": string (specific product name), '
    '"description": string (2-3 sentences for shoppers), '
    f'"category": one of [{CATEGORIES}], '
    '"price": number|null (USD), '
    f'"park": one of [{PARK_CODES}], '
    '"is_limited_edition": boolean, '
    '"tags": array<string> (characters, collections, themes), '
    '"image_url": string|null'
    "}, "
    '"is_merchandise_related": boolean'
    "}"
)


def build_extraction_messages(inp: ExtractionInput) -> List[dict]:
    """Build chat messages instructing the model to list merchandise as JSON."""
    system = (
        "Role: you are a Disney/Universal/SeaWorld theme-park merchandise expert.\n"
        "Goal: read one article and list every merchandise item it mentions.\n\n"
        "Output: JSON ONLY (no prose, no code fences). Schema: "
        f"{JSON_SCHEMA_SNIPPET}.\n\n"
        "Rules:\n"
        "1) Only actual products; skip general article content.\n"
        '2) Be specific: "Mickey Mouse Holiday Spirit Jersey", not "new shirt".\n'
        "3) Include items named after characters even when the collection name is absent from the item name.\n"
        "4) Use disneyland_ca, dca_ca and universal_hollywood for California parks; "
        "disney_* codes are Walt Disney World (Florida) only.\n"
        "5) price is your best USD estimate or null; never invent a currency.\n"
        "6) image_url only when the article shows a product image URL.\n"
        "7) is_merchandise_related is false when the article has no merchandise news; products is then empty.\n"
    )

    content = inp.content[: inp.max_chars]
    lines: List[str] = [
        f"[Source] {inp.source_name}",
        f"[URL] {inp.article_url}",
        f"[Title] {inp.article_title}",
        "[Instructions] Read the article and output JSON only, following the rules above.",
        "[Content]",
        content,
    ]
    user = "\n".join(lines)

    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]
