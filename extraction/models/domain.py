"""Schemas for extraction input and raw model output.

The model's JSON is untrusted: every product entry is validated on its own into
``ValidCandidate`` or ``SchemaViolation`` so a malformed item never spoils the
rest of the article.
"""

from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator


class ExtractionInput(BaseModel):
    """One article as handed to the model."""

    article_url: str
    article_title: str = ""
    source_name: str = ""
    content: str
    max_chars: int = Field(15000, ge=500, le=200_000, description="Characters of content sent to the model")

    @field_validator("content")
    @classmethod
    def _strip_content(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("content must not be blank")
        return s


class CandidatePayload(BaseModel):
    """A product entry as emitted by the model, before domain mapping."""

    name: str = Field(..., max_length=512)
    description: str = ""
    category: str = "other"
    price: Optional[float] = Field(default=None, ge=0)
    park: str = ""
    is_limited_edition: bool = False
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        s = " ".join(v.split())
        if not s:
            raise ValueError("name must not be blank")
        return s

    @field_validator("description", "category", "park", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_list(cls, v: Any) -> Any:
        if v is None:
            return []
        return v

    @field_validator("tags")
    @classmethod
    def _tags_cleanup(cls, v: List[str]) -> List[str]:
        cleaned: List[str] = []
        seen: set[str] = set()
        for tag in v:
            s = (tag or "").strip().lower()
            if not s or s in seen:
                continue
            cleaned.append(s)
            seen.add(s)
        return cleaned[:20]


class ValidCandidate(BaseModel):
    payload: CandidatePayload


class SchemaViolation(BaseModel):
    index: int
    raw: Any = None
    errors: List[str] = Field(default_factory=list)


CandidateCheck = Union[ValidCandidate, SchemaViolation]


class ExtractionResponse(BaseModel):
    """Envelope returned by the model plus call metadata."""

    items: List[CandidateCheck] = Field(default_factory=list)
    is_merchandise_related: bool = True
    llm_model: str
    llm_tokens_prompt: int = Field(..., ge=0)
    llm_tokens_completion: int = Field(..., ge=0)
    llm_cost: float = Field(..., ge=0.0)

    @property
    def valid(self) -> List[CandidatePayload]:
        return [item.payload for item in self.items if isinstance(item, ValidCandidate)]

    @property
    def violations(self) -> List[SchemaViolation]:
        return [item for item in self.items if isinstance(item, SchemaViolation)]


def check_candidate(index: int, raw: Any) -> CandidateCheck:
    """Validate one raw product entry."""
    if not isinstance(raw, dict):
        return SchemaViolation(index=index, raw=raw, errors=["product entry is not an object"])
    try:
        return ValidCandidate(payload=CandidatePayload.model_validate(raw))
    except ValidationError as exc:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        return SchemaViolation(index=index, raw=raw, errors=errors)
