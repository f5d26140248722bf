"""
Typed records for companies, queries and answers.

Stored answers were written by several generations of the dashboard, so the
same field can hold different shapes:

    citations:   ["https://a.com", {"uri": "...", "title": "..."}]
    competitors: '[{"id": "x", ...}]'          (JSON string)
                 ["saqr", "Acme Corp"]          (bare ids)
                 [{"id": "x", "position": 1, "sentiment": 80, "reasoning": ""}]

AnswerRecord.from_document() resolves every variant exactly once. Each
resulting Citation / CompetitorMention carries a `shape` tag recording which
variant it came from; nothing downstream needs to look at it.
"""

import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..extractor.normalize import normalize
from ..utils.time import iso_timestamp

logger = logging.getLogger(__name__)


class CitationShape(str, Enum):
    """How a citation was stored."""

    LINK = "link"
    BARE_URL = "bare_url"


class MentionShape(str, Enum):
    """How a competitor mention was stored."""

    MENTION = "mention"
    BARE_ID = "bare_id"


class Citation(BaseModel):
    """A grounding source: URL plus page title (title may be empty)."""

    model_config = ConfigDict(frozen=True)

    uri: str
    title: str = ""
    shape: CitationShape = Field(default=CitationShape.LINK, exclude=True)

    def to_document(self) -> dict[str, str]:
        return {"uri": self.uri, "title": self.title}


class CompetitorMention(BaseModel):
    """
    One competitor found in an answer.

    position is 1-based order of first mention (0 when unknown, which only
    happens for bare-id legacy records). sentiment is a 0-100 preference score.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    position: int = 0
    sentiment: float = 0
    reasoning: str = ""
    shape: MentionShape = Field(default=MentionShape.MENTION, exclude=True)

    def to_document(self) -> dict[str, Any]:
        sentiment = self.sentiment
        if float(sentiment).is_integer():
            sentiment = int(sentiment)
        return {
            "id": self.id,
            "position": self.position,
            "sentiment": sentiment,
            "reasoning": self.reasoning,
        }


class AIProvider(BaseModel):
    """Which engine produced an answer: {id: "gemini", model: "..."}."""

    model_config = ConfigDict(frozen=True)

    id: str
    model: str


class Company(BaseModel):
    """
    A company profile stored at companies/{ownerId}.

    The document id is the owner's user id, so `id` equals owner_id.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    slug: str
    owner_id: str = Field(default="", alias="ownerId")
    email: str = ""
    created_at: str = Field(default="", alias="createdAt")

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Company":
        return cls.model_validate({"id": doc_id, **data})

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"})


class QueryRecord(BaseModel):
    """A monitored query stored at companies/{companyId}/queries/{queryId}."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    path: str
    text: str = Field(alias="query")
    created_at: str = Field(default="", alias="createdAt")

    @property
    def company_id(self) -> str | None:
        """Owning company id, or None for paths outside companies/*/queries."""
        segments = self.path.split("/")
        if len(segments) == 4 and segments[0] == "companies" and segments[2] == "queries":
            return segments[1]
        return None

    @classmethod
    def from_document(cls, path: str, doc_id: str, data: dict[str, Any]) -> "QueryRecord":
        return cls.model_validate(
            {
                "id": doc_id,
                "path": path,
                "query": str(data.get("query", "")),
                "createdAt": _timestamp_text(data.get("createdAt")),
            }
        )


class AnswerRecord(BaseModel):
    """
    One analysed run of a query, stored at companies/{companyId}/answers/{id}.

    Written once, never updated.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    query_id: str = Field(alias="queryId")
    query_text: str = Field(default="", alias="queryText")
    raw_answer: str = Field(default="", alias="rawAnswer")
    citations: list[Citation] = Field(default_factory=list)
    competitors: list[CompetitorMention] = Field(default_factory=list)
    created_at: str = Field(default_factory=iso_timestamp, alias="createdAt")
    ai_provider: AIProvider | None = Field(default=None, alias="aiProvider")

    def to_document(self) -> dict[str, Any]:
        """Canonical storage shape (always the current variant)."""
        document: dict[str, Any] = {
            "queryId": self.query_id,
            "queryText": self.query_text,
            "rawAnswer": self.raw_answer,
            "citations": [c.to_document() for c in self.citations],
            "competitors": [c.to_document() for c in self.competitors],
            "createdAt": self.created_at,
        }
        if self.ai_provider is not None:
            document["aiProvider"] = self.ai_provider.model_dump()
        return document

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "AnswerRecord":
        """
        Build a canonical record from any stored answer variant.

        Malformed citation or competitor entries are skipped with a warning
        rather than failing the whole answer.
        """
        provider = data.get("aiProvider")
        ai_provider = None
        if isinstance(provider, dict) and provider.get("id"):
            ai_provider = AIProvider(
                id=str(provider["id"]), model=str(provider.get("model", ""))
            )

        return cls(
            id=doc_id,
            query_id=str(data.get("queryId", "")),
            query_text=str(data.get("queryText", "")),
            raw_answer=str(data.get("rawAnswer", "")),
            citations=parse_citations(data.get("citations"), doc_id),
            competitors=parse_competitors(data.get("competitors"), doc_id),
            created_at=_timestamp_text(data.get("createdAt")),
            ai_provider=ai_provider,
        )

    @field_validator("query_id")
    @classmethod
    def validate_query_id(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("queryId cannot be empty")
        return v


def parse_citations(raw: Any, doc_id: str = "") -> list[Citation]:
    """Resolve stored citations (bare URL strings or {uri, title} objects)."""
    if not isinstance(raw, list):
        return []

    citations: list[Citation] = []
    for item in raw:
        if isinstance(item, str):
            if item:
                citations.append(Citation(uri=item, shape=CitationShape.BARE_URL))
        elif isinstance(item, dict) and item.get("uri"):
            citations.append(
                Citation(uri=str(item["uri"]), title=str(item.get("title") or ""))
            )
        else:
            logger.warning(f"Skipping malformed citation in answer {doc_id}: {item!r}")
    return citations


def parse_competitors(raw: Any, doc_id: str = "") -> list[CompetitorMention]:
    """
    Resolve stored competitors.

    Accepts a JSON-encoded string, a list of bare ids, or a list of mention
    objects. Bare ids are normalized the same way extracted ids are and get
    position 0 and sentiment 0.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Unparseable competitors string in answer {doc_id}")
            return []

    if not isinstance(raw, list):
        return []

    competitors: list[CompetitorMention] = []
    for item in raw:
        if isinstance(item, str):
            competitor_id = normalize(item)
            if competitor_id:
                competitors.append(
                    CompetitorMention(id=competitor_id, shape=MentionShape.BARE_ID)
                )
            continue

        if isinstance(item, dict) and item.get("id"):
            try:
                competitors.append(
                    CompetitorMention(
                        id=str(item["id"]),
                        position=int(item.get("position") or 0),
                        sentiment=float(item.get("sentiment") or 0),
                        reasoning=str(item.get("reasoning") or ""),
                    )
                )
            except (TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping malformed competitor in answer {doc_id}: {e}")
            continue

        logger.warning(f"Skipping malformed competitor in answer {doc_id}: {item!r}")

    return competitors


def _timestamp_text(value: Any) -> str:
    """Stored timestamps are ISO strings; tolerate missing values."""
    if value is None:
        return ""
    return str(value)
