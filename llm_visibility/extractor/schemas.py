"""
Structured-output schema for competitor analysis.

COMPETITOR_ANALYSIS_SCHEMA is sent to Gemini as generationConfig.responseSchema
(OpenAPI-subset types: OBJECT, ARRAY, STRING, INTEGER, NUMBER). The model's
JSON is then validated with the Pydantic models below, and conform_competitors()
enforces the invariants the schema alone cannot guarantee:

- ids are normalized (lowercase [a-z0-9] only); empty ids are dropped
- ids are unique (first occurrence wins)
- positions are exactly 1..k, following the model's ordering

Example:
    >>> payload = {"competitors": [
    ...     {"id": "Acme Corp", "position": 2, "sentiment": 70, "reasoning": "..."},
    ...     {"id": "saqr", "position": 1, "sentiment": 90, "reasoning": "..."},
    ... ]}
    >>> [(c.id, c.position) for c in validate_analysis_response(payload)]
    [('saqr', 1), ('acmecorp', 2)]
"""

from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..exceptions import SchemaConformanceError
from ..storage.records import CompetitorMention
from .normalize import normalize

COMPETITOR_ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "competitors": {
            "type": "ARRAY",
            "description": "Every company mentioned in the answer, in order of mention",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {
                        "type": "STRING",
                        "description": "Company name in English, lowercase, no spaces",
                    },
                    "position": {
                        "type": "INTEGER",
                        "description": (
                            "Order of first mention in the answer. Strictly "
                            "sequential integer starting at 1 (1, 2, 3...). "
                            "NO decimals."
                        ),
                    },
                    "sentiment": {
                        "type": "NUMBER",
                        "minimum": 0,
                        "maximum": 100,
                        "description": (
                            "Preference percentage: how favourably the answer "
                            "presents this company, from 0 to 100"
                        ),
                    },
                    "reasoning": {
                        "type": "STRING",
                        "description": "Brief explanation of the position and sentiment",
                    },
                },
                "required": ["id", "position", "sentiment", "reasoning"],
                "propertyOrdering": ["id", "position", "sentiment", "reasoning"],
            },
        }
    },
    "required": ["competitors"],
}


class ExtractedCompetitor(BaseModel):
    """One competitor exactly as the model returned it (before conformance)."""

    id: str
    position: int
    sentiment: float = Field(ge=0, le=100)
    reasoning: str = ""


class CompetitorAnalysis(BaseModel):
    """Top-level structured output."""

    competitors: list[ExtractedCompetitor]


def conform_competitors(items: list[ExtractedCompetitor]) -> list[CompetitorMention]:
    """
    Normalize ids, drop empties and duplicates, renumber positions 1..k.

    Ordering follows the reported position; entries with equal positions keep
    the order they were returned in (stable sort). Duplicate detection runs
    after that ordering, so the earliest-positioned duplicate is kept.
    """
    ordered = sorted(enumerate(items), key=lambda pair: (pair[1].position, pair[0]))

    seen: set[str] = set()
    result: list[CompetitorMention] = []
    for _, item in ordered:
        competitor_id = normalize(item.id)
        if not competitor_id or competitor_id in seen:
            continue
        seen.add(competitor_id)
        result.append(
            CompetitorMention(
                id=competitor_id,
                position=len(result) + 1,
                sentiment=item.sentiment,
                reasoning=item.reasoning.strip(),
            )
        )

    return result


def validate_analysis_response(payload: Any) -> list[CompetitorMention]:
    """
    Validate decoded structured output and apply the conformance step.

    Raises:
        SchemaConformanceError: If the payload does not match the schema
    """
    try:
        analysis = CompetitorAnalysis.model_validate(payload)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise SchemaConformanceError(f"Competitor analysis invalid: {details}") from e

    return conform_competitors(analysis.competitors)
