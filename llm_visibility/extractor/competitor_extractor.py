"""
Competitor analysis of raw answers.

analyze_answer() sends one schema-constrained request to the extraction model
and returns the companies the answer mentions, each with:

- id: normalized name token
- position: order of first mention, exactly 1..k
- sentiment: 0-100 preference score
- reasoning: short explanation in the configured language

Extraction never raises. Provider errors, invalid JSON and schema violations
all degrade to an empty competitor list, with the failure text kept on the
result so the caller can report it. There is no retry: one attempt per answer.

Example:
    >>> result = await analyze_answer(generator, "Saqr leads, then Acme.", "best banks")
    >>> [(c.id, c.position) for c in result.competitors]
    [('saqr', 1), ('acme', 2)]
"""

import logging
from dataclasses import dataclass, field

from ..config.constants import DEFAULT_REASONING_LANGUAGE
from ..llm_runner.models import StructuredGenerator
from ..storage.records import CompetitorMention
from .schemas import COMPETITOR_ANALYSIS_SCHEMA, validate_analysis_response

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """
    Outcome of analysing one answer.

    Attributes:
        competitors: Conformed mentions, positions 1..k (empty on failure)
        error: Failure description when extraction degraded, else None
    """

    competitors: list[CompetitorMention] = field(default_factory=list)
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def build_analysis_prompt(
    raw_text: str,
    query_text: str,
    client_name: str = "",
    reasoning_language: str = DEFAULT_REASONING_LANGUAGE,
) -> str:
    """
    Build the extraction prompt.

    client_name is context only: it helps the model recognise the client's
    brand when it appears, it does not restrict which companies are returned.
    """
    client_context = ""
    if client_name:
        client_context = (
            f'\nThe analysis is for the company "{client_name}". Include it if the '
            f"answer mentions it, but extract every other company too.\n"
        )

    return f"""Analyze the answer for query: "{query_text}".
{client_context}
Extract:
1. Companies mentioned. Use the company name in English, lowercase, with no spaces as the id.
2. Order of mention (position). It MUST be a simple integer: 1 for the first company mentioned, 2 for the second, and so on. NO decimals, no gaps.
3. Preference percentage (sentiment) from 0 to 100: how strongly the answer recommends the company.
4. A brief reasoning in {reasoning_language} explaining the position and sentiment.

Answer: "{raw_text}"
"""


async def analyze_answer(
    generator: StructuredGenerator,
    raw_text: str,
    query_text: str,
    client_name: str = "",
    reasoning_language: str = DEFAULT_REASONING_LANGUAGE,
) -> AnalysisResult:
    """
    Extract competitor mentions from one answer.

    Returns:
        AnalysisResult; competitors is empty and error is set on any failure
    """
    if not raw_text or raw_text.isspace():
        return AnalysisResult()

    prompt = build_analysis_prompt(raw_text, query_text, client_name, reasoning_language)

    try:
        logger.debug(f"Calling extraction model {generator.model_name}")
        payload = await generator.generate_structured(prompt, COMPETITOR_ANALYSIS_SCHEMA)
        competitors = validate_analysis_response(payload)
    except Exception as e:
        logger.warning(f"Competitor extraction failed: {e}", exc_info=True)
        return AnalysisResult(error=f"{type(e).__name__}: {e}")

    logger.debug(f"Extracted {len(competitors)} competitors")
    return AnalysisResult(competitors=competitors)
