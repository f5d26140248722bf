"""
Aggregation engine: rankings and visibility statistics from stored answers.

Everything here is a pure function of its inputs. Nothing is cached or
written, so calling aggregate() twice on the same answers gives equal results.

Per query (aggregate):
    runs      one row per answer: was the target mentioned, at which
              position, with which sentiment
    stats     visibility = round(100 * mentioned / total)
              average_position = mean of positions > 0 among mentions
              average_sentiment = round(mean of sentiments > 0 among mentions)
    rankings  competitors grouped by normalized id, ordered by mentions
              (desc) then id (asc); citations grouped by title (or host),
              ordered by count (desc) then title (asc)

Per company (summarize_company):
    total_visibility = round(mean of per-query visibility)
    total_average_position = mean of per-query positions > 0 (1 decimal)
    total_average_sentiment = round(mean of per-query sentiments > 0)

Rounding is half-up (2.5 -> 3), not Python's banker's rounding.
"""

import math
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from ..extractor.normalize import normalize, same_entity
from ..storage.records import AnswerRecord, Citation, CompetitorMention, QueryRecord


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def format_one_decimal(value: float) -> str:
    """Fixed one-decimal string, half-up: 2.25 -> "2.3", 2 -> "2.0"."""
    return f"{math.floor(value * 10 + 0.5) / 10:.1f}"


def sentiment_label(score: float) -> str:
    """Dashboard band for a 0-100 sentiment score."""
    if score >= 85:
        return "excellent"
    if score >= 65:
        return "good"
    if score >= 40:
        return "average"
    return "negative"


@dataclass(frozen=True)
class RunView:
    """One answer seen from the target company's point of view."""

    answer_id: str
    created_at: str
    raw_answer: str
    is_mentioned: bool
    position: int
    sentiment: float
    reasoning: str
    competitors: list[CompetitorMention]
    citations: list[Citation]

    @property
    def visibility(self) -> int:
        return 100 if self.is_mentioned else 0


@dataclass(frozen=True)
class QueryStats:
    total_searches: int = 0
    mention_count: int = 0
    visibility: int = 0
    average_position: float = 0.0
    average_sentiment: int = 0


@dataclass(frozen=True)
class CompetitorRanking:
    name: str
    mentions: int
    avg_position: str
    avg_sentiment: int
    rank: int
    is_client: bool = False


@dataclass(frozen=True)
class CitationRanking:
    title: str
    urls: list[str]
    count: int


@dataclass(frozen=True)
class Rankings:
    competitors: list[CompetitorRanking] = field(default_factory=list)
    citations: list[CitationRanking] = field(default_factory=list)


@dataclass(frozen=True)
class QueryAggregate:
    runs: list[RunView]
    stats: QueryStats
    rankings: Rankings


@dataclass(frozen=True)
class QueryOverview:
    query_id: str
    query_text: str
    stats: QueryStats


@dataclass(frozen=True)
class CompanyOverview:
    queries: list[QueryOverview]
    total_visibility: int
    total_average_position: str | None
    total_average_sentiment: int | None


def find_mention(
    competitors: list[CompetitorMention], target: str
) -> CompetitorMention | None:
    """First mention whose normalized id equals the normalized target."""
    for mention in competitors:
        if same_entity(target, mention.id):
            return mention
    return None


def build_run_view(answer: AnswerRecord, target_company_id: str) -> RunView:
    mention = find_mention(answer.competitors, target_company_id)
    return RunView(
        answer_id=answer.id,
        created_at=answer.created_at,
        raw_answer=answer.raw_answer,
        is_mentioned=mention is not None,
        position=mention.position if mention else 0,
        sentiment=mention.sentiment if mention else 0,
        reasoning=mention.reasoning if mention else "",
        competitors=list(answer.competitors),
        citations=list(answer.citations),
    )


def compute_stats(runs: list[RunView]) -> QueryStats:
    total = len(runs)
    mentioned = [run for run in runs if run.is_mentioned]
    positions = [run.position for run in mentioned if run.position > 0]
    sentiments = [run.sentiment for run in mentioned if run.sentiment > 0]

    return QueryStats(
        total_searches=total,
        mention_count=len(mentioned),
        visibility=round_half_up(len(mentioned) / total * 100) if total else 0,
        average_position=sum(positions) / len(positions) if positions else 0.0,
        average_sentiment=(
            round_half_up(sum(sentiments) / len(sentiments)) if sentiments else 0
        ),
    )


def rank_competitors(
    answers: list[AnswerRecord], client_slug: str = ""
) -> list[CompetitorRanking]:
    """
    Group every mention across answers by normalized id.

    avg_position and avg_sentiment are means over all mentions of that id
    (legacy bare-id mentions count with position 0 and sentiment 0).
    Ties on mentions are broken by id, ascending.
    """
    totals: dict[str, list[float]] = {}
    for answer in answers:
        for mention in answer.competitors:
            competitor_id = normalize(mention.id)
            if not competitor_id:
                continue
            entry = totals.setdefault(competitor_id, [0, 0.0, 0.0])
            entry[0] += 1
            entry[1] += mention.position
            entry[2] += mention.sentiment

    client_id = normalize(client_slug)
    ordered = sorted(totals.items(), key=lambda item: (-item[1][0], item[0]))

    return [
        CompetitorRanking(
            name=competitor_id,
            mentions=int(count),
            avg_position=format_one_decimal(total_position / count),
            avg_sentiment=round_half_up(total_sentiment / count),
            rank=index,
            is_client=bool(client_id) and competitor_id == client_id,
        )
        for index, (competitor_id, (count, total_position, total_sentiment)) in enumerate(
            ordered, start=1
        )
    ]


def citation_key(citation: Citation) -> str:
    """Group key: the title, else the URL host, else the raw URI."""
    if citation.title:
        return citation.title
    try:
        host = urlsplit(citation.uri).hostname
    except ValueError:
        host = None
    return host or citation.uri


def rank_citations(answers: list[AnswerRecord]) -> list[CitationRanking]:
    """
    Group citations across answers.

    count is every occurrence; urls holds each distinct URI once, in
    first-seen order. Ties on count are broken by title, ascending.
    """
    groups: dict[str, tuple[int, list[str]]] = {}
    for answer in answers:
        for citation in answer.citations:
            key = citation_key(citation)
            count, urls = groups.get(key, (0, []))
            if citation.uri not in urls:
                urls = [*urls, citation.uri]
            groups[key] = (count + 1, urls)

    ordered = sorted(groups.items(), key=lambda item: (-item[1][0], item[0]))
    return [
        CitationRanking(title=title, urls=urls, count=count)
        for title, (count, urls) in ordered
    ]


def aggregate(
    answers: list[AnswerRecord], target_company_id: str, client_slug: str = ""
) -> QueryAggregate:
    """
    Aggregate one query's answers for a target company.

    Args:
        answers: The query's answers (any order; runs keep the given order)
        target_company_id: Company whose visibility is measured (slug or name,
            compared in normalized form)
        client_slug: Logged-in company's slug, marks its ranking row
    """
    runs = [build_run_view(answer, target_company_id) for answer in answers]
    return QueryAggregate(
        runs=runs,
        stats=compute_stats(runs),
        rankings=Rankings(
            competitors=rank_competitors(answers, client_slug),
            citations=rank_citations(answers),
        ),
    )


def summarize_query(
    query: QueryRecord, answers: list[AnswerRecord], target_company_id: str
) -> QueryOverview:
    """Stats for one query, from a company-wide answer list."""
    own = [answer for answer in answers if answer.query_id == query.id]
    runs = [build_run_view(answer, target_company_id) for answer in own]
    return QueryOverview(query_id=query.id, query_text=query.text, stats=compute_stats(runs))


def summarize_company(
    queries: list[QueryRecord], answers: list[AnswerRecord], target_company_id: str
) -> CompanyOverview:
    """
    Company dashboard rollup over all of its queries.

    total_average_position / total_average_sentiment are None when no query
    has a positive value to average.
    """
    overviews = [summarize_query(q, answers, target_company_id) for q in queries]

    visibilities = [o.stats.visibility for o in overviews]
    positions = [o.stats.average_position for o in overviews if o.stats.average_position > 0]
    sentiments = [o.stats.average_sentiment for o in overviews if o.stats.average_sentiment > 0]

    return CompanyOverview(
        queries=overviews,
        total_visibility=(
            round_half_up(sum(visibilities) / len(visibilities)) if visibilities else 0
        ),
        total_average_position=(
            format_one_decimal(sum(positions) / len(positions)) if positions else None
        ),
        total_average_sentiment=(
            round_half_up(sum(sentiments) / len(sentiments)) if sentiments else None
        ),
    )
