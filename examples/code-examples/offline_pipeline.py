#!/usr/bin/env python3
"""
Run the whole pipeline offline with mock clients.

Creates a throwaway store with one company and two queries, runs each query
three times against scripted answers, then prints the company overview and
the rankings of the first query. No API key is needed.

Usage:
    python examples/code-examples/offline_pipeline.py
"""

import asyncio
import tempfile
from pathlib import Path

from llm_visibility.llm_runner.mock_client import MockAnswerEngine, MockStructuredGenerator
from llm_visibility.llm_runner.runner import process_queries
from llm_visibility.report.aggregator import aggregate, summarize_company
from llm_visibility.storage.db import init_db_if_needed, open_connection
from llm_visibility.storage.repository import (
    add_query,
    create_company,
    list_answers,
    list_queries,
)

GATEWAY_ANSWER = "For Saudi merchants, Moyasar and Saqr Pay are the usual picks; HyperPay too."
WALLET_ANSWER = "STC Pay dominates wallets, with Saqr Pay growing fast."

EXTRACTIONS = {
    "Moyasar and Saqr Pay": {
        "competitors": [
            {"id": "moyasar", "position": 1, "sentiment": 80, "reasoning": "first choice"},
            {"id": "Saqr Pay", "position": 2, "sentiment": 70, "reasoning": "common pick"},
            {"id": "hyperpay", "position": 3, "sentiment": 55, "reasoning": "alternative"},
        ]
    },
    "STC Pay dominates": {
        "competitors": [
            {"id": "stcpay", "position": 1, "sentiment": 90, "reasoning": "market leader"},
            {"id": "saqrpay", "position": 2, "sentiment": 75, "reasoning": "growing"},
        ]
    },
}


async def main() -> None:
    db_path = str(Path(tempfile.mkdtemp()) / "demo.db")
    init_db_if_needed(db_path)

    with open_connection(db_path) as conn:
        create_company(conn, "u1", "Saqr Pay", "saqrpay")
        add_query(conn, "u1", "best payment gateway in Saudi Arabia")
        add_query(conn, "u1", "best digital wallet in Saudi Arabia")

    engine = MockAnswerEngine(
        responses={
            "best payment gateway in Saudi Arabia": GATEWAY_ANSWER,
            "best digital wallet in Saudi Arabia": WALLET_ANSWER,
        },
        citations=[{"uri": "https://example.com/gateways", "title": "example.com"}],
        # Second call of the wallet query fails; the other runs are kept
        fail_runs={"best digital wallet in Saudi Arabia": {2}},
    )
    generator = MockStructuredGenerator(responses=EXTRACTIONS)

    result = await process_queries(
        db_path,
        engine,
        generator,
        company_id="u1",
        default_times=3,
    )
    print("Batch:", result.to_dict(), result.report.summary())

    with open_connection(db_path) as conn:
        queries = list_queries(conn, "u1")
        answers = list_answers(conn, "u1")

    overview = summarize_company(queries, answers, "saqrpay")
    print(f"Visibility: {overview.total_visibility}%")
    print(f"Average position: {overview.total_average_position}")
    print(f"Average sentiment: {overview.total_average_sentiment}")

    first = queries[0]
    rankings = aggregate(
        [a for a in answers if a.query_id == first.id], "saqrpay", client_slug="saqrpay"
    ).rankings
    print(f"\nRankings for: {first.text}")
    for row in rankings.competitors:
        marker = " (you)" if row.is_client else ""
        print(f"  {row.rank}. {row.name}{marker}: {row.mentions} mentions, pos {row.avg_position}")


if __name__ == "__main__":
    asyncio.run(main())
