"""Shared fixtures: temporary document stores."""

import pytest

from llm_visibility.storage.db import create_document, init_db_if_needed, open_connection
from llm_visibility.storage.repository import create_company


@pytest.fixture
def db_path(tmp_path):
    """Initialized, empty document store."""
    path = str(tmp_path / "visibility.db")
    init_db_if_needed(path)
    return path


@pytest.fixture
def company_db(db_path):
    """Store with one onboarded company: u1 / Saqr Pay / saqrpay."""
    with open_connection(db_path) as conn:
        create_company(conn, "u1", "Saqr Pay", "saqrpay", email="ops@saqr.example")
    return db_path


@pytest.fixture
def seed_query(db_path):
    """
    Write query documents with fixed ids.

    seed_query(company_id, query_id, text) writes companies/{company_id}/queries/{query_id};
    company_id=None writes a legacy top-level queries/{query_id} document.
    """

    def _seed(company_id, query_id, text, created_at="2025-11-01T00:00:00.000Z"):
        collection = f"companies/{company_id}/queries" if company_id else "queries"
        with open_connection(db_path) as conn:
            create_document(
                conn, collection, {"query": text, "createdAt": created_at}, doc_id=query_id
            )

    return _seed
