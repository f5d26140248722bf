"""
Tests for session.py - immutable identity snapshots.
"""

import dataclasses

import pytest

from llm_visibility.exceptions import DocumentNotFoundError
from llm_visibility.session import Session
from llm_visibility.storage.db import open_connection, set_document


def test_onboarded_session(company_db):
    with open_connection(company_db) as conn:
        session = Session.open(conn, "u1")

    assert session.onboarded
    assert session.company_id == "u1"
    assert session.client_slug == "saqrpay"
    assert session.require_company().name == "Saqr Pay"


def test_session_before_onboarding(db_path):
    with open_connection(db_path) as conn:
        session = Session.open(conn, "u9")

    assert not session.onboarded
    assert session.client_slug == ""
    with pytest.raises(DocumentNotFoundError, match="No company registered"):
        session.require_company()


def test_refresh_returns_new_snapshot(company_db):
    with open_connection(company_db) as conn:
        session = Session.open(conn, "u1")
        set_document(conn, "companies/u1", {"name": "Saqr Pay KSA", "slug": "saqrksa"})
        refreshed = session.refresh(conn)

    assert session.client_slug == "saqrpay"
    assert refreshed.client_slug == "saqrksa"


def test_session_is_immutable(company_db):
    with open_connection(company_db) as conn:
        session = Session.open(conn, "u1")

    with pytest.raises(dataclasses.FrozenInstanceError):
        session.user_id = "u2"


def test_requires_user_id(db_path):
    with open_connection(db_path) as conn:
        with pytest.raises(ValueError, match="user_id cannot be empty"):
            Session.open(conn, "")
