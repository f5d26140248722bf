"""
Company, query and answer persistence on top of the document store.

All functions take an open connection (see db.open_connection) so callers
decide the transaction boundary. Writing one answer inside its own
open_connection block makes it all-or-nothing.

Security:
    - ALL reads and writes are scoped under companies/{companyId}
"""

import logging
import re
import sqlite3

from ..config.constants import (
    COMPANY_NAME_MAX_LENGTH,
    COMPANY_NAME_MIN_LENGTH,
    SLUG_MIN_LENGTH,
    SLUG_PATTERN,
)
from ..exceptions import DocumentNotFoundError, OnboardingError
from ..utils.time import iso_timestamp
from .db import (
    create_document,
    delete_document,
    get_document,
    list_collection,
    list_collection_group,
    set_document,
)
from .records import AnswerRecord, Company, QueryRecord

logger = logging.getLogger(__name__)

COMPANIES = "companies"
QUERIES = "queries"
ANSWERS = "answers"

_SLUG_RE = re.compile(SLUG_PATTERN)


def company_path(company_id: str) -> str:
    return f"{COMPANIES}/{company_id}"


def queries_path(company_id: str) -> str:
    return f"{COMPANIES}/{company_id}/{QUERIES}"


def answers_path(company_id: str) -> str:
    return f"{COMPANIES}/{company_id}/{ANSWERS}"


# ============================================================================
# Companies
# ============================================================================


def validate_company_fields(name: str, slug: str) -> tuple[str, str]:
    """
    Check onboarding input and return the cleaned (name, slug).

    Rules:
        - name is 3-50 characters after trimming
        - slug is at least 3 characters of [a-z0-9]

    Raises:
        OnboardingError: Describing the first rule that fails
    """
    name = name.strip()
    slug = slug.strip()

    if not COMPANY_NAME_MIN_LENGTH <= len(name) <= COMPANY_NAME_MAX_LENGTH:
        raise OnboardingError(
            f"Company name must be {COMPANY_NAME_MIN_LENGTH}-"
            f"{COMPANY_NAME_MAX_LENGTH} characters, got {len(name)}"
        )

    if len(slug) < SLUG_MIN_LENGTH:
        raise OnboardingError(
            f"Slug must be at least {SLUG_MIN_LENGTH} characters, got {slug!r}"
        )

    if not _SLUG_RE.match(slug):
        raise OnboardingError(
            f"Slug may only contain lowercase letters and digits, got {slug!r}"
        )

    return name, slug


def create_company(
    conn: sqlite3.Connection,
    user_id: str,
    name: str,
    slug: str,
    email: str = "",
) -> Company:
    """
    Register the company owned by user_id.

    Raises:
        OnboardingError: On invalid input or if the user already has a company
    """
    if not user_id or "/" in user_id:
        raise OnboardingError(f"Invalid user id: {user_id!r}")

    name, slug = validate_company_fields(name, slug)

    if get_document(conn, company_path(user_id)) is not None:
        raise OnboardingError(f"User {user_id} already has a company")

    company = Company(
        id=user_id,
        name=name,
        slug=slug,
        owner_id=user_id,
        email=email,
        created_at=iso_timestamp(),
    )
    set_document(conn, company_path(user_id), company.to_document())

    logger.info(f"Created company {slug} for user {user_id}")
    return company


def get_company(conn: sqlite3.Connection, company_id: str) -> Company | None:
    snapshot = get_document(conn, company_path(company_id))
    if snapshot is None:
        return None
    return Company.from_document(snapshot.id, snapshot.data)


def get_company_name(conn: sqlite3.Connection, company_id: str) -> str | None:
    """Display name of a company, or None if it is missing or unnamed."""
    snapshot = get_document(conn, company_path(company_id))
    if snapshot is None:
        return None
    name = snapshot.data.get("name")
    return str(name) if name else None


# ============================================================================
# Queries
# ============================================================================


def add_query(conn: sqlite3.Connection, company_id: str, text: str) -> QueryRecord:
    """
    Add a monitored query for a company.

    Raises:
        DocumentNotFoundError: If the company does not exist
        ValueError: If text is blank
    """
    text = text.strip()
    if not text:
        raise ValueError("Query text cannot be empty")

    if get_document(conn, company_path(company_id)) is None:
        raise DocumentNotFoundError(f"Company not found: {company_id}")

    data = {"query": text, "createdAt": iso_timestamp()}
    path = create_document(conn, queries_path(company_id), data)
    doc_id = path.rsplit("/", 1)[-1]

    logger.info(f"Added query {doc_id} for company {company_id}")
    return QueryRecord.from_document(path, doc_id, data)


def remove_query(conn: sqlite3.Connection, company_id: str, query_id: str) -> bool:
    """
    Delete a query. Answers already recorded for it are kept.

    Returns:
        True if the query existed
    """
    return delete_document(conn, f"{queries_path(company_id)}/{query_id}")


def get_query(
    conn: sqlite3.Connection, company_id: str, query_id: str
) -> QueryRecord | None:
    snapshot = get_document(conn, f"{queries_path(company_id)}/{query_id}")
    if snapshot is None:
        return None
    return QueryRecord.from_document(snapshot.path, snapshot.id, snapshot.data)


def list_queries(conn: sqlite3.Connection, company_id: str) -> list[QueryRecord]:
    """A company's queries, oldest first."""
    return [
        QueryRecord.from_document(s.path, s.id, s.data)
        for s in list_collection(conn, queries_path(company_id), order_by="createdAt")
    ]


def list_all_queries(conn: sqlite3.Connection) -> list[QueryRecord]:
    """
    Every query document in the store, ordered by path.

    This is a collection-group read: it also returns documents from
    collections named "queries" outside companies/*, which callers must
    recognise by QueryRecord.company_id being None.
    """
    return [
        QueryRecord.from_document(s.path, s.id, s.data)
        for s in list_collection_group(conn, QUERIES)
    ]


# ============================================================================
# Answers
# ============================================================================


def insert_answer(
    conn: sqlite3.Connection, company_id: str, answer: AnswerRecord
) -> str:
    """
    Create a new answer document and return its id.

    Each call creates a distinct document; there is no de-duplication.
    """
    path = create_document(
        conn, answers_path(company_id), answer.to_document(), doc_id=answer.id or None
    )
    return path.rsplit("/", 1)[-1]


def list_answers(
    conn: sqlite3.Connection, company_id: str, query_id: str | None = None
) -> list[AnswerRecord]:
    """
    A company's answers, newest first, optionally for one query.

    Legacy shapes are normalized here; see records.AnswerRecord.from_document.
    """
    where = {"queryId": query_id} if query_id is not None else None
    snapshots = list_collection(
        conn, answers_path(company_id), where=where, order_by="createdAt", descending=True
    )

    answers = []
    for snapshot in snapshots:
        if not snapshot.data.get("queryId"):
            logger.warning(f"Skipping answer {snapshot.path} without queryId")
            continue
        answers.append(AnswerRecord.from_document(snapshot.id, snapshot.data))
    return answers
