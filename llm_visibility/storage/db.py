"""
SQLite document store with schema management for LLM Visibility.

Data is organised as a hierarchy of collections and documents addressed by
slash-separated paths, the same shape the dashboard uses:

    companies/{companyId}                       -> company profile
    companies/{companyId}/queries/{queryId}     -> monitored query
    companies/{companyId}/answers/{answerId}    -> analysed answer

Every document is one row of the `documents` table keyed by its full path and
holding a JSON payload. A collection is every row sharing a collection_path;
a collection group is every row sharing the last collection segment
(collection_id), wherever it sits in the tree.

Schema versioning follows the usual pattern: init_db_if_needed() creates the
schema_version table and applies forward-only migrations, each in its own
transaction.

Example usage:
    >>> from llm_visibility.storage.db import init_db_if_needed, open_connection
    >>> init_db_if_needed("./output/visibility.db")
    >>> with open_connection("./output/visibility.db") as conn:
    ...     path = create_document(conn, "companies/u1/queries", {"query": "best banks"})

Security:
    - ALL queries use parameterized statements, including JSON field paths
    - NO API keys are ever stored in the database
"""

import json
import logging
import re
import secrets
import sqlite3
import string
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..exceptions import (
    DatabaseInitError,
    DatabaseMigrationError,
    DatabaseQueryError,
    InvalidDocumentPathError,
)
from ..utils.time import iso_timestamp, utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 2

DOCUMENT_ID_LENGTH = 20
DOCUMENT_ID_ALPHABET = string.ascii_letters + string.digits

# Field names allowed in where/order_by clauses
FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class DocumentSnapshot:
    """
    A document read from the store.

    Attributes:
        path: Full document path (e.g. "companies/u1/queries/q1")
        id: Last path segment
        data: Decoded JSON payload
    """

    path: str
    id: str
    data: dict[str, Any]


# ============================================================================
# Schema management
# ============================================================================


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize SQLite database with schema versioning.

    Creates the database file and its parent directory if needed, then
    applies any pending migrations. Idempotent.

    Args:
        db_path: Filesystem path to SQLite database file.

    Raises:
        DatabaseInitError: If the file or directory cannot be created
        DatabaseMigrationError: If a migration fails or the database is newer
            than this software
    """
    db_path_obj = Path(db_path)
    try:
        db_path_obj.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DatabaseInitError(
            f"Cannot create database directory {db_path_obj.parent}: {e}"
        ) from e

    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Cannot open database {db_path}: {e}") from e

    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        conn.commit()

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
            logger.info(f"Database schema upgraded to v{CURRENT_SCHEMA_VERSION}")
        elif current_version == CURRENT_SCHEMA_VERSION:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
        else:
            raise DatabaseMigrationError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Failed to initialize database {db_path}: {e}") from e
    finally:
        conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the applied schema version (0 for a fresh database)."""
    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    result = cursor.fetchone()[0]

    # MAX() returns None if table is empty
    return result if result is not None else 0


def apply_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply schema migrations from one version to another.

    Each migration runs in its own transaction and records itself in
    schema_version. If migration to version N fails, the database stays at
    version N-1.

    Raises:
        DatabaseMigrationError: If any migration SQL fails, or on a downgrade
    """
    if from_version > to_version:
        raise DatabaseMigrationError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    migrations = {1: _migrate_to_v1, 2: _migrate_to_v2}

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")

        migration = migrations.get(target_version)
        if migration is None:
            raise DatabaseMigrationError(
                f"No migration defined for version {target_version}"
            )

        try:
            conn.execute("BEGIN")
            migration(conn)

            timestamp = utc_timestamp()
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, timestamp),
            )

            conn.commit()
            logger.info(
                f"Successfully migrated to schema version {target_version} "
                f"at {timestamp}"
            )

        except sqlite3.Error as e:
            conn.rollback()
            logger.error(
                f"Migration to version {target_version} failed: {e}", exc_info=True
            )
            raise DatabaseMigrationError(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the documents table.

    Columns:
        path: full document path, primary key
        collection_path: path of the containing collection
        collection_id: last segment of collection_path (collection group key)
        doc_id: last segment of path
        parent_path: owning document path, NULL for root collections
        data: JSON payload
        created_at / updated_at: ISO 8601 UTC with milliseconds
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS documents (
            path TEXT PRIMARY KEY,
            collection_path TEXT NOT NULL,
            collection_id TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            parent_path TEXT,
            data TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_collection_path
        ON documents(collection_path, doc_id)
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_collection_id
        ON documents(collection_id, path)
    """)


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """
    Index answers by queryId.

    Per-query dashboards filter a company's answers on the queryId field,
    so an expression index avoids decoding every answer payload.
    """
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_query_id
        ON documents(collection_path, json_extract(data, '$.queryId'))
    """)


# ============================================================================
# Connections and paths
# ============================================================================


@contextmanager
def open_connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Open a connection for one unit of work.

    Commits when the block exits normally, rolls back when it raises, and
    always closes. Callers that need several writes to land together simply
    perform them inside one block.

    Raises:
        DatabaseError subclasses raised inside the block propagate unchanged.
    """
    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Cannot open database {db_path}: {e}") from e

    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def split_path(path: str) -> list[str]:
    """
    Split a slash-separated path into segments.

    Raises:
        InvalidDocumentPathError: On empty paths or empty segments
    """
    segments = path.strip("/").split("/") if path else []
    if not segments or any(not segment for segment in segments):
        raise InvalidDocumentPathError(f"Invalid path: {path!r}")
    return segments


def _document_segments(path: str) -> list[str]:
    segments = split_path(path)
    if len(segments) % 2 != 0:
        raise InvalidDocumentPathError(
            f"Document path must have an even number of segments: {path!r}"
        )
    return segments


def _collection_segments(path: str) -> list[str]:
    segments = split_path(path)
    if len(segments) % 2 != 1:
        raise InvalidDocumentPathError(
            f"Collection path must have an odd number of segments: {path!r}"
        )
    return segments


def generate_document_id() -> str:
    """Return a random 20-character alphanumeric document id."""
    return "".join(
        secrets.choice(DOCUMENT_ID_ALPHABET) for _ in range(DOCUMENT_ID_LENGTH)
    )


def _check_field(field: str) -> str:
    if not FIELD_NAME_PATTERN.match(field):
        raise DatabaseQueryError(f"Invalid field name: {field!r}")
    return f"$.{field}"


def _snapshot(path: str, doc_id: str, data_json: str) -> DocumentSnapshot:
    try:
        data = json.loads(data_json)
    except json.JSONDecodeError as e:
        raise DatabaseQueryError(f"Corrupt document payload at {path}: {e}") from e
    return DocumentSnapshot(path=path, id=doc_id, data=data)


# ============================================================================
# Document operations
# ============================================================================


def get_document(conn: sqlite3.Connection, path: str) -> DocumentSnapshot | None:
    """Read one document, or None if it does not exist."""
    segments = _document_segments(path)
    normalized = "/".join(segments)

    try:
        row = conn.execute(
            "SELECT path, doc_id, data FROM documents WHERE path = ?",
            (normalized,),
        ).fetchone()
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Failed to read {normalized}: {e}") from e

    if row is None:
        return None
    return _snapshot(*row)


def set_document(conn: sqlite3.Connection, path: str, data: dict[str, Any]) -> str:
    """
    Create or overwrite the document at path.

    created_at is preserved on overwrite; updated_at is refreshed.

    Returns:
        The normalized document path
    """
    segments = _document_segments(path)
    normalized = "/".join(segments)
    collection_path = "/".join(segments[:-1])
    parent_path = "/".join(segments[:-2]) or None
    now = iso_timestamp()

    try:
        conn.execute(
            """
            INSERT INTO documents (
                path, collection_path, collection_id, doc_id, parent_path,
                data, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (
                normalized,
                collection_path,
                segments[-2],
                segments[-1],
                parent_path,
                json.dumps(data, ensure_ascii=False),
                now,
                now,
            ),
        )
    except (sqlite3.Error, TypeError, ValueError) as e:
        raise DatabaseQueryError(f"Failed to write {normalized}: {e}") from e

    return normalized


def create_document(
    conn: sqlite3.Connection,
    collection_path: str,
    data: dict[str, Any],
    doc_id: str | None = None,
) -> str:
    """
    Insert a new document into a collection.

    Args:
        conn: Active connection
        collection_path: e.g. "companies/u1/answers"
        data: JSON-serializable payload
        doc_id: Optional id; a random 20-character id is generated otherwise

    Returns:
        Full path of the new document

    Raises:
        DatabaseQueryError: If a document already exists at that path
    """
    segments = _collection_segments(collection_path)
    doc_id = doc_id or generate_document_id()
    path = "/".join([*segments, doc_id])
    parent_path = "/".join(segments[:-1]) or None
    now = iso_timestamp()

    try:
        conn.execute(
            """
            INSERT INTO documents (
                path, collection_path, collection_id, doc_id, parent_path,
                data, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                path,
                "/".join(segments),
                segments[-1],
                doc_id,
                parent_path,
                json.dumps(data, ensure_ascii=False),
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError as e:
        raise DatabaseQueryError(f"Document already exists: {path}") from e
    except (sqlite3.Error, TypeError, ValueError) as e:
        raise DatabaseQueryError(f"Failed to create {path}: {e}") from e

    return path


def delete_document(conn: sqlite3.Connection, path: str) -> bool:
    """
    Delete one document. Subcollections are left in place.

    Returns:
        True if a document was deleted
    """
    normalized = "/".join(_document_segments(path))
    try:
        cursor = conn.execute("DELETE FROM documents WHERE path = ?", (normalized,))
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Failed to delete {normalized}: {e}") from e
    return cursor.rowcount > 0


def list_collection(
    conn: sqlite3.Connection,
    collection_path: str,
    where: dict[str, Any] | None = None,
    order_by: str | None = None,
    descending: bool = False,
) -> list[DocumentSnapshot]:
    """
    List documents of one collection.

    Args:
        where: Field equality filters on the JSON payload
        order_by: Payload field to sort on; documents without it sort first
            ascending. Ties fall back to insertion order in the same direction.
            Without order_by, documents come back ordered by id.
        descending: Reverse the order_by direction
    """
    segments = _collection_segments(collection_path)
    sql = "SELECT path, doc_id, data FROM documents WHERE collection_path = ?"
    params: list[Any] = ["/".join(segments)]

    for field, value in (where or {}).items():
        sql += " AND json_extract(data, ?) = ?"
        params.extend([_check_field(field), value])

    direction = "DESC" if descending else "ASC"
    if order_by:
        sql += f" ORDER BY json_extract(data, ?) {direction}, rowid {direction}"
        params.append(_check_field(order_by))
    else:
        sql += " ORDER BY doc_id ASC"

    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Failed to list {collection_path}: {e}") from e

    return [_snapshot(*row) for row in rows]


def list_collection_group(
    conn: sqlite3.Connection, collection_id: str
) -> list[DocumentSnapshot]:
    """
    List every document in any collection named collection_id, by path.

    Includes documents in root collections (e.g. a legacy top-level
    "queries" collection) as well as nested ones.
    """
    if not collection_id or "/" in collection_id:
        raise InvalidDocumentPathError(f"Invalid collection id: {collection_id!r}")

    try:
        rows = conn.execute(
            "SELECT path, doc_id, data FROM documents "
            "WHERE collection_id = ? ORDER BY path ASC",
            (collection_id,),
        ).fetchall()
    except sqlite3.Error as e:
        raise DatabaseQueryError(
            f"Failed to list collection group {collection_id}: {e}"
        ) from e

    return [_snapshot(*row) for row in rows]
