"""
Identity session: who is acting, and which company they own.

A Session is an immutable snapshot. It is created explicitly, passed as a
parameter to whatever needs it, and refreshed by building a new snapshot;
there is no ambient "current user" state.

Example:
    >>> with open_connection(db_path) as conn:
    ...     session = Session.open(conn, "u1")
    >>> session.client_slug
    'saqr'
    >>> with open_connection(db_path) as conn:
    ...     session = session.refresh(conn)   # picks up a renamed company
"""

import logging
import sqlite3
from dataclasses import dataclass

from .exceptions import DocumentNotFoundError
from .storage.records import Company
from .storage.repository import get_company
from .utils.time import iso_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """
    Snapshot of a user and their company.

    Attributes:
        user_id: Authenticated user id (also the company document id)
        company: The user's company, or None before onboarding
        loaded_at: When the snapshot was taken (ISO 8601 UTC)
    """

    user_id: str
    company: Company | None
    loaded_at: str

    @classmethod
    def open(cls, conn: sqlite3.Connection, user_id: str) -> "Session":
        if not user_id:
            raise ValueError("user_id cannot be empty")
        company = get_company(conn, user_id)
        if company is None:
            logger.debug(f"User {user_id} has no company yet")
        return cls(user_id=user_id, company=company, loaded_at=iso_timestamp())

    def refresh(self, conn: sqlite3.Connection) -> "Session":
        """Return a new snapshot for the same user."""
        return Session.open(conn, self.user_id)

    @property
    def onboarded(self) -> bool:
        return self.company is not None

    @property
    def company_id(self) -> str:
        return self.user_id

    @property
    def client_slug(self) -> str:
        """Slug used to mark the client's own row in rankings ("" if none)."""
        return self.company.slug if self.company else ""

    def require_company(self) -> Company:
        """
        Raises:
            DocumentNotFoundError: If the user has not registered a company
        """
        if self.company is None:
            raise DocumentNotFoundError(f"No company registered for user {self.user_id}")
        return self.company
