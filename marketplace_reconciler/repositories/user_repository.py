"""User repository - owners of subscriptions, keyed by email."""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.orm import UserRow

logger = get_logger(__name__)


class UserRepository:
    """Users are created on first sight and never removed."""

    def __init__(self, database: Optional[Database] = None):
        self._db = database or get_database()

    def get_id_by_email(self, email: str) -> Optional[int]:
        """Return the user id for an email (case-insensitive), or None."""
        with self._db.session_scope() as s:
            return s.scalar(select(UserRow.id).where(func.lower(UserRow.email) == email.strip().lower()))

    def ensure_user(self, email: str, full_name: str = "") -> int:
        """Return the id of the user with this email, creating the user if needed.

        Args:
            email: User email address
            full_name: Display name used only when the user is created

        Returns:
            User id

        Raises:
            ValueError: If email is blank
        """
        if not email or not email.strip():
            raise ValueError("email must not be blank")

        existing = self.get_id_by_email(email)
        if existing is not None:
            return existing

        try:
            with self._db.session_scope() as s:
                row = UserRow(email=email.strip(), full_name=full_name or "")
                s.add(row)
                s.flush()
                logger.info("user_created", user_id=row.id, email=row.email)
                return row.id
        except IntegrityError:
            # Created concurrently
            user_id = self.get_id_by_email(email)
            if user_id is None:
                raise
            return user_id
