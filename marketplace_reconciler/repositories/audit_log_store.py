"""Audit log store - append-only ledger of subscription attribute changes.

Entries are written once, never updated or deleted, and read back in
creation order.
"""

from typing import List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.models.orm import SubscriptionAuditLogRow, SubscriptionRow
from marketplace_reconciler.models.subscription import (
    NO_PREVIOUS_VALUE,
    SYSTEM_ACTOR_ID,
    AuditAttribute,
    AuditLogEntry,
)


class AuditLogEntryNotFoundError(Exception):
    """Raised when an audit entry id does not exist."""

    pass


class AuditLogStore:
    """Append-only storage for SubscriptionAuditLog entries."""

    def __init__(self, database: Optional[Database] = None):
        self._db = database or get_database()

    def append(
        self,
        subscription_internal_id: int,
        attribute: Union[AuditAttribute, str],
        new_value: str,
        old_value: Optional[str] = None,
        actor_user_id: int = SYSTEM_ACTOR_ID,
        session: Optional[Session] = None,
    ) -> AuditLogEntry:
        """Insert one audit entry.

        Args:
            subscription_internal_id: Internal id of the subscription row
            attribute: Changed attribute (Status, Plan or Quantity)
            new_value: Value after the change
            old_value: Value before the change; "N/A" when omitted
            actor_user_id: User responsible for the change
            session: Outer session to join, so the entry commits with the change it records

        Returns:
            The stored entry with its id and timestamp
        """
        attribute = AuditAttribute(attribute)
        with self._db.session_scope(session) as s:
            row = SubscriptionAuditLogRow(
                subscription_id=subscription_internal_id,
                attribute=attribute.value,
                old_value=NO_PREVIOUS_VALUE if old_value is None else str(old_value),
                new_value=str(new_value),
                actor_user_id=actor_user_id,
            )
            s.add(row)
            s.flush()
            return AuditLogEntry.model_validate(row)

    def get(self, entry_id: int) -> AuditLogEntry:
        with self._db.session_scope() as s:
            row = s.get(SubscriptionAuditLogRow, entry_id)
            if row is None:
                raise AuditLogEntryNotFoundError(f"Audit log entry not found: {entry_id}")
            return AuditLogEntry.model_validate(row)

    def list_by_subscription(self, external_id: str) -> List[AuditLogEntry]:
        """All entries for a subscription, oldest first.

        Args:
            external_id: Marketplace subscription identifier

        Returns:
            Entries in creation order (empty for unknown subscriptions)
        """
        with self._db.session_scope() as s:
            rows = s.scalars(
                select(SubscriptionAuditLogRow)
                .join(SubscriptionRow, SubscriptionRow.id == SubscriptionAuditLogRow.subscription_id)
                .where(SubscriptionRow.external_id == external_id)
                .order_by(SubscriptionAuditLogRow.id)
            ).all()
            return [AuditLogEntry.model_validate(row) for row in rows]

    def count(self) -> int:
        with self._db.session_scope() as s:
            return s.scalar(select(func.count(SubscriptionAuditLogRow.id))) or 0

