"""Application log - durable operational messages and provisioning status.

Two append-only channels: free-form messages (poller progress, intake
failures) and the provisioning-status entries written during activation.
"""

from typing import List, Optional

from sqlalchemy import select

from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.models.orm import ApplicationLogRow, ProvisioningStatusRow
from marketplace_reconciler.models.subscription import ProvisioningStatusEntry


class ApplicationLog:
    """Append-only operational log backed by the database."""

    def __init__(self, database: Optional[Database] = None):
        self._db = database or get_database()

    def add(self, message: str) -> None:
        with self._db.session_scope() as s:
            s.add(ApplicationLogRow(message=message))

    def list_recent(self, limit: int = 100) -> List[str]:
        """Most recent messages, newest first."""
        with self._db.session_scope() as s:
            return list(
                s.scalars(
                    select(ApplicationLogRow.message).order_by(ApplicationLogRow.id.desc()).limit(limit)
                ).all()
            )

    def log_provisioning_status(self, external_id: str, status: str, description: str = "") -> None:
        """Record one provisioning-status entry for a subscription."""
        with self._db.session_scope() as s:
            s.add(
                ProvisioningStatusRow(
                    subscription_external_id=external_id,
                    status=status,
                    description=description,
                )
            )

    def list_provisioning_status(self, external_id: str) -> List[ProvisioningStatusEntry]:
        """Provisioning-status entries for a subscription, oldest first."""
        with self._db.session_scope() as s:
            rows = s.scalars(
                select(ProvisioningStatusRow)
                .where(ProvisioningStatusRow.subscription_external_id == external_id)
                .order_by(ProvisioningStatusRow.id)
            ).all()
            return [ProvisioningStatusEntry.model_validate(row) for row in rows]
