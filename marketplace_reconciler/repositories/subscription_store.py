"""Subscription store - durable subscription state keyed by marketplace id.

Every change to status, plan or quantity is written together with its audit
entry in a single transaction. Calls that would not change anything are
no-ops and write no audit entry.
"""

from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.errors import SubscriptionNotFoundError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.orm import PlanRow, SubscriptionRow, UserRow
from marketplace_reconciler.models.subscription import (
    INITIAL_STATUS_VALUE,
    SYSTEM_ACTOR_ID,
    AuditAttribute,
    SubscriptionRecord,
    SubscriptionStatus,
)
from marketplace_reconciler.repositories.audit_log_store import AuditLogStore
from marketplace_reconciler.state_logger import (
    log_plan_change,
    log_quantity_change,
    log_subscription_created,
    log_subscription_state_change,
)

logger = get_logger(__name__)


class SubscriptionStore:
    """Database-backed storage for subscription records.

    Lookup is by marketplace subscription id (external id). Rows are never
    deleted; unsubscribing is a status.
    """

    def __init__(self, database: Optional[Database] = None, audit_log: Optional[AuditLogStore] = None):
        """Initialize subscription store.

        Args:
            database: Database to use (defaults to global instance)
            audit_log: Audit log store sharing the same database
        """
        self._db = database or get_database()
        self._audit_log = audit_log or AuditLogStore(self._db)

    @staticmethod
    def _row_for(session: Session, external_id: str) -> Optional[SubscriptionRow]:
        return session.scalars(
            select(SubscriptionRow).where(SubscriptionRow.external_id == external_id)
        ).first()

    def upsert(
        self,
        subscription: SubscriptionRecord,
        actor_user_id: int = SYSTEM_ACTOR_ID,
        record_creation: bool = False,
    ) -> int:
        """Insert a subscription or reconcile an existing one.

        Args:
            subscription: Subscription as observed from the marketplace
            actor_user_id: User responsible for the change
            record_creation: On insert, also audit the initial status ("None" -> status)

        Returns:
            Internal id of the subscription row
        """
        try:
            return self._upsert_once(subscription, actor_user_id, record_creation)
        except IntegrityError:
            # Another unit of work inserted the same external id first
            logger.info("subscription_upsert_conflict", external_id=subscription.external_id)
            return self._upsert_once(subscription, actor_user_id, record_creation)

    def _upsert_once(
        self, subscription: SubscriptionRecord, actor_user_id: int, record_creation: bool
    ) -> int:
        with self._db.session_scope() as s:
            row = self._row_for(s, subscription.external_id)
            if row is None:
                row = SubscriptionRow(
                    external_id=subscription.external_id,
                    name=subscription.name,
                    plan_id=subscription.plan_id,
                    plan_guid=subscription.plan_guid,
                    offer_id=subscription.offer_id,
                    quantity=subscription.quantity,
                    status=subscription.status.value,
                    is_active=subscription.status.is_active,
                    user_id=subscription.user_id,
                    purchaser_email=subscription.purchaser_email,
                    purchaser_tenant_id=subscription.purchaser_tenant_id,
                    created_by=actor_user_id,
                )
                s.add(row)
                s.flush()
                if record_creation:
                    self._audit_log.append(
                        row.id,
                        AuditAttribute.STATUS,
                        new_value=row.status,
                        old_value=INITIAL_STATUS_VALUE,
                        actor_user_id=actor_user_id,
                        session=s,
                    )
                log_subscription_created(
                    external_id=row.external_id,
                    status=row.status,
                    plan_id=row.plan_id,
                    quantity=row.quantity,
                    actor_user_id=actor_user_id,
                )
                return row.id

            if row.plan_guid is None and subscription.plan_guid is not None:
                row.plan_guid = subscription.plan_guid

            if row.status != subscription.status.value:
                self._apply_status(
                    s, row, subscription.status, subscription.status.is_active, actor_user_id
                )
            if row.plan_id != subscription.plan_id:
                self._apply_plan(s, row, subscription.plan_id, subscription.plan_guid, actor_user_id)
            if row.quantity != subscription.quantity:
                self._apply_quantity(s, row, subscription.quantity, actor_user_id)
            return row.id

    def _apply_status(
        self,
        session: Session,
        row: SubscriptionRow,
        new_status: SubscriptionStatus,
        is_active: bool,
        actor_user_id: int,
    ) -> None:
        old_status = row.status
        row.status = new_status.value
        row.is_active = is_active
        self._audit_log.append(
            row.id,
            AuditAttribute.STATUS,
            new_value=new_status.value,
            old_value=old_status,
            actor_user_id=actor_user_id,
            session=session,
        )
        log_subscription_state_change(
            external_id=row.external_id,
            old_state=old_status,
            new_state=new_status.value,
            actor_user_id=actor_user_id,
            is_active=is_active,
        )

    def _apply_plan(
        self,
        session: Session,
        row: SubscriptionRow,
        plan_id: str,
        plan_guid: Optional[str],
        actor_user_id: int,
    ) -> None:
        old_plan_id = row.plan_id
        row.plan_id = plan_id
        # The old plan guid no longer describes the new plan
        row.plan_guid = plan_guid
        self._audit_log.append(
            row.id,
            AuditAttribute.PLAN,
            new_value=plan_id,
            old_value=old_plan_id,
            actor_user_id=actor_user_id,
            session=session,
        )
        log_plan_change(
            external_id=row.external_id,
            old_plan_id=old_plan_id,
            new_plan_id=plan_id,
            actor_user_id=actor_user_id,
        )

    def _apply_quantity(
        self, session: Session, row: SubscriptionRow, quantity: int, actor_user_id: int
    ) -> None:
        old_quantity = row.quantity
        row.quantity = quantity
        self._audit_log.append(
            row.id,
            AuditAttribute.QUANTITY,
            new_value=str(quantity),
            old_value=str(old_quantity),
            actor_user_id=actor_user_id,
            session=session,
        )
        log_quantity_change(
            external_id=row.external_id,
            old_quantity=old_quantity,
            new_quantity=quantity,
            actor_user_id=actor_user_id,
        )

    def update_status(
        self,
        external_id: str,
        new_status: SubscriptionStatus,
        is_active: bool,
        actor_user_id: int = SYSTEM_ACTOR_ID,
    ) -> bool:
        """Set status and active flag.

        Args:
            external_id: Marketplace subscription identifier
            new_status: Target status
            is_active: Active flag to store with it
            actor_user_id: User responsible for the change

        Returns:
            True if the status changed, False for unknown ids or an unchanged status
        """
        new_status = SubscriptionStatus.parse(new_status)
        with self._db.session_scope() as s:
            row = self._row_for(s, external_id)
            if row is None or row.status == new_status.value:
                return False
            self._apply_status(s, row, new_status, is_active, actor_user_id)
            return True

    def update_plan(
        self,
        external_id: str,
        plan_id: str,
        actor_user_id: int = SYSTEM_ACTOR_ID,
        plan_guid: Optional[str] = None,
    ) -> bool:
        """Set the plan. Returns True if it changed.

        Raises:
            ValueError: If plan_id is blank
        """
        if not plan_id or not plan_id.strip():
            raise ValueError("plan_id must not be blank")
        with self._db.session_scope() as s:
            row = self._row_for(s, external_id)
            if row is None or row.plan_id == plan_id:
                return False
            self._apply_plan(s, row, plan_id, plan_guid, actor_user_id)
            return True

    def update_quantity(
        self, external_id: str, quantity: int, actor_user_id: int = SYSTEM_ACTOR_ID
    ) -> bool:
        """Set the seat quantity. Returns True if it changed.

        Raises:
            ValueError: If quantity is negative
        """
        if quantity < 0:
            raise ValueError(f"quantity must be non-negative, got {quantity}")
        with self._db.session_scope() as s:
            row = self._row_for(s, external_id)
            if row is None or row.quantity == quantity:
                return False
            self._apply_quantity(s, row, quantity, actor_user_id)
            return True

    def get(self, external_id: str) -> SubscriptionRecord:
        """Get subscription by marketplace id.

        Raises:
            SubscriptionNotFoundError: If the id is unknown
        """
        subscription = self.find(external_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription not found: {external_id}")
        return subscription

    def find(self, external_id: str, include_inactive: bool = True) -> Optional[SubscriptionRecord]:
        """Find subscription by marketplace id.

        Args:
            external_id: Marketplace subscription identifier
            include_inactive: When False, Unsubscribed subscriptions are treated as absent

        Returns:
            SubscriptionRecord if found, None otherwise
        """
        with self._db.session_scope() as s:
            row = self._row_for(s, external_id)
            if row is None:
                return None
            if not include_inactive and row.status == SubscriptionStatus.UNSUBSCRIBED.value:
                return None
            return SubscriptionRecord.model_validate(row)

    def exists(self, external_id: str) -> bool:
        with self._db.session_scope() as s:
            return self._row_for(s, external_id) is not None

    def list_all(self, include_inactive: bool = True) -> List[SubscriptionRecord]:
        """All subscriptions, newest first."""
        query = select(SubscriptionRow)
        if not include_inactive:
            query = query.where(SubscriptionRow.status != SubscriptionStatus.UNSUBSCRIBED.value)
        with self._db.session_scope() as s:
            rows = s.scalars(query.order_by(SubscriptionRow.id.desc())).all()
            return [SubscriptionRecord.model_validate(row) for row in rows]

    def list_by_owner_email(self, email: str, include_inactive: bool = True) -> List[SubscriptionRecord]:
        """Subscriptions owned by the user with this email, newest first."""
        query = (
            select(SubscriptionRow)
            .join(UserRow, UserRow.id == SubscriptionRow.user_id)
            .where(func.lower(UserRow.email) == email.strip().lower())
        )
        if not include_inactive:
            query = query.where(SubscriptionRow.status != SubscriptionStatus.UNSUBSCRIBED.value)
        with self._db.session_scope() as s:
            rows = s.scalars(query.order_by(SubscriptionRow.id.desc())).all()
            return [SubscriptionRecord.model_validate(row) for row in rows]

    def list_active_with_metered_plan(self) -> List[SubscriptionRecord]:
        """Subscribed subscriptions whose plan supports metered billing.

        The plan is matched by plan guid; subscriptions without one fall back
        to plan id only when exactly one plan carries that id.
        """
        with self._db.session_scope() as s:
            rows = s.scalars(
                select(SubscriptionRow).where(
                    SubscriptionRow.status == SubscriptionStatus.SUBSCRIBED.value
                )
            ).all()
            metered = []
            for row in rows:
                if row.plan_guid is not None:
                    plan = s.get(PlanRow, row.plan_guid)
                else:
                    candidates = s.scalars(select(PlanRow).where(PlanRow.plan_id == row.plan_id)).all()
                    plan = candidates[0] if len(candidates) == 1 else None
                if plan is not None and plan.is_metering_supported:
                    metered.append(SubscriptionRecord.model_validate(row))
            return metered

    def count(self) -> int:
        with self._db.session_scope() as s:
            return s.scalar(select(func.count(SubscriptionRow.id))) or 0

    def get_statistics(self) -> Dict[str, int]:
        """Subscription counts: total plus one entry per stored status."""
        with self._db.session_scope() as s:
            counts = s.execute(
                select(SubscriptionRow.status, func.count(SubscriptionRow.id)).group_by(
                    SubscriptionRow.status
                )
            ).all()
        statistics = {"total_subscriptions": sum(count for _, count in counts)}
        for status, count in counts:
            statistics[status] = count
        return statistics

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, external_id: str) -> bool:
        return self.exists(external_id)

    def __repr__(self) -> str:
        return f"SubscriptionStore(subscriptions={self.count()})"
