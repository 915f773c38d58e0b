"""Catalog repository - offers, plans and plan attributes.

Plans are added as intake discovers them. A plan id is only unique within
its offer, so plan lookups always carry either the plan guid or the offer.
"""

from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.errors import PlanNotFoundError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.catalog import OfferRecord, PlanRecord
from marketplace_reconciler.models.fulfillment import PlanDetail
from marketplace_reconciler.models.orm import OfferRow, PlanAttributeRow, PlanRow
from marketplace_reconciler.models.settings import PlanAttributeConfig
from marketplace_reconciler.models.subscription import SubscriptionRecord

logger = get_logger(__name__)


class CatalogRepository:
    """Offer and plan storage."""

    def __init__(
        self,
        database: Optional[Database] = None,
        plan_attributes: Optional[List[PlanAttributeConfig]] = None,
    ):
        """Initialize catalog repository.

        Args:
            database: Database to use (defaults to global instance)
            plan_attributes: Attributes attached to every new plan (defaults to configuration)
        """
        self._db = database or get_database()
        if plan_attributes is None:
            from marketplace_reconciler.config import get_config

            plan_attributes = get_config().provisioning.plan_attributes
        self._plan_attributes = list(plan_attributes)

    def ensure_offer(self, offer_id: str, actor_user_id: int, name: str = "") -> OfferRecord:
        """Return the offer with this marketplace id, creating it if needed."""
        existing = self.find_offer(offer_id)
        if existing is not None:
            return existing
        try:
            with self._db.session_scope() as s:
                row = OfferRow(offer_id=offer_id, name=name or offer_id, created_by=actor_user_id)
                s.add(row)
                s.flush()
                logger.info("offer_created", offer_id=offer_id, offer_guid=row.offer_guid)
                return OfferRecord.model_validate(row)
        except IntegrityError:
            offer = self.find_offer(offer_id)
            if offer is None:
                raise
            return offer

    def find_offer(self, offer_id: str) -> Optional[OfferRecord]:
        with self._db.session_scope() as s:
            row = s.scalars(select(OfferRow).where(OfferRow.offer_id == offer_id)).first()
            return OfferRecord.model_validate(row) if row is not None else None

    def add_plans(self, offer_guid: str, plans: Iterable[PlanDetail]) -> List[PlanRecord]:
        """Add plans to an offer; plans already present are left unchanged.

        New plans get the configured parameter attributes.

        Returns:
            The offer's records for every given plan, new or existing
        """
        records = []
        with self._db.session_scope() as s:
            for plan in plans:
                row = s.scalars(
                    select(PlanRow).where(
                        PlanRow.offer_guid == offer_guid, PlanRow.plan_id == plan.plan_id
                    )
                ).first()
                if row is None:
                    row = PlanRow(
                        plan_id=plan.plan_id,
                        offer_guid=offer_guid,
                        display_name=plan.display_name or plan.plan_id,
                        description=plan.description,
                        is_metering_supported=plan.is_metering_supported,
                        is_per_user=plan.is_price_per_seat,
                    )
                    s.add(row)
                    s.flush()
                    for attribute in self._plan_attributes:
                        s.add(
                            PlanAttributeRow(
                                plan_guid=row.plan_guid,
                                display_name=attribute.name,
                                type=attribute.type.value,
                            )
                        )
                    logger.info(
                        "plan_added",
                        plan_id=row.plan_id,
                        plan_guid=row.plan_guid,
                        offer_guid=offer_guid,
                        attributes=len(self._plan_attributes),
                    )
                records.append(PlanRecord.model_validate(row))
        return records

    def find_plan(self, plan_id: str, offer_guid: str) -> Optional[PlanRecord]:
        """Find a plan by plan id within one offer."""
        with self._db.session_scope() as s:
            row = s.scalars(
                select(PlanRow).where(PlanRow.offer_guid == offer_guid, PlanRow.plan_id == plan_id)
            ).first()
            return PlanRecord.model_validate(row) if row is not None else None

    def find_plan_by_guid(self, plan_guid: str) -> Optional[PlanRecord]:
        with self._db.session_scope() as s:
            row = s.get(PlanRow, plan_guid)
            return PlanRecord.model_validate(row) if row is not None else None

    def list_plans(self, offer_guid: Optional[str] = None) -> List[PlanRecord]:
        query = select(PlanRow)
        if offer_guid is not None:
            query = query.where(PlanRow.offer_guid == offer_guid)
        with self._db.session_scope() as s:
            return [PlanRecord.model_validate(row) for row in s.scalars(query.order_by(PlanRow.plan_id))]

    def resolve_plan_for(self, subscription: SubscriptionRecord) -> PlanRecord:
        """Find the plan a subscription is on.

        Order of preference: the stored plan guid, the plan id within the
        subscription's offer, then the plan id alone when exactly one plan
        carries it.

        Raises:
            PlanNotFoundError: If no plan matches, or the plan id is ambiguous
        """
        if subscription.plan_guid:
            plan = self.find_plan_by_guid(subscription.plan_guid)
            if plan is not None:
                return plan

        if subscription.offer_id:
            offer = self.find_offer(subscription.offer_id)
            if offer is not None:
                plan = self.find_plan(subscription.plan_id, offer.offer_guid)
                if plan is not None:
                    return plan

        with self._db.session_scope() as s:
            rows = s.scalars(select(PlanRow).where(PlanRow.plan_id == subscription.plan_id)).all()
            if len(rows) == 1:
                return PlanRecord.model_validate(rows[0])

        raise PlanNotFoundError(
            f"Plan {subscription.plan_id} not found for subscription {subscription.external_id}"
            + (" (plan id is ambiguous across offers)" if len(rows) > 1 else "")
        )
