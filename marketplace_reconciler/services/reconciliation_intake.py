"""Subscription discovery from the marketplace.

Two entry points bring marketplace subscriptions into the local store: the
purchase token a customer lands with, and a full resync of every
subscription the publisher has.
"""

from dataclasses import dataclass
from typing import Optional

from marketplace_reconciler.errors import PlanNotFoundError, PurchaseTokenResolutionError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.catalog import PlanRecord
from marketplace_reconciler.models.fulfillment import FulfillmentSubscription, PlanDetail
from marketplace_reconciler.models.subscription import (
    SYSTEM_ACTOR_ID,
    SubscriptionRecord,
    SubscriptionStatus,
)
from marketplace_reconciler.repositories.application_log import ApplicationLog
from marketplace_reconciler.repositories.catalog_repository import CatalogRepository
from marketplace_reconciler.repositories.subscription_store import SubscriptionStore
from marketplace_reconciler.repositories.user_repository import UserRepository
from marketplace_reconciler.services.fulfillment_client import FulfillmentClient
from marketplace_reconciler.utils.locks import KeyedLock, get_subscription_locks

logger = get_logger(__name__)


@dataclass
class ResyncSummary:
    """Counts from one full catalog resync."""

    created: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.created + self.skipped + self.failed


def _record_from(
    subscription: FulfillmentSubscription, plan: PlanRecord, owner_user_id: Optional[int]
) -> SubscriptionRecord:
    return SubscriptionRecord(
        external_id=subscription.id,
        name=subscription.name,
        plan_id=subscription.plan_id,
        plan_guid=plan.plan_guid,
        offer_id=subscription.offer_id,
        quantity=subscription.quantity,
        status=subscription.status,
        is_active=subscription.status.is_active,
        user_id=owner_user_id,
        purchaser_email=subscription.purchaser.email_id,
        purchaser_tenant_id=subscription.purchaser.tenant_id,
    )


class ReconciliationIntake:
    """Brings marketplace subscriptions into the local store."""

    def __init__(
        self,
        store: SubscriptionStore,
        catalog: CatalogRepository,
        users: UserRepository,
        fulfillment: FulfillmentClient,
        application_log: ApplicationLog,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.users = users
        self.fulfillment = fulfillment
        self.application_log = application_log
        self._locks = locks or get_subscription_locks()

    def resolve_purchase_token(
        self, token: str, actor_user_id: int = SYSTEM_ACTOR_ID
    ) -> SubscriptionRecord:
        """Resolve a landing-page purchase token and store its subscription.

        Args:
            token: Purchase token as received in the landing page URL
            actor_user_id: Calling user; the system actor means the purchaser becomes the owner

        Returns:
            The stored subscription

        Raises:
            PurchaseTokenResolutionError: If the token does not identify a subscription
            PlanNotFoundError: If the subscription's plan is not offered
            FulfillmentApiError: If a marketplace call fails
        """
        # URL decoding turns '+' in the token into spaces
        token = token.strip().replace(" ", "+")
        resolved = self.fulfillment.resolve(token)
        if not resolved.subscription_id:
            raise PurchaseTokenResolutionError("Purchase token did not resolve to a subscription")
        if not resolved.offer_id or not resolved.plan_id:
            raise PurchaseTokenResolutionError(
                f"Resolved subscription {resolved.subscription_id} has no offer or plan"
            )

        external_id = resolved.subscription_id
        with self._locks.hold(external_id):
            offer = self.catalog.ensure_offer(resolved.offer_id, actor_user_id)
            self.catalog.add_plans(
                offer.offer_guid, self.fulfillment.get_all_plans_for_subscription(external_id)
            )
            plan = self.catalog.find_plan(resolved.plan_id, offer.offer_guid)
            if plan is None:
                raise PlanNotFoundError(
                    f"Plan {resolved.plan_id} not found in offer {resolved.offer_id}"
                )

            subscription = self.fulfillment.get_subscription(external_id)
            owner_user_id = actor_user_id
            if actor_user_id == SYSTEM_ACTOR_ID:
                owner_user_id = self._ensure_owner(subscription)

            is_new = not self.store.exists(external_id)
            self.store.upsert(
                _record_from(subscription, plan, owner_user_id),
                actor_user_id,
                record_creation=is_new
                and subscription.status is SubscriptionStatus.PENDING_FULFILLMENT_START,
            )
            logger.info(
                "purchase_token_resolved",
                external_id=external_id,
                offer_id=resolved.offer_id,
                plan_id=resolved.plan_id,
                created=is_new,
            )
            return self.store.get(external_id)

    def _ensure_owner(self, subscription: FulfillmentSubscription) -> Optional[int]:
        email = subscription.purchaser.email_id or subscription.beneficiary.email_id
        if not email:
            return None
        return self.users.ensure_user(email)

    def full_catalog_resync(self, actor_user_id: int = SYSTEM_ACTOR_ID) -> ResyncSummary:
        """Import every marketplace subscription not yet known locally.

        One failing or malformed subscription is logged and counted as
        failed; the rest continue.
        """
        summary = ResyncSummary()
        for payload in self.fulfillment.get_all_subscriptions():
            external_id = payload.get("id") if isinstance(payload, dict) else None
            try:
                subscription = FulfillmentSubscription.model_validate(payload)
                with self._locks.hold(subscription.id):
                    # Known ids, including ones a concurrent token resolution just stored
                    if self.store.exists(subscription.id):
                        summary.skipped += 1
                        continue
                    self._import_subscription(subscription, actor_user_id)
                summary.created += 1
            except Exception as e:
                summary.failed += 1
                logger.error(
                    "resync_subscription_failed",
                    external_id=external_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                self.application_log.add(
                    f"Resync Failed. SubscriptionId: {external_id} Error: {e}."
                )

        logger.info(
            "catalog_resync_completed",
            created=summary.created,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    def _import_subscription(self, subscription: FulfillmentSubscription, actor_user_id: int) -> None:
        offer = self.catalog.ensure_offer(subscription.offer_id, actor_user_id)
        if subscription.status is SubscriptionStatus.UNSUBSCRIBED:
            # Available plans cannot be listed for a cancelled subscription
            plans = [PlanDetail(planId=subscription.plan_id, displayName=subscription.plan_id)]
        else:
            plans = self.fulfillment.get_all_plans_for_subscription(subscription.id)
        self.catalog.add_plans(offer.offer_guid, plans)

        plan = self.catalog.find_plan(subscription.plan_id, offer.offer_guid)
        if plan is None:
            raise PlanNotFoundError(
                f"Plan {subscription.plan_id} not found in offer {subscription.offer_id}"
            )

        owner_user_id = None
        if subscription.beneficiary.email_id:
            owner_user_id = self.users.ensure_user(subscription.beneficiary.email_id)

        self.store.upsert(
            _record_from(subscription, plan, owner_user_id),
            actor_user_id,
            record_creation=subscription.status is SubscriptionStatus.PENDING_FULFILLMENT_START,
        )
