"""Plan and quantity changes.

A change is requested from the marketplace, the returned operation is polled
to completion, and only a confirmed change is written to the store.
"""

import threading
from typing import Optional, Union

from marketplace_reconciler.errors import ReconcilerError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.operation import OperationKind
from marketplace_reconciler.models.subscription import SYSTEM_ACTOR_ID, SubscriptionRecord
from marketplace_reconciler.repositories.application_log import ApplicationLog
from marketplace_reconciler.repositories.catalog_repository import CatalogRepository
from marketplace_reconciler.repositories.subscription_store import SubscriptionStore
from marketplace_reconciler.services.fulfillment_client import FulfillmentClient
from marketplace_reconciler.services.operation_poller import OperationPoller
from marketplace_reconciler.utils.locks import KeyedLock, get_subscription_locks

logger = get_logger(__name__)


class SubscriptionChangeCoordinator:
    """Runs plan and quantity changes end to end."""

    def __init__(
        self,
        store: SubscriptionStore,
        catalog: CatalogRepository,
        fulfillment: FulfillmentClient,
        poller: OperationPoller,
        application_log: ApplicationLog,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.fulfillment = fulfillment
        self.poller = poller
        self.application_log = application_log
        self._locks = locks or get_subscription_locks()

    def _plan_guid_for(self, subscription: SubscriptionRecord, plan_id: str) -> Optional[str]:
        if not subscription.offer_id:
            return None
        offer = self.catalog.find_offer(subscription.offer_id)
        if offer is None:
            return None
        plan = self.catalog.find_plan(plan_id, offer.offer_guid)
        return plan.plan_guid if plan is not None else None

    def change_plan(
        self,
        external_id: str,
        plan_id: str,
        actor_user_id: int = SYSTEM_ACTOR_ID,
        cancel_event: Optional[threading.Event] = None,
    ) -> SubscriptionRecord:
        """Move a subscription to another plan.

        Raises:
            ValueError: If plan_id is blank
            SubscriptionNotFoundError: If the subscription is unknown
            FulfillmentApiError: If the marketplace rejects the request
            OperationFailedError: If the operation does not succeed; the store is untouched
        """
        if not plan_id or not plan_id.strip():
            raise ValueError("plan_id must not be blank")
        subscription = self.store.get(external_id)

        operation_id = self.fulfillment.change_plan(external_id, plan_id)
        if operation_id:
            self.poller.await_completion(
                external_id, operation_id, OperationKind.CHANGE_PLAN, plan_id, actor_user_id, cancel_event
            )
        else:
            logger.info("plan_change_completed_synchronously", external_id=external_id, plan_id=plan_id)

        plan_guid = self._plan_guid_for(subscription, plan_id)
        with self._locks.hold(external_id):
            self.store.update_plan(external_id, plan_id, actor_user_id, plan_guid=plan_guid)
        return self.store.get(external_id)

    def change_quantity(
        self,
        external_id: str,
        quantity: int,
        actor_user_id: int = SYSTEM_ACTOR_ID,
        cancel_event: Optional[threading.Event] = None,
    ) -> SubscriptionRecord:
        """Change the seat quantity of a subscription.

        Raises:
            ValueError: If quantity is not positive
            SubscriptionNotFoundError: If the subscription is unknown
            FulfillmentApiError: If the marketplace rejects the request
            OperationFailedError: If the operation does not succeed; the store is untouched
        """
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        self.store.get(external_id)

        operation_id = self.fulfillment.change_quantity(external_id, quantity)
        if operation_id:
            self.poller.await_completion(
                external_id,
                operation_id,
                OperationKind.CHANGE_QUANTITY,
                quantity,
                actor_user_id,
                cancel_event,
            )
        else:
            logger.info("quantity_change_completed_synchronously", external_id=external_id, quantity=quantity)

        with self._locks.hold(external_id):
            self.store.update_quantity(external_id, quantity, actor_user_id)
        return self.store.get(external_id)

    def run_change(
        self,
        kind: Union[OperationKind, str],
        external_id: str,
        target_value: Union[str, int],
        actor_user_id: int = SYSTEM_ACTOR_ID,
    ) -> Optional[SubscriptionRecord]:
        """Background-task entry point: run a change and log any failure instead of raising."""
        kind = OperationKind(kind)
        try:
            if kind is OperationKind.CHANGE_PLAN:
                return self.change_plan(external_id, str(target_value), actor_user_id)
            return self.change_quantity(external_id, int(target_value), actor_user_id)
        except ReconcilerError as e:
            logger.error(
                "subscription_change_failed",
                external_id=external_id,
                kind=kind.value,
                target_value=str(target_value),
                error=str(e),
                error_type=type(e).__name__,
            )
            self.application_log.add(
                f"{kind.label} Failed. SubscriptionId: {external_id} UserId: {actor_user_id} Error: {e}."
            )
            return None
