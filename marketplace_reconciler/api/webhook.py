"""Marketplace webhook endpoint.

The marketplace posts a notification after it has acted on a subscription.
Handled actions:
- Unsubscribe: confirm the unsubscribe (PendingUnsubscribe -> Unsubscribed)
- ChangePlan / ChangeQuantity: apply the confirmed value to the store

Other actions are acknowledged and ignored.
"""

from fastapi import APIRouter, Depends, HTTPException

from marketplace_reconciler.api.dependencies import services_dependency
from marketplace_reconciler.errors import SubscriptionNotFoundError
from marketplace_reconciler.logging_config import bind_context, get_logger
from marketplace_reconciler.models.api_request import WebhookResponse
from marketplace_reconciler.models.fulfillment import WebhookNotification
from marketplace_reconciler.models.operation import OperationStatus
from marketplace_reconciler.models.subscription import SYSTEM_ACTOR_ID
from marketplace_reconciler.services.registry import ReconcilerServices

logger = get_logger(__name__)
router = APIRouter(tags=["Webhook"], prefix="/subscriptions")


def _apply_change(notification: WebhookNotification, services: ReconcilerServices) -> bool:
    if notification.status and OperationStatus.parse(notification.status) is not OperationStatus.SUCCEEDED:
        logger.info(
            "webhook_change_not_succeeded",
            action=notification.action,
            status=notification.status,
        )
        return False

    external_id = notification.subscription_id
    subscription = services.store.get(external_id)
    with services.locks.hold(external_id):
        if notification.action == "ChangePlan" and notification.plan_id:
            plan_guid = None
            offer = services.catalog.find_offer(subscription.offer_id) if subscription.offer_id else None
            if offer is not None:
                plan = services.catalog.find_plan(notification.plan_id, offer.offer_guid)
                plan_guid = plan.plan_guid if plan is not None else None
            services.store.update_plan(external_id, notification.plan_id, SYSTEM_ACTOR_ID, plan_guid=plan_guid)
            return True
        if notification.action == "ChangeQuantity" and notification.quantity is not None:
            services.store.update_quantity(external_id, notification.quantity, SYSTEM_ACTOR_ID)
            return True
    return False


@router.post("/webhook", response_model=WebhookResponse, summary="Marketplace webhook")
def marketplace_webhook(
    notification: WebhookNotification,
    services: ReconcilerServices = Depends(services_dependency),
) -> WebhookResponse:
    external_id = notification.subscription_id
    bind_context(external_id=external_id)
    logger.info(
        "webhook_received",
        action=notification.action,
        activity_id=notification.activity_id,
        status=notification.status,
    )

    try:
        if notification.action == "Unsubscribe":
            services.engine.confirm_unsubscribe(external_id, SYSTEM_ACTOR_ID)
            services.engine.notify(external_id, SYSTEM_ACTOR_ID)
            handled = True
        elif notification.action in ("ChangePlan", "ChangeQuantity"):
            handled = _apply_change(notification, services)
        else:
            logger.info("webhook_action_ignored", action=notification.action)
            handled = False
    except SubscriptionNotFoundError:
        logger.warning("webhook_subscription_not_found", external_id=external_id)
        raise HTTPException(
            status_code=404,
            detail={
                "error": "Subscription not found",
                "message": f"Subscription '{external_id}' does not exist",
            },
        )

    return WebhookResponse(subscription_id=external_id, action=notification.action, handled=handled)
