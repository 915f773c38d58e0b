"""Subscription trigger API.

Implements:
- POST /subscriptions/resolve - Resolve a landing-page purchase token
- POST /subscriptions/resync - Import every marketplace subscription
- GET /subscriptions - List subscriptions
- GET /subscriptions/{id} - Subscription with parameters
- GET /subscriptions/{id}/audit - Audit trail
- GET /subscriptions/{id}/parameters - Plan parameters with values
- POST /subscriptions/{id}/activate - Activate (provision) a subscription
- POST /subscriptions/{id}/deactivate - Request unsubscribe
- POST /subscriptions/{id}/plan - Change plan (polled in the background)
- POST /subscriptions/{id}/quantity - Change seat quantity (polled in the background)
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from marketplace_reconciler.api.dependencies import actor_user_id, services_dependency
from marketplace_reconciler.errors import PlanNotFoundError, ReconcilerError, SubscriptionNotFoundError
from marketplace_reconciler.logging_config import bind_context, get_logger
from marketplace_reconciler.models.api_request import (
    ActivateRequest,
    AuditLogResponse,
    ChangeAcceptedResponse,
    ChangePlanRequest,
    ChangeQuantityRequest,
    ResolveTokenRequest,
    ResyncResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    TriggerResponse,
)
from marketplace_reconciler.models.operation import OperationKind
from marketplace_reconciler.models.subscription import SubscriptionParameter, SubscriptionRecord
from marketplace_reconciler.services.registry import ReconcilerServices
from marketplace_reconciler.services.status_engine import UserAction

logger = get_logger(__name__)
router = APIRouter(tags=["Subscriptions"], prefix="/subscriptions")


def _not_found(external_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": "Subscription not found",
            "message": f"Subscription '{external_id}' does not exist",
        },
    )


def _get_subscription(services: ReconcilerServices, external_id: str) -> SubscriptionRecord:
    try:
        return services.store.get(external_id)
    except SubscriptionNotFoundError:
        logger.warning("subscription_not_found", external_id=external_id)
        raise _not_found(external_id)


def _parameters_for(services: ReconcilerServices, subscription: SubscriptionRecord) -> List[SubscriptionParameter]:
    try:
        plan = services.catalog.resolve_plan_for(subscription)
    except PlanNotFoundError:
        return []
    return services.parameters.list_for(subscription.id, plan.plan_guid)


@router.post("/resolve", response_model=SubscriptionResponse, summary="Resolve purchase token")
def resolve_purchase_token(
    request: ResolveTokenRequest,
    actor: int = Depends(actor_user_id),
    services: ReconcilerServices = Depends(services_dependency),
) -> SubscriptionResponse:
    """Exchange a purchase token for its subscription and store it.

    Raises:
        502: The marketplace rejected the token or a marketplace call failed
    """
    try:
        subscription = services.intake.resolve_purchase_token(request.token, actor)
    except ReconcilerError as e:
        logger.error("purchase_token_resolution_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=502,
            detail={"error": type(e).__name__, "message": str(e)},
        )
    bind_context(external_id=subscription.external_id)
    return SubscriptionResponse(
        subscription=subscription, parameters=_parameters_for(services, subscription)
    )


@router.post("/resync", response_model=ResyncResponse, summary="Resync all subscriptions")
def resync(
    actor: int = Depends(actor_user_id),
    services: ReconcilerServices = Depends(services_dependency),
) -> ResyncResponse:
    try:
        summary = services.intake.full_catalog_resync(actor)
    except ReconcilerError as e:
        logger.error("catalog_resync_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=502,
            detail={"error": type(e).__name__, "message": str(e)},
        )
    return ResyncResponse(
        created=summary.created,
        skipped=summary.skipped,
        failed=summary.failed,
        message=f"Resync finished: {summary.created} created, {summary.skipped} skipped, {summary.failed} failed",
    )


@router.get("", response_model=SubscriptionListResponse, summary="List subscriptions")
def list_subscriptions(
    owner_email: Optional[str] = None,
    include_inactive: bool = True,
    metered: bool = False,
    services: ReconcilerServices = Depends(services_dependency),
) -> SubscriptionListResponse:
    """List stored subscriptions.

    metered=true lists the Subscribed subscriptions on plans with metered
    billing, the set usage reporting works on.
    """
    if metered:
        subscriptions = services.store.list_active_with_metered_plan()
    elif owner_email:
        subscriptions = services.store.list_by_owner_email(owner_email, include_inactive)
    else:
        subscriptions = services.store.list_all(include_inactive)
    return SubscriptionListResponse(total=len(subscriptions), subscriptions=subscriptions)


@router.get("/{external_id}", response_model=SubscriptionResponse, summary="Get subscription")
def get_subscription(
    external_id: str, services: ReconcilerServices = Depends(services_dependency)
) -> SubscriptionResponse:
    subscription = _get_subscription(services, external_id)
    return SubscriptionResponse(
        subscription=subscription, parameters=_parameters_for(services, subscription)
    )


@router.get("/{external_id}/audit", response_model=AuditLogResponse, summary="Get audit trail")
def get_audit_log(
    external_id: str, services: ReconcilerServices = Depends(services_dependency)
) -> AuditLogResponse:
    _get_subscription(services, external_id)
    return AuditLogResponse(
        external_id=external_id, entries=services.audit_log.list_by_subscription(external_id)
    )


@router.get(
    "/{external_id}/parameters",
    response_model=List[SubscriptionParameter],
    summary="Get plan parameters",
)
def get_parameters(
    external_id: str, services: ReconcilerServices = Depends(services_dependency)
) -> List[SubscriptionParameter]:
    return _parameters_for(services, _get_subscription(services, external_id))


def _run_action(
    action: UserAction,
    external_id: str,
    actor: int,
    services: ReconcilerServices,
    parameters: Optional[dict] = None,
) -> TriggerResponse:
    logger.info("user_action_requested", action=action.value, external_id=external_id)
    try:
        result = services.engine.apply_user_action(action, external_id, actor, parameters)
    except SubscriptionNotFoundError:
        raise _not_found(external_id)
    subscription = result.subscription
    return TriggerResponse(
        external_id=external_id,
        status=subscription.status.value,
        is_active=subscription.is_active,
        notified=result.notified,
        message=f"{action.value} processed; status is {subscription.status.value}",
    )


@router.post("/{external_id}/activate", response_model=TriggerResponse, summary="Activate subscription")
def activate(
    external_id: str,
    request: Optional[ActivateRequest] = None,
    actor: int = Depends(actor_user_id),
    services: ReconcilerServices = Depends(services_dependency),
) -> TriggerResponse:
    """Activate a subscription.

    Activation failures are reported through the returned status
    (ActivationFailed), not as an HTTP error.
    """
    parameters = request.parameters if request is not None else None
    return _run_action(UserAction.ACTIVATE, external_id, actor, services, parameters)


@router.post(
    "/{external_id}/deactivate", response_model=TriggerResponse, summary="Request unsubscribe"
)
def deactivate(
    external_id: str,
    actor: int = Depends(actor_user_id),
    services: ReconcilerServices = Depends(services_dependency),
) -> TriggerResponse:
    return _run_action(UserAction.DEACTIVATE, external_id, actor, services)


@router.post(
    "/{external_id}/plan",
    response_model=ChangeAcceptedResponse,
    status_code=202,
    summary="Change plan",
)
def change_plan(
    external_id: str,
    request: ChangePlanRequest,
    background_tasks: BackgroundTasks,
    actor: int = Depends(actor_user_id),
    services: ReconcilerServices = Depends(services_dependency),
) -> ChangeAcceptedResponse:
    """Start a plan change.

    The marketplace operation is polled in the background; progress and the
    outcome appear in the application log and the audit trail.
    """
    _get_subscription(services, external_id)
    background_tasks.add_task(
        services.changes.run_change, OperationKind.CHANGE_PLAN, external_id, request.plan_id, actor
    )
    logger.info("plan_change_accepted", external_id=external_id, plan_id=request.plan_id)
    return ChangeAcceptedResponse(
        external_id=external_id,
        kind=OperationKind.CHANGE_PLAN.value,
        target_value=request.plan_id,
        message="Plan change accepted",
    )


@router.post(
    "/{external_id}/quantity",
    response_model=ChangeAcceptedResponse,
    status_code=202,
    summary="Change seat quantity",
)
def change_quantity(
    external_id: str,
    request: ChangeQuantityRequest,
    background_tasks: BackgroundTasks,
    actor: int = Depends(actor_user_id),
    services: ReconcilerServices = Depends(services_dependency),
) -> ChangeAcceptedResponse:
    _get_subscription(services, external_id)
    background_tasks.add_task(
        services.changes.run_change,
        OperationKind.CHANGE_QUANTITY,
        external_id,
        request.quantity,
        actor,
    )
    logger.info("quantity_change_accepted", external_id=external_id, quantity=request.quantity)
    return ChangeAcceptedResponse(
        external_id=external_id,
        kind=OperationKind.CHANGE_QUANTITY.value,
        target_value=str(request.quantity),
        message="Quantity change accepted",
    )
