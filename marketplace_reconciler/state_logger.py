"""State change logging for subscriptions.

Operational counterpart of the audit log: every persisted change is also
emitted as a structured event so it can be followed in the log pipeline.
"""

from typing import Any, Optional

from marketplace_reconciler.logging_config import get_logger

logger = get_logger(__name__)


def log_subscription_created(
    external_id: str,
    status: Any,
    plan_id: str,
    quantity: int,
    actor_user_id: int,
    **extra_context: Any,
) -> None:
    """Log the first observation of a subscription."""
    logger.info(
        "subscription_created",
        external_id=external_id,
        status=str(status),
        plan_id=plan_id,
        quantity=quantity,
        actor_user_id=actor_user_id,
        **extra_context,
    )


def log_subscription_state_change(
    external_id: str,
    old_state: Any,
    new_state: Any,
    actor_user_id: int,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status change.

    Args:
        external_id: Marketplace subscription identifier
        old_state: Previous status value
        new_state: New status value
        actor_user_id: User that triggered the change
        reason: Reason for state change
        **extra_context: Additional context (is_active, etc.)
    """
    logger.info(
        "subscription_state_changed",
        external_id=external_id,
        old_state=str(old_state),
        new_state=str(new_state),
        actor_user_id=actor_user_id,
        reason=reason,
        **extra_context,
    )


def log_plan_change(
    external_id: str,
    old_plan_id: str,
    new_plan_id: str,
    actor_user_id: int,
    **extra_context: Any,
) -> None:
    """Log plan change."""
    logger.info(
        "subscription_plan_changed",
        external_id=external_id,
        old_plan_id=old_plan_id,
        new_plan_id=new_plan_id,
        actor_user_id=actor_user_id,
        **extra_context,
    )


def log_quantity_change(
    external_id: str,
    old_quantity: int,
    new_quantity: int,
    actor_user_id: int,
    **extra_context: Any,
) -> None:
    """Log seat quantity change."""
    logger.info(
        "subscription_quantity_changed",
        external_id=external_id,
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        actor_user_id=actor_user_id,
        **extra_context,
    )
