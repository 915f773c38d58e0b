"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, Header

from marketplace_reconciler.logging_config import bind_context
from marketplace_reconciler.models.subscription import SYSTEM_ACTOR_ID
from marketplace_reconciler.services.registry import ReconcilerServices, get_services


def services_dependency() -> ReconcilerServices:
    return get_services()


def actor_user_id(
    x_user_email: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    services: ReconcilerServices = Depends(services_dependency),
) -> int:
    """Resolve the calling user from X-User-Email / X-User-Name.

    Requests without an email act as the system actor.
    """
    if not x_user_email or not x_user_email.strip():
        user_id = SYSTEM_ACTOR_ID
    else:
        user_id = services.users.ensure_user(x_user_email, x_user_name or "")
    bind_context(actor_user_id=user_id)
    return user_id
