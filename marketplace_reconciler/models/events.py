"""Subscription notification published to Pub/Sub after a trigger.

Downstream subscribers (customer email, CRM sync) consume these messages.
"""

from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionStatusNotification(BaseModel):
    """Current state of a subscription after a trigger was processed."""

    version: str = Field(default="1.0", description="Notification version")
    external_id: str = Field(..., description="Marketplace subscription identifier")
    status: str = Field(..., description="Subscription status after the trigger")
    is_active: bool
    plan_id: str
    quantity: int
    purchaser_email: Optional[str] = None
    event_time_millis: int = Field(..., description="Event timestamp (Unix millis)")

    class Config:
        json_schema_extra = {
            "example": {
                "version": "1.0",
                "external_id": "37f9dea2-4345-438f-b0bd-03d40d28c7e0",
                "status": "Subscribed",
                "is_active": True,
                "plan_id": "silver",
                "quantity": 3,
                "purchaser_email": "buyer@contoso.com",
                "event_time_millis": 1700000000000,
            }
        }
