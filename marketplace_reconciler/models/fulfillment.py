"""Marketplace SaaS Fulfillment API v2 payloads.

Only the fields the reconciler reads are modelled; unknown fields are ignored.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .subscription import SubscriptionStatus


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Party(_ApiModel):
    """Beneficiary or purchaser of a subscription."""

    email_id: Optional[str] = Field(None, alias="emailId")
    object_id: Optional[str] = Field(None, alias="objectId")
    tenant_id: Optional[str] = Field(None, alias="tenantId")


class FulfillmentSubscription(_ApiModel):
    """Subscription as returned by GET /saas/subscriptions/{id}."""

    id: str
    name: str = ""
    offer_id: str = Field(..., alias="offerId")
    plan_id: str = Field(..., alias="planId")
    quantity: int = 0
    status: SubscriptionStatus = Field(
        default=SubscriptionStatus.UNRECOGNIZED, alias="saasSubscriptionStatus"
    )
    beneficiary: Party = Field(default_factory=Party)
    purchaser: Party = Field(default_factory=Party)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> SubscriptionStatus:
        return SubscriptionStatus.parse(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _default_quantity(cls, value: object) -> object:
        return 0 if value is None else value


class ResolvedPurchase(_ApiModel):
    """Result of exchanging a purchase token (POST /saas/subscriptions/resolve)."""

    subscription_id: Optional[str] = Field(None, alias="id")
    subscription_name: str = Field(default="", alias="subscriptionName")
    offer_id: Optional[str] = Field(None, alias="offerId")
    plan_id: Optional[str] = Field(None, alias="planId")
    quantity: Optional[int] = None


class PlanDetail(_ApiModel):
    """Plan entry from GET /saas/subscriptions/{id}/listAvailablePlans."""

    plan_id: str = Field(..., alias="planId")
    display_name: str = Field(default="", alias="displayName")
    description: str = ""
    is_price_per_seat: bool = Field(default=False, alias="isPricePerSeat")
    is_metering_supported: bool = False

    @classmethod
    def from_api(cls, payload: dict) -> "PlanDetail":
        """Build from the raw plan object, deriving metering support from its dimensions."""
        components = payload.get("planComponents") or {}
        plan = cls.model_validate(payload)
        plan.is_metering_supported = bool(components.get("meteringDimensions"))
        return plan


class OperationStatusResult(_ApiModel):
    """Result of GET /saas/subscriptions/{id}/operations/{operationId}."""

    id: str
    status: str
    action: Optional[str] = None
    plan_id: Optional[str] = Field(None, alias="planId")
    quantity: Optional[int] = None


class WebhookNotification(_ApiModel):
    """Notification the marketplace posts to the webhook endpoint."""

    id: Optional[str] = None
    activity_id: Optional[str] = Field(None, alias="activityId")
    subscription_id: str = Field(..., alias="subscriptionId")
    offer_id: Optional[str] = Field(None, alias="offerId")
    plan_id: Optional[str] = Field(None, alias="planId")
    quantity: Optional[int] = None
    action: str
    status: Optional[str] = None
