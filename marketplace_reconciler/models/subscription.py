"""Subscription status, audit and parameter models.

Status values are the marketplace's own strings; they are stored verbatim so
the audit trail reads the same as the fulfillment API.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Actor recorded when no authenticated user triggered the change
SYSTEM_ACTOR_ID = -1

# Old value recorded when an audit entry has no previous value
NO_PREVIOUS_VALUE = "N/A"

# Old value recorded for the first status of a newly discovered subscription
INITIAL_STATUS_VALUE = "None"


class SubscriptionStatus(str, Enum):
    """Subscription status as reported by the marketplace."""

    NOT_STARTED = "NotStarted"
    PENDING_FULFILLMENT_START = "PendingFulfillmentStart"
    PENDING_ACTIVATION = "PendingActivation"
    SUBSCRIBED = "Subscribed"
    PENDING_UNSUBSCRIBE = "PendingUnsubscribe"
    UNSUBSCRIBED = "Unsubscribed"
    ACTIVATION_FAILED = "ActivationFailed"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def parse(cls, value: object) -> "SubscriptionStatus":
        """Parse a raw status, mapping anything unknown to UNRECOGNIZED."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for status in cls:
                if status.value.lower() == value.strip().lower():
                    return status
        return cls.UNRECOGNIZED

    @property
    def is_active(self) -> bool:
        """Active flag stored together with this status."""
        return self not in _INACTIVE_STATUSES


_INACTIVE_STATUSES = frozenset({SubscriptionStatus.UNSUBSCRIBED, SubscriptionStatus.ACTIVATION_FAILED})


class AuditAttribute(str, Enum):
    """Subscription attributes tracked by the audit log."""

    STATUS = "Status"
    PLAN = "Plan"
    QUANTITY = "Quantity"


class ParameterType(str, Enum):
    """Direction of a plan attribute: entered by the customer or produced by provisioning."""

    INPUT = "input"
    OUTPUT = "output"


class SubscriptionRecord(BaseModel):
    """Subscription as stored locally."""

    id: Optional[int] = Field(None, description="Internal surrogate id")
    external_id: str = Field(..., description="Marketplace subscription identifier")
    name: str = Field(default="", description="Subscription name chosen by the purchaser")
    plan_id: str = Field(..., description="Marketplace plan id (not unique across offers)")
    plan_guid: Optional[str] = Field(None, description="Local plan identity when known")
    offer_id: Optional[str] = Field(None, description="Marketplace offer id")
    quantity: int = Field(default=0, ge=0, description="Seats; 0 for flat-rate plans")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.NOT_STARTED)
    is_active: bool = Field(default=True)
    user_id: Optional[int] = Field(None, description="Owning user id")
    purchaser_email: Optional[str] = None
    purchaser_tenant_id: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> SubscriptionStatus:
        return SubscriptionStatus.parse(value)

    @property
    def is_per_user_plan(self) -> bool:
        return self.quantity > 0

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 12,
                "external_id": "37f9dea2-4345-438f-b0bd-03d40d28c7e0",
                "name": "Contoso seats",
                "plan_id": "silver",
                "offer_id": "contoso-saas",
                "quantity": 3,
                "status": "Subscribed",
                "is_active": True,
                "purchaser_email": "buyer@contoso.com",
            }
        }


class AuditLogEntry(BaseModel):
    """Immutable record of one attribute change."""

    id: int
    subscription_id: int = Field(..., serialization_alias="subscriptionInternalId")
    attribute: AuditAttribute
    old_value: str = Field(..., serialization_alias="oldValue")
    new_value: str = Field(..., serialization_alias="newValue")
    actor_user_id: int = Field(..., serialization_alias="actorUserId")
    timestamp: datetime

    class Config:
        from_attributes = True
        frozen = True


class SubscriptionParameter(BaseModel):
    """A plan attribute joined with this subscription's stored value."""

    plan_attribute_id: int
    plan_guid: str
    display_name: str
    type: ParameterType
    value: Optional[str] = None
    value_id: Optional[int] = Field(None, description="Id of the stored value row, if any")


class ProvisioningStatusEntry(BaseModel):
    """Entry of the provisioning-status channel."""

    id: int
    subscription_external_id: str
    status: str
    description: str
    created_at: datetime

    class Config:
        from_attributes = True
