"""API request and response models for the trigger endpoints."""

from typing import Optional

from pydantic import BaseModel, Field

from .subscription import AuditLogEntry, SubscriptionParameter, SubscriptionRecord


class ResolveTokenRequest(BaseModel):
    """Request to exchange a marketplace purchase token."""

    token: str = Field(..., min_length=1, description="Purchase token from the landing page URL")

    class Config:
        json_schema_extra = {"example": {"token": "Y8jJtnWb0fB3x0Fhv+Hq1Q=="}}


class ActivateRequest(BaseModel):
    """Request to activate a subscription, optionally with customer input parameters."""

    parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Input parameter values keyed by display name",
    )

    class Config:
        json_schema_extra = {
            "example": {"parameters": {"Custom SMS Message": "Welcome to Contoso"}}
        }


class ChangePlanRequest(BaseModel):
    """Request to move a subscription to another plan."""

    plan_id: str = Field(..., min_length=1, description="Target marketplace plan id")


class ChangeQuantityRequest(BaseModel):
    """Request to change the seat count of a subscription."""

    quantity: int = Field(..., gt=0, description="Target seat count")


class SubscriptionResponse(BaseModel):
    """Subscription with its plan parameters."""

    subscription: SubscriptionRecord
    parameters: list[SubscriptionParameter] = Field(default_factory=list)


class SubscriptionListResponse(BaseModel):
    """List of subscriptions."""

    total: int
    subscriptions: list[SubscriptionRecord]


class TriggerResponse(BaseModel):
    """Result of an activate/deactivate trigger."""

    external_id: str
    status: str
    is_active: bool
    notified: bool
    message: str


class ChangeAcceptedResponse(BaseModel):
    """A plan or quantity change was handed to the background poller."""

    external_id: str
    kind: str
    target_value: str
    message: str


class ResyncResponse(BaseModel):
    """Outcome of a full catalog resync."""

    created: int
    skipped: int
    failed: int
    message: str


class AuditLogResponse(BaseModel):
    """Audit trail of one subscription."""

    external_id: str
    entries: list[AuditLogEntry]


class WebhookResponse(BaseModel):
    """Acknowledgement of a marketplace webhook."""

    subscription_id: str
    action: str
    handled: bool


class ErrorResponse(BaseModel):
    """Error payload."""

    error: str
    message: str
    detail: Optional[str] = None
