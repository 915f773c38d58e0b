"""Pydantic models for configuration, API payloads and domain objects."""

# Configuration models
from .settings import (
    DatabaseConfig,
    FulfillmentConfig,
    NotificationConfig,
    PlanAttributeConfig,
    PollerConfig,
    ProvisioningConfig,
    ReconcilerSettings,
)

# Subscription models
from .subscription import (
    INITIAL_STATUS_VALUE,
    NO_PREVIOUS_VALUE,
    SYSTEM_ACTOR_ID,
    AuditAttribute,
    AuditLogEntry,
    ParameterType,
    ProvisioningStatusEntry,
    SubscriptionParameter,
    SubscriptionRecord,
    SubscriptionStatus,
)

# Catalog models
from .catalog import OfferRecord, PlanRecord

# Operation models
from .operation import Operation, OperationKind, OperationStatus

# Fulfillment API payloads
from .fulfillment import (
    FulfillmentSubscription,
    OperationStatusResult,
    Party,
    PlanDetail,
    ResolvedPurchase,
    WebhookNotification,
)

# Notifications
from .events import SubscriptionStatusNotification

__all__ = [
    # Configuration
    "DatabaseConfig",
    "FulfillmentConfig",
    "NotificationConfig",
    "PlanAttributeConfig",
    "PollerConfig",
    "ProvisioningConfig",
    "ReconcilerSettings",
    # Subscription
    "INITIAL_STATUS_VALUE",
    "NO_PREVIOUS_VALUE",
    "SYSTEM_ACTOR_ID",
    "AuditAttribute",
    "AuditLogEntry",
    "ParameterType",
    "ProvisioningStatusEntry",
    "SubscriptionParameter",
    "SubscriptionRecord",
    "SubscriptionStatus",
    # Catalog
    "OfferRecord",
    "PlanRecord",
    # Operations
    "Operation",
    "OperationKind",
    "OperationStatus",
    # Fulfillment API
    "FulfillmentSubscription",
    "OperationStatusResult",
    "Party",
    "PlanDetail",
    "ResolvedPurchase",
    "WebhookNotification",
    # Events
    "SubscriptionStatusNotification",
]
