"""Exception hierarchy for the reconciler."""

from typing import Optional


class ReconcilerError(Exception):
    """Base class for reconciler failures."""

    pass


class SubscriptionNotFoundError(ReconcilerError):
    """Raised when a subscription is not found in the store."""

    pass


class FulfillmentApiError(ReconcilerError):
    """Raised when the marketplace fulfillment API returns an error or is unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProvisioningError(ReconcilerError):
    """Raised when the provisioning endpoint fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OperationFailedError(ReconcilerError):
    """Raised when a long-running marketplace operation does not succeed."""

    def __init__(self, operation_id: str, status: str, kind: str):
        super().__init__(f"{kind} operation {operation_id} ended with status {status}")
        self.operation_id = operation_id
        self.status = status
        self.kind = kind


class PurchaseTokenResolutionError(ReconcilerError):
    """Raised when a purchase token does not resolve to a subscription."""

    pass


class PlanNotFoundError(ReconcilerError):
    """Raised when a subscription's plan is not in the local catalog."""

    pass


class MissingParameterError(ReconcilerError):
    """Raised when a plan lacks a parameter attribute that activation needs."""

    pass
