"""Marketplace SaaS Fulfillment API v2 client.

Thin requests wrapper: one method per call the reconciler makes. Transport
failures and non-2xx responses are raised as FulfillmentApiError.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests
from requests.exceptions import RequestException

from marketplace_reconciler.errors import FulfillmentApiError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.fulfillment import (
    FulfillmentSubscription,
    OperationStatusResult,
    PlanDetail,
    ResolvedPurchase,
)
from marketplace_reconciler.models.settings import FulfillmentConfig

logger = get_logger(__name__)


def operation_id_from_location(location: Optional[str]) -> Optional[str]:
    """Extract the operation id from an Operation-Location header.

    The header is a URL ending in /operations/{operationId}, usually with an
    api-version query string.
    """
    if not location:
        return None
    path = urlparse(location).path.rstrip("/")
    operation_id = path.rsplit("/", 1)[-1]
    return operation_id or None


class FulfillmentClient:
    """Client for the marketplace fulfillment endpoints."""

    def __init__(self, config: FulfillmentConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()
        if config.access_token:
            self._session.headers["Authorization"] = f"Bearer {config.access_token}"
        self._session.headers.setdefault("Content-Type", "application/json")

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/saas/subscriptions{path}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        params = kwargs.pop("params", None) or {}
        params.setdefault("api-version", self.config.api_version)
        try:
            response = self._session.request(
                method, url, params=params, timeout=self.config.timeout_seconds, **kwargs
            )
        except RequestException as e:
            logger.error("fulfillment_request_failed", method=method, url=url, error=str(e))
            raise FulfillmentApiError(f"Request to fulfillment API failed: {e}") from e

        if not response.ok:
            logger.error(
                "fulfillment_api_error",
                method=method,
                url=url,
                status_code=response.status_code,
            )
            raise FulfillmentApiError(
                f"Fulfillment API returned {response.status_code} for {method} {url}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    def resolve(self, purchase_token: str) -> ResolvedPurchase:
        """Exchange a landing-page purchase token for the subscription it identifies."""
        response = self._request(
            "POST",
            self._url("/resolve"),
            headers={"x-ms-marketplace-token": purchase_token},
        )
        return ResolvedPurchase.model_validate(response.json())

    def get_subscription(self, subscription_id: str) -> FulfillmentSubscription:
        response = self._request("GET", self._url(f"/{subscription_id}"))
        return FulfillmentSubscription.model_validate(response.json())

    def get_all_subscriptions(self) -> List[Dict[str, Any]]:
        """All subscription payloads of the publisher, following @nextLink pages.

        Items are returned unvalidated so one malformed subscription cannot
        fail the whole listing.
        """
        subscriptions: List[Dict[str, Any]] = []
        url: Optional[str] = self._url("")
        while url:
            payload = self._request("GET", url).json()
            subscriptions.extend(payload.get("subscriptions", []))
            url = payload.get("@nextLink") or None
        logger.debug("fulfillment_subscriptions_listed", count=len(subscriptions))
        return subscriptions

    def get_all_plans_for_subscription(self, subscription_id: str) -> List[PlanDetail]:
        response = self._request("GET", self._url(f"/{subscription_id}/listAvailablePlans"))
        return [PlanDetail.from_api(plan) for plan in response.json().get("plans", [])]

    def change_plan(self, subscription_id: str, plan_id: str) -> Optional[str]:
        """Request a plan change.

        Returns:
            Operation id to poll, or None when the API completed the change synchronously
        """
        response = self._request("PATCH", self._url(f"/{subscription_id}"), json={"planId": plan_id})
        return operation_id_from_location(response.headers.get("Operation-Location"))

    def change_quantity(self, subscription_id: str, quantity: int) -> Optional[str]:
        """Request a seat quantity change.

        Returns:
            Operation id to poll, or None when the API completed the change synchronously
        """
        response = self._request("PATCH", self._url(f"/{subscription_id}"), json={"quantity": quantity})
        return operation_id_from_location(response.headers.get("Operation-Location"))

    def get_operation_status(self, subscription_id: str, operation_id: str) -> OperationStatusResult:
        response = self._request("GET", self._url(f"/{subscription_id}/operations/{operation_id}"))
        return OperationStatusResult.model_validate(response.json())

    def activate_subscription(self, subscription_id: str, plan_id: str) -> None:
        self._request("POST", self._url(f"/{subscription_id}/activate"), json={"planId": plan_id})
        logger.info("fulfillment_subscription_activated", external_id=subscription_id, plan_id=plan_id)

    def close(self) -> None:
        self._session.close()
