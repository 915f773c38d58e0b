"""Client for the customer resource provisioning endpoint."""

from typing import Optional

import requests
from requests.exceptions import RequestException

from marketplace_reconciler.errors import ProvisioningError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.settings import ProvisioningConfig

logger = get_logger(__name__)


class ProvisioningClient:
    def __init__(self, config: ProvisioningConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()

    def provision(self, external_id: str, message_template: str, plan_id: str) -> str:
        """Create the customer resource for a subscription.

        Args:
            external_id: Marketplace subscription identifier
            message_template: Customer-entered message parameter
            plan_id: Plan the resource is created for

        Returns:
            Plaintext credential returned by the endpoint

        Raises:
            ProvisioningError: On transport failure or a non-2xx response
        """
        payload = {
            "messageTemplate": message_template,
            "marketplaceSubId": external_id,
            "name": plan_id,
        }
        try:
            logger.info("provisioning_requested", external_id=external_id, plan_id=plan_id)
            response = self._session.post(self.config.url, json=payload, timeout=self.config.timeout_seconds)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.error("provisioning_http_error", external_id=external_id, status_code=status_code)
            raise ProvisioningError(f"Provisioning endpoint error: {e}", status_code=status_code) from e
        except RequestException as e:
            logger.error("provisioning_request_failed", external_id=external_id, error=str(e))
            raise ProvisioningError(f"Request to provisioning endpoint failed: {e}") from e

        credential = response.text.strip()
        logger.info("provisioning_completed", external_id=external_id, credential=credential)
        return credential

    def close(self) -> None:
        self._session.close()
