"""Polls long-running marketplace operations to a terminal status.

Plan and quantity changes are accepted by the marketplace as asynchronous
operations. The poller queries the operation at a fixed interval, up to a
fixed number of times, and reports every step to the structured log and the
application log.
"""

import threading
import time
from typing import Callable, Optional, Union

from marketplace_reconciler.errors import FulfillmentApiError, OperationFailedError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.operation import Operation, OperationKind, OperationStatus
from marketplace_reconciler.models.settings import PollerConfig
from marketplace_reconciler.models.subscription import SYSTEM_ACTOR_ID
from marketplace_reconciler.repositories.application_log import ApplicationLog
from marketplace_reconciler.services.fulfillment_client import FulfillmentClient

logger = get_logger(__name__)


class OperationPoller:
    """Drives one marketplace operation to Succeeded or raises."""

    def __init__(
        self,
        fulfillment: FulfillmentClient,
        application_log: ApplicationLog,
        settings: Optional[PollerConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize poller.

        Args:
            fulfillment: Client used to query operation status
            application_log: Durable log receiving progress messages
            settings: Interval and iteration cap (defaults: 5 seconds, 100 polls)
            sleep: Sleep function, replaced in tests
        """
        self.fulfillment = fulfillment
        self.application_log = application_log
        self.settings = settings or PollerConfig()
        self._sleep = sleep

    @staticmethod
    def _describe(
        kind: OperationKind, external_id: str, target_value: str, actor_user_id: int, operation_id: str
    ) -> str:
        target_label = "ToPlan" if kind is OperationKind.CHANGE_PLAN else "ToQuantity"
        return (
            f"SubscriptionId: {external_id} {target_label}: {target_value} "
            f"UserId: {actor_user_id} OperationId: {operation_id}"
        )

    def await_completion(
        self,
        external_id: str,
        operation_id: str,
        kind: Union[OperationKind, str],
        target_value: Union[str, int],
        actor_user_id: int = SYSTEM_ACTOR_ID,
        cancel_event: Optional[threading.Event] = None,
    ) -> Operation:
        """Poll until the operation reaches a terminal status.

        Args:
            external_id: Marketplace subscription identifier
            operation_id: Operation id returned by the change request
            kind: ChangePlan or ChangeQuantity
            target_value: Requested plan id or quantity
            actor_user_id: User that requested the change
            cancel_event: Set to stop polling early

        Returns:
            The operation in status Succeeded

        Raises:
            OperationFailedError: On Failed or unrecognized status, when the
                iteration cap is reached, or when cancelled
            FulfillmentApiError: If a status query fails
        """
        kind = OperationKind(kind)
        details = self._describe(kind, external_id, str(target_value), actor_user_id, operation_id)
        operation = Operation(id=operation_id, status=OperationStatus.IN_PROGRESS)
        cancelled = False

        for iteration in range(self.settings.max_iterations):
            if iteration > 0:
                self._sleep(self.settings.interval_seconds)
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

            try:
                result = self.fulfillment.get_operation_status(external_id, operation_id)
            except FulfillmentApiError as e:
                self.application_log.add(f"{kind.label} Failed. {details} Error: {e}.")
                logger.error(
                    "operation_poll_failed",
                    external_id=external_id,
                    operation_id=operation_id,
                    kind=kind.value,
                    error=str(e),
                )
                raise

            operation = Operation(id=operation_id, status=result.status)
            message = f"{kind.label} Progress. {details} Operationstatus: {operation.status.value}."
            logger.info(
                "operation_progress",
                external_id=external_id,
                operation_id=operation_id,
                kind=kind.value,
                target_value=str(target_value),
                actor_user_id=actor_user_id,
                status=operation.status.value,
                iteration=iteration + 1,
            )
            self.application_log.add(message)

            if not operation.status.is_pending:
                break

        if operation.status is OperationStatus.SUCCEEDED:
            self.application_log.add(f"{kind.label} Success. {details}.")
            logger.info(
                "operation_succeeded",
                external_id=external_id,
                operation_id=operation_id,
                kind=kind.value,
            )
            return operation

        self.application_log.add(f"{kind.label} Failed. {details} Operationstatus: {operation.status.value}.")
        logger.error(
            "operation_failed",
            external_id=external_id,
            operation_id=operation_id,
            kind=kind.value,
            status=operation.status.value,
            cancelled=cancelled,
        )
        raise OperationFailedError(operation_id, operation.status.value, kind.value)
