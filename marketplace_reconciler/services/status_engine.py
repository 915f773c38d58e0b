"""Subscription status state machine.

Responsibilities:
- Validate status edges against the legal transition table
- Run activation (provisioning, fulfillment activate) and deactivation side effects
- Publish status notifications after user actions

Every transition on a subscription runs under that subscription's lock, so
concurrent or re-delivered triggers execute one after another and later ones
see the status the earlier ones left behind.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from marketplace_reconciler.errors import MissingParameterError, PlanNotFoundError
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.settings import ProvisioningConfig
from marketplace_reconciler.models.subscription import (
    SYSTEM_ACTOR_ID,
    SubscriptionRecord,
    SubscriptionStatus,
)
from marketplace_reconciler.repositories.application_log import ApplicationLog
from marketplace_reconciler.repositories.catalog_repository import CatalogRepository
from marketplace_reconciler.repositories.parameter_store import ParameterStore
from marketplace_reconciler.repositories.subscription_store import SubscriptionStore
from marketplace_reconciler.services.event_dispatcher import EventDispatcher
from marketplace_reconciler.services.fulfillment_client import FulfillmentClient
from marketplace_reconciler.services.provisioning_client import ProvisioningClient
from marketplace_reconciler.utils.locks import KeyedLock, get_subscription_locks

logger = get_logger(__name__)


class TransitionKind(str, Enum):
    """Triggers the engine can dispatch."""

    ACTIVATE = "Activate"
    DEACTIVATE = "Deactivate"
    NOTIFY = "Notify"
    PROCESS_PENDING_FULFILLMENT = "ProcessPendingFulfillment"


class UserAction(str, Enum):
    """Actions a customer or operator can request for a subscription."""

    ACTIVATE = "Activate"
    DEACTIVATE = "Deactivate"


class ProvisioningStatus(str, Enum):
    """Statuses written to the provisioning-status log."""

    ACTIVATED = "Activated"
    ACTIVATION_FAILED = "ActivationFailed"
    PENDING_UNSUBSCRIBE = "PendingUnsubscribe"
    UNSUBSCRIBED = "Unsubscribed"


LEGAL_TRANSITIONS: Dict[SubscriptionStatus, frozenset] = {
    SubscriptionStatus.NOT_STARTED: frozenset({SubscriptionStatus.PENDING_FULFILLMENT_START}),
    SubscriptionStatus.PENDING_FULFILLMENT_START: frozenset({SubscriptionStatus.PENDING_ACTIVATION}),
    SubscriptionStatus.PENDING_ACTIVATION: frozenset(
        {SubscriptionStatus.SUBSCRIBED, SubscriptionStatus.ACTIVATION_FAILED}
    ),
    SubscriptionStatus.SUBSCRIBED: frozenset({SubscriptionStatus.PENDING_UNSUBSCRIBE}),
    SubscriptionStatus.PENDING_UNSUBSCRIBE: frozenset({SubscriptionStatus.UNSUBSCRIBED}),
}


def is_legal_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Check whether current -> target is an edge of the status machine."""
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


def active_flag_for(status: SubscriptionStatus) -> bool:
    """Active flag stored together with a status."""
    return status.is_active


@dataclass
class TriggerResult:
    """Outcome of a user action."""

    subscription: SubscriptionRecord
    notified: bool


class StatusEngine:
    """Executes status transitions and their side effects."""

    def __init__(
        self,
        store: SubscriptionStore,
        catalog: CatalogRepository,
        parameters: ParameterStore,
        application_log: ApplicationLog,
        fulfillment: FulfillmentClient,
        provisioning: ProvisioningClient,
        dispatcher: EventDispatcher,
        settings: ProvisioningConfig,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.parameters = parameters
        self.application_log = application_log
        self.fulfillment = fulfillment
        self.provisioning = provisioning
        self.dispatcher = dispatcher
        self.settings = settings
        self._locks = locks or get_subscription_locks()
        self._handlers: Dict[TransitionKind, Callable[[str, int], object]] = {
            TransitionKind.ACTIVATE: self.activate,
            TransitionKind.DEACTIVATE: self.deactivate,
            TransitionKind.NOTIFY: self.notify,
            TransitionKind.PROCESS_PENDING_FULFILLMENT: self.process_pending_fulfillment,
        }

        logger.info("status_engine_initialized", automatic_provisioning=settings.automatic_provisioning)

    def dispatch(self, kind: TransitionKind, external_id: str, actor_user_id: int = SYSTEM_ACTOR_ID):
        """Run the handler registered for a transition kind."""
        handler = self._handlers[TransitionKind(kind)]
        logger.debug("transition_dispatched", kind=TransitionKind(kind).value, external_id=external_id)
        return handler(external_id, actor_user_id)

    def _transition(
        self, subscription: SubscriptionRecord, target: SubscriptionStatus, actor_user_id: int
    ) -> bool:
        """Write target status if current -> target is legal; otherwise leave the status alone."""
        if not is_legal_transition(subscription.status, target):
            logger.info(
                "transition_ignored",
                external_id=subscription.external_id,
                current_status=subscription.status.value,
                requested_status=target.value,
            )
            return False
        return self.store.update_status(
            subscription.external_id, target, active_flag_for(target), actor_user_id
        )

    def activate(self, external_id: str, actor_user_id: int = SYSTEM_ACTOR_ID) -> SubscriptionRecord:
        """Move a subscription to PendingActivation and provision it.

        Provisioning failures end in ActivationFailed and are not raised.

        Raises:
            SubscriptionNotFoundError: If the subscription is unknown
        """
        with self._locks.hold(external_id):
            subscription = self.store.get(external_id)
            if subscription.status is not SubscriptionStatus.PENDING_ACTIVATION:
                self._transition(subscription, SubscriptionStatus.PENDING_ACTIVATION, actor_user_id)
                subscription = self.store.get(external_id)

            if subscription.status is not SubscriptionStatus.PENDING_ACTIVATION:
                logger.info(
                    "activation_skipped",
                    external_id=external_id,
                    status=subscription.status.value,
                )
                return subscription

            try:
                self._provision_and_activate(subscription, actor_user_id)
            except Exception as e:
                self.application_log.log_provisioning_status(
                    external_id, ProvisioningStatus.ACTIVATION_FAILED.value, str(e)
                )
                self._transition(
                    self.store.get(external_id), SubscriptionStatus.ACTIVATION_FAILED, actor_user_id
                )
                logger.error(
                    "activation_failed",
                    external_id=external_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
            return self.store.get(external_id)

    def _provision_and_activate(self, subscription: SubscriptionRecord, actor_user_id: int) -> None:
        external_id = subscription.external_id
        plan = self.catalog.resolve_plan_for(subscription)
        parameters = {
            parameter.display_name: parameter
            for parameter in self.parameters.list_for(subscription.id, plan.plan_guid)
        }
        message = parameters.get(self.settings.message_parameter)
        credential_parameter = parameters.get(self.settings.credential_parameter)
        if message is None or credential_parameter is None:
            raise MissingParameterError(
                f"Plan {plan.plan_id} is missing the "
                f"'{self.settings.message_parameter}' or '{self.settings.credential_parameter}' parameter"
            )

        credential = self.provisioning.provision(external_id, message.value or "", subscription.plan_id)
        self.parameters.set_value(
            subscription.id, credential_parameter.plan_attribute_id, credential, actor_user_id
        )
        self.fulfillment.activate_subscription(external_id, subscription.plan_id)
        self._transition(subscription, SubscriptionStatus.SUBSCRIBED, actor_user_id)
        self.application_log.log_provisioning_status(
            external_id, ProvisioningStatus.ACTIVATED.value, f"Activated on plan {subscription.plan_id}"
        )
        logger.info("subscription_activated", external_id=external_id, plan_id=subscription.plan_id)

    def deactivate(self, external_id: str, actor_user_id: int = SYSTEM_ACTOR_ID) -> SubscriptionRecord:
        """Move a Subscribed subscription to PendingUnsubscribe.

        Unsubscribed is reached only when the marketplace confirms it.
        """
        with self._locks.hold(external_id):
            subscription = self.store.get(external_id)
            if self._transition(subscription, SubscriptionStatus.PENDING_UNSUBSCRIBE, actor_user_id):
                self.application_log.log_provisioning_status(
                    external_id,
                    ProvisioningStatus.PENDING_UNSUBSCRIBE.value,
                    "Unsubscribe requested",
                )
            return self.store.get(external_id)

    def confirm_unsubscribe(self, external_id: str, actor_user_id: int = SYSTEM_ACTOR_ID) -> SubscriptionRecord:
        """Apply the marketplace's unsubscribe confirmation.

        A Subscribed subscription passes through PendingUnsubscribe first so
        both steps are audited.
        """
        with self._locks.hold(external_id):
            subscription = self.store.get(external_id)
            if subscription.status is SubscriptionStatus.SUBSCRIBED:
                self._transition(subscription, SubscriptionStatus.PENDING_UNSUBSCRIBE, actor_user_id)
                subscription = self.store.get(external_id)
            if self._transition(subscription, SubscriptionStatus.UNSUBSCRIBED, actor_user_id):
                self.application_log.log_provisioning_status(
                    external_id, ProvisioningStatus.UNSUBSCRIBED.value, "Unsubscribe confirmed"
                )
            return self.store.get(external_id)

    def process_pending_fulfillment(
        self, external_id: str, actor_user_id: int = SYSTEM_ACTOR_ID
    ) -> SubscriptionRecord:
        """Move PendingFulfillmentStart to PendingActivation, leaving provisioning for later."""
        with self._locks.hold(external_id):
            subscription = self.store.get(external_id)
            self._transition(subscription, SubscriptionStatus.PENDING_ACTIVATION, actor_user_id)
            return self.store.get(external_id)

    def notify(self, external_id: str, actor_user_id: int = SYSTEM_ACTOR_ID) -> bool:
        """Publish the subscription's current state.

        Returns:
            True if a notification was published
        """
        subscription = self.store.get(external_id)
        if not self.dispatcher.is_enabled():
            logger.debug("notification_skipped", external_id=external_id)
            return False

        try:
            published = self.dispatcher.publish_status(subscription)
        except Exception as e:
            logger.error(
                "notification_failed",
                external_id=external_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            published = False

        if not published:
            self.application_log.add(
                f"Notification Failed. SubscriptionId: {external_id} "
                f"Status: {subscription.status.value} UserId: {actor_user_id}."
            )
        return published

    def apply_user_action(
        self,
        action: UserAction,
        external_id: str,
        actor_user_id: int = SYSTEM_ACTOR_ID,
        parameters: Optional[Dict[str, str]] = None,
    ) -> TriggerResult:
        """Handle an activate or deactivate request, then notify.

        Input parameters supplied with an activation are stored before the
        engine runs. Without automatic provisioning the first activation only
        moves the subscription to PendingActivation; an activation requested
        while it is PendingActivation provisions it.
        """
        action = UserAction(action)
        if action is UserAction.ACTIVATE:
            if parameters:
                self._save_input_parameters(external_id, parameters, actor_user_id)
            if (
                self.settings.automatic_provisioning
                or self.store.get(external_id).status is SubscriptionStatus.PENDING_ACTIVATION
            ):
                self.activate(external_id, actor_user_id)
            else:
                self.process_pending_fulfillment(external_id, actor_user_id)
        else:
            self.deactivate(external_id, actor_user_id)

        notified = self.notify(external_id, actor_user_id)
        return TriggerResult(subscription=self.store.get(external_id), notified=notified)

    def _save_input_parameters(
        self, external_id: str, values: Dict[str, str], actor_user_id: int
    ) -> None:
        subscription = self.store.get(external_id)
        try:
            plan = self.catalog.resolve_plan_for(subscription)
        except PlanNotFoundError as e:
            # Activation reports the missing plan
            logger.warning("input_parameters_not_saved", external_id=external_id, error=str(e))
            return
        stored = self.parameters.save_inputs(subscription.id, plan.plan_guid, values, actor_user_id)
        logger.info("input_parameters_saved", external_id=external_id, count=stored)
