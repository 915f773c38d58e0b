"""Wires stores, clients and services together from configuration."""

import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Optional

from marketplace_reconciler.config import Config, get_config
from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.repositories.application_log import ApplicationLog
from marketplace_reconciler.repositories.audit_log_store import AuditLogStore
from marketplace_reconciler.repositories.catalog_repository import CatalogRepository
from marketplace_reconciler.repositories.parameter_store import ParameterStore
from marketplace_reconciler.repositories.subscription_store import SubscriptionStore
from marketplace_reconciler.repositories.user_repository import UserRepository
from marketplace_reconciler.services.event_dispatcher import EventDispatcher
from marketplace_reconciler.services.fulfillment_client import FulfillmentClient
from marketplace_reconciler.services.operation_poller import OperationPoller
from marketplace_reconciler.services.provisioning_client import ProvisioningClient
from marketplace_reconciler.services.reconciliation_intake import ReconciliationIntake
from marketplace_reconciler.services.status_engine import StatusEngine
from marketplace_reconciler.services.subscription_changes import SubscriptionChangeCoordinator
from marketplace_reconciler.utils.locks import KeyedLock

logger = get_logger(__name__)


@dataclass
class ReconcilerServices:
    """Everything a request handler needs, built once per process."""

    database: Database
    audit_log: AuditLogStore
    store: SubscriptionStore
    catalog: CatalogRepository
    users: UserRepository
    parameters: ParameterStore
    application_log: ApplicationLog
    fulfillment: FulfillmentClient
    provisioning: ProvisioningClient
    dispatcher: EventDispatcher
    engine: StatusEngine
    poller: OperationPoller
    changes: SubscriptionChangeCoordinator
    intake: ReconciliationIntake
    locks: KeyedLock

    def shutdown(self) -> None:
        self.dispatcher.shutdown()
        self.fulfillment.close()
        self.provisioning.close()


def build_services(
    config: Optional[Config] = None,
    database: Optional[Database] = None,
    fulfillment: Optional[FulfillmentClient] = None,
    provisioning: Optional[ProvisioningClient] = None,
    dispatcher: Optional[EventDispatcher] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconcilerServices:
    """Build the service graph.

    Args:
        config: Configuration (defaults to global instance)
        database: Database (defaults to global instance)
        fulfillment: Fulfillment client override, mainly for tests
        provisioning: Provisioning client override, mainly for tests
        dispatcher: Notification dispatcher override, mainly for tests
        sleep: Sleep function used by the operation poller
    """
    config = config or get_config()
    database = database or get_database()
    locks = KeyedLock()

    audit_log = AuditLogStore(database)
    store = SubscriptionStore(database, audit_log)
    catalog = CatalogRepository(database, config.provisioning.plan_attributes)
    users = UserRepository(database)
    parameters = ParameterStore(database)
    application_log = ApplicationLog(database)

    fulfillment = fulfillment or FulfillmentClient(config.fulfillment)
    provisioning = provisioning or ProvisioningClient(config.provisioning)
    dispatcher = dispatcher or EventDispatcher(config.notifications)

    engine = StatusEngine(
        store,
        catalog,
        parameters,
        application_log,
        fulfillment,
        provisioning,
        dispatcher,
        config.provisioning,
        locks,
    )
    poller = OperationPoller(fulfillment, application_log, config.poller, sleep=sleep)
    changes = SubscriptionChangeCoordinator(store, catalog, fulfillment, poller, application_log, locks)
    intake = ReconciliationIntake(store, catalog, users, fulfillment, application_log, locks)

    logger.info("services_built", database=repr(database))
    return ReconcilerServices(
        database=database,
        audit_log=audit_log,
        store=store,
        catalog=catalog,
        users=users,
        parameters=parameters,
        application_log=application_log,
        fulfillment=fulfillment,
        provisioning=provisioning,
        dispatcher=dispatcher,
        engine=engine,
        poller=poller,
        changes=changes,
        intake=intake,
        locks=locks,
    )


_services: Optional[ReconcilerServices] = None
_services_lock = RLock()


def get_services() -> ReconcilerServices:
    """Get or create the process-wide service graph."""
    global _services
    if _services is None:
        with _services_lock:
            if _services is None:
                _services = build_services()
    return _services


def set_services(services: ReconcilerServices) -> None:
    """Replace the process-wide service graph (for testing)."""
    global _services
    with _services_lock:
        _services = services


def reset_services() -> None:
    """Shut down and drop the process-wide service graph."""
    global _services
    with _services_lock:
        if _services is not None:
            _services.shutdown()
            _services = None
