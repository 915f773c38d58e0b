"""Shared fixtures: a throwaway SQLite database and the stores built on it."""

from typing import Optional
from unittest.mock import Mock

import pytest

from marketplace_reconciler.database import Database
from marketplace_reconciler.models import (
    ParameterType,
    PlanAttributeConfig,
    PlanDetail,
    SubscriptionRecord,
    SubscriptionStatus,
)
from marketplace_reconciler.models.subscription import SYSTEM_ACTOR_ID
from marketplace_reconciler.repositories.application_log import ApplicationLog
from marketplace_reconciler.repositories.audit_log_store import AuditLogStore
from marketplace_reconciler.repositories.catalog_repository import CatalogRepository
from marketplace_reconciler.repositories.parameter_store import ParameterStore
from marketplace_reconciler.repositories.subscription_store import SubscriptionStore
from marketplace_reconciler.repositories.user_repository import UserRepository
from marketplace_reconciler.services.event_dispatcher import EventDispatcher
from marketplace_reconciler.services.fulfillment_client import FulfillmentClient
from marketplace_reconciler.services.provisioning_client import ProvisioningClient

OFFER_ID = "contoso-saas"


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database with all tables, one per test."""
    db = Database(f"sqlite:///{tmp_path / 'reconciler.sqlite'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def audit_log(database):
    return AuditLogStore(database)


@pytest.fixture
def store(database, audit_log):
    return SubscriptionStore(database, audit_log)


@pytest.fixture
def plan_attributes():
    return [
        PlanAttributeConfig(name="Custom SMS Message", type=ParameterType.INPUT),
        PlanAttributeConfig(name="ApiKey", type=ParameterType.OUTPUT),
    ]


@pytest.fixture
def catalog(database, plan_attributes):
    return CatalogRepository(database, plan_attributes)


@pytest.fixture
def users(database):
    return UserRepository(database)


@pytest.fixture
def parameters(database):
    return ParameterStore(database)


@pytest.fixture
def application_log(database):
    return ApplicationLog(database)


@pytest.fixture
def offer(catalog):
    """The contoso-saas offer."""
    return catalog.ensure_offer(OFFER_ID, SYSTEM_ACTOR_ID, name="Contoso SaaS")


@pytest.fixture
def silver_plan(catalog, offer):
    """Per-seat 'silver' plan of the contoso-saas offer, with default attributes."""
    return catalog.add_plans(
        offer.offer_guid,
        [PlanDetail(plan_id="silver", display_name="Silver", is_price_per_seat=True)],
    )[0]


@pytest.fixture
def make_subscription():
    """Factory for SubscriptionRecord values."""

    def _make(
        external_id: str = "sub-1",
        status: SubscriptionStatus = SubscriptionStatus.PENDING_FULFILLMENT_START,
        plan_id: str = "silver",
        quantity: int = 3,
        plan_guid: Optional[str] = None,
        offer_id: Optional[str] = OFFER_ID,
        **kwargs,
    ) -> SubscriptionRecord:
        return SubscriptionRecord(
            external_id=external_id,
            name=kwargs.pop("name", "Contoso seats"),
            plan_id=plan_id,
            plan_guid=plan_guid,
            offer_id=offer_id,
            quantity=quantity,
            status=status,
            is_active=status.is_active,
            purchaser_email=kwargs.pop("purchaser_email", "buyer@contoso.com"),
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_fulfillment():
    return Mock(spec=FulfillmentClient)


@pytest.fixture
def mock_provisioning():
    provisioning = Mock(spec=ProvisioningClient)
    provisioning.provision.return_value = "key-0123456789"
    return provisioning


@pytest.fixture
def mock_dispatcher():
    dispatcher = Mock(spec=EventDispatcher)
    dispatcher.is_enabled.return_value = True
    dispatcher.publish_status.return_value = True
    return dispatcher
