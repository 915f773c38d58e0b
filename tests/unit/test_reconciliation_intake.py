"""Tests for ReconciliationIntake - purchase token resolution and full resync."""

import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from marketplace_reconciler.errors import FulfillmentApiError, PlanNotFoundError, PurchaseTokenResolutionError
from marketplace_reconciler.models import (
    FulfillmentSubscription,
    PlanDetail,
    ResolvedPurchase,
    SubscriptionStatus,
)
from marketplace_reconciler.models.subscription import INITIAL_STATUS_VALUE, SYSTEM_ACTOR_ID
from marketplace_reconciler.services.reconciliation_intake import ReconciliationIntake
from marketplace_reconciler.utils.locks import KeyedLock

OFFER_ID = "contoso-saas"


def marketplace_payload(external_id="sub-1", status="PendingFulfillmentStart", plan_id="silver", **extra):
    payload = {
        "id": external_id,
        "name": "Contoso seats",
        "offerId": OFFER_ID,
        "planId": plan_id,
        "quantity": 3,
        "saasSubscriptionStatus": status,
        "beneficiary": {"emailId": "user@contoso.com"},
        "purchaser": {"emailId": "buyer@contoso.com", "tenantId": "tenant-1"},
    }
    payload.update(extra)
    return payload


def marketplace_subscription(external_id="sub-1", **kwargs):
    return FulfillmentSubscription.model_validate(marketplace_payload(external_id, **kwargs))


AVAILABLE_PLANS = [
    PlanDetail(plan_id="silver", display_name="Silver", is_price_per_seat=True),
    PlanDetail(plan_id="gold", display_name="Gold"),
]


@pytest.fixture
def intake(store, catalog, users, mock_fulfillment, application_log):
    return ReconciliationIntake(store, catalog, users, mock_fulfillment, application_log)


@pytest.fixture
def marketplace(mock_fulfillment):
    """Fulfillment mock that knows sub-1 on the silver plan."""
    mock_fulfillment.resolve.return_value = ResolvedPurchase(id="sub-1", offerId=OFFER_ID, planId="silver")
    mock_fulfillment.get_all_plans_for_subscription.return_value = AVAILABLE_PLANS
    mock_fulfillment.get_subscription.return_value = marketplace_subscription()
    return mock_fulfillment


class TestResolvePurchaseToken:
    """Test landing-page token resolution."""

    def test_new_subscription_is_stored_and_audited(self, intake, marketplace, audit_log, catalog, users):
        result = intake.resolve_purchase_token("abc+def==")

        assert result.external_id == "sub-1"
        assert result.status is SubscriptionStatus.PENDING_FULFILLMENT_START
        assert result.plan_guid == catalog.find_plan("silver", catalog.find_offer(OFFER_ID).offer_guid).plan_guid
        assert result.purchaser_tenant_id == "tenant-1"
        assert result.user_id == users.get_id_by_email("buyer@contoso.com")
        entries = audit_log.list_by_subscription("sub-1")
        assert [(e.old_value, e.new_value) for e in entries] == [(INITIAL_STATUS_VALUE, "PendingFulfillmentStart")]
        assert len(catalog.list_plans()) == 2

    def test_spaces_restored_to_plus(self, intake, marketplace):
        """Test that a URL-decoded token gets its '+' characters back."""
        intake.resolve_purchase_token(" abc def== ")

        marketplace.resolve.assert_called_once_with("abc+def==")

    def test_calling_user_becomes_owner(self, intake, marketplace, users):
        actor = users.ensure_user("admin@publisher.com")

        assert intake.resolve_purchase_token("abc", actor_user_id=actor).user_id == actor

    def test_resolving_twice_is_idempotent(self, intake, marketplace, store, audit_log):
        intake.resolve_purchase_token("abc")
        intake.resolve_purchase_token("abc")

        assert store.count() == 1
        assert len(audit_log.list_by_subscription("sub-1")) == 1

    def test_token_without_subscription_writes_nothing(self, intake, mock_fulfillment, store, catalog):
        mock_fulfillment.resolve.return_value = ResolvedPurchase(offerId=OFFER_ID, planId="silver")

        with pytest.raises(PurchaseTokenResolutionError):
            intake.resolve_purchase_token("bad")

        assert store.count() == 0
        assert catalog.find_offer(OFFER_ID) is None

    def test_missing_plan_raises(self, intake, marketplace, store):
        marketplace.resolve.return_value = ResolvedPurchase(id="sub-1", offerId=OFFER_ID, planId="platinum")

        with pytest.raises(PlanNotFoundError):
            intake.resolve_purchase_token("abc")

        assert store.count() == 0

    def test_api_error_propagates(self, intake, mock_fulfillment):
        mock_fulfillment.resolve.side_effect = FulfillmentApiError("unauthorized", status_code=401)

        with pytest.raises(FulfillmentApiError):
            intake.resolve_purchase_token("abc")


class TestFullCatalogResync:
    """Test importing every marketplace subscription."""

    def test_imports_new_and_skips_known(self, intake, marketplace, store, make_subscription, users):
        store.upsert(make_subscription(external_id="sub-known"), SYSTEM_ACTOR_ID)
        marketplace.get_all_subscriptions.return_value = [
            marketplace_payload("sub-known"),
            marketplace_payload("sub-new", status="Subscribed"),
        ]

        summary = intake.full_catalog_resync()

        assert (summary.created, summary.skipped, summary.failed) == (1, 1, 0)
        assert summary.total == 2
        imported = store.get("sub-new")
        assert imported.status is SubscriptionStatus.SUBSCRIBED
        assert imported.user_id == users.get_id_by_email("user@contoso.com")

    def test_only_pending_fulfillment_start_is_audited(self, intake, marketplace, audit_log):
        marketplace.get_all_subscriptions.return_value = [
            marketplace_payload("sub-a"),
            marketplace_payload("sub-b", status="Subscribed"),
        ]

        intake.full_catalog_resync()

        assert len(audit_log.list_by_subscription("sub-a")) == 1
        assert audit_log.list_by_subscription("sub-b") == []

    def test_one_failure_does_not_stop_the_rest(self, intake, marketplace, store, application_log):
        """Test that a subscription on an unknown plan is counted as failed."""
        marketplace.get_all_subscriptions.return_value = [
            marketplace_payload("sub-bad", plan_id="platinum"),
            marketplace_payload("sub-good"),
        ]

        summary = intake.full_catalog_resync()

        assert (summary.created, summary.failed) == (1, 1)
        assert store.exists("sub-good")
        assert not store.exists("sub-bad")
        assert application_log.list_recent()[0].startswith("Resync Failed. SubscriptionId: sub-bad")

    def test_malformed_subscription_is_counted_as_failed(self, intake, marketplace, store, application_log):
        """Test that a payload without a plan does not abort the resync."""
        marketplace.get_all_subscriptions.return_value = [
            marketplace_payload("sub-broken", planId=None),
            marketplace_payload("sub-good"),
        ]

        summary = intake.full_catalog_resync()

        assert (summary.created, summary.skipped, summary.failed) == (1, 0, 1)
        assert store.exists("sub-good")
        assert not store.exists("sub-broken")
        assert application_log.list_recent()[0].startswith("Resync Failed. SubscriptionId: sub-broken")

    def test_subscription_stored_while_waiting_for_lock_is_skipped(
        self, store, catalog, users, marketplace, application_log, make_subscription
    ):
        """Test that a subscription stored by a concurrent resolution is not imported again."""
        locks = KeyedLock()
        intake = ReconciliationIntake(store, catalog, users, marketplace, application_log, locks=locks)
        marketplace.get_all_subscriptions.return_value = [marketplace_payload("sub-1")]

        with ThreadPoolExecutor(max_workers=1) as pool:
            with locks.hold("sub-1"):
                future = pool.submit(intake.full_catalog_resync)
                time.sleep(0.1)
                store.upsert(make_subscription(external_id="sub-1"), SYSTEM_ACTOR_ID)
            summary = future.result(timeout=5)

        assert (summary.created, summary.skipped, summary.failed) == (0, 1, 0)
        marketplace.get_all_plans_for_subscription.assert_not_called()

    def test_unsubscribed_uses_its_own_plan(self, intake, marketplace, store, catalog):
        """Test that cancelled subscriptions are imported without listing plans."""
        marketplace.get_all_subscriptions.return_value = [
            marketplace_payload("sub-old", status="Unsubscribed", plan_id="legacy"),
        ]

        summary = intake.full_catalog_resync()

        assert summary.created == 1
        marketplace.get_all_plans_for_subscription.assert_not_called()
        imported = store.get("sub-old")
        assert imported.plan_id == "legacy"
        assert imported.is_active is False
        assert catalog.find_plan("legacy", catalog.find_offer(OFFER_ID).offer_guid) is not None

    def test_empty_marketplace(self, intake, mock_fulfillment):
        mock_fulfillment.get_all_subscriptions.return_value = []
        assert intake.full_catalog_resync().total == 0
