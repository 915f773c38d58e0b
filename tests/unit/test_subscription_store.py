"""Tests for SubscriptionStore - durable subscription records with audited changes."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from marketplace_reconciler.errors import SubscriptionNotFoundError
from marketplace_reconciler.models import PlanDetail
from marketplace_reconciler.models.subscription import (
    INITIAL_STATUS_VALUE,
    SYSTEM_ACTOR_ID,
    AuditAttribute,
    SubscriptionStatus,
)


class TestSubscriptionStoreBasics:
    """Test basic store functionality."""

    def test_store_initializes_empty(self, store):
        """Test that new store is empty."""
        assert store.count() == 0
        assert len(store) == 0
        assert store.list_all() == []

    def test_insert_returns_internal_id(self, store, make_subscription):
        """Test inserting a new subscription."""
        internal_id = store.upsert(make_subscription(), actor_user_id=5)

        assert internal_id > 0
        assert store.exists("sub-1")
        assert "sub-1" in store
        stored = store.get("sub-1")
        assert stored.id == internal_id
        assert stored.plan_id == "silver"
        assert stored.quantity == 3
        assert stored.status is SubscriptionStatus.PENDING_FULFILLMENT_START
        assert stored.is_active is True

    def test_insert_without_record_creation_writes_no_audit(self, store, audit_log, make_subscription):
        """Test that a plain insert is not audited."""
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)
        assert audit_log.list_by_subscription("sub-1") == []

    def test_insert_with_record_creation_audits_initial_status(self, store, audit_log, make_subscription):
        """Test that record_creation writes the None -> status entry."""
        store.upsert(make_subscription(), actor_user_id=9, record_creation=True)

        entries = audit_log.list_by_subscription("sub-1")
        assert len(entries) == 1
        assert entries[0].attribute is AuditAttribute.STATUS
        assert entries[0].old_value == INITIAL_STATUS_VALUE
        assert entries[0].new_value == "PendingFulfillmentStart"
        assert entries[0].actor_user_id == 9

    def test_get_unknown_raises(self, store):
        """Test that get raises for unknown ids."""
        with pytest.raises(SubscriptionNotFoundError):
            store.get("missing")

    def test_find_unknown_returns_none(self, store):
        """Test that find returns None for unknown ids."""
        assert store.find("missing") is None

    def test_repr(self, store):
        """Test string representation."""
        assert "SubscriptionStore" in repr(store)
        assert "subscriptions=0" in repr(store)


class TestUpsertIdempotency:
    """Test that repeated upserts converge."""

    def test_same_upsert_twice_is_noop(self, store, audit_log, make_subscription):
        """Test that upserting identical data creates no row and no audit entry."""
        first_id = store.upsert(make_subscription(), SYSTEM_ACTOR_ID, record_creation=True)
        second_id = store.upsert(make_subscription(), SYSTEM_ACTOR_ID, record_creation=True)

        assert first_id == second_id
        assert store.count() == 1
        assert len(audit_log.list_by_subscription("sub-1")) == 1

    def test_upsert_audits_each_changed_field(self, store, audit_log, make_subscription):
        """Test that one upsert with three changes writes three entries."""
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)
        store.upsert(
            make_subscription(status=SubscriptionStatus.SUBSCRIBED, plan_id="gold", quantity=10),
            actor_user_id=4,
        )

        entries = audit_log.list_by_subscription("sub-1")
        changes = {entry.attribute: (entry.old_value, entry.new_value) for entry in entries}
        assert changes == {
            AuditAttribute.STATUS: ("PendingFulfillmentStart", "Subscribed"),
            AuditAttribute.PLAN: ("silver", "gold"),
            AuditAttribute.QUANTITY: ("3", "10"),
        }
        assert all(entry.actor_user_id == 4 for entry in entries)

    def test_upsert_to_unsubscribed_clears_active_flag(self, store, make_subscription):
        """Test that status changes recompute the active flag."""
        store.upsert(make_subscription(status=SubscriptionStatus.SUBSCRIBED), SYSTEM_ACTOR_ID)
        store.upsert(make_subscription(status=SubscriptionStatus.UNSUBSCRIBED), SYSTEM_ACTOR_ID)

        assert store.get("sub-1").is_active is False

    def test_upsert_to_activation_failed_clears_active_flag(self, store, make_subscription):
        store.upsert(make_subscription(status=SubscriptionStatus.PENDING_ACTIVATION), SYSTEM_ACTOR_ID)
        store.upsert(make_subscription(status=SubscriptionStatus.ACTIVATION_FAILED), SYSTEM_ACTOR_ID)

        assert store.get("sub-1").is_active is False

    def test_concurrent_upserts_create_one_row(self, store, make_subscription):
        """Test that racing inserts of the same id end with a single row."""
        with ThreadPoolExecutor(max_workers=4) as pool:
            ids = list(pool.map(lambda _: store.upsert(make_subscription(), SYSTEM_ACTOR_ID), range(8)))

        assert len(set(ids)) == 1
        assert store.count() == 1


class TestUpdateStatus:
    """Test status updates."""

    def test_update_status_changes_and_audits(self, store, audit_log, make_subscription):
        """Test a real status change."""
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)

        changed = store.update_status("sub-1", SubscriptionStatus.PENDING_ACTIVATION, True, actor_user_id=2)

        assert changed is True
        assert store.get("sub-1").status is SubscriptionStatus.PENDING_ACTIVATION
        entries = audit_log.list_by_subscription("sub-1")
        assert [(e.old_value, e.new_value, e.actor_user_id) for e in entries] == [
            ("PendingFulfillmentStart", "PendingActivation", 2)
        ]

    def test_update_to_same_status_is_noop(self, store, audit_log, make_subscription):
        """Test that requesting the current status writes nothing."""
        store.upsert(make_subscription(status=SubscriptionStatus.SUBSCRIBED), SYSTEM_ACTOR_ID)

        changed = store.update_status("sub-1", SubscriptionStatus.SUBSCRIBED, True, SYSTEM_ACTOR_ID)

        assert changed is False
        assert audit_log.list_by_subscription("sub-1") == []

    def test_update_unknown_subscription_is_noop(self, store):
        """Test that unknown ids are ignored."""
        assert store.update_status("missing", SubscriptionStatus.SUBSCRIBED, True) is False

    def test_update_status_sets_explicit_active_flag(self, store, make_subscription):
        """Test that the caller's active flag is stored."""
        store.upsert(make_subscription(status=SubscriptionStatus.PENDING_ACTIVATION), SYSTEM_ACTOR_ID)

        store.update_status("sub-1", SubscriptionStatus.ACTIVATION_FAILED, False)

        stored = store.get("sub-1")
        assert stored.status is SubscriptionStatus.ACTIVATION_FAILED
        assert stored.is_active is False

    def test_update_status_accepts_raw_string(self, store, make_subscription):
        """Test that raw status strings are parsed."""
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)
        store.update_status("sub-1", "pendingactivation", True)
        assert store.get("sub-1").status is SubscriptionStatus.PENDING_ACTIVATION


class TestUpdatePlanAndQuantity:
    """Test plan and quantity updates."""

    def test_update_plan(self, store, audit_log, make_subscription):
        """Test changing the plan writes one Plan entry."""
        store.upsert(make_subscription(plan_guid="guid-silver"), SYSTEM_ACTOR_ID)

        assert store.update_plan("sub-1", "gold", actor_user_id=3, plan_guid="guid-gold") is True

        stored = store.get("sub-1")
        assert stored.plan_id == "gold"
        assert stored.plan_guid == "guid-gold"
        entry = audit_log.list_by_subscription("sub-1")[-1]
        assert (entry.attribute, entry.old_value, entry.new_value) == (AuditAttribute.PLAN, "silver", "gold")

    def test_update_plan_same_value_is_noop(self, store, make_subscription):
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)
        assert store.update_plan("sub-1", "silver") is False

    def test_blank_plan_rejected(self, store, make_subscription):
        """Test that blank plan ids raise ValueError."""
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)
        with pytest.raises(ValueError):
            store.update_plan("sub-1", "  ")

    def test_update_quantity(self, store, audit_log, make_subscription):
        """Test changing the quantity writes one Quantity entry."""
        store.upsert(make_subscription(quantity=3), SYSTEM_ACTOR_ID)

        assert store.update_quantity("sub-1", 10, actor_user_id=1) is True

        assert store.get("sub-1").quantity == 10
        entry = audit_log.list_by_subscription("sub-1")[-1]
        assert (entry.attribute, entry.old_value, entry.new_value) == (AuditAttribute.QUANTITY, "3", "10")

    def test_negative_quantity_rejected(self, store, make_subscription):
        """Test that negative quantities raise ValueError."""
        store.upsert(make_subscription(), SYSTEM_ACTOR_ID)
        with pytest.raises(ValueError):
            store.update_quantity("sub-1", -1)


class TestListing:
    """Test listing and filtering."""

    def test_list_all_newest_first(self, store, make_subscription):
        store.upsert(make_subscription(external_id="sub-a"), SYSTEM_ACTOR_ID)
        store.upsert(make_subscription(external_id="sub-b"), SYSTEM_ACTOR_ID)

        assert [s.external_id for s in store.list_all()] == ["sub-b", "sub-a"]

    def test_inactive_filter_hides_unsubscribed(self, store, make_subscription):
        """Test include_inactive=False on list and find."""
        store.upsert(make_subscription(external_id="sub-a"), SYSTEM_ACTOR_ID)
        store.upsert(
            make_subscription(external_id="sub-b", status=SubscriptionStatus.UNSUBSCRIBED), SYSTEM_ACTOR_ID
        )

        assert [s.external_id for s in store.list_all(include_inactive=False)] == ["sub-a"]
        assert store.find("sub-b", include_inactive=False) is None
        assert store.find("sub-b") is not None

    def test_list_by_owner_email(self, store, users, make_subscription):
        """Test listing a user's subscriptions by email."""
        owner = users.ensure_user("owner@contoso.com")
        store.upsert(make_subscription(external_id="sub-a", user_id=owner), SYSTEM_ACTOR_ID)
        store.upsert(make_subscription(external_id="sub-b"), SYSTEM_ACTOR_ID)

        owned = store.list_by_owner_email("Owner@Contoso.com")

        assert [s.external_id for s in owned] == ["sub-a"]

    def test_list_active_with_metered_plan(self, store, catalog, offer, make_subscription):
        """Test that only Subscribed subscriptions on metered plans are listed."""
        metered, flat = catalog.add_plans(
            offer.offer_guid,
            [
                PlanDetail(plan_id="metered", is_metering_supported=True),
                PlanDetail(plan_id="flat"),
            ],
        )
        store.upsert(
            make_subscription(
                external_id="sub-m",
                plan_id="metered",
                plan_guid=metered.plan_guid,
                status=SubscriptionStatus.SUBSCRIBED,
            ),
            SYSTEM_ACTOR_ID,
        )
        store.upsert(
            make_subscription(
                external_id="sub-f",
                plan_id="flat",
                plan_guid=flat.plan_guid,
                status=SubscriptionStatus.SUBSCRIBED,
            ),
            SYSTEM_ACTOR_ID,
        )
        store.upsert(
            make_subscription(
                external_id="sub-p",
                plan_id="metered",
                plan_guid=metered.plan_guid,
                status=SubscriptionStatus.PENDING_ACTIVATION,
            ),
            SYSTEM_ACTOR_ID,
        )

        assert [s.external_id for s in store.list_active_with_metered_plan()] == ["sub-m"]

    def test_get_statistics(self, store, make_subscription):
        store.upsert(make_subscription(external_id="sub-a"), SYSTEM_ACTOR_ID)
        store.upsert(
            make_subscription(external_id="sub-b", status=SubscriptionStatus.SUBSCRIBED), SYSTEM_ACTOR_ID
        )

        statistics = store.get_statistics()

        assert statistics["total_subscriptions"] == 2
        assert statistics["Subscribed"] == 1
        assert statistics["PendingFulfillmentStart"] == 1
