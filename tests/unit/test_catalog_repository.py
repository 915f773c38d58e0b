"""Tests for CatalogRepository - offers, plans and plan attributes."""

import pytest

from marketplace_reconciler.errors import PlanNotFoundError
from marketplace_reconciler.models import ParameterType, PlanDetail
from marketplace_reconciler.models.subscription import SYSTEM_ACTOR_ID


class TestOffers:
    """Test offer creation."""

    def test_ensure_offer_creates_once(self, catalog):
        """Test that ensure_offer is idempotent."""
        first = catalog.ensure_offer("contoso-saas", SYSTEM_ACTOR_ID)
        second = catalog.ensure_offer("contoso-saas", 42)

        assert first.offer_guid == second.offer_guid
        assert first.offer_id == "contoso-saas"

    def test_find_offer_unknown(self, catalog):
        assert catalog.find_offer("missing") is None


class TestPlans:
    """Test plan creation and lookup."""

    def test_add_plans_attaches_configured_attributes(self, catalog, parameters, offer):
        """Test that new plans get the input and output attributes."""
        plan = catalog.add_plans(offer.offer_guid, [PlanDetail(plan_id="gold")])[0]

        attributes = parameters.list_for(subscription_id=1, plan_guid=plan.plan_guid)

        assert [(a.display_name, a.type) for a in attributes] == [
            ("Custom SMS Message", ParameterType.INPUT),
            ("ApiKey", ParameterType.OUTPUT),
        ]

    def test_add_plans_skips_existing(self, catalog, offer):
        """Test that re-adding a plan keeps its guid and data."""
        first = catalog.add_plans(offer.offer_guid, [PlanDetail(plan_id="gold", display_name="Gold")])[0]
        second = catalog.add_plans(offer.offer_guid, [PlanDetail(plan_id="gold", display_name="Renamed")])[0]

        assert second.plan_guid == first.plan_guid
        assert second.display_name == "Gold"
        assert len(catalog.list_plans(offer.offer_guid)) == 1

    def test_plan_flags_copied(self, catalog, offer):
        plan = catalog.add_plans(
            offer.offer_guid,
            [PlanDetail(plan_id="seats", is_price_per_seat=True, is_metering_supported=True)],
        )[0]

        assert plan.is_per_user is True
        assert plan.is_metering_supported is True

    def test_find_plan_scoped_to_offer(self, catalog, offer):
        catalog.add_plans(offer.offer_guid, [PlanDetail(plan_id="gold")])
        other = catalog.ensure_offer("fabrikam-saas", SYSTEM_ACTOR_ID)

        assert catalog.find_plan("gold", offer.offer_guid) is not None
        assert catalog.find_plan("gold", other.offer_guid) is None


class TestResolvePlan:
    """Test resolving a subscription's plan."""

    @pytest.fixture
    def colliding_plans(self, catalog, offer):
        """Two offers that both have a plan called 'basic'."""
        other = catalog.ensure_offer("fabrikam-saas", SYSTEM_ACTOR_ID)
        contoso_basic = catalog.add_plans(offer.offer_guid, [PlanDetail(plan_id="basic")])[0]
        fabrikam_basic = catalog.add_plans(other.offer_guid, [PlanDetail(plan_id="basic")])[0]
        return contoso_basic, fabrikam_basic

    def test_plan_guid_wins(self, catalog, colliding_plans, make_subscription):
        """Test that the stored plan guid identifies the plan exactly."""
        contoso_basic, fabrikam_basic = colliding_plans
        subscription = make_subscription(plan_id="basic", plan_guid=fabrikam_basic.plan_guid)

        assert catalog.resolve_plan_for(subscription).plan_guid == fabrikam_basic.plan_guid

    def test_offer_disambiguates_plan_id(self, catalog, colliding_plans, make_subscription):
        """Test that the subscription's offer picks the right colliding plan."""
        contoso_basic, _ = colliding_plans
        subscription = make_subscription(plan_id="basic", offer_id="contoso-saas")

        assert catalog.resolve_plan_for(subscription).plan_guid == contoso_basic.plan_guid

    def test_ambiguous_plan_id_raises(self, catalog, colliding_plans, make_subscription):
        """Test that a colliding plan id without guid or offer is not guessed."""
        subscription = make_subscription(plan_id="basic", offer_id=None)

        with pytest.raises(PlanNotFoundError, match="ambiguous"):
            catalog.resolve_plan_for(subscription)

    def test_unique_plan_id_fallback(self, catalog, silver_plan, make_subscription):
        """Test that a unique plan id resolves without guid or offer."""
        subscription = make_subscription(plan_id="silver", offer_id=None)

        assert catalog.resolve_plan_for(subscription).plan_guid == silver_plan.plan_guid

    def test_unknown_plan_raises(self, catalog, offer, make_subscription):
        with pytest.raises(PlanNotFoundError):
            catalog.resolve_plan_for(make_subscription(plan_id="platinum"))
