"""Tests for UserRepository and ApplicationLog."""

import pytest


class TestUserRepository:
    """Test user creation by email."""

    def test_ensure_user_is_idempotent(self, users):
        first = users.ensure_user("buyer@contoso.com", "Buyer")
        second = users.ensure_user("buyer@contoso.com")

        assert first == second

    def test_email_lookup_is_case_insensitive(self, users):
        user_id = users.ensure_user("Buyer@Contoso.com")

        assert users.get_id_by_email("buyer@contoso.com") == user_id
        assert users.ensure_user("BUYER@contoso.com") == user_id

    def test_unknown_email(self, users):
        assert users.get_id_by_email("nobody@contoso.com") is None

    def test_blank_email_rejected(self, users):
        with pytest.raises(ValueError):
            users.ensure_user("  ")


class TestApplicationLog:
    """Test the operational log channels."""

    def test_messages_newest_first(self, application_log):
        application_log.add("first")
        application_log.add("second")

        assert application_log.list_recent() == ["second", "first"]
        assert application_log.list_recent(limit=1) == ["second"]

    def test_provisioning_status_per_subscription(self, application_log):
        application_log.log_provisioning_status("sub-1", "Activated", "ok")
        application_log.log_provisioning_status("sub-2", "ActivationFailed", "boom")

        entries = application_log.list_provisioning_status("sub-1")

        assert [(e.status, e.description) for e in entries] == [("Activated", "ok")]
        assert entries[0].subscription_external_id == "sub-1"
