"""
Unit tests for the route guard.
"""

from datetime import datetime, timezone

import pytest

from entitlement_engine.records.models import BillingCycle, PaidSubscription, SubscriptionStatus, parse_record
from entitlement_engine.rules.guard import GuardOutcome, guard, is_exempt
from entitlement_engine.rules.navigation import NavigationFilter
from entitlement_engine.rules.permissions import RoleContext
from shared.config import DEFAULT_EXEMPT_PATHS
from shared.test_helpers import FIXED_NOW, TestDataFactory

SELECTION = "/admin/subscription-selection"


class TestRouteGuard:
    """Test cases for guard."""

    @pytest.fixture
    def admin(self):
        return RoleContext(role="admin")

    @pytest.mark.parametrize("route", DEFAULT_EXEMPT_PATHS + ["/admin/settings/profile"])
    def test_exempt_paths_always_allowed(self, admin, route):
        decision = guard(route, None, admin, FIXED_NOW)

        assert decision.outcome == GuardOutcome.ALLOW
        assert decision.reason == "exempt path"

    def test_is_exempt_prefix(self):
        assert is_exempt("/admin/payment/callback?ref=1", DEFAULT_EXEMPT_PATHS) is True
        assert is_exempt("/admin/payments", DEFAULT_EXEMPT_PATHS) is False

    @pytest.mark.parametrize("route", ["/admin/settings-billing", "/admin/subscription-selectionX"])
    def test_exempt_match_stops_at_segment_boundary(self, admin, route):
        assert is_exempt(route, DEFAULT_EXEMPT_PATHS) is False

        decision = guard(route, None, admin, FIXED_NOW)

        assert decision.outcome == GuardOutcome.REDIRECT
        assert decision.target == SELECTION

    @pytest.mark.parametrize("route", ["/admin/dashboard", "/admin/residents", "/admin/reports"])
    def test_bypass_role_with_no_record(self, route):
        decision = guard(route, None, RoleContext(role="support"), FIXED_NOW)

        assert decision.allowed is True
        assert decision.outcome == GuardOutcome.ALLOW

    def test_no_record_redirects(self, admin):
        decision = guard("/admin/dashboard", None, admin, FIXED_NOW)

        assert decision.outcome == GuardOutcome.REDIRECT
        assert decision.target == SELECTION

    def test_expired_with_stale_active_status_redirects(self, admin):
        record = TestDataFactory.create_paid(FIXED_NOW, days_left=-1 / 24)

        decision = guard("/admin/residents", record, admin, FIXED_NOW)

        assert record.status == SubscriptionStatus.ACTIVE
        assert decision.outcome == GuardOutcome.REDIRECT
        assert decision.target == SELECTION
        assert decision.reason == "subscription expired"

    def test_malformed_redirects(self, admin):
        decision = guard("/admin/dashboard", TestDataFactory.create_malformed(), admin, FIXED_NOW)

        assert decision.outcome == GuardOutcome.REDIRECT

    @pytest.mark.parametrize("status", [
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.NONE,
        SubscriptionStatus.EXPIRED,
    ])
    def test_status_not_live_redirects(self, admin, status):
        record = TestDataFactory.create_paid(FIXED_NOW, days_left=20, status=status)

        decision = guard("/admin/dashboard", record, admin, FIXED_NOW)

        assert decision.outcome == GuardOutcome.REDIRECT
        assert status.value in decision.reason

    def test_live_subscription_allowed(self, admin):
        decision = guard("/admin/tickets", TestDataFactory.create_paid(FIXED_NOW), admin, FIXED_NOW)

        assert decision.allowed is True

    def test_module_gating_blocks_with_navigation(self, admin):
        record = TestDataFactory.create_paid(FIXED_NOW)

        decision = guard("/admin/tickets", record, admin, FIXED_NOW, navigation=NavigationFilter())

        assert decision.outcome == GuardOutcome.BLOCK
        assert decision.target is None
        assert "ticket_system" in decision.reason

    def test_enabled_module_allowed_with_navigation(self, admin):
        record = TestDataFactory.create_paid(FIXED_NOW)

        decision = guard("/admin/payments", record, admin, FIXED_NOW, navigation=NavigationFilter())

        assert decision.allowed is True

    def test_branch_screen_blocked_without_multiple_branches(self, admin):
        payload = TestDataFactory.create_payload()
        payload["plan"]["allowMultipleBranches"] = False
        record = parse_record(payload)

        decision = guard("/admin/branch-activities", record, admin, FIXED_NOW, navigation=NavigationFilter())

        assert decision.outcome == GuardOutcome.BLOCK
        assert decision.reason == "plan does not allow multiple branches"

    def test_branch_screen_allowed_for_trial_and_multi_branch_plan(self, admin):
        navigation = NavigationFilter()

        for record in (TestDataFactory.create_trial(FIXED_NOW), TestDataFactory.create_paid(FIXED_NOW)):
            decision = guard("/admin/branch-activities/7", record, admin, FIXED_NOW, navigation=navigation)
            assert decision.allowed is True

    def test_naive_record_dates_do_not_crash(self, admin):
        record = PaidSubscription(
            status=SubscriptionStatus.ACTIVE,
            cycle=BillingCycle.MONTHLY,
            end_date=datetime(2026, 2, 1),
        )
        after_end = datetime(2026, 2, 2, tzinfo=timezone.utc)

        assert guard("/admin/payments", record, admin, FIXED_NOW).allowed is True
        assert guard("/admin/payments", record, admin, after_end).outcome == GuardOutcome.REDIRECT

    def test_custom_selection_route(self, admin):
        decision = guard(
            "/app/home", None, admin, FIXED_NOW,
            exempt_paths=[], selection_route="/app/plans",
        )

        assert decision.target == "/app/plans"
        assert guard("/app/plans", None, admin, FIXED_NOW, exempt_paths=[], selection_route="/app/plans").allowed
