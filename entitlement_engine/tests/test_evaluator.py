"""
Unit tests for the entitlement evaluator.
"""

from datetime import datetime, timedelta, timezone

import pytest

from entitlement_engine.records.models import PaidSubscription, Resource, Restrictions, Usage
from entitlement_engine.rules.evaluator import (
    IssueType,
    can_add,
    evaluate,
    health,
    is_approaching_limit,
    is_expired,
    remaining_resources,
    summary,
    time_remaining,
    usage_percentage,
)
from shared.test_helpers import FIXED_NOW, TestDataFactory


class TestExpiry:
    """Test cases for is_expired and time_remaining."""

    @pytest.fixture
    def now(self):
        return FIXED_NOW

    def test_trial_not_expired(self, now):
        record = TestDataFactory.create_trial(now, days_left=2)

        assert is_expired(record, now) is False

    def test_trial_expired(self, now):
        record = TestDataFactory.create_trial(now, days_left=-1)

        assert is_expired(record, now) is True

    def test_dates_win_over_status(self, now):
        record = TestDataFactory.create_paid(now, days_left=-1 / 24)

        assert record.status.value == "active"
        assert is_expired(record, now) is True

    def test_expiry_boundary_is_exclusive(self, now):
        record = TestDataFactory.create_paid(now, days_left=0)

        assert is_expired(record, now) is False
        assert is_expired(record, now + timedelta(microseconds=1)) is True

    def test_perpetual_paid_never_expires(self, now):
        record = TestDataFactory.create_paid(now, days_left=None)

        assert is_expired(record, now + timedelta(days=3650)) is False
        remaining = time_remaining(record, now)
        assert remaining.unbounded is True
        assert remaining.expired is False
        assert remaining.total_days == 0

    def test_missing_and_malformed_are_expired(self, now):
        assert is_expired(None, now) is True
        assert is_expired(TestDataFactory.create_malformed(), now) is True

    @pytest.mark.parametrize("offset_hours", [0, 1, 48, 24 * 30, 24 * 365])
    def test_expiry_is_monotonic(self, now, offset_hours):
        record = TestDataFactory.create_trial(now, days_left=-0.5)

        assert is_expired(record, now) is True
        assert is_expired(record, now + timedelta(hours=offset_hours)) is True

    def test_time_remaining_breakdown(self, now):
        record = TestDataFactory.create_paid(now, days_left=2)
        record = PaidSubscription(
            status=record.status,
            plan=record.plan,
            end_date=now + timedelta(days=2, hours=3, minutes=15, seconds=30),
        )

        remaining = time_remaining(record, now)

        assert remaining.expired is False
        assert remaining.days == 2
        assert remaining.hours == 3
        assert remaining.minutes == 15
        assert remaining.total_hours == pytest.approx(51.2583, rel=1e-4)
        assert remaining.total_days == pytest.approx(2.1358, rel=1e-4)

    def test_time_remaining_expired_is_zeroed(self, now):
        remaining = time_remaining(TestDataFactory.create_trial(now, days_left=-3), now)

        assert remaining.expired is True
        assert (remaining.days, remaining.hours, remaining.minutes) == (0, 0, 0)
        assert remaining.total_hours == 0

    def test_naive_now_taken_as_utc(self, now):
        record = TestDataFactory.create_trial(now, days_left=1)

        assert is_expired(record, datetime(2024, 6, 1, 12, 0)) is False


class TestUsage:
    """Test cases for usage and capacity figures."""

    def _record(self, max_beds=10, beds_used=12, max_branches=0, branches_used=0, max_rooms=0, rooms_used=0):
        return PaidSubscription(
            restrictions=Restrictions(max_beds=max_beds, max_branches=max_branches, max_rooms=max_rooms),
            usage=Usage(beds_used=beds_used, branches_used=branches_used, rooms_used=rooms_used),
        )

    def test_usage_may_exceed_limit(self):
        figures = usage_percentage(self._record(max_beds=10, beds_used=12))

        assert figures.beds == pytest.approx(120.0)

    def test_zero_limit_percentage(self):
        figures = usage_percentage(self._record(max_beds=10, beds_used=5, max_branches=0, branches_used=1))

        assert figures.branches == 100.0
        assert figures.rooms == 0.0

    @pytest.mark.parametrize("max_beds,beds_used,expected", [
        (10, 12, 0),
        (10, 10, 0),
        (10, 3, 7),
        (0, 5, 0),
    ])
    def test_remaining_never_negative(self, max_beds, beds_used, expected):
        remaining = remaining_resources(self._record(max_beds=max_beds, beds_used=beds_used))

        assert remaining.beds == expected
        assert remaining.beds >= 0

    def test_no_record_gives_zeros(self):
        assert usage_percentage(None).beds == 0
        assert remaining_resources(None).rooms == 0

    def test_can_add(self):
        record = self._record(max_beds=10, beds_used=8)

        assert can_add(record, Resource.BEDS) is True
        assert can_add(record, Resource.BEDS, additional=2) is True
        assert can_add(record, Resource.BEDS, additional=3) is False
        assert can_add(None, Resource.BEDS) is False
        assert can_add(TestDataFactory.create_malformed(), Resource.BEDS) is False

    def test_is_approaching_limit(self):
        record = self._record(max_beds=10, beds_used=9, max_rooms=10, rooms_used=8)

        assert is_approaching_limit(record, Resource.BEDS) is True
        assert is_approaching_limit(record, Resource.ROOMS) is False
        assert is_approaching_limit(record, Resource.ROOMS, threshold=80) is True
        # Zero limits never warn
        assert is_approaching_limit(record, Resource.BRANCHES) is False


class TestHealth:
    """Test cases for health."""

    @pytest.fixture
    def now(self):
        return FIXED_NOW

    def test_trial_ending_is_warning_only(self, now):
        result = health(TestDataFactory.create_trial(now, days_left=2), now)

        assert result.is_healthy is True
        assert [(i.type, i.code) for i in result.issues] == [(IssueType.WARNING, "trial_ending")]
        assert result.issues[0].message == "Trial ends in 2 days"

    def test_bed_limit_is_critical(self, now):
        record = TestDataFactory.create_paid(now, max_beds=10, beds_used=12)

        result = health(record, now)

        assert result.is_healthy is False
        assert result.has_issue("bed_limit")
        assert result.critical[0].type == IssueType.CRITICAL

    def test_branch_limit_is_critical(self, now):
        record = TestDataFactory.create_paid(now, max_branches=2, branches_used=2)

        assert health(record, now).has_issue("branch_limit")

    def test_zero_limit_is_not_critical(self, now):
        record = TestDataFactory.create_paid(now, max_branches=0, branches_used=3)

        assert not health(record, now).has_issue("branch_limit")

    def test_renewal_due(self, now):
        result = health(TestDataFactory.create_paid(now, days_left=6.5), now)

        assert result.is_healthy is True
        assert result.has_issue("renewal_due")
        assert result.warnings[0].message == "Subscription renewal due in 7 days"

    def test_renewal_not_due_outside_window(self, now):
        result = health(TestDataFactory.create_paid(now, days_left=8), now)

        assert result.issues == []
        assert result.is_healthy is True

    def test_expired_paid(self, now):
        result = health(TestDataFactory.create_paid(now, days_left=-1), now)

        assert result.is_healthy is False
        assert result.has_issue("expired")
        assert not result.has_issue("renewal_due")

    def test_rules_are_independent(self, now):
        record = TestDataFactory.create_trial(now, days_left=-1, max_beds=5, beds_used=5)

        codes = {issue.code for issue in health(record, now).issues}

        assert codes == {"bed_limit", "expired"}

    def test_no_record(self, now):
        result = health(None, now)

        assert result.is_healthy is False
        assert result.issues[0].message == "No active subscription"

    def test_custom_warning_window(self, now):
        record = TestDataFactory.create_paid(now, days_left=10)

        assert health(record, now, warning_days=14).has_issue("renewal_due")


class TestSummaryAndEvaluate:
    """Test cases for summary and evaluate."""

    def test_summary_for_trial(self):
        record = TestDataFactory.create_trial(FIXED_NOW, days_left=2.2, beds_used=3)

        result = summary(record, FIXED_NOW)

        assert result.has_subscription is True
        assert result.status_badge == "Trial"
        assert result.is_trial_active is True
        assert result.trial_days_remaining == 3
        assert result.usage_percentage.beds == pytest.approx(10.0)

    def test_summary_without_record(self):
        result = summary(None, FIXED_NOW)

        assert result.has_subscription is False
        assert result.status_badge == "Free Plan"
        assert result.days_remaining == 0

    def test_evaluate_bundles_facts(self):
        record = TestDataFactory.create_paid(FIXED_NOW, days_left=3, max_beds=10, beds_used=12)

        facts = evaluate(record, FIXED_NOW)

        assert facts.has_record is True
        assert facts.expired is False
        assert facts.evaluated_at == FIXED_NOW
        assert facts.usage_percentage.beds == pytest.approx(120.0)
        assert facts.remaining_resources.beds == 0
        assert facts.health.has_issue("bed_limit")
        assert facts.health.has_issue("renewal_due")
        assert facts.summary.days_remaining == 3

    def test_evaluate_malformed_fails_closed(self):
        facts = evaluate(TestDataFactory.create_malformed(), FIXED_NOW)

        assert facts.expired is True
        assert facts.time_remaining.expired is True
        assert facts.health.is_healthy is False
        assert facts.health.critical[0].message == "Subscription could not be verified"
