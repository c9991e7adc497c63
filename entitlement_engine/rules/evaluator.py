"""
Entitlement evaluator.

Pure functions turning a subscription record (or its absence) into derived
facts. Nothing here raises on bad data: a missing or malformed record
evaluates as expired with zeroed figures, so a parsing problem degrades to
access denial rather than unrestricted access.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from ..records.models import (
    MalformedSubscription,
    Resource,
    SubscriptionRecord,
    SubscriptionStatus,
    TrialSubscription,
    as_utc,
)

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)
DAY = timedelta(days=1)

DEFAULT_WARNING_DAYS = 7.0
DEFAULT_USAGE_WARNING_THRESHOLD = 90.0

_STATUS_BADGES = {
    SubscriptionStatus.ACTIVE: "Active",
    SubscriptionStatus.TRIAL: "Trial",
    SubscriptionStatus.PAST_DUE: "Past Due",
    SubscriptionStatus.EXPIRED: "Expired",
    SubscriptionStatus.CANCELLED: "Cancelled",
}


class IssueType(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(frozen=True)
class HealthIssue:
    """A single problem with the account's subscription."""
    type: IssueType
    message: str
    code: str


@dataclass(frozen=True)
class Health:
    is_healthy: bool
    issues: List[HealthIssue] = field(default_factory=list)

    def has_issue(self, code: str) -> bool:
        return any(issue.code == code for issue in self.issues)

    @property
    def critical(self) -> List[HealthIssue]:
        return [issue for issue in self.issues if issue.type == IssueType.CRITICAL]

    @property
    def warnings(self) -> List[HealthIssue]:
        return [issue for issue in self.issues if issue.type == IssueType.WARNING]


@dataclass(frozen=True)
class TimeRemaining:
    """Time left until the applicable end date."""
    days: int = 0
    hours: int = 0
    minutes: int = 0
    total_hours: float = 0.0
    total_days: float = 0.0
    expired: bool = True
    unbounded: bool = False

    @classmethod
    def expired_variant(cls) -> "TimeRemaining":
        return cls()

    @classmethod
    def unbounded_variant(cls) -> "TimeRemaining":
        return cls(expired=False, unbounded=True)


@dataclass(frozen=True)
class ResourceFigures:
    beds: float = 0
    branches: float = 0
    rooms: float = 0

    def for_resource(self, resource: Resource) -> float:
        return getattr(self, resource.value)


@dataclass(frozen=True)
class SubscriptionSummary:
    """Display-oriented digest of a subscription."""
    has_subscription: bool
    status: SubscriptionStatus
    status_badge: str
    plan_name: str
    billing_cycle: Optional[str]
    is_trial_active: bool
    trial_days_remaining: int
    days_remaining: int
    usage_percentage: ResourceFigures
    remaining: ResourceFigures
    max_beds: int = 0
    max_branches: int = 0
    max_rooms: int = 0
    beds_used: int = 0
    branches_used: int = 0
    rooms_used: int = 0
    allows_multiple_branches: bool = False
    trial_end_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass(frozen=True)
class DerivedFacts:
    """Everything one evaluation pass derives from a record."""
    evaluated_at: datetime
    has_record: bool
    expired: bool
    time_remaining: TimeRemaining
    usage_percentage: ResourceFigures
    remaining_resources: ResourceFigures
    health: Health
    summary: SubscriptionSummary


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def period_end(record: Optional[SubscriptionRecord]) -> Optional[datetime]:
    """End date that governs expiry: the trial end for trials, else the paid end date."""
    if record is None or isinstance(record, MalformedSubscription):
        return None
    if isinstance(record, TrialSubscription):
        return record.trial_end_date
    return record.end_date


def is_expired(record: Optional[SubscriptionRecord], now: datetime) -> bool:
    """
    Whether the subscription period is over.

    Dates win over the reported status: an ``active`` record whose end date
    has passed is expired. A paid record without an end date never expires.
    """
    if record is None or isinstance(record, MalformedSubscription):
        return True

    end = period_end(record)
    if end is None:
        return False
    return as_utc(now) > end


def time_remaining(record: Optional[SubscriptionRecord], now: datetime) -> TimeRemaining:
    """Exact time left until the applicable end date."""
    if record is None or isinstance(record, MalformedSubscription):
        return TimeRemaining.expired_variant()

    end = period_end(record)
    if end is None:
        return TimeRemaining.unbounded_variant()

    millis = (end - as_utc(now)) // timedelta(milliseconds=1)
    if millis <= 0:
        return TimeRemaining.expired_variant()

    remaining = timedelta(milliseconds=millis)
    return TimeRemaining(
        days=remaining // DAY,
        hours=(remaining % DAY) // HOUR,
        minutes=(remaining % HOUR) // MINUTE,
        total_hours=remaining / HOUR,
        total_days=remaining / DAY,
        expired=False,
    )


def _percentage(used: int, limit: int) -> float:
    if limit == 0:
        return 100.0 if used > 0 else 0.0
    return max(0.0, used / limit * 100)


def usage_percentage(record: Optional[SubscriptionRecord]) -> ResourceFigures:
    """Usage of each resource as a percentage of its limit. May exceed 100."""
    if record is None:
        return ResourceFigures()
    return ResourceFigures(
        beds=_percentage(record.usage.beds_used, record.restrictions.max_beds),
        branches=_percentage(record.usage.branches_used, record.restrictions.max_branches),
        rooms=_percentage(record.usage.rooms_used, record.restrictions.max_rooms),
    )


def remaining_resources(record: Optional[SubscriptionRecord]) -> ResourceFigures:
    """Headroom per resource, never negative."""
    if record is None:
        return ResourceFigures()
    return ResourceFigures(
        beds=max(0, record.restrictions.max_beds - record.usage.beds_used),
        branches=max(0, record.restrictions.max_branches - record.usage.branches_used),
        rooms=max(0, record.restrictions.max_rooms - record.usage.rooms_used),
    )


def can_add(record: Optional[SubscriptionRecord], resource: Resource, additional: int = 1) -> bool:
    """Whether ``additional`` more units of a resource fit inside the limit."""
    if record is None or isinstance(record, MalformedSubscription):
        return False
    used = record.usage.used_for(resource)
    return used + additional <= record.restrictions.limit_for(resource)


def is_approaching_limit(
    record: Optional[SubscriptionRecord],
    resource: Resource,
    threshold: float = DEFAULT_USAGE_WARNING_THRESHOLD,
) -> bool:
    """Whether usage of a non-zero limit has reached ``threshold`` percent."""
    if record is None or record.restrictions.limit_for(resource) == 0:
        return False
    return usage_percentage(record).for_resource(resource) >= threshold


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def health(
    record: Optional[SubscriptionRecord],
    now: datetime,
    warning_days: float = DEFAULT_WARNING_DAYS,
) -> Health:
    """
    Aggregate health of the subscription.

    Rules fire independently; only critical issues make the account
    unhealthy.
    """
    issues: List[HealthIssue] = []

    if record is not None:
        restrictions, usage = record.restrictions, record.usage
        if restrictions.max_beds > 0 and usage.beds_used >= restrictions.max_beds:
            issues.append(HealthIssue(
                IssueType.CRITICAL,
                f"Bed limit reached ({usage.beds_used}/{restrictions.max_beds})",
                "bed_limit",
            ))
        if restrictions.max_branches > 0 and usage.branches_used >= restrictions.max_branches:
            issues.append(HealthIssue(
                IssueType.CRITICAL,
                f"Branch limit reached ({usage.branches_used}/{restrictions.max_branches})",
                "branch_limit",
            ))

    if is_expired(record, now):
        if record is None:
            message = "No active subscription"
        elif isinstance(record, MalformedSubscription):
            message = "Subscription could not be verified"
        elif record.is_trial:
            message = "Trial expired"
        else:
            message = "Subscription expired"
        issues.append(HealthIssue(IssueType.CRITICAL, message, "expired"))
    else:
        remaining = time_remaining(record, now)
        if 0 < remaining.total_days <= warning_days:
            days_left = math.ceil(remaining.total_days)
            if record.is_trial:
                issues.append(HealthIssue(
                    IssueType.WARNING,
                    f"Trial ends in {_plural(days_left, 'day')}",
                    "trial_ending",
                ))
            else:
                issues.append(HealthIssue(
                    IssueType.WARNING,
                    f"Subscription renewal due in {_plural(days_left, 'day')}",
                    "renewal_due",
                ))

    is_healthy = not any(issue.type == IssueType.CRITICAL for issue in issues)
    return Health(is_healthy=is_healthy, issues=issues)


def status_badge(record: Optional[SubscriptionRecord]) -> str:
    if record is None:
        return "Free Plan"
    return _STATUS_BADGES.get(record.status, "Free Plan")


def summary(record: Optional[SubscriptionRecord], now: datetime) -> SubscriptionSummary:
    """Display digest; day counts are rounded up like the subscription banners show them."""
    if record is None:
        return SubscriptionSummary(
            has_subscription=False,
            status=SubscriptionStatus.NONE,
            status_badge=status_badge(None),
            plan_name="Free Plan",
            billing_cycle=None,
            is_trial_active=False,
            trial_days_remaining=0,
            days_remaining=0,
            usage_percentage=ResourceFigures(),
            remaining=ResourceFigures(),
        )

    remaining = time_remaining(record, now)
    days_left = math.ceil(remaining.total_days) if not remaining.expired else 0
    cycle = record.billing_cycle
    is_trial = isinstance(record, TrialSubscription)

    return SubscriptionSummary(
        has_subscription=True,
        status=record.status,
        status_badge=status_badge(record),
        plan_name=record.plan.plan_name or "Free Plan",
        billing_cycle=cycle.value if cycle is not None else None,
        is_trial_active=is_trial and not remaining.expired,
        trial_days_remaining=days_left if is_trial else 0,
        days_remaining=days_left,
        usage_percentage=usage_percentage(record),
        remaining=remaining_resources(record),
        max_beds=record.restrictions.max_beds,
        max_branches=record.restrictions.max_branches,
        max_rooms=record.restrictions.max_rooms,
        beds_used=record.usage.beds_used,
        branches_used=record.usage.branches_used,
        rooms_used=record.usage.rooms_used,
        allows_multiple_branches=is_trial or record.plan.allow_multiple_branches,
        trial_end_date=record.trial_end_date if is_trial else None,
        end_date=getattr(record, "end_date", None),
    )


def evaluate(
    record: Optional[SubscriptionRecord],
    now: datetime,
    warning_days: float = DEFAULT_WARNING_DAYS,
) -> DerivedFacts:
    """Run one full evaluation pass."""
    now = as_utc(now)
    return DerivedFacts(
        evaluated_at=now,
        has_record=record is not None,
        expired=is_expired(record, now),
        time_remaining=time_remaining(record, now),
        usage_percentage=usage_percentage(record),
        remaining_resources=remaining_resources(record),
        health=health(record, now, warning_days),
        summary=summary(record, now),
    )
