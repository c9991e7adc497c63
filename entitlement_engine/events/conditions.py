"""
Conditions monitored by the event notifier.

Each condition inspects a record and the facts derived from it and returns
the event payload when the condition holds, or None when it does not.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ..records.models import Resource, SubscriptionRecord
from ..rules.evaluator import DerivedFacts, is_approaching_limit


class EventCode(str, Enum):
    """Events published by the notifier."""
    # Threshold crossings, fired once per crossing
    TRIAL_EXPIRING_SOON = "trialExpiringSoon"
    TRIAL_EXPIRED = "trialExpired"
    SUBSCRIPTION_EXPIRING_SOON = "subscriptionExpiringSoon"
    SUBSCRIPTION_EXPIRED = "subscriptionExpired"
    USAGE_LIMIT_WARNING = "usageLimitWarning"
    USAGE_LIMIT_REACHED = "usageLimitReached"

    # Lifecycle notices, fired every time they happen
    SUBSCRIPTION_UPDATED = "subscriptionUpdated"
    SUBSCRIPTION_CHECK_FAILED = "subscriptionCheckFailed"
    SUBSCRIPTION_CLEARED = "subscriptionCleared"


ConditionCheck = Callable[[Optional[SubscriptionRecord], DerivedFacts, float], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class Condition:
    code: EventCode
    check: ConditionCheck


def _days_left(facts: DerivedFacts) -> int:
    return math.ceil(facts.time_remaining.total_days)


def trial_expiring_soon(record, facts, usage_threshold):
    if record is None or not facts.health.has_issue("trial_ending"):
        return None
    return {"days_remaining": _days_left(facts), "hours_remaining": facts.time_remaining.total_hours}


def trial_expired(record, facts, usage_threshold):
    if record is None or not record.is_trial or not facts.expired:
        return None
    return {"days_remaining": 0}


def subscription_expiring_soon(record, facts, usage_threshold):
    if record is None or not facts.health.has_issue("renewal_due"):
        return None
    return {"days_remaining": _days_left(facts), "hours_remaining": facts.time_remaining.total_hours}


def subscription_expired(record, facts, usage_threshold):
    if record is None or record.is_trial or not facts.expired:
        return None
    return {"days_remaining": 0}


def _resource_figures(record: SubscriptionRecord, facts: DerivedFacts, resource: Resource) -> Dict[str, Any]:
    return {
        "resource": resource.value,
        "current": record.usage.used_for(resource),
        "limit": record.restrictions.limit_for(resource),
        "percentage": facts.usage_percentage.for_resource(resource),
    }


def usage_limit_warning(record, facts, usage_threshold):
    if record is None:
        return None
    resources = [
        _resource_figures(record, facts, resource)
        for resource in Resource
        if is_approaching_limit(record, resource, usage_threshold)
    ]
    if not resources:
        return None
    return {"resources": resources, "threshold": usage_threshold}


def usage_limit_reached(record, facts, usage_threshold):
    if record is None:
        return None
    resources = []
    if facts.health.has_issue("bed_limit"):
        resources.append(_resource_figures(record, facts, Resource.BEDS))
    if facts.health.has_issue("branch_limit"):
        resources.append(_resource_figures(record, facts, Resource.BRANCHES))
    if not resources:
        return None
    return {"resources": resources}


MONITORED_CONDITIONS: Tuple[Condition, ...] = (
    Condition(EventCode.TRIAL_EXPIRING_SOON, trial_expiring_soon),
    Condition(EventCode.TRIAL_EXPIRED, trial_expired),
    Condition(EventCode.SUBSCRIPTION_EXPIRING_SOON, subscription_expiring_soon),
    Condition(EventCode.SUBSCRIPTION_EXPIRED, subscription_expired),
    Condition(EventCode.USAGE_LIMIT_WARNING, usage_limit_warning),
    Condition(EventCode.USAGE_LIMIT_REACHED, usage_limit_reached),
)
