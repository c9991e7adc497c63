"""
Subscription records package.

- models: the immutable record variants and defensive parsing of the
  backend's subscription document.
- store: the versioned single-writer holder of the current snapshot.
"""

from .models import (
    BillingCycle,
    MalformedSubscription,
    PaidSubscription,
    Plan,
    PlanModule,
    Resource,
    Restrictions,
    SubscriptionRecord,
    SubscriptionStatus,
    TrialSubscription,
    Usage,
    parse_record,
    parse_timestamp,
)
from .store import Snapshot, SubscriptionStore

__all__ = [
    "BillingCycle",
    "MalformedSubscription",
    "PaidSubscription",
    "Plan",
    "PlanModule",
    "Resource",
    "Restrictions",
    "Snapshot",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "SubscriptionStore",
    "TrialSubscription",
    "Usage",
    "parse_record",
    "parse_timestamp",
]
