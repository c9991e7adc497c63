"""
Subscription Entitlement Engine.

Decides whether a tenant account may use a feature, how much capacity it
has left, whether its trial or paid period is still alive, and which
warnings should be shown, all from the subscription snapshot issued by the
backend.
"""

from .events import ALL_EVENTS, EventCode, EventNotifier, NotifierEvent
from .records import (
    MalformedSubscription,
    PaidSubscription,
    SubscriptionRecord,
    SubscriptionStore,
    TrialSubscription,
    parse_record,
)
from .rules import (
    GuardDecision,
    GuardOutcome,
    NavigationFilter,
    PermissionQuery,
    RoleContext,
    can_access,
    evaluate,
    guard,
)
from .service import EntitlementEngine
from .sync import RealtimeSignalHandler, SubscriptionClient

__version__ = "1.0.0"

__all__ = [
    "ALL_EVENTS",
    "EntitlementEngine",
    "EventCode",
    "EventNotifier",
    "GuardDecision",
    "GuardOutcome",
    "MalformedSubscription",
    "NavigationFilter",
    "NotifierEvent",
    "PaidSubscription",
    "PermissionQuery",
    "RealtimeSignalHandler",
    "RoleContext",
    "SubscriptionClient",
    "SubscriptionRecord",
    "SubscriptionStore",
    "TrialSubscription",
    "can_access",
    "evaluate",
    "guard",
    "parse_record",
]
