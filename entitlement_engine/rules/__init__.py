"""
Entitlement rules package.

Pure, synchronous decision logic over a subscription snapshot:

- evaluator: expiry, time remaining, usage, remaining resources, health.
- permissions: module-level allow/deny with the role bypass rule.
- navigation: route-to-module mapping and submodule/action policy.
- guard: allow / redirect / block decisions for navigation.

None of these functions cache results or raise on bad data.
"""

from .evaluator import (
    DerivedFacts,
    Health,
    HealthIssue,
    IssueType,
    ResourceFigures,
    SubscriptionSummary,
    TimeRemaining,
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
from .guard import GuardDecision, GuardOutcome, guard
from .navigation import NavigationFilter, NavItem
from .permissions import (
    BYPASS_ROLES,
    Action,
    PermissionDecision,
    PermissionQuery,
    RoleContext,
    can_access,
    normalize_action,
    resolve,
    resolve_multiple_branches,
)
