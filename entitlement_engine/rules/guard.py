"""
Route guard.

Decides whether navigation to a screen is allowed, redirected to the
subscription selection screen, or blocked. Decisions use the last known
snapshot and are recomputed on every call.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from shared.config import DEFAULT_EXEMPT_PATHS
from ..records.models import SubscriptionRecord, SubscriptionStatus
from .evaluator import is_expired, utc_now
from .navigation import NavigationFilter, matches_prefix
from .permissions import ANONYMOUS, RoleContext

DEFAULT_SELECTION_ROUTE = "/admin/subscription-selection"

_LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class GuardOutcome(str, Enum):
    ALLOW = "allow"
    REDIRECT = "redirect"
    BLOCK = "block"


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    target: Optional[str] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == GuardOutcome.ALLOW

    @classmethod
    def allow(cls, reason: Optional[str] = None) -> "GuardDecision":
        return cls(GuardOutcome.ALLOW, reason=reason)

    @classmethod
    def redirect(cls, target: str, reason: str) -> "GuardDecision":
        return cls(GuardOutcome.REDIRECT, target=target, reason=reason)

    @classmethod
    def block(cls, reason: str) -> "GuardDecision":
        return cls(GuardOutcome.BLOCK, reason=reason)


def is_exempt(route: str, exempt_paths: Iterable[str]) -> bool:
    return any(matches_prefix(route, path) for path in exempt_paths)


def guard(
    route: str,
    record: Optional[SubscriptionRecord],
    role_context: Optional[RoleContext],
    now: Optional[datetime] = None,
    exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    selection_route: str = DEFAULT_SELECTION_ROUTE,
    navigation: Optional[NavigationFilter] = None,
) -> GuardDecision:
    """
    Decide navigation to ``route``.

    Rules, in order: exempt path, bypass role, no record, expired, status
    not live, module and branch gating (only with a navigation filter),
    allow. The selection screen is always exempt so a denied account is
    never locked out of fixing its subscription.
    """
    role_context = role_context or ANONYMOUS
    now = now or utc_now()

    if matches_prefix(route, selection_route) or is_exempt(route, exempt_paths):
        return GuardDecision.allow("exempt path")

    if role_context.is_bypass:
        return GuardDecision.allow("bypass role")

    if record is None:
        return GuardDecision.redirect(selection_route, "no subscription")

    if is_expired(record, now):
        return GuardDecision.redirect(selection_route, "subscription expired")

    if record.status not in _LIVE_STATUSES:
        return GuardDecision.redirect(selection_route, f"subscription {record.status.value}")

    if navigation is not None:
        decision = navigation.route_decision(route, record, role_context, now)
        if not decision.allowed:
            return GuardDecision.block(decision.reason)

    return GuardDecision.allow()
