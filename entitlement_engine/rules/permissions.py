"""
Permission resolver.

Maps a (module, submodule, action) query to an allow/deny decision using
the snapshot's plan modules and the role bypass rule. The module is the
authoritative unit here; per-submodule gating is layered on top by the
navigation filter.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from ..records.models import MalformedSubscription, SubscriptionRecord
from .evaluator import is_expired, utc_now

BYPASS_ROLES = frozenset({"superadmin", "support", "sales_manager", "sales", "sub_sales"})


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


_ACTION_ALIASES = {
    "read": Action.READ,
    "view": Action.READ,
    "list": Action.READ,
    "create": Action.CREATE,
    "add": Action.CREATE,
    "update": Action.UPDATE,
    "edit": Action.UPDATE,
    "delete": Action.DELETE,
    "remove": Action.DELETE,
}


def normalize_action(action: Union[Action, str, None]) -> Optional[Action]:
    """Map an action or one of its aliases (view, list, edit, remove...) to an Action."""
    if isinstance(action, Action):
        return action
    if not isinstance(action, str):
        return None
    return _ACTION_ALIASES.get(action.strip().lower())


@dataclass(frozen=True)
class PermissionQuery:
    """What is being asked for."""
    module_name: str
    submodule_name: Optional[str] = None
    action: Union[Action, str] = Action.READ


@dataclass(frozen=True)
class RoleContext:
    """Identity facts supplied by the authentication subsystem."""
    role: Optional[str] = None
    sales_role: Optional[str] = None

    @property
    def is_bypass(self) -> bool:
        return self.role in BYPASS_ROLES or self.sales_role in BYPASS_ROLES


ANONYMOUS = RoleContext()


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str


def resolve(
    query: PermissionQuery,
    record: Optional[SubscriptionRecord],
    role_context: Optional[RoleContext],
    now: Optional[datetime] = None,
) -> PermissionDecision:
    """Decide a query. Anything not explicitly allowed is denied."""
    role_context = role_context or ANONYMOUS
    now = now or utc_now()

    if role_context.is_bypass:
        return PermissionDecision(True, "bypass role")

    if normalize_action(query.action) is None:
        return PermissionDecision(False, f"unknown action '{query.action}'")

    if record is None:
        return PermissionDecision(False, "no subscription")

    if isinstance(record, MalformedSubscription):
        return PermissionDecision(False, f"subscription could not be verified: {record.reason}")

    if is_expired(record, now):
        return PermissionDecision(False, "subscription expired")

    if record.is_trial:
        return PermissionDecision(True, "active trial grants all modules")

    module = record.plan.find_module(query.module_name)
    if module is None:
        return PermissionDecision(False, f"module '{query.module_name}' not in plan")
    if not module.enabled:
        return PermissionDecision(False, f"module '{query.module_name}' disabled in plan")

    return PermissionDecision(True, f"module '{query.module_name}' enabled in plan")


def resolve_multiple_branches(
    record: Optional[SubscriptionRecord],
    role_context: Optional[RoleContext],
    now: Optional[datetime] = None,
) -> PermissionDecision:
    """Whether the account may work across several branches (trials always may)."""
    role_context = role_context or ANONYMOUS
    now = now or utc_now()

    if role_context.is_bypass:
        return PermissionDecision(True, "bypass role")
    if record is None:
        return PermissionDecision(False, "no subscription")
    if isinstance(record, MalformedSubscription):
        return PermissionDecision(False, f"subscription could not be verified: {record.reason}")
    if is_expired(record, now):
        return PermissionDecision(False, "subscription expired")
    if record.is_trial:
        return PermissionDecision(True, "active trial allows multiple branches")
    if not record.plan.allow_multiple_branches:
        return PermissionDecision(False, "plan does not allow multiple branches")
    return PermissionDecision(True, "plan allows multiple branches")


def can_access(
    query: PermissionQuery,
    record: Optional[SubscriptionRecord],
    role_context: Optional[RoleContext],
    now: Optional[datetime] = None,
) -> bool:
    return resolve(query, record, role_context, now).allowed
