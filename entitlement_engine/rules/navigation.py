"""
Navigation filtering.

Route-prefix to module mapping and optional per-deployment submodule/action
policy layered on top of the permission resolver. Used to trim navigation
menus and to block module-gated screens. Branch screens are gated on the
plan allowing multiple branches rather than on a module.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ..records.models import SubscriptionRecord
from .permissions import (
    Action,
    PermissionDecision,
    PermissionQuery,
    RoleContext,
    normalize_action,
    resolve,
    resolve_multiple_branches,
)

DEFAULT_ROUTE_MODULES: Dict[str, str] = {
    "/admin/residents": "resident_management",
    "/admin/onboarding": "resident_management",
    "/admin/offboarding": "resident_management",
    "/admin/moved-out": "resident_management",
    "/admin/room-switching": "room_allocation",
    "/admin/room-availability": "room_allocation",
    "/admin/payments": "payment_tracking",
    "/admin/tickets": "ticket_system",
    "/admin/reports": "analytics_reports",
    "/admin/qr-management": "qr_code_payments",
}

# Screens that only make sense for accounts allowed to run several branches
DEFAULT_BRANCH_ROUTES: Tuple[str, ...] = ("/admin/branch-activities",)

SubmodulePolicy = Mapping[Tuple[str, str], Iterable[Action]]


@dataclass(frozen=True)
class NavItem:
    """An entry of a navigation menu."""
    path: str
    label: str
    module: Optional[str] = None
    submodule: Optional[str] = None
    action: Action = Action.READ


def route_path(route: str) -> str:
    """Route without its query string or fragment."""
    return route.split("?", 1)[0].split("#", 1)[0]


def matches_prefix(path: str, prefix: str) -> bool:
    """Whether ``path`` is ``prefix`` or nested below it, on segment boundaries."""
    path = route_path(path)
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class NavigationFilter:
    """Applies module and submodule policy to routes and menu items."""

    def __init__(
        self,
        route_modules: Optional[Mapping[str, str]] = None,
        submodule_policy: Optional[SubmodulePolicy] = None,
        branch_routes: Optional[Iterable[str]] = None,
    ):
        routes = DEFAULT_ROUTE_MODULES if route_modules is None else route_modules
        # Longest prefix first so nested routes win over their parents
        self._routes: List[Tuple[str, str]] = sorted(
            routes.items(), key=lambda item: len(item[0]), reverse=True
        )
        self._policy: Dict[Tuple[str, str], FrozenSet[Action]] = {}
        for key, actions in (submodule_policy or {}).items():
            normalized = {normalize_action(action) for action in actions}
            self._policy[key] = frozenset(a for a in normalized if a is not None)
        self._branch_routes: Tuple[str, ...] = tuple(
            DEFAULT_BRANCH_ROUTES if branch_routes is None else branch_routes
        )

    def module_for_route(self, path: str) -> Optional[str]:
        """Module a route belongs to, or None for ungated routes."""
        for prefix, module in self._routes:
            if matches_prefix(path, prefix):
                return module
        return None

    def check_action(
        self,
        query: PermissionQuery,
        record: Optional[SubscriptionRecord],
        role_context: Optional[RoleContext],
        now: Optional[datetime] = None,
    ) -> PermissionDecision:
        """Resolver decision, narrowed by the submodule policy when one covers the query."""
        decision = resolve(query, record, role_context, now)
        if not decision.allowed or query.submodule_name is None:
            return decision
        if role_context is not None and role_context.is_bypass:
            return decision

        allowed_actions = self._policy.get((query.module_name, query.submodule_name))
        if allowed_actions is None:
            return decision

        action = normalize_action(query.action)
        if action not in allowed_actions:
            return PermissionDecision(
                False,
                f"action '{action.value}' not permitted on "
                f"'{query.module_name}/{query.submodule_name}'",
            )
        return decision

    def is_action_allowed(
        self,
        query: PermissionQuery,
        record: Optional[SubscriptionRecord],
        role_context: Optional[RoleContext],
        now: Optional[datetime] = None,
    ) -> bool:
        return self.check_action(query, record, role_context, now).allowed

    def is_branch_route(self, path: str) -> bool:
        return any(matches_prefix(path, prefix) for prefix in self._branch_routes)

    def route_decision(
        self,
        path: str,
        record: Optional[SubscriptionRecord],
        role_context: Optional[RoleContext],
        now: Optional[datetime] = None,
    ) -> PermissionDecision:
        """Decision for opening a screen: branch screens first, then the module table."""
        if self.is_branch_route(path):
            return resolve_multiple_branches(record, role_context, now)
        module = self.module_for_route(path)
        if module is None:
            return PermissionDecision(True, "route not gated")
        return resolve(PermissionQuery(module), record, role_context, now)

    def can_access_route(
        self,
        path: str,
        record: Optional[SubscriptionRecord],
        role_context: Optional[RoleContext],
        now: Optional[datetime] = None,
    ) -> bool:
        return self.route_decision(path, record, role_context, now).allowed

    def filter_items(
        self,
        items: Iterable[NavItem],
        record: Optional[SubscriptionRecord],
        role_context: Optional[RoleContext],
        now: Optional[datetime] = None,
    ) -> List[NavItem]:
        """Keep the menu items the account may open, in their original order."""
        visible = []
        for item in items:
            if item.module is None and self.is_branch_route(item.path):
                if resolve_multiple_branches(record, role_context, now).allowed:
                    visible.append(item)
                continue
            module = item.module or self.module_for_route(item.path)
            if module is None:
                visible.append(item)
                continue
            query = PermissionQuery(module, item.submodule, item.action)
            if self.is_action_allowed(query, record, role_context, now):
                visible.append(item)
        return visible
