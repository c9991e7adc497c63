"""
Entitlement engine facade.

Wires the store, rules, notifier and backend client together for one
authenticated session. Everything is constructed explicitly; there is no
process-wide instance.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from shared.config import EngineConfig, get_config
from shared.errors import AuthenticationError, SessionClosedError, TransientFetchError
from shared.logging import clear_context, configure_logging, get_logger, set_session_id, set_user_context
from shared.metrics import MetricsCollector, get_metrics_collector
from .events.conditions import EventCode
from .events.notifier import EventNotifier, Listener
from .records.models import Resource, SubscriptionRecord
from .records.store import SubscriptionStore
from .rules import evaluator
from .rules.evaluator import DerivedFacts, Health, SubscriptionSummary, utc_now
from .rules.guard import GuardDecision, guard
from .rules.navigation import NavigationFilter, NavItem
from .rules.permissions import ANONYMOUS, PermissionDecision, PermissionQuery, RoleContext
from .sync.client import SubscriptionClient, TokenProvider
from .sync.realtime import RealtimeSignalHandler

# Marker for "use the stored snapshot"; None is a valid record (no subscription)
CURRENT = object()


class EntitlementEngine:
    """Entitlement decisions and events for one account session."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[SubscriptionStore] = None,
        client: Optional[SubscriptionClient] = None,
        notifier: Optional[EventNotifier] = None,
        navigation: Optional[NavigationFilter] = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: Optional[MetricsCollector] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.config = config or get_config()
        self.logger = get_logger("entitlements.engine")
        self.clock = clock
        self.monotonic = monotonic
        self.metrics = metrics or get_metrics_collector("entitlements")
        self.store = store or SubscriptionStore()
        self.client = client
        self.navigation = navigation or NavigationFilter()
        self.notifier = notifier or EventNotifier(
            self.store,
            clock=clock,
            interval_seconds=self.config.tick_interval_seconds,
            warning_days=self.config.expiry_warning_days,
            usage_threshold=self.config.usage_warning_threshold,
            metrics=self.metrics,
        )
        self.notifier.on_timer = self._on_timer
        self.realtime = RealtimeSignalHandler(on_record=self.apply_record, on_signal=self.signal)

        self.role_context: RoleContext = ANONYMOUS
        self.session_id: Optional[str] = None
        self.session_active = False
        self.refresh_enabled = True
        self._generation = 0
        self._last_refresh_at: Optional[float] = None
        self._inflight: Set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: Optional[EngineConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        **kwargs,
    ) -> "EntitlementEngine":
        """Build an engine with logging configured and a backend client."""
        config = config or get_config()
        configure_logging("entitlements", config.log_level)
        client = kwargs.pop("client", None) or SubscriptionClient.from_config(config, token_provider)
        return cls(config=config, client=client, **kwargs)

    # Session lifecycle

    def start_session(
        self,
        role_context: Optional[RoleContext] = None,
        record: Optional[SubscriptionRecord] = None,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> str:
        """Begin a session for an authenticated user. Returns the session id."""
        self._generation += 1
        self.role_context = role_context or ANONYMOUS
        self.session_active = True
        self.refresh_enabled = True
        self._last_refresh_at = None
        self.notifier.reopen()

        self.session_id = set_session_id()
        set_user_context(user_id, account_id)
        self.logger.info("Session started", role=self.role_context.role, bypass=self.role_context.is_bypass)

        if record is not None:
            self.apply_record(record)
        return self.session_id

    async def start(self):
        """Start the periodic tick (and backend refresh when a client is configured)."""
        if not self.session_active:
            raise SessionClosedError("start_session must be called before start")
        await self.notifier.start()
        if self.client is not None and self.refresh_enabled:
            self._spawn_refresh(force=True)

    async def end_session(self):
        """Tear the session down. No events are published afterwards."""
        if not self.session_active:
            return

        self.notifier.publish(EventCode.SUBSCRIPTION_CLEARED, {"session_id": self.session_id})
        self.session_active = False
        self._generation += 1

        await self.notifier.stop()

        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()

        self.store.clear()
        self.role_context = ANONYMOUS
        self.logger.info("Session ended")
        clear_context()
        self.session_id = None

    # Snapshot updates

    def apply_record(self, record: Optional[SubscriptionRecord]):
        """Replace the stored snapshot. Ignored outside a session."""
        if not self.session_active:
            self.logger.warning("Dropping record outside an active session")
            return
        self.store.replace(record)

    def handle_message(self, message: Union[str, bytes, Dict[str, Any]]) -> Optional[str]:
        """Feed a real-time push message into the engine."""
        return self.realtime.handle_message(message)

    def signal(self):
        """Something changed elsewhere; re-evaluate now."""
        if not self.session_active:
            return
        self.notifier.tick("signal")
        if self.client is not None and self.refresh_enabled:
            try:
                self._spawn_refresh(force=False)
            except RuntimeError:
                # No running loop; the next timer pass picks it up
                self.logger.debug("Signal refresh deferred, no event loop")

    async def force_refresh(self):
        """Fetch the subscription now, bypassing the refresh spacing."""
        if not self.session_active:
            return
        generation = self._generation
        task = self._spawn_refresh(force=True)
        try:
            await task
        except asyncio.CancelledError:
            if generation == self._generation:
                raise
            # Cancelled by end_session

    async def refresh(self, force: bool = False) -> bool:
        """
        Fetch and apply the current subscription.

        Returns True when a new snapshot was stored. Non-forced refreshes are
        skipped when the previous one was too recent or periodic refresh has
        been stopped by an authentication failure.
        """
        if not self.session_active:
            return False

        if self.client is None:
            self.notifier.tick("refresh")
            return False

        if not force:
            if not self.refresh_enabled:
                return False
            if self._last_refresh_at is not None:
                elapsed = self.monotonic() - self._last_refresh_at
                if elapsed < self.config.min_refresh_interval_seconds:
                    self.logger.debug("Refresh skipped, too recent", elapsed_seconds=round(elapsed, 1))
                    return False

        generation = self._generation
        self._last_refresh_at = self.monotonic()

        try:
            record = await self.client.fetch_subscription()
        except AuthenticationError as e:
            self.refresh_enabled = False
            self.metrics.record_refresh("unauthorized")
            self.logger.warning("Subscription check unauthorized, stopping periodic refresh")
            if generation == self._generation:
                self.notifier.publish(EventCode.SUBSCRIPTION_CHECK_FAILED, {
                    "error": e.to_response().model_dump(),
                })
            return False
        except TransientFetchError as e:
            self.metrics.record_refresh("failed")
            self.logger.warning("Subscription check failed", error=e.message, details=e.details)
            if generation == self._generation:
                self.notifier.publish(EventCode.SUBSCRIPTION_CHECK_FAILED, {
                    "error": e.to_response().model_dump(),
                })
                self.notifier.tick("refresh")
            return False

        if generation != self._generation or not self.session_active:
            self.metrics.record_refresh("discarded")
            self.logger.info("Discarding refresh result from a closed session")
            return False

        self.metrics.record_refresh("success")
        self.store.replace(record)
        return True

    def _spawn_refresh(self, force: bool) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.refresh(force=force))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _on_timer(self):
        if self.client is None or not self.refresh_enabled:
            return
        if self._last_refresh_at is not None:
            if self.monotonic() - self._last_refresh_at < self.config.refresh_interval_seconds:
                return
        await self.refresh(force=False)

    # Decisions

    def _record(self, record: Any) -> Optional[SubscriptionRecord]:
        return self.store.record if record is CURRENT else record

    def evaluate(self, record: Any = CURRENT, now: Optional[datetime] = None) -> DerivedFacts:
        """Derived facts for ``record`` (the stored snapshot by default)."""
        with self.metrics.time_evaluation():
            return evaluator.evaluate(self._record(record), now or self.clock(), self.config.expiry_warning_days)

    def resolve(
        self,
        query: PermissionQuery,
        record: Any = CURRENT,
        role_context: Optional[RoleContext] = None,
    ) -> PermissionDecision:
        decision = self.navigation.check_action(
            query,
            self._record(record),
            role_context or self.role_context,
            self.clock(),
        )
        self.metrics.record_check(decision.allowed)
        if not decision.allowed:
            self.logger.debug(
                "Entitlement denied",
                module=query.module_name,
                submodule=query.submodule_name,
                reason=decision.reason,
            )
        return decision

    def can_access(
        self,
        query: PermissionQuery,
        record: Any = CURRENT,
        role_context: Optional[RoleContext] = None,
    ) -> bool:
        return self.resolve(query, record, role_context).allowed

    def guard(
        self,
        route: str,
        record: Any = CURRENT,
        role_context: Optional[RoleContext] = None,
    ) -> GuardDecision:
        decision = guard(
            route,
            self._record(record),
            role_context or self.role_context,
            now=self.clock(),
            exempt_paths=self.config.exempt_paths,
            selection_route=self.config.selection_route,
            navigation=self.navigation,
        )
        self.metrics.record_guard(decision.outcome.value)
        if not decision.allowed:
            self.logger.info("Navigation not allowed", route=route, outcome=decision.outcome.value, reason=decision.reason)
        return decision

    def can_access_route(self, path: str) -> bool:
        return self.navigation.can_access_route(path, self.store.record, self.role_context, self.clock())

    def filter_navigation(self, items: Iterable[NavItem]) -> List[NavItem]:
        return self.navigation.filter_items(items, self.store.record, self.role_context, self.clock())

    def can_add(self, resource: Union[Resource, str], additional: int = 1) -> bool:
        """Whether the account has room for ``additional`` more of ``resource``."""
        if self.role_context.is_bypass:
            return True
        return evaluator.can_add(self.store.record, Resource(resource), additional)

    # Events and memoized facts

    def subscribe(self, event_code: Union[EventCode, str], callback: Listener) -> Callable[[], None]:
        return self.notifier.subscribe(event_code, callback)

    def get_health(self) -> Health:
        return self.notifier.current_facts().health

    def get_summary(self) -> SubscriptionSummary:
        return self.notifier.current_facts().summary

    def debug_snapshot(self) -> Dict[str, Any]:
        """Introspection of the engine state for support tooling."""
        snapshot = self.store.snapshot
        record = snapshot.record
        return {
            "session_id": self.session_id,
            "session_active": self.session_active,
            "role": self.role_context.role,
            "sales_role": self.role_context.sales_role,
            "bypass": self.role_context.is_bypass,
            "version": snapshot.version,
            "stored_at": snapshot.stored_at.isoformat(),
            "record_type": type(record).__name__ if record is not None else None,
            "status": record.status.value if record is not None else None,
            "refresh_enabled": self.refresh_enabled,
            "refresh_inflight": len(self._inflight),
            "notifier": self.notifier.debug_state(),
        }
