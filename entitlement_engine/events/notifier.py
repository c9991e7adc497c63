"""
Event notifier.

Publish/subscribe channel that re-runs the evaluator on every tick and
publishes an event when a monitored condition becomes true. Each condition
is a two-state machine (not fired / fired): it fires once when it turns
true and re-arms when it turns false. Replacing the snapshot re-arms every
condition so subscribers see the current state of the new record.

Timer ticks, forced refreshes, snapshot replaces and external signals all
end up in the same ``tick()``.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from shared.errors import ListenerError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..records.store import Snapshot, SubscriptionStore
from ..rules.evaluator import (
    DEFAULT_USAGE_WARNING_THRESHOLD,
    DEFAULT_WARNING_DAYS,
    DerivedFacts,
    evaluate,
    utc_now,
)
from .conditions import MONITORED_CONDITIONS, Condition, EventCode

ALL_EVENTS = "*"


@dataclass(frozen=True)
class NotifierEvent:
    """An event delivered to subscribers."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


Listener = Callable[[NotifierEvent], None]


class _Registration:
    __slots__ = ("event_code", "callback")

    def __init__(self, event_code: str, callback: Listener):
        self.event_code = event_code
        self.callback = callback


class EventNotifier:
    """Detects threshold crossings over time and notifies subscribers."""

    def __init__(
        self,
        store: SubscriptionStore,
        clock: Callable[[], datetime] = utc_now,
        interval_seconds: float = 60.0,
        warning_days: float = DEFAULT_WARNING_DAYS,
        usage_threshold: float = DEFAULT_USAGE_WARNING_THRESHOLD,
        metrics: Optional[MetricsCollector] = None,
        conditions: Tuple[Condition, ...] = MONITORED_CONDITIONS,
        on_timer: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.logger = get_logger("entitlements.notifier")
        self.store = store
        self.clock = clock
        self.interval_seconds = interval_seconds
        self.warning_days = warning_days
        self.usage_threshold = usage_threshold
        self.metrics = metrics
        self.conditions = conditions
        self.on_timer = on_timer

        self._registrations: List[_Registration] = []
        self._fired: Set[str] = set()
        self._cache: Optional[Tuple[int, DerivedFacts]] = None
        self._timer_task: Optional[asyncio.Task] = None
        self.running = False
        self.closed = False
        self.tick_count = 0

        self._detach_store = store.add_listener(self._on_snapshot)

    # Subscriptions

    def subscribe(self, event_code: Union[EventCode, str], callback: Listener) -> Callable[[], None]:
        """
        Register ``callback`` for ``event_code`` ("*" for every event).

        Returns a function that removes the registration.
        """
        code = event_code.value if isinstance(event_code, EventCode) else event_code
        registration = _Registration(code, callback)
        self._registrations.append(registration)

        def unsubscribe():
            if registration in self._registrations:
                self._registrations.remove(registration)

        return unsubscribe

    def listener_count(self, event_code: Optional[str] = None) -> int:
        if event_code is None:
            return len(self._registrations)
        return sum(1 for r in self._registrations if r.event_code == event_code)

    def publish(self, event_type: Union[EventCode, str], data: Optional[Dict[str, Any]] = None) -> Optional[NotifierEvent]:
        """Deliver an event to its listeners in registration order."""
        if self.closed:
            return None

        code = event_type.value if isinstance(event_type, EventCode) else event_type
        event = NotifierEvent(type=code, data=data or {}, timestamp=self.clock())

        if self.metrics:
            self.metrics.record_event(code)
        self.logger.info("Publishing event", event_type=code)

        for registration in list(self._registrations):
            if registration.event_code not in (code, ALL_EVENTS):
                continue
            try:
                registration.callback(event)
            except Exception as e:
                error = ListenerError(code, e)
                self.logger.error(
                    "Listener failed",
                    event_type=code,
                    error=error.message,
                    error_type=error.details["error_type"],
                )
                if self.metrics:
                    self.metrics.record_listener_failure(code)

        return event

    # Evaluation

    def tick(self, reason: str = "manual") -> Optional[DerivedFacts]:
        """
        Run one evaluation pass and publish newly crossed thresholds.

        A failing evaluation skips the tick; state is left as it was.
        """
        if self.closed:
            return None

        snapshot = self.store.snapshot
        try:
            if self.metrics:
                with self.metrics.time_evaluation():
                    facts = evaluate(snapshot.record, self.clock(), self.warning_days)
            else:
                facts = evaluate(snapshot.record, self.clock(), self.warning_days)

            fired = set(self._fired)
            crossings: List[Tuple[EventCode, Dict[str, Any]]] = []
            for condition in self.conditions:
                data = condition.check(snapshot.record, facts, self.usage_threshold)
                if data is None:
                    if condition.code.value in fired:
                        fired.discard(condition.code.value)
                        self.logger.debug("Condition cleared", event_type=condition.code.value)
                elif condition.code.value not in fired:
                    fired.add(condition.code.value)
                    crossings.append((condition.code, data))
        except Exception as e:
            self.logger.error("Evaluation tick failed, skipping", reason=reason, error=str(e))
            return None

        self._fired = fired
        self._cache = (snapshot.version, facts)
        self.tick_count += 1

        for code, data in crossings:
            self.publish(code, {**data, "record_version": snapshot.version})

        return facts

    def current_facts(self) -> DerivedFacts:
        """Latest facts for the current snapshot version, computed at most once per version."""
        version = self.store.version
        if self._cache is not None and self._cache[0] == version:
            return self._cache[1]
        facts = evaluate(self.store.record, self.clock(), self.warning_days)
        self._cache = (version, facts)
        return facts

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        if self.closed:
            return

        # A new record re-arms every condition (at-least-once for new subscribers)
        self._fired.clear()
        self._cache = None

        if snapshot.record is not None:
            self.publish(EventCode.SUBSCRIPTION_UPDATED, {
                "record_version": snapshot.version,
                "status": snapshot.record.status.value,
            })
        self.tick("snapshot")

    def fired_events(self) -> Set[str]:
        return set(self._fired)

    # Timer

    def reopen(self):
        """Accept events again after a stop (new session)."""
        self.closed = False

    async def start(self):
        """Start the periodic timer."""
        if self.running:
            return
        self.closed = False
        self.running = True
        self._timer_task = asyncio.create_task(self._timer_loop())
        self.logger.info("Event notifier started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the timer. No events are published afterwards."""
        self.running = False
        self.closed = True
        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        self._fired.clear()
        self.logger.info("Event notifier stopped")

    def detach(self):
        """Stop following the store."""
        self._detach_store()

    async def _timer_loop(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            if not self.running:
                break
            self.tick("timer")
            if self.on_timer is not None:
                try:
                    await self.on_timer()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.logger.error("Timer hook failed", error=str(e))

    def debug_state(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "closed": self.closed,
            "tick_count": self.tick_count,
            "fired": sorted(self._fired),
            "listeners": len(self._registrations),
            "cached_version": self._cache[0] if self._cache else None,
        }
