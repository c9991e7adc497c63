"""
Subscription record store.

Holds the latest snapshot for the authenticated account. The snapshot and
its version travel together in one immutable pair, so a reader always sees
a record and the version it was stored under, never a mix of two updates.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from shared.errors import ListenerError
from shared.logging import get_logger
from .models import SubscriptionRecord


@dataclass(frozen=True)
class Snapshot:
    """A stored record with the version it was stored under."""
    version: int
    record: Optional[SubscriptionRecord]
    stored_at: datetime


StoreListener = Callable[[Snapshot], None]


class SubscriptionStore:
    """Single-writer, many-reader holder of the current subscription record."""

    def __init__(self):
        self.logger = get_logger("entitlements.store")
        self._snapshot = Snapshot(version=0, record=None, stored_at=datetime.now(timezone.utc))
        self._listeners: List[StoreListener] = []

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def record(self) -> Optional[SubscriptionRecord]:
        return self._snapshot.record

    @property
    def version(self) -> int:
        return self._snapshot.version

    def replace(self, record: Optional[SubscriptionRecord]) -> Snapshot:
        """Replace the stored record wholesale and notify listeners."""
        snapshot = Snapshot(
            version=self._snapshot.version + 1,
            record=record,
            stored_at=datetime.now(timezone.utc),
        )
        self._snapshot = snapshot

        self.logger.info(
            "Subscription snapshot replaced",
            version=snapshot.version,
            record_type=type(record).__name__ if record is not None else None,
        )

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                error = ListenerError("snapshotReplaced", e)
                self.logger.error(
                    "Store listener failed",
                    version=snapshot.version,
                    error=error.message,
                    error_type=error.details["error_type"],
                )

        return snapshot

    def clear(self) -> Snapshot:
        """Drop the stored record (logout)."""
        return self.replace(None)

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """
        Register a callback run after every replace. Returns an unsubscribe function.

        A callback that raises is logged and skipped; later callbacks still run.
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove
