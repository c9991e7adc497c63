"""
Sync package: getting fresh subscription records into the store.

- client: httpx client for the backend subscription endpoint, with retry
  and a circuit breaker.
- realtime: push message handling ("replace snapshot" or "re-check now").
"""

from .client import SubscriptionClient
from .realtime import RealtimeSignalHandler

__all__ = ["RealtimeSignalHandler", "SubscriptionClient"]
