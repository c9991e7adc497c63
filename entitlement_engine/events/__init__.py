"""
Events package: monitored conditions and the notifier that publishes them.
"""

from .conditions import MONITORED_CONDITIONS, Condition, EventCode
from .notifier import ALL_EVENTS, EventNotifier, NotifierEvent

__all__ = [
    "ALL_EVENTS",
    "Condition",
    "EventCode",
    "EventNotifier",
    "MONITORED_CONDITIONS",
    "NotifierEvent",
]
