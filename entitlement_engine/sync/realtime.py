"""
Real-time signal handling.

Push messages are only a hint that something changed. A message carrying a
full subscription document replaces the snapshot; every other message just
asks for a re-check.
"""

import json
from typing import Any, Callable, Dict, Optional, Union

from shared.logging import get_logger
from ..records.models import SubscriptionRecord, parse_record

SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"

KNOWN_MESSAGE_TYPES = frozenset({
    SUBSCRIPTION_UPDATED,
    "TRIAL_EXPIRING",
    "TRIAL_EXPIRED",
    "USAGE_LIMIT_WARNING",
    "SUBSCRIPTION_EXPIRED",
})


class RealtimeSignalHandler:
    """Turns push messages into snapshot replaces or re-check signals."""

    def __init__(
        self,
        on_record: Callable[[Optional[SubscriptionRecord]], Any],
        on_signal: Callable[[], Any],
    ):
        self.logger = get_logger("entitlements.sync.realtime")
        self.on_record = on_record
        self.on_signal = on_signal
        self.messages_handled = 0

    def handle_message(self, message: Union[str, bytes, Dict[str, Any]]) -> Optional[str]:
        """
        Handle one push message.

        Returns "replace", "recheck", or None when the message was ignored.
        """
        if isinstance(message, (str, bytes)):
            try:
                message = json.loads(message)
            except ValueError:
                self.logger.warning("Ignoring unparsable realtime message")
                return None

        if not isinstance(message, dict):
            self.logger.warning("Ignoring realtime message", message_kind=type(message).__name__)
            return None

        message_type = message.get("type")
        self.messages_handled += 1

        payload = message.get("payload")
        if message_type == SUBSCRIPTION_UPDATED and isinstance(payload, dict):
            document = payload.get("subscription", payload)
            self.logger.info("Realtime subscription update received")
            self.on_record(parse_record(document))
            return "replace"

        if message_type not in KNOWN_MESSAGE_TYPES:
            self.logger.debug("Unknown realtime message type, re-checking", message_type=message_type)
        self.on_signal()
        return "recheck"
