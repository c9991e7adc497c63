"""
Backend client for the account's subscription document.
"""

from typing import Any, Callable, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.config import EngineConfig
from shared.errors import AuthenticationError, TransientFetchError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..records.models import SubscriptionRecord, parse_record

RETRYABLE_ERRORS = (httpx.TransportError, httpx.HTTPStatusError)

TokenProvider = Callable[[], Optional[str]]


class SubscriptionClient:
    """Fetches the current subscription from the backend API."""

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        subscription_path: str = "/users/my-subscription",
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.subscription_path = subscription_path
        self.timeout = timeout
        self.token_provider = token_provider or (lambda: None)
        self.logger = get_logger("entitlements.sync.client")
        self._transport = transport

        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            name="subscription_backend"
        )
        self._get_with_retry = retry_on_exception(RETRYABLE_ERRORS, config=self.retry_config)(self._get_document)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SubscriptionClient":
        return cls(
            base_url=config.api_base_url,
            token_provider=token_provider,
            subscription_path=config.subscription_path,
            timeout=config.request_timeout,
            retry_config=RetryConfig(
                max_attempts=config.retry_max_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.circuit_failure_threshold,
                recovery_timeout=config.circuit_recovery_timeout,
                name="subscription_backend",
            ),
            transport=transport,
        )

    async def _get_document(self) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.subscription_path, headers=headers)

        if response.status_code == 401:
            raise AuthenticationError(
                message="Session rejected by subscription backend",
                details={"status_code": response.status_code}
            )

        if response.status_code >= 500:
            self.logger.warning(
                "Subscription backend error",
                status_code=response.status_code,
            )
            response.raise_for_status()

        if response.status_code >= 400:
            raise TransientFetchError(
                message="Subscription request rejected",
                details={"status_code": response.status_code, "body": response.text[:200]}
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransientFetchError(
                message="Subscription backend returned invalid JSON",
                details={"status_code": response.status_code}
            ) from e

    async def fetch_document(self) -> Dict[str, Any]:
        """Fetch the raw subscription envelope ``{"success", "data", "message"}``."""
        try:
            return await self.circuit_breaker.call(self._get_with_retry)
        except (AuthenticationError, TransientFetchError):
            raise
        except RetryError as e:
            self.logger.error("Subscription fetch failed", error=str(e.last_exception), attempts=e.attempts)
            raise TransientFetchError(
                message="Subscription backend unavailable",
                details={"error": str(e.last_exception), "attempts": e.attempts}
            ) from e
        except CircuitBreakerOpenException as e:
            raise TransientFetchError(
                message="Subscription backend unavailable",
                details={"error": str(e), "circuit": self.circuit_breaker.get_state()["state"]}
            ) from e

    async def fetch_subscription(self) -> Optional[SubscriptionRecord]:
        """Fetch and parse the current subscription. None means the account has none."""
        document = await self.fetch_document()

        if not isinstance(document, dict) or not document.get("success"):
            message = document.get("message") if isinstance(document, dict) else None
            raise TransientFetchError(
                message=message or "Subscription check failed",
                details={"success": False}
            )

        record = parse_record(document.get("data"))
        self.logger.info(
            "Subscription fetched",
            record_type=type(record).__name__ if record is not None else None,
        )
        return record
