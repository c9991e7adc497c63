"""
Unit tests for the shared retry, circuit breaker, config and metrics helpers.
"""

from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.config import DEFAULT_EXEMPT_PATHS, get_config
from shared.errors import ListenerError, TransientFetchError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, calculate_delay, retry_on_exception


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[ConnectionError("one"), ConnectionError("two"), "ok"])
        func.__name__ = "fetch"
        wrapped = retry_on_exception((ConnectionError,), RetryConfig(max_attempts=3, base_delay=0, jitter=False))(func)

        assert await wrapped() == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        func = AsyncMock(side_effect=ConnectionError("down"))
        func.__name__ = "fetch"
        wrapped = retry_on_exception((ConnectionError,), RetryConfig(max_attempts=2, base_delay=0, jitter=False))(func)

        with pytest.raises(RetryError) as exc_info:
            await wrapped()

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, ConnectionError)

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self):
        func = AsyncMock(side_effect=KeyError("nope"))
        func.__name__ = "fetch"
        wrapped = retry_on_exception((ConnectionError,), RetryConfig(base_delay=0))(func)

        with pytest.raises(KeyError):
            await wrapped()
        assert func.await_count == 1

    def test_calculate_delay(self):
        config = RetryConfig(base_delay=0.5, max_delay=1.5, jitter=False)

        assert calculate_delay(1, config) == 0.5
        assert calculate_delay(2, config) == 1.0
        assert calculate_delay(5, config) == 1.5


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def now(self):
        return {"value": 0.0}

    @pytest.fixture
    def breaker(self, now):
        return CircuitBreaker(failure_threshold=2, recovery_timeout=10.0, name="test", clock=lambda: now["value"])

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        failing = AsyncMock(side_effect=TransientFetchError())

        for _ in range(2):
            with pytest.raises(TransientFetchError):
                await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_recovery(self, breaker, now):
        failing = AsyncMock(side_effect=TransientFetchError())
        for _ in range(2):
            with pytest.raises(TransientFetchError):
                await breaker.call(failing)

        now["value"] = 11.0
        result = await breaker.call(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert breaker.get_state()["state"] == "closed"
        assert breaker.get_state()["failure_count"] == 0


class TestConfigAndMetrics:
    """Test cases for configuration and metrics."""

    def test_defaults(self):
        config = get_config()

        assert config.tick_interval_seconds == 60
        assert config.refresh_interval_seconds == 300
        assert config.min_refresh_interval_seconds == 60
        assert config.expiry_warning_days == 7
        assert config.usage_warning_threshold == 90
        assert config.exempt_paths == DEFAULT_EXEMPT_PATHS

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ENTITLEMENT_EXPIRY_WARNING_DAYS", "14")
        monkeypatch.setenv("ENTITLEMENT_API_BASE_URL", "https://api.example.test")

        config = get_config()

        assert config.expiry_warning_days == 14
        assert config.api_base_url == "https://api.example.test"

    def test_metrics_export(self):
        metrics = MetricsCollector(registry=CollectorRegistry())

        metrics.record_check(True)
        metrics.record_guard("redirect")
        with metrics.time_evaluation():
            pass

        exported = metrics.export().decode()
        assert 'entitlement_checks_total{decision="allow"} 1.0' in exported
        assert 'guard_decisions_total{outcome="redirect"} 1.0' in exported
        assert "evaluation_duration_seconds_count 1.0" in exported

    def test_unregistered_metrics_export_nothing(self):
        assert MetricsCollector().export() == b""

    def test_listener_error_response(self):
        error = ListenerError("trialExpired", ValueError("bad"))

        response = error.to_response()

        assert response.code == "LISTENER_ERROR"
        assert response.details == {"event_type": "trialExpired", "error_type": "ValueError"}
        assert error.original.args == ("bad",)
