"""
Shared utilities for the Subscription Entitlement Engine.

This package aggregates common building blocks consumed by the engine:

- config: Engine configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for the subscription fetch
- circuit_breaker: Resilient backend call protection
- test_helpers: Record factories and fakes for the test suites

Any cross-cutting logic should live here to avoid import cycles. Only
test_helpers imports from entitlement_engine.
"""
