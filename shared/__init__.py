"""
Shared utilities for the TokenGate gateway.

This package aggregates common building blocks consumed by the service:

- base_service: FastAPI app scaffolding, middleware, health and metrics routes
- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and request correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- retry: Retry helpers with backoff
- circuit_breaker: Resilient external call protection
- test_helpers: Wallet factories for tests

Do not import from service packages into shared/.
"""
