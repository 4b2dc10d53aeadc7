"""
Shared utilities for the Media Gate access layer.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service shell (middleware, health, metrics)
- test_helpers: In-memory fakes for stores and clocks used by test suites

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into access_shared/.
"""
