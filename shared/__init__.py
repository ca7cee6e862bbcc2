"""
Shared utilities for the JWKS bearer authentication service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- test_helpers: RSA key, JWKS and token factories for tests

Do not import from service_* packages into shared/.
"""
