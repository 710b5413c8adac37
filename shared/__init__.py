"""
Shared utilities for the edge proxy control plane.

This package aggregates common building blocks consumed by every service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for transient failures
- base_service: FastAPI service shell

Any cross-service logic should live here to avoid import cycles across
service packages. Only test_helpers imports from service_edge.
"""
