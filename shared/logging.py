"""
Structured logging for the edge proxy control plane.

Every service logs JSON lines through structlog. Request-scoped fields
(request id, project, caller) are carried in structlog's context variables
and merged into each event, so handlers only pass what is specific to the
event itself.
"""

import logging
import sys
import time
import uuid
from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace

# Event keys whose values are credentials and must never be written out
SENSITIVE_KEYS = frozenset({
    "api_key",
    "authorization",
    "access_token",
    "refresh_token",
    "outbound_static_key",
    "internal_api_key",
})


def configure_logging(service_name: str, log_level: str = "info", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger for ``service_name``."""
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _service_name(service_name),
            add_trace_context,
            redact_secrets,
            add_timestamp,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def _service_name(service_name: str):
    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return add_service


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        event_dict["span_id"] = f"{span_context.span_id:016x}"
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential-valued keys that were logged unmasked."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and not value.endswith("..."):
            event_dict[key] = mask_secret(value)
    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Epoch seconds alongside the ISO timestamp, for log pipelines that sort numerically."""
    event_dict["timestamp_epoch"] = time.time()
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request id for the rest of this request; generates one if absent."""
    request_id = request_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def set_project_context(project_id: Optional[str] = None, user_id: Optional[str] = None):
    context = {"project_id": project_id, "user_id": user_id}
    structlog.contextvars.bind_contextvars(**{k: v for k, v in context.items() if v})


def clear_context():
    structlog.contextvars.clear_contextvars()


def mask_secret(value: Optional[str], visible: int = 8) -> str:
    """Render a secret for log output without leaking it."""
    if not value:
        return ""
    return value[:visible] + "..."


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger; names are ``<service>.<component>``."""
    return structlog.get_logger(name)
