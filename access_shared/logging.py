"""
Structured JSON logging for the Media Gate access layer.

Every event carries the service name, the logger's component and, while a
request is in flight, its request id and the calling subject.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
subject_id_var: ContextVar[Optional[str]] = ContextVar("subject_id", default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for ``service_name``."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=_processors(service_name),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def _processors(service_name: str) -> List[Any]:
    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        # "media_gate.rate_limiter" -> component "rate_limiter"
        name = event_dict.get("logger", "")
        if "." in name:
            event_dict["component"] = name.split(".", 1)[1]
        return event_dict

    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_service,
        add_request_context,
        structlog.processors.JSONRenderer(),
    ]


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the in-flight request id and caller to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    subject_id = subject_id_var.get()
    if subject_id:
        event_dict.setdefault("subject_id", subject_id)

    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id, generating one when the caller sent none."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_subject_context(subject_id: Optional[str] = None):
    subject_id_var.set(subject_id or None)


def clear_context():
    request_id_var.set(None)
    subject_id_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger named ``media_gate.<component>``."""
    return structlog.get_logger(name)
