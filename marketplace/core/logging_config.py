"""
JSON logging for the orders service.

One JSON object per line. Records logged while a request is being served
carry its request id and, once the bearer token has been read, the user id.
Structured data goes in ``extra={'extra_fields': {...}}`` and ends up under
``fields``; customer contact details and credentials in those fields are
masked before anything is written.
"""

import json
import logging
import logging.handlers
import os
import re
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

def current_context() -> Dict[str, str]:
    context = {"request_id": request_id_var.get(), "user_id": user_id_var.get()}
    return {k: v for k, v in context.items() if v}

class StructuredFormatter(logging.Formatter):
    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name
        self.environment = os.getenv("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "env": self.environment,
            "logger": record.name,
            "msg": record.getMessage(),
            "src": f"{record.module}:{record.lineno}",
        }
        context = current_context()
        if context:
            entry["ctx"] = context
        fields = getattr(record, "extra_fields", None)
        if fields:
            entry["fields"] = fields
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            entry["exc"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "trace": traceback.format_exception(exc_type, exc, tb),
            }
        return json.dumps(entry, default=str)

class RedactingFilter(logging.Filter):
    """Masks bearer tokens in messages and sensitive keys in ``extra_fields``."""

    MASK = "***"
    SENSITIVE_KEYS = {"authorization", "token", "password", "secret", "jwt", "phone"}
    BEARER = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+")

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str) and "Bearer" in record.msg:
            record.msg = self.BEARER.sub(rf"\1{self.MASK}", record.msg)
        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, dict):
            record.extra_fields = {
                k: (self.MASK if k.lower() in self.SENSITIVE_KEYS else v) for k, v in fields.items()
            }
        return True

def setup_logging(service_name: str, level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace the root handlers with JSON handlers.

    Args:
        service_name: Reported as ``service`` on every record
        level: Root log level name
        log_file: Also write to this file, rotated at 10MB
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5))

    formatter = StructuredFormatter(service_name)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RedactingFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level.upper())

    # SQL echo and access logs are covered by the request log line
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    root_logger.info("Logging initialized", extra={"extra_fields": {"level": level, "file": log_file}})

class LoggerAdapter(logging.LoggerAdapter):
    """Lets call sites pass ``extra_fields`` as a keyword as well as inside ``extra``."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.pop("extra", None) or {})
        fields = kwargs.pop("extra_fields", None)
        if fields:
            extra["extra_fields"] = {**extra.get("extra_fields", {}), **fields}
        kwargs["extra"] = extra
        return msg, kwargs

def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})

def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)

def generate_request_id() -> str:
    return uuid.uuid4().hex

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with status and duration; echoes the request id."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        request_id_var.set(request_id)
        user_id_var.set(None)

        logger = get_logger("marketplace.http")
        fields = {"method": request.method, "path": request.url.path}
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception(f"{request.method} {request.url.path} failed", extra_fields=fields)
            raise

        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, f"{request.method} {request.url.path} -> {response.status_code}", extra_fields=fields)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
