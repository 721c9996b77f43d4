import os
import time
from datetime import datetime
from typing import Optional, Dict, Any, List

import structlog
from dotenv import load_dotenv
from fastapi import Request
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency")
BUSY_KEYS = Gauge("console_busy_keys", "Number of resource keys with a request in flight")
MUTATION_OPERATIONS = Counter(
    "console_mutations_total", "Console mutations", ["action", "status"]
)

# Remote engine configuration
load_dotenv()
ENGINE_URL = os.getenv("ENGINE_URL", "http://localhost:5000")
ENGINE_TIMEOUT = float(os.getenv("ENGINE_TIMEOUT", 30))
HUB_SEARCH_LIMIT = int(os.getenv("HUB_SEARCH_LIMIT", 10))
BUILD_LOG_TAIL = int(os.getenv("BUILD_LOG_TAIL", 1000))

BACKEND_UNREACHABLE = "Failed to contact backend"

_STARTED_AT = time.time()


def log_request(request: Request, response_time: float, status_code: int):
    """Log request details with structured logging"""
    logger.info(
        "HTTP request",
        method=request.method,
        url=str(request.url),
        status_code=status_code,
        response_time=response_time,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def log_mutation(
    action: str, key: str, status: str, details: Dict[str, Any] = None
):
    """Log console mutations with structured logging"""
    logger.info(
        "Mutation",
        action=action,
        key=key,
        status=status,
        details=details or {},
    )
    MUTATION_OPERATIONS.labels(action=action, status=status).inc()


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()


def health_check() -> Dict[str, Any]:
    """Report console health and the configured engine origin"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "engine_url": ENGINE_URL,
        "uptime_seconds": round(time.time() - _STARTED_AT, 2),
    }


def tail(text: Optional[str], limit: int = BUILD_LOG_TAIL) -> Optional[str]:
    """Return the last ``limit`` characters of ``text``"""
    if not text:
        return None
    return text[-limit:]


# Error handling utilities
class ConsoleException(Exception):
    """Base exception for the host console"""

    def __init__(self, message: str, error_code: str = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class TransportException(ConsoleException):
    """The remote engine could not be reached at all"""

    def __init__(self, message: str = BACKEND_UNREACHABLE):
        super().__init__(message, "BACKEND_UNREACHABLE", 502)


class EngineException(ConsoleException):
    """The remote engine answered with a non-2xx status"""

    def __init__(
        self,
        message: Optional[str],
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
    ):
        self.server_message = message
        self.payload = payload or {}
        super().__init__(message or "Engine request failed", "ENGINE_ERROR", status_code)

    @property
    def logs(self) -> Optional[str]:
        logs = self.payload.get("logs")
        return logs if isinstance(logs, str) else None


class ValidationException(ConsoleException):
    """Client-side validation failure, raised before any network call"""

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        first = next(iter(errors.values()), ["Invalid input"])[0]
        super().__init__(first, "VALIDATION_ERROR", 422)
