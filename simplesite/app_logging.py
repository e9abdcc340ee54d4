"""Logging configuration and the per-request logger."""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from simplesite.util import random_hex

logger = logging.getLogger("simplesite")


def configure_logging(level: str = "INFO") -> None:
    """Configure application logging with a single stream handler."""
    logger.setLevel(level)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


class RequestLogger(logging.LoggerAdapter):
    """Logger adapter that appends the request fields to every message."""

    def process(self, msg, kwargs):
        fields = " ".join(f"{key}={value}" for key, value in self.extra.items())
        return f"{msg} [{fields}]", kwargs


def get_logger(request: Request, default: logging.Logger | logging.LoggerAdapter | None = None):
    """Return the request logger, or ``default`` (the app logger) outside a request."""
    return getattr(request.state, "logger", None) or default or logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Binds a request logger and logs every completed request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        request_logger = RequestLogger(
            logging.getLogger("simplesite.request"),
            {
                "reqid": random_hex(16),
                "method": request.method,
                "path": request.url.path,
                "host": request.headers.get("host", ""),
            },
        )
        request.state.logger = request_logger

        response = await call_next(request)
        response.headers["Server"] = "Unknown"

        request_logger.info(
            "completed handling request status-code=%d latency=%.2fms",
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response
