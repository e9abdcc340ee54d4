"""HTML responses: pages, error pages and exception handlers."""
import logging
from pathlib import Path
from typing import Any, Protocol

from fastapi import Request, status
from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from starlette.exceptions import HTTPException as StarletteHTTPException

from simplesite.app_logging import get_logger
from simplesite.util import random_hex

CSP_NONCE_LENGTH = 16

templates_path = Path(__file__).parent / "templates"
jinja_env = Environment(
    loader=FileSystemLoader(templates_path),
    autoescape=select_autoescape(["html"]),
)

module_logger = logging.getLogger(__name__)


class SessionInfo(Protocol):
    csrf_token: str

    def logged_in(self) -> bool: ...


class AccessChecker(Protocol):
    def has(self, name: str) -> bool: ...


class NoAccess:
    """Access checker that grants nothing."""

    def has(self, name: str) -> bool:
        return False


def render(template_name: str, context: dict[str, Any]) -> str:
    return jinja_env.get_template(template_name).render(**context)


def template(
    template_name: str,
    context: dict[str, Any],
    status_code: int = status.HTTP_200_OK,
    headers: dict[str, str] | None = None,
) -> HTMLResponse:
    """Render a template into an HTML response with the security headers set."""
    response = HTMLResponse(render(template_name, context), status_code=status_code, headers=headers)
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


def page(
    request: Request,
    template_name: str,
    title: str,
    sess: SessionInfo,
    access: AccessChecker | None,
    body: Any,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    """Render a subpage of the base page with a strict CSP."""
    nonce = random_hex(CSP_NONCE_LENGTH)
    csp = (
        "default-src 'none'; "
        f"script-src 'self' 'nonce-{nonce}'; "
        "connect-src 'self'; img-src data: blob: 'self'; style-src 'self'; font-src 'self';"
    )
    return template(
        template_name,
        {
            "title": title,
            "nonce": nonce,
            "csrf_token": sess.csrf_token,
            "logged_in": sess.logged_in(),
            "access": access or NoAccess(),
            "body": body,
        },
        status_code=status_code,
        headers={"Content-Security-Policy": csp},
    )


def error(
    request: Request,
    status_code: int,
    message: str,
    cause: BaseException | None = None,
    **fields: Any,
) -> HTMLResponse:
    """Respond with the error page and log the error with its cause."""
    logger = get_logger(request, module_logger)
    details = " ".join(f"{key}={value}" for key, value in fields.items())
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s", message, details, exc_info=cause)
    else:
        logger.info("%s %s%s", message, details, f" cause={cause!r}" if cause else "")

    return template(
        "error.html",
        {"code": status_code, "message": message},
        status_code=status_code,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> HTMLResponse:
    response = error(request, exc.status_code, str(exc.detail))
    for key, value in (exc.headers or {}).items():
        response.headers[key] = value
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> HTMLResponse:
    get_logger(request, module_logger).error(
        "panic method=%s url=%s", request.method, request.url, exc_info=exc
    )
    return template(
        "error.html",
        {"code": status.HTTP_500_INTERNAL_SERVER_ERROR, "message": "Internal Server Error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
