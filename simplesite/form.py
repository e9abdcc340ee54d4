"""HTML form pipeline with one-time form tokens.

Every rendered form carries a ``FormID``/``FormToken`` pair. The pair is saved
in the key-value store and deleted on the first submission that presents it,
so a form can be submitted at most once. Every render mints a new token.
"""
import logging
import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

from fastapi import APIRouter, HTTPException, Request, params, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.routing import APIRoute
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from simplesite import database, respond, session
from simplesite.app_logging import get_logger
from simplesite.keyvalue import Store, StoreError
from simplesite.util import random_hex

FORM_ID_LENGTH = 16
FORM_TOKEN_LENGTH = 32
FORM_TOKEN_TTL = timedelta(hours=24)

FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

logger = logging.getLogger(__name__)


class InvalidFormContentType(Exception):
    def __init__(self, content_type: str):
        super().__init__(f"invalid form content type: {content_type}")
        self.content_type = content_type


class FormTokenMismatch(Exception):
    pass


@dataclass
class FormPageData:
    """The form state passed to the template as the page body."""

    data: BaseModel
    form_id: str = ""
    form_token: str = ""
    errors: list[str] = field(default_factory=list)

    def generate_form_id(self) -> None:
        self.form_id = random_hex(FORM_ID_LENGTH)

    def regenerate_form_token(self, store: Store) -> None:
        self.form_token = random_hex(FORM_TOKEN_LENGTH)
        store.set_expiring(self.form_id, self.form_token, FORM_TOKEN_TTL)

    def validate_form_token(self, store: Store) -> None:
        if not self.form_id or not self.form_token:
            raise FormTokenMismatch("missing form token")
        stored = store.get(self.form_id)
        if not stored or not secrets.compare_digest(stored.encode(), self.form_token.encode()):
            raise FormTokenMismatch("form token mismatch")


class Redirect:
    """Submit result: redirect after a successful submission."""

    def __init__(self, path: str = ""):
        self.path = path or "/"

    def apply(self, request: Request, fd: FormPageData) -> Response | None:
        return RedirectResponse(self.path, status_code=status.HTTP_302_FOUND)


class Error:
    """Submit result: show ``message`` on the form and roll back."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.message = message
        self.cause = cause

    def apply(self, request: Request, fd: FormPageData) -> Response | None:
        get_logger(request, logger).warning("failed to submit form: %s", self.message, exc_info=self.cause)
        fd.errors.append(self.message)
        database.maybe_rollback(request)
        return None


SubmitResult = Redirect | Error


class Delegate(Protocol):
    """The data and logic behind a form."""

    def get_access_check(self, request: Request) -> respond.AccessChecker | None: ...

    def load_data(self, request: Request) -> BaseModel: ...

    def submit(self, request: Request, data: Any) -> SubmitResult: ...


@runtime_checkable
class Validator(Delegate, Protocol):
    """A delegate that validates the decoded data before submission."""

    def validate(self, request: Request, data: Any) -> list[str]: ...


def decode_form(data: BaseModel, fields: Mapping[str, Any]) -> BaseModel:
    """Overlay the posted fields onto ``data``; unknown keys are ignored."""
    model = type(data)
    values = data.model_dump()
    values.update({key: value for key, value in fields.items() if key in model.model_fields})
    return model.model_validate(values)


class Form:
    """GET and POST handlers for a form page."""

    def __init__(self, store: Store, title: str, template_name: str, delegate: Delegate):
        self.store = store
        self.title = title
        self.template_name = template_name
        self.delegate = delegate

    def page(self, request: Request) -> Response:
        data, error_response = self._load_data(request)
        if error_response is not None:
            return error_response
        return self.build_form(request, FormPageData(data=data))

    async def submit(self, request: Request) -> Response:
        content_type = request.headers.get("content-type", "")
        if content_type.split(";", 1)[0].strip().lower() not in FORM_CONTENT_TYPES:
            return respond.error(
                request,
                status.HTTP_400_BAD_REQUEST,
                "error parsing form data",
                InvalidFormContentType(content_type),
            )
        form = await request.form()
        fields = {key: value for key, value in form.items() if isinstance(value, str)}
        return await run_in_threadpool(self.process, request, fields)

    def process(self, request: Request, fields: Mapping[str, str]) -> Response:
        """Handle a parsed submission."""
        data, error_response = self._load_data(request)
        if error_response is not None:
            return error_response

        fd = FormPageData(
            data=data,
            form_id=fields.get("FormID", ""),
            form_token=fields.get("FormToken", ""),
        )
        try:
            fd.data = decode_form(data, fields)
        except ValidationError as exc:
            return respond.error(
                request, status.HTTP_422_UNPROCESSABLE_CONTENT, "error unserializing form data", exc
            )

        try:
            fd.validate_form_token(self.store)
        except (FormTokenMismatch, StoreError) as exc:
            return respond.error(request, status.HTTP_422_UNPROCESSABLE_CONTENT, "form token error", exc)

        try:
            self.store.delete(fd.form_id)
        except StoreError as exc:
            return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "form token error", exc)

        fd.errors = self.maybe_validate(request, fd.data)
        if not fd.errors:
            response = self.delegate.submit(request, fd.data).apply(request, fd)
            if response is not None:
                return response

        return self.build_form(request, fd)

    def maybe_validate(self, request: Request, data: BaseModel) -> list[str]:
        if isinstance(self.delegate, Validator):
            return list(self.delegate.validate(request, data))
        return []

    def build_form(self, request: Request, fd: FormPageData) -> Response:
        """Render the form with a new FormID/FormToken pair."""
        fd.generate_form_id()
        try:
            fd.regenerate_form_token(self.store)
        except StoreError as exc:
            get_logger(request, logger).error("failed to create form token", exc_info=exc)
        return respond.page(
            request,
            self.template_name,
            self.title,
            session.get(request),
            self.delegate.get_access_check(request),
            fd,
        )

    def _load_data(self, request: Request) -> tuple[BaseModel | None, Response | None]:
        try:
            return self.delegate.load_data(request), None
        except HTTPException:
            raise
        except Exception as exc:
            return None, respond.error(request, status.HTTP_404_NOT_FOUND, "not found", exc)

    def routes(
        self,
        router: APIRouter,
        path: str,
        dependencies: Sequence[params.Depends] | None = None,
        route_class: type[APIRoute] = database.TransactionRoute,
    ) -> None:
        """Register the GET and POST handlers of the form on ``router``."""
        for endpoint, method in ((self.page, "GET"), (self.submit, "POST")):
            router.add_api_route(
                path,
                endpoint,
                methods=[method],
                dependencies=dependencies,
                response_class=HTMLResponse,
                include_in_schema=False,
                route_class_override=route_class,
            )
