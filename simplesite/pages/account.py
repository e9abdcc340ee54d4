"""Account pages: registration, verification, login and logout."""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from jinja2 import TemplateError
from pydantic.networks import validate_email
from pydantic_core import PydanticCustomError
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from simplesite import database, respond, session
from simplesite.app_logging import get_logger
from simplesite.database import TransactionRoute
from simplesite.form import Error, Form, Redirect, SubmitResult
from simplesite.keyvalue import Store, StoreError
from simplesite.mailer import Mailer, MailerError
from simplesite.models.account import Account
from simplesite.schemas.forms import LoginFormData, RegistrationFormData
from simplesite.services import accounts
from simplesite.services.passwords import PasswordCheckError, PasswordValidator, password_too_long
from simplesite.services.tokens import TokenManager
from simplesite.session import SessionManager
from simplesite.util import BaseURL, parse_uuid

TOKEN_CATEGORY_REGISTRATION_VERIFICATION = "reg-verification"
REGISTRATION_TOKEN_TTL = timedelta(hours=24)

logger = logging.getLogger(__name__)


class AccessChecker:
    """Permissions of the session's account, loaded on first use."""

    def __init__(self, request: Request):
        self.request = request
        self.permissions: frozenset[str] = frozenset()
        self.loaded = False

    def load(self) -> None:
        self.loaded = True
        sess = session.get(self.request)
        if not sess.logged_in():
            return
        try:
            self.permissions = accounts.load_permissions(database.get(self.request), sess.id)
        except SQLAlchemyError as exc:
            get_logger(self.request, logger).error("failed to load permissions uid=%s", sess.id, exc_info=exc)

    def has(self, name: str) -> bool:
        if not self.loaded:
            self.load()
        return name in self.permissions


def get_access_checker(request: Request) -> AccessChecker:
    checker = getattr(request.state, "access_checker", None)
    if checker is None:
        checker = AccessChecker(request)
        request.state.access_checker = checker
    return checker


def enforce_permission(name: str) -> Callable[[Request], None]:
    """Build a dependency that rejects requests without the ``name`` permission."""

    def check_permission(request: Request) -> None:
        if not get_access_checker(request).has(name):
            get_logger(request, logger).info("permission denied permission=%s", name)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="permission denied")

    return check_permission


class AccessCheckLoader:
    """Form delegate mixin providing the request's access checker."""

    def get_access_check(self, request: Request) -> AccessChecker:
        return get_access_checker(request)


class LoginForm(AccessCheckLoader):
    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    def load_data(self, request: Request) -> LoginFormData:
        return LoginFormData()

    def validate(self, request: Request, data: LoginFormData) -> list[str]:
        errors = []
        if not data.username:
            errors.append("Username is required")
        if not data.password:
            errors.append("Password is required")
        return errors

    def submit(self, request: Request, data: LoginFormData) -> SubmitResult:
        try:
            account = accounts.load_account_by_username(database.get(request), data.username)
        except SQLAlchemyError as exc:
            return Error("Login failed", exc)
        if account is None:
            return Error("Login failed")
        if not account.active:
            return Error("User is inactive")
        if not accounts.check_password(account, data.password):
            return Error("Invalid password")

        try:
            self.sessions.regenerate(request, account.id)
        except StoreError as exc:
            return Error("Failed to regenerate session", exc)

        return Redirect()


class RegistrationForm(AccessCheckLoader):
    """Registration form delegate, also serving the email verification link."""

    def __init__(self, password_validator: PasswordValidator, mailer: Mailer, base_url: BaseURL):
        self.password_validator = password_validator
        self.mailer = mailer
        self.base_url = base_url

    def load_data(self, request: Request) -> RegistrationFormData:
        return RegistrationFormData()

    def validate(self, request: Request, data: RegistrationFormData) -> list[str]:
        errors = []
        if not data.username:
            errors.append("Username is required")
        elif accounts.is_username_blacklisted(data.username):
            errors.append("Username is blacklisted")

        if not data.email:
            errors.append("Email is required")
        else:
            try:
                validate_email(data.email)
            except PydanticCustomError:
                errors.append("Email is invalid")

        if not data.password:
            errors.append("Password is required")
        elif password_too_long(data.password):
            errors.append("Password is too long")
        else:
            try:
                if self.password_validator.validate(data.password):
                    errors.append("This password is found in a previous data breach")
            except PasswordCheckError as exc:
                get_logger(request, logger).warning("failed to check password", exc_info=exc)
                errors.append("Error validating password")

        if not data.accept_tos:
            errors.append("TOS must be accepted")

        return errors

    def submit(self, request: Request, data: RegistrationFormData) -> SubmitResult:
        db = database.get(request)

        account = Account(username=data.username, email=data.email, active=False)
        accounts.set_password(account, data.password)
        try:
            accounts.save_account(db, account)
        except SQLAlchemyError as exc:
            return Error("Account already exists", exc)

        expires = datetime.now(timezone.utc) + REGISTRATION_TOKEN_TTL
        try:
            token = TokenManager(db).create(account.id, TOKEN_CATEGORY_REGISTRATION_VERIFICATION, expires)
        except SQLAlchemyError as exc:
            return Error("Failed to create account", exc)

        try:
            message = self.registration_mail(account.email, self.base_url.path("/verify/", account.id, token))
        except TemplateError as exc:
            return Error("Failed to create email", exc)

        get_logger(request, logger).debug("sending registration verification mail to=%s", account.email)
        try:
            self.mailer.send([account.email], message)
        except MailerError as exc:
            return Error("Failed to send email", exc)

        return Redirect()

    def registration_mail(self, to: str, url: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.mailer.from_address
        message["To"] = to
        message["Subject"] = "Registration validation"
        message.set_content(respond.render("registration_mail.txt", {"url": url}))
        return message

    def verify(self, request: Request, uuid: str, token: str) -> Response:
        """Activate the account named in the verification link."""
        log = get_logger(request, logger)
        db = database.get(request)

        try:
            account_id = parse_uuid(uuid)
        except ValueError as exc:
            log.debug("failed to parse uuid", exc_info=exc)
            return respond.error(request, status.HTTP_404_NOT_FOUND, "not found")

        try:
            consumed = TokenManager(db).consume(account_id, TOKEN_CATEGORY_REGISTRATION_VERIFICATION, token)
        except SQLAlchemyError as exc:
            return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "failed to consume token", exc)
        if not consumed:
            return respond.error(request, status.HTTP_404_NOT_FOUND, "token not found")

        try:
            account = (
                db.query(Account).filter(Account.id == account_id, Account.active.is_(False)).first()
            )
        except SQLAlchemyError as exc:
            return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "account loading error", exc)
        if account is None:
            return respond.error(
                request, status.HTTP_500_INTERNAL_SERVER_ERROR, "account loading error", uid=account_id
            )

        account.active = True
        try:
            accounts.save_account(db, account)
        except SQLAlchemyError as exc:
            return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "account saving error", exc)

        return RedirectResponse("/", status_code=status.HTTP_302_FOUND)


def build_router(
    store: Store,
    sessions: SessionManager,
    password_validator: PasswordValidator,
    mailer: Mailer,
    base_url: BaseURL,
) -> APIRouter:
    """Routes of the account pages. ``store`` holds the form tokens."""
    router = APIRouter(tags=["account"])
    anonymous = [Depends(session.must_be_anonymous)]

    registration = RegistrationForm(password_validator, mailer, base_url)
    Form(store, "Register", "register.html", registration).routes(router, "/register", anonymous)
    Form(store, "Login", "login.html", LoginForm(sessions)).routes(router, "/login", anonymous)

    router.add_api_route(
        "/verify/{uuid}/{token}",
        registration.verify,
        methods=["GET"],
        dependencies=anonymous,
        response_class=HTMLResponse,
        include_in_schema=False,
        route_class_override=TransactionRoute,
    )

    def logout(request: Request) -> Response:
        sessions.delete(request)
        return RedirectResponse("/", status_code=status.HTTP_302_FOUND)

    router.add_api_route(
        "/logout",
        logout,
        methods=["GET"],
        dependencies=[Depends(session.must_be_logged_in), Depends(session.require_csrf_token)],
        response_class=HTMLResponse,
        include_in_schema=False,
    )

    return router
