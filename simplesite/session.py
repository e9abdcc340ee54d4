"""Sessions stored in the key-value store and bound to every request.

The session id is ``<account id>:<random hex>``. The account id prefix lets
all sessions of an account be found by a prefix scan, and it always matches
the account the session is bound to (the nil id for anonymous sessions).
"""
import json
import logging
import secrets
from typing import IO

from fastapi import HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from simplesite import respond
from simplesite.app_logging import get_logger
from simplesite.keyvalue import Store, StoreError
from simplesite.util import BufferPool, random_hex

SESSION_COOKIE_NAME = "session"
NIL_USER = "00000000-0000-0000-0000-000000000000"

SID_LENGTH = 32
CSRF_LENGTH = 64
COOKIE_MAX_AGE = 365 * 24 * 60 * 60

logger = logging.getLogger(__name__)

session_buffers = BufferPool()


class SessionError(Exception):
    """Raised when a session cannot be loaded."""


class Session(BaseModel):
    """The session data saved to the key-value store."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default=NIL_USER, alias="ID")
    csrf_token: str = Field(default="", alias="CSRFToken")

    def logged_in(self) -> bool:
        return self.id != NIL_USER

    def write_to(self, buf: IO[str]) -> None:
        json.dump(self.model_dump(by_alias=True), buf)

    @classmethod
    def read(cls, raw: str) -> "Session":
        return cls.model_validate_json(raw)


def generate_sid(user_id: str) -> str:
    """Generate a new session id, prefixed with the account id."""
    return f"{user_id}:{random_hex(SID_LENGTH)}"


def generate_csrf_token() -> str:
    return random_hex(CSRF_LENGTH)


def sid_user(sid: str) -> str:
    """Return the account id part of a session id."""
    return sid.split(":", 1)[0]


def get(request: Request) -> Session:
    """Return the session of the current request."""
    return request.state.session


def get_sid(request: Request) -> str:
    """Return the session id of the current request (empty once deleted)."""
    return request.state.sid


class SessionManager:
    """Loads, saves, regenerates and deletes sessions."""

    def __init__(
        self,
        store: Store,
        cookie_name: str = SESSION_COOKIE_NAME,
        secure_cookie: bool = True,
    ):
        self.store = store
        self.cookie_name = cookie_name
        self.secure_cookie = secure_cookie

    def load(self, request: Request) -> tuple[Session, str]:
        """Load the session named by the request cookie, or start an anonymous one."""
        log = get_logger(request, logger)
        sid = request.cookies.get(self.cookie_name, "")
        if not sid:
            return Session(), generate_sid(NIL_USER)

        try:
            raw = self.store.get(sid)
        except StoreError as exc:
            raise SessionError("failed to load session from store") from exc

        if not raw:
            if sid_user(sid) != NIL_USER:
                # The account binding is gone with the data, so the id must go too.
                log.info("session data missing for an account session, starting anonymous session")
                return Session(), generate_sid(NIL_USER)
            return Session(), sid

        try:
            sess = Session.read(raw)
        except ValidationError as exc:
            raise SessionError("failed to decode session data") from exc

        log.debug("successfully loaded session")
        return sess, sid

    def save(self, sid: str, sess: Session) -> None:
        with session_buffers.acquire() as buf:
            sess.write_to(buf)
            self.store.set(sid, buf.getvalue())

    def regenerate(self, request: Request, user_id: str) -> None:
        """Invalidate the current session and bind a new one to ``user_id``.

        The session object of the request is updated in place, the cookie is
        re-issued with the new id when the response goes out.
        """
        self.store.delete(get_sid(request))
        request.state.sid = generate_sid(user_id)

        sess = get(request)
        sess.id = user_id
        sess.csrf_token = generate_csrf_token()

    def delete(self, request: Request) -> None:
        """Remove the current session; nothing is persisted for this request."""
        try:
            self.store.delete(get_sid(request))
        except StoreError as exc:
            get_logger(request, logger).error("cannot delete session", exc_info=exc)
        request.state.sid = ""

    def set_cookie(self, response: Response, sid: str) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=sid,
            max_age=COOKIE_MAX_AGE,
            expires=COOKIE_MAX_AGE,
            path="/",
            secure=self.secure_cookie,
            httponly=True,
            samesite="strict",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            secure=self.secure_cookie,
            httponly=True,
            samesite="strict",
        )


class SessionMiddleware(BaseHTTPMiddleware):
    """Binds the session to the request and persists it afterwards."""

    def __init__(self, app: ASGIApp, manager: SessionManager):
        super().__init__(app)
        self.manager = manager

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        log = get_logger(request, logger)
        try:
            sess, sid = await run_in_threadpool(self.manager.load, request)
        except SessionError as exc:
            return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "session error", exc)

        if not sess.csrf_token:
            sess.csrf_token = generate_csrf_token()

        request.state.session = sess
        request.state.sid = sid

        response = await call_next(request)

        sid = get_sid(request)
        if not sid:
            self.manager.clear_cookie(response)
            return response

        self.manager.set_cookie(response, sid)
        try:
            await run_in_threadpool(self.manager.save, sid, sess)
        except StoreError as exc:
            log.error("failed to save session", exc_info=exc)

        return response


def must_be_logged_in(request: Request) -> Session:
    """Dependency: only lets the request proceed if an account is logged in."""
    sess = get(request)
    if not sess.logged_in():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="must be logged in")
    return sess


def must_be_anonymous(request: Request) -> Session:
    """Dependency: only lets the request proceed if no account is logged in."""
    sess = get(request)
    if sess.logged_in():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="must not be logged in")
    return sess


def require_csrf_token(request: Request) -> None:
    """Dependency: enforces the session's CSRF token in the ``?token=`` parameter."""
    token = request.query_params.get("token", "")
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing csrf token")
    if not secrets.compare_digest(token.encode(), get(request).csrf_token.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid csrf token")
