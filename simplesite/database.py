"""Database connection, request-bound sessions and transactions."""
import logging
import time

from fastapi import Request, status
from fastapi.routing import APIRoute
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from simplesite import respond
from simplesite.app_logging import get_logger

logger = logging.getLogger(__name__)

Base = declarative_base()


class Transaction:
    """A database transaction bound to a request.

    ``commit`` and ``rollback`` are no-ops once the transaction is finished,
    so a rollback during submission followed by the automatic completion is
    harmless.
    """

    def __init__(self, db: Session, log=None, timeout: float | None = None):
        self.db = db
        self.log = log or logger
        self.started = time.monotonic()
        self.deadline = self.started + timeout if timeout else None
        self.finished = False

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() > self.deadline

    def _elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def commit(self) -> None:
        if self.finished:
            self.log.debug("transaction already finished, not committing")
            return
        self.finished = True
        self.db.commit()
        self.log.debug("transaction committed duration=%.2fms", self._elapsed_ms())

    def rollback(self) -> None:
        if self.finished:
            self.log.debug("transaction already finished, not rolling back")
            return
        self.finished = True
        self.db.rollback()
        self.log.debug("transaction rolled back duration=%.2fms", self._elapsed_ms())

    def complete(self, status_code: int) -> None:
        """Commit below 400 (within the deadline), roll back otherwise.

        The response is already built at this point, so failures are logged.
        """
        try:
            if status_code >= status.HTTP_400_BAD_REQUEST:
                self.rollback()
            elif self.expired():
                self.log.warning(
                    "transaction deadline exceeded, rolling back duration=%.2fms", self._elapsed_ms()
                )
                self.rollback()
            else:
                self.commit()
        except SQLAlchemyError as exc:
            self.log.error("failed to complete transaction status-code=%d", status_code, exc_info=exc)

    def close(self) -> None:
        self.db.close()


class Database:
    """Engine plus session factory."""

    def __init__(self, engine: Engine, transaction_timeout: float | None = None):
        self.engine = engine
        self.transaction_timeout = transaction_timeout
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def from_url(cls, url: str, echo: bool = False, transaction_timeout: float | None = None) -> "Database":
        # SQLite requires check_same_thread=False for FastAPI
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        engine = create_engine(url, connect_args=connect_args, echo=echo)
        return cls(engine, transaction_timeout=transaction_timeout)

    def session(self) -> Session:
        return self.session_factory()

    def begin(self, log=None) -> Transaction:
        """Start a transaction; connection failures surface here."""
        db = self.session()
        try:
            db.connection()
        except SQLAlchemyError:
            db.close()
            raise
        tx = Transaction(db, log, self.transaction_timeout)
        tx.log.debug("transaction started")
        return tx

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)


def get(request: Request) -> Session:
    """Return the ORM session of the request (the transaction's inside a transaction route)."""
    return request.state.db


def get_tx(request: Request) -> Transaction | None:
    return getattr(request.state, "tx", None)


def maybe_rollback(request: Request) -> None:
    """Roll back the request's transaction, if it has one."""
    tx = get_tx(request)
    if tx is None:
        return
    try:
        tx.rollback()
    except SQLAlchemyError as exc:
        get_logger(request, logger).error("failed to roll back transaction", exc_info=exc)


def get_db(request: Request) -> Session:
    """Dependency that provides the request's database session."""
    return get(request)


class DatabaseMiddleware(BaseHTTPMiddleware):
    """Binds a plain (non-transactional) session for the whole request."""

    def __init__(self, app: ASGIApp, database: Database):
        super().__init__(app)
        self.database = database

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        db = self.database.session()
        request.state.database = self.database
        request.state.db = db
        request.state.tx = None
        try:
            return await call_next(request)
        finally:
            await run_in_threadpool(db.close)


class TransactionRoute(APIRoute):
    """Route that runs its dependencies and endpoint inside a transaction.

    With ``auto`` set the transaction is committed when the response status is
    below 400 and rolled back otherwise. Exceptions always roll back.
    """

    auto = True

    def get_route_handler(self):
        route_handler = super().get_route_handler()
        auto = self.auto

        async def transaction_route_handler(request: Request) -> Response:
            log = get_logger(request, logger)
            database: Database = request.state.database
            try:
                tx = await run_in_threadpool(database.begin, log)
            except SQLAlchemyError as exc:
                return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "database error", exc)

            plain_db = request.state.db
            request.state.db = tx.db
            request.state.tx = tx
            try:
                try:
                    response = await route_handler(request)
                except Exception:
                    await run_in_threadpool(tx.rollback)
                    raise
                finally:
                    request.state.db = plain_db
                    request.state.tx = None

                if auto:
                    await run_in_threadpool(tx.complete, response.status_code)
                elif not tx.finished:
                    log.warning("manual transaction left open, rolling back")
                    await run_in_threadpool(tx.rollback)
                return response
            finally:
                await run_in_threadpool(tx.close)

        return transaction_route_handler


class ManualTransactionRoute(TransactionRoute):
    """Transaction route whose endpoint commits or rolls back itself."""

    auto = False
