"""simplesite - a small server-rendered site with accounts and versioned posts."""
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from simplesite import models  # noqa: F401
from simplesite import respond
from simplesite.app_logging import RequestLoggingMiddleware, configure_logging, logger
from simplesite.config import Settings, get_settings
from simplesite.database import Database, DatabaseMiddleware
from simplesite.keyvalue import PrefixedStore, RedisStore, Store
from simplesite.mailer import Mailer, SMTPMailer
from simplesite.markdown_filter import MarkdownFilter
from simplesite.pages import account, frontpage, post
from simplesite.services.passwords import AcceptAllPasswords, PasswordValidator, PwnedPasswordValidator
from simplesite.session import SessionManager, SessionMiddleware
from simplesite.util import BaseURL


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    database: Database | None = None,
    mailer: Mailer | None = None,
    password_validator: PasswordValidator | None = None,
    markdown_filter: Callable[[str], str] | None = None,
) -> FastAPI:
    """Build the application. Collaborators not given are built from settings."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if store is None:
        store = RedisStore.from_url(settings.redis_url)
    if settings.redis_prefix:
        store = PrefixedStore(store, settings.redis_prefix)

    if database is None:
        database = Database.from_url(
            settings.database_url,
            echo=settings.debug,
            transaction_timeout=settings.transaction_timeout,
        )

    if mailer is None:
        mailer = SMTPMailer(
            settings.smtp_host,
            settings.smtp_port,
            from_address=settings.smtp_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
        )

    pwned_passwords = None
    if password_validator is None:
        if settings.pwned_passwords_enabled:
            pwned_passwords = PwnedPasswordValidator(settings.pwned_passwords_url)
            password_validator = pwned_passwords
        else:
            password_validator = AcceptAllPasswords()

    if markdown_filter is None:
        markdown_filter = MarkdownFilter().filter

    sessions = SessionManager(
        PrefixedStore(store, "session:"),
        cookie_name=settings.session_cookie_name,
        secure_cookie=settings.session_cookie_secure,
    )
    form_tokens = PrefixedStore(store, "form:")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        database.create_all()
        logger.info("starting %s", settings.app_name)
        yield
        database.engine.dispose()
        if pwned_passwords is not None:
            pwned_passwords.close()

    app = FastAPI(
        title=settings.app_name,
        description="A small site with accounts and versioned posts",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.sessions = sessions

    # Added innermost first: request logging wraps sessions, sessions wrap the database.
    app.add_middleware(DatabaseMiddleware, database=database)
    app.add_middleware(SessionMiddleware, manager=sessions)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(StarletteHTTPException, respond.http_exception_handler)
    if not settings.debug:
        app.add_exception_handler(Exception, respond.unhandled_exception_handler)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "app": settings.app_name}

    app.include_router(frontpage.router)
    app.include_router(
        account.build_router(form_tokens, sessions, password_validator, mailer, BaseURL(settings.base_url))
    )
    app.include_router(post.build_router(form_tokens, markdown_filter))

    return app


app = create_app()
