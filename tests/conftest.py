import re

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from simplesite.config import Settings
from simplesite.database import Base, Database
from simplesite.keyvalue import MemoryStore
from simplesite.main import create_app
from simplesite.markdown_filter import MarkdownFilter
from simplesite.models.account import Account
from simplesite.services import accounts

PASSWORD = "correct horse battery staple"

FORM_ID_RE = re.compile(r'name="FormID" value="([0-9a-f]*)"')
FORM_TOKEN_RE = re.compile(r'name="FormToken" value="([0-9a-f]*)"')
CSRF_TOKEN_RE = re.compile(r'window\.CSRF_TOKEN = "([0-9a-f]*)"')


class RecordingMailer:
    from_address = "noreply@example.com"

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, to, message):
        if self.error is not None:
            raise self.error
        self.sent.append((to, message))


class StubPasswordValidator:
    def __init__(self):
        self.compromised = set()
        self.error = None

    def validate(self, password):
        if self.error is not None:
            raise self.error
        return password in self.compromised


def form_tokens(html: str) -> dict[str, str]:
    """The FormID/FormToken pair rendered into a form page."""
    return {
        "FormID": FORM_ID_RE.search(html).group(1),
        "FormToken": FORM_TOKEN_RE.search(html).group(1),
    }


def csrf_token(html: str) -> str:
    return CSRF_TOKEN_RE.search(html).group(1)


def sid_user(sid: str) -> str:
    return sid.split(":", 1)[0]


def create_account(database, username, permissions=(), active=True, email=None) -> str:
    db = database.session()
    try:
        account = Account(username=username, email=email or f"{username}@example.com", active=active)
        accounts.set_password(account, PASSWORD)
        accounts.save_account(db, account)
        accounts.save_permissions(db, account.id, permissions)
        db.commit()
        return account.id
    finally:
        db.close()


def login(client, username, password=PASSWORD):
    page = client.get("/login")
    return client.post(
        "/login",
        data={"username": username, "password": password, **form_tokens(page.text)},
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def database(engine):
    return Database(engine)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def password_validator():
    return StubPasswordValidator()


@pytest.fixture
def settings():
    return Settings(
        base_url="http://testserver",
        session_cookie_secure=False,
        pwned_passwords_enabled=False,
        redis_prefix="",
        log_level="DEBUG",
    )


@pytest.fixture
def app(settings, store, database, mailer, password_validator):
    return create_app(
        settings,
        store=store,
        database=database,
        mailer=mailer,
        password_validator=password_validator,
        markdown_filter=MarkdownFilter().filter,
    )


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)
