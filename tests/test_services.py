from datetime import datetime, timedelta, timezone

import httpx
import pytest

from simplesite.markdown_filter import MarkdownFilter
from simplesite.models.account import Account
from simplesite.models.post import Post, PostRevision
from simplesite.models.token import Token
from simplesite.services import accounts, posts
from simplesite.services.passwords import (
    PasswordCheckError,
    PwnedPasswordValidator,
    hash_password,
    password_too_long,
    verify_password,
)
from simplesite.services.tokens import TokenManager

PASSWORD_SUFFIX = "1E4C9B93F3F0682250B6CF8331B7EE68FD8"


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


class StaticAccess:
    def __init__(self, *names):
        self.names = set(names)

    def has(self, name):
        return name in self.names


class StaticSession:
    def __init__(self, id):
        self.id = id

    def logged_in(self):
        return self.id != "00000000-0000-0000-0000-000000000000"


@pytest.mark.parametrize(
    "username, expected",
    [
        ("Jöhn.Doe", "johndoe"),
        ("john_doe", "johndoe"),
        ("JOHN-DOE", "johndoe"),
        ("ｊｏｈｎ", "john"),
        ("plain", "plain"),
    ],
)
def test_normalize_username(username, expected):
    assert accounts.normalize_username(username) == expected


@pytest.mark.parametrize("username", ["admin", "Admin", "web.master", "root", ".well-known", "No-Reply"])
def test_blacklisted_usernames(username):
    assert accounts.is_username_blacklisted(username)


def test_regular_username_is_allowed():
    assert not accounts.is_username_blacklisted("alice")


def test_password_hashing():
    hashed, salt = hash_password("hunter2")

    assert hashed.startswith(salt)
    assert verify_password("hunter2", hashed)
    assert not verify_password("hunter3", hashed)
    assert hash_password("hunter2", salt)[0] == hashed


def test_password_length_limit_is_in_bytes():
    assert not password_too_long("a" * 72)
    assert password_too_long("a" * 73)
    assert password_too_long("é" * 37)
    with pytest.raises(ValueError):
        hash_password("a" * 73)
    assert not verify_password("a" * 73, hash_password("a" * 72)[0])


def test_account_storage(db):
    account = Account(username="Alice.Smith", email="alice@example.com")
    accounts.set_password(account, "secret")
    accounts.save_account(db, account)
    accounts.save_permissions(db, account.id, ["create-post", "edit-own-post", "create-post"])
    db.commit()

    assert account.normalized_username == "alicesmith"
    assert account.active is False
    assert accounts.load_account_by_username(db, "Alice.Smith").id == account.id
    assert accounts.load_account_by_email(db, "alice@example.com").id == account.id
    assert accounts.check_password(accounts.load_account(db, account.id), "secret")
    assert accounts.load_permissions(db, account.id) == {"create-post", "edit-own-post"}

    accounts.save_permissions(db, account.id, ["edit-any-post"])
    assert accounts.load_permissions(db, account.id) == {"edit-any-post"}


def _pwned_client(requests, status_code=200):
    def handler(request):
        requests.append(request)
        body = f"{PASSWORD_SUFFIX}:3730471\r\n0018A45C4D1DEF81644B54AB7F969B88D65:0\r\n"
        return httpx.Response(status_code, text=body)

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_pwned_password_lookup_sends_only_prefix():
    requests = []
    validator = PwnedPasswordValidator("https://pwned.test/range", http_client=_pwned_client(requests))

    assert validator.validate("password")
    assert len(requests) == 1
    assert str(requests[0].url) == "https://pwned.test/range/5BAA6"


def test_pwned_password_ranges_are_cached():
    requests = []
    validator = PwnedPasswordValidator("https://pwned.test/range/", http_client=_pwned_client(requests))

    validator.validate("password")
    validator.validate("password")

    assert len(requests) == 1


def test_pwned_password_padding_is_ignored():
    validator = PwnedPasswordValidator("https://pwned.test/range/", http_client=_pwned_client([]))

    assert "0018A45C4D1DEF81644B54AB7F969B88D65" not in validator._range("5BAA6")


def test_pwned_password_service_errors():
    validator = PwnedPasswordValidator("https://pwned.test/range/", http_client=_pwned_client([], 503))

    with pytest.raises(PasswordCheckError):
        validator.validate("password")


def test_tokens_are_single_use(db):
    manager = TokenManager(db)
    token = manager.create("account-1", "reg-verification", datetime.now(timezone.utc) + timedelta(hours=1))

    assert len(token) == 64
    assert not manager.consume("account-1", "reg-verification", "0" * 64)
    assert manager.consume("account-1", "reg-verification", token)
    assert not manager.consume("account-1", "reg-verification", token)


def test_new_token_replaces_old_one(db):
    manager = TokenManager(db)
    old = manager.create("account-1", "reg-verification")
    new = manager.create("account-1", "reg-verification")

    assert db.query(Token).count() == 1
    assert not manager.consume("account-1", "reg-verification", old)
    assert manager.consume("account-1", "reg-verification", new)


def test_expired_tokens(db):
    manager = TokenManager(db)
    expired = manager.create("account-1", "reset", datetime.now(timezone.utc) - timedelta(seconds=1))
    manager.create("account-2", "reset", datetime.now(timezone.utc) + timedelta(days=1))
    manager.create("account-3", "reset")

    assert not manager.consume("account-1", "reset", expired)
    assert manager.remove_expired() == 1
    assert db.query(Token).count() == 2


def _author(db):
    account = Account(username="author", email="author@example.com", active=True)
    accounts.set_password(account, "secret")
    return accounts.save_account(db, account).id


def test_post_revisions(db):
    author = _author(db)
    record = posts.PostRecord(
        post=Post(title="First"),
        revision=PostRevision(content="one", filtered="<p>one</p>", author=author),
    )
    record.save(db)
    first_revision = record.revision.id
    record.revision = PostRevision(content="two", filtered="<p>two</p>", author=author)
    record.save(db)
    db.commit()

    loaded = posts.load_post(db, record.post.id)
    assert loaded.revision.content == "two"
    assert [r.content for r in posts.list_revisions(db, record.post.id)] == ["two", "one"]
    assert [r.post.title for r in posts.list_posts(db)] == ["First"]

    newest, oldest = posts.load_revisions(db, record.post.id, first_revision, record.revision.id)
    assert (newest.content, oldest.content) == ("two", "one")
    with pytest.raises(LookupError):
        posts.load_revisions(db, record.post.id, first_revision, first_revision)
    with pytest.raises(ValueError):
        posts.load_revisions(db, record.post.id, "nope", first_revision)

    posts.publish(db, record.post, first_revision)
    assert posts.load_post(db, record.post.id).revision.content == "one"

    record.post.unpublish()
    db.flush()
    assert posts.load_post(db, record.post.id) is None
    assert posts.list_posts(db) == []


def test_can_edit():
    author = "3f1c2a9e-8a51-4f0e-9a55-6a3c1f1f0b10"
    other = "9b2e4f50-1c3d-4a5b-8c7d-0e1f2a3b4c5d"

    assert posts.can_edit(StaticSession(author), author, StaticAccess("edit-own-post"))
    assert not posts.can_edit(StaticSession(other), author, StaticAccess("edit-own-post"))
    assert posts.can_edit(StaticSession(other), author, StaticAccess("edit-any-post"))
    assert not posts.can_edit(StaticSession(author), author, StaticAccess())
    anonymous = StaticSession("00000000-0000-0000-0000-000000000000")
    assert not posts.can_edit(anonymous, author, StaticAccess("edit-any-post"))


def test_render_diff():
    html = posts.render_diff("ab\n<x>", "ac\n<x>")

    assert str(html) == (
        "<span>a</span><del>b</del><ins>c</ins><span>&para;<br />&lt;x&gt;</span>"
    )


def test_markdown_filter_strips_unsafe_html():
    html = MarkdownFilter().filter("# Title\n\nhello *world*<script>alert(1)</script>")

    assert "<em>world</em>" in html
    assert "<h1" in html
    assert "<script>" not in html
