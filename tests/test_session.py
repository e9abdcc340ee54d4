import json

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from starlette.requests import Request

from conftest import csrf_token, sid_user
from simplesite.keyvalue import MemoryStore, StoreError
from simplesite.main import create_app
from simplesite.session import (
    NIL_USER,
    Session,
    SessionManager,
    generate_sid,
    must_be_anonymous,
    must_be_logged_in,
    require_csrf_token,
)
from simplesite.util import BufferPool


class FailingStore(MemoryStore):
    def get(self, key):
        raise StoreError("store is down")


def _request(cookies=None, query_string=b"") -> Request:
    headers = []
    if cookies:
        cookie_header = "; ".join(f"{name}={value}" for name, value in cookies.items())
        headers.append((b"cookie", cookie_header.encode("latin-1")))
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": headers,
            "query_string": query_string,
        }
    )


def _bind(manager: SessionManager, request: Request) -> Session:
    sess, sid = manager.load(request)
    request.state.session = sess
    request.state.sid = sid
    return sess


def test_anonymous_request_gets_session_cookie(client, store):
    response = client.get("/")

    assert response.status_code == 200
    sid = response.cookies["session"]
    assert sid_user(sid) == NIL_USER
    assert len(sid.split(":", 1)[1]) == 32

    set_cookie = response.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "samesite=strict" in set_cookie
    assert "path=/" in set_cookie

    saved = json.loads(store.get(f"session:{sid}"))
    assert saved["ID"] == NIL_USER
    assert saved["CSRFToken"] == csrf_token(response.text)
    assert len(saved["CSRFToken"]) == 64


def test_session_is_reused_between_requests(client):
    first = client.get("/")
    second = client.get("/")

    assert second.cookies["session"] == first.cookies["session"]
    assert csrf_token(second.text) == csrf_token(first.text)


def test_missing_anonymous_session_keeps_its_id(client):
    sid = f"{NIL_USER}:{'a' * 32}"
    client.cookies.set("session", sid)

    response = client.get("/")

    assert response.status_code == 200
    assert response.cookies["session"] == sid


def test_missing_account_session_starts_anonymous_session(client):
    forged = f"{'1' * 8}-1111-1111-1111-{'1' * 12}:{'a' * 32}"
    client.cookies.set("session", forged)

    response = client.get("/")

    assert response.status_code == 200
    sid = response.cookies["session"]
    assert sid != forged
    assert sid_user(sid) == NIL_USER
    assert "Logout" not in response.text


def test_store_error_renders_session_error(settings, database, mailer, password_validator):
    app = create_app(
        settings,
        store=FailingStore(),
        database=database,
        mailer=mailer,
        password_validator=password_validator,
    )
    client = TestClient(app, follow_redirects=False)
    client.cookies.set("session", generate_sid(NIL_USER))

    response = client.get("/")

    assert response.status_code == 500
    assert "session error" in response.text
    assert "window.CSRF_TOKEN" not in response.text


def test_corrupt_session_payload_renders_session_error(client, store):
    sid = generate_sid(NIL_USER)
    store.set(f"session:{sid}", "{not json")
    client.cookies.set("session", sid)

    response = client.get("/")

    assert response.status_code == 500
    assert "session error" in response.text


def test_page_sets_security_headers(client):
    response = client.get("/")

    assert response.headers["server"] == "Unknown"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["referrer-policy"] == "no-referrer"
    csp = response.headers["content-security-policy"]
    assert "default-src 'none'" in csp
    assert "'nonce-" in csp


def test_session_round_trip():
    pool = BufferPool(size=1)
    sess = Session(id="3f1c2a9e-8a51-4f0e-9a55-6a3c1f1f0b10", csrf_token="ab" * 32)

    with pool.acquire() as buf:
        sess.write_to(buf)
        raw = buf.getvalue()

    assert json.loads(raw) == {"ID": sess.id, "CSRFToken": sess.csrf_token}
    assert Session.read(raw) == sess


def test_regenerate_always_changes_id_and_csrf_token():
    store = MemoryStore()
    manager = SessionManager(store)
    user_id = "3f1c2a9e-8a51-4f0e-9a55-6a3c1f1f0b10"
    request = _request()
    sess = _bind(manager, request)
    sess.csrf_token = "0" * 64
    manager.save(request.state.sid, sess)

    seen_sids = {request.state.sid}
    seen_tokens = {sess.csrf_token}
    for _ in range(1000):
        old_sid = request.state.sid
        manager.regenerate(request, user_id)

        assert store.get(old_sid) == ""
        assert request.state.sid not in seen_sids
        assert sess.csrf_token not in seen_tokens
        assert sid_user(request.state.sid) == user_id
        assert sess.id == user_id
        seen_sids.add(request.state.sid)
        seen_tokens.add(sess.csrf_token)


def test_delete_blanks_sid_and_removes_entry():
    store = MemoryStore()
    manager = SessionManager(store)
    request = _request()
    sess = _bind(manager, request)
    sid = request.state.sid
    manager.save(sid, sess)

    manager.delete(request)

    assert request.state.sid == ""
    assert store.get(sid) == ""


def test_guards():
    manager = SessionManager(MemoryStore())
    request = _request(query_string=b"token=wrong")
    sess = _bind(manager, request)
    sess.csrf_token = "c" * 64

    assert must_be_anonymous(request) is sess
    with pytest.raises(HTTPException) as exc_info:
        must_be_logged_in(request)
    assert exc_info.value.status_code == 403

    sess.id = "3f1c2a9e-8a51-4f0e-9a55-6a3c1f1f0b10"
    assert must_be_logged_in(request) is sess
    with pytest.raises(HTTPException) as exc_info:
        must_be_anonymous(request)
    assert exc_info.value.status_code == 403

    with pytest.raises(HTTPException) as exc_info:
        require_csrf_token(request)
    assert exc_info.value.status_code == 403


def test_csrf_guard_requires_token():
    manager = SessionManager(MemoryStore())
    request = _request()
    _bind(manager, request)

    with pytest.raises(HTTPException) as exc_info:
        require_csrf_token(request)
    assert exc_info.value.status_code == 400

    accepted = _request(query_string=b"token=" + ("c" * 64).encode())
    _bind(manager, accepted).csrf_token = "c" * 64
    require_csrf_token(accepted)


def test_csrf_guard_rejects_non_ascii_token():
    manager = SessionManager(MemoryStore())
    request = _request(query_string="token=é".encode())
    _bind(manager, request).csrf_token = "c" * 64

    with pytest.raises(HTTPException) as exc_info:
        require_csrf_token(request)
    assert exc_info.value.status_code == 403
