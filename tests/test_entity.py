import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from simplesite.entity import entity_loader, get_entity


class CountingLoader:
    def __init__(self, result=None, error=None):
        self.calls = 0
        self.result = result
        self.error = error

    def __call__(self, request):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def _build_test_client(loader):
    app = FastAPI()
    bind = entity_loader(loader)

    @app.get("/unused", dependencies=[Depends(bind)])
    def unused():
        return PlainTextResponse("ok")

    @app.get("/twice", dependencies=[Depends(bind)])
    def twice(request: Request):
        first = get_entity(request)
        second = get_entity(request)
        assert first is second
        return PlainTextResponse(str(first))

    @app.get("/errors", dependencies=[Depends(bind)])
    def errors(request: Request):
        caught = []
        for _ in range(2):
            try:
                get_entity(request)
            except LookupError as exc:
                caught.append(exc)
        assert len(caught) == 2 and caught[0] is caught[1]
        return PlainTextResponse("failed")

    @app.get("/unbound")
    def unbound(request: Request):
        return PlainTextResponse(repr(get_entity(request)))

    return TestClient(app)


def test_loader_is_not_run_until_requested():
    loader = CountingLoader(result="post")
    client = _build_test_client(loader)

    assert client.get("/unused").status_code == 200
    assert loader.calls == 0


def test_entity_is_loaded_once_per_request():
    loader = CountingLoader(result="post")
    client = _build_test_client(loader)

    assert client.get("/twice").text == "post"
    assert client.get("/twice").text == "post"
    assert loader.calls == 2


def test_load_error_is_cached():
    loader = CountingLoader(error=LookupError("missing"))
    client = _build_test_client(loader)

    assert client.get("/errors").text == "failed"
    assert loader.calls == 1


def test_request_without_loader_has_no_entity():
    client = _build_test_client(CountingLoader())

    assert client.get("/unbound").text == "None"


def test_none_is_a_valid_entity():
    loader = CountingLoader(result=None)
    client = _build_test_client(loader)

    assert client.get("/twice").text == "None"
    assert loader.calls == 1


@pytest.mark.parametrize("error", [ValueError("bad id"), RuntimeError("db down")])
def test_any_load_error_propagates(error):
    from starlette.requests import Request as StarletteRequest

    request = StarletteRequest({"type": "http", "method": "GET", "path": "/", "headers": []})
    entity_loader(CountingLoader(error=error))(request)

    with pytest.raises(type(error)):
        get_entity(request)
