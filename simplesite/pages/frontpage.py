"""The front page."""
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from starlette.responses import Response

from simplesite import respond, session
from simplesite.pages.account import get_access_checker

router = APIRouter(tags=["frontpage"])


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
def front_page(request: Request) -> Response:
    return respond.page(request, "front.html", "Welcome", session.get(request), get_access_checker(request), {})
