"""Post pages: listing, create/edit forms, revisions and diffs."""
import logging
import posixpath
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from simplesite import database, respond, session
from simplesite.app_logging import get_logger
from simplesite.database import get_db
from simplesite.entity import entity_loader, get_entity
from simplesite.form import Error, Form, Redirect, SubmitResult
from simplesite.keyvalue import Store
from simplesite.models.post import Post, PostRevision
from simplesite.pages.account import AccessCheckLoader, enforce_permission, get_access_checker
from simplesite.schemas.forms import PostFormData, RevisionRow, RevisionsFormData
from simplesite.services import posts
from simplesite.services.posts import PostRecord
from simplesite.util import parse_uuid

logger = logging.getLogger(__name__)


def load_post_entity(request: Request) -> PostRecord | None:
    """Load the post named by the ``id`` path parameter.

    Returns None when the route has no such parameter or the post does not
    exist; raises ValueError for an id that is not a UUID.
    """
    post_id = request.path_params.get("id")
    if not post_id:
        return None
    return posts.load_post(database.get(request), parse_uuid(post_id))


bind_post_loader = entity_loader(load_post_entity)


def ensure_post(request: Request, _: None = Depends(bind_post_loader)) -> PostRecord:
    """Dependency: the post from the URL, or 404."""
    log = get_logger(request, logger)
    try:
        record = get_entity(request)
    except ValueError as exc:
        log.info("invalid post id", exc_info=exc)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="entity not found") from exc
    except SQLAlchemyError as exc:
        log.error("failed to load entity", exc_info=exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to load entity"
        ) from exc

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="entity not found")

    request.state.post = record
    return record


def get_post_record(request: Request) -> PostRecord:
    return request.state.post


def require_edit_access(request: Request, record: PostRecord = Depends(ensure_post)) -> PostRecord:
    """Dependency: the post from the URL, if the current account may edit it."""
    if not posts.can_edit(session.get(request), record.revision.author, get_access_checker(request)):
        get_logger(request, logger).info("permission denied permission=edit-post")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="permission denied")
    return record


@dataclass
class PostWidget:
    record: PostRecord
    can_edit: bool


def list_page(request: Request, db: Session = Depends(get_db)) -> Response:
    sess = session.get(request)
    access = get_access_checker(request)

    try:
        records = posts.list_posts(db)
    except SQLAlchemyError as exc:
        return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "error listing posts", exc)

    body = {
        "posts": [PostWidget(record, posts.can_edit(sess, record.revision.author, access)) for record in records],
        "can_create": access.has(posts.PERMISSION_CREATE_POST),
    }
    return respond.page(request, "posts.html", "Posts", sess, access, body)


def revision_diff_page(
    request: Request,
    r0: str,
    r1: str,
    record: PostRecord = Depends(require_edit_access),
    db: Session = Depends(get_db),
) -> Response:
    """Diff of two revisions of a post, older to newer."""
    try:
        revisions = posts.load_revisions(db, record.post.id, r0, r1)
    except (ValueError, LookupError) as exc:
        return respond.error(request, status.HTTP_404_NOT_FOUND, "not found", exc)
    except SQLAlchemyError as exc:
        return respond.error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "failed to load revisions", exc)

    newer, older = revisions
    return respond.page(
        request,
        "diff.html",
        "Diff",
        session.get(request),
        get_access_checker(request),
        {"diff": posts.render_diff(older.content, newer.content)},
    )


class PostForm(AccessCheckLoader):
    """Creates a post, or adds a revision to the post in the URL."""

    def __init__(self, markdown_filter: Callable[[str], str]):
        self.markdown_filter = markdown_filter

    def load_data(self, request: Request) -> PostFormData:
        record = get_entity(request)
        if record is None:
            return PostFormData()
        return PostFormData(title=record.post.title, content=record.revision.content)

    def validate(self, request: Request, data: PostFormData) -> list[str]:
        if not data.title.strip():
            return ["Title is required"]
        return []

    def submit(self, request: Request, data: PostFormData) -> SubmitResult:
        try:
            record = get_entity(request)
        except (ValueError, SQLAlchemyError) as exc:
            return Error("Failed to load entity", exc)
        if record is None:
            record = PostRecord(post=Post(), revision=None)

        record.post.title = data.title
        record.revision = PostRevision(
            content=data.content,
            filtered=self.markdown_filter(data.content),
            author=session.get(request).id,
        )

        try:
            record.save(database.get(request))
        except SQLAlchemyError as exc:
            return Error("Cannot save post", exc)

        return Redirect("/posts")


class RevisionsForm(AccessCheckLoader):
    """Lists the revisions of a post; publishes one or diffs two of them."""

    def load_data(self, request: Request) -> RevisionsFormData:
        record = get_post_record(request)
        revisions = posts.list_revisions(database.get(request), record.post.id)
        return RevisionsFormData(
            revisions=[
                RevisionRow(id=revision.id, created=revision.created, active=revision.id == record.post.revision)
                for revision in revisions
            ]
        )

    def validate(self, request: Request, data: RevisionsFormData) -> list[str]:
        if data.op == "diff":
            if not data.diff0 or not data.diff1:
                return ["Two revisions must be selected"]
            if data.diff0 == data.diff1:
                return ["Cannot diff the same revision"]
            try:
                parse_uuid(data.diff0)
                parse_uuid(data.diff1)
            except ValueError:
                return ["Invalid revision"]
        elif not data.op.startswith("set:"):
            return ["Invalid form operation"]
        return []

    def submit(self, request: Request, data: RevisionsFormData) -> SubmitResult:
        record = get_post_record(request)
        db = database.get(request)

        if data.op == "diff":
            return Redirect(posixpath.join(request.url.path, data.diff0, data.diff1))

        try:
            revision = posts.load_revision(db, record.post.id, parse_uuid(data.op[len("set:"):]))
        except ValueError as exc:
            return Error("Invalid form operation", exc)
        except SQLAlchemyError as exc:
            return Error("Cannot publish revision", exc)
        if revision is None:
            return Error("Invalid form operation")

        try:
            posts.publish(db, record.post, revision.id)
        except SQLAlchemyError as exc:
            return Error("Cannot publish revision", exc)

        return Redirect("/posts")


def build_router(store: Store, markdown_filter: Callable[[str], str]) -> APIRouter:
    """Routes of the post pages. ``store`` holds the form tokens."""
    router = APIRouter(tags=["post"])
    edit_access = [Depends(require_edit_access)]

    router.add_api_route(
        "/posts", list_page, methods=["GET"], response_class=HTMLResponse, include_in_schema=False
    )
    router.add_api_route(
        "/post/{id}/revisions/{r0}/{r1}",
        revision_diff_page,
        methods=["GET"],
        response_class=HTMLResponse,
        include_in_schema=False,
    )

    Form(store, "Create post", "post_form.html", PostForm(markdown_filter)).routes(
        router,
        "/posts/create",
        [Depends(enforce_permission(posts.PERMISSION_CREATE_POST)), Depends(bind_post_loader)],
    )
    Form(store, "Edit post", "post_form.html", PostForm(markdown_filter)).routes(
        router, "/post/{id}/edit", edit_access
    )
    Form(store, "Revisions", "revisions.html", RevisionsForm()).routes(
        router, "/post/{id}/revisions", edit_access
    )

    return router
