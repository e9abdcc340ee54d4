"""Post storage, listing and revision diffs."""
import difflib
import uuid
from dataclasses import dataclass

from markupsafe import Markup, escape
from sqlalchemy.orm import Session

from simplesite.models.post import Post, PostRevision
from simplesite.util import parse_uuid, utcnow_iso

PERMISSION_CREATE_POST = "create-post"
PERMISSION_EDIT_OWN_POST = "edit-own-post"
PERMISSION_EDIT_ANY_POST = "edit-any-post"

PAGE_SIZE = 15


@dataclass
class PostRecord:
    """A post with its current revision."""

    post: Post
    revision: PostRevision

    def save(self, db: Session) -> None:
        """Store the post with ``revision`` as a new, published revision.

        A new post is inserted first so the revision can reference it, then
        the post is pointed at the revision.
        """
        if self.post.id is None:
            self.post.id = str(uuid.uuid4())
            self.post.updated = utcnow_iso()
            db.add(self.post)
            db.flush()

        self.revision.id = str(uuid.uuid4())
        self.revision.post = self.post.id
        db.add(self.revision)
        db.flush()

        publish(db, self.post, self.revision.id)


def publish(db: Session, post: Post, revision_id: str) -> None:
    post.publish(revision_id)
    post.updated = utcnow_iso()
    db.add(post)
    db.flush()


def _records_query(db: Session):
    return (
        db.query(Post, PostRevision)
        .join(PostRevision, Post.revision == PostRevision.id)
        .order_by(Post.updated.desc())
    )


def list_posts(db: Session, limit: int = PAGE_SIZE, offset: int = 0) -> list[PostRecord]:
    """Published posts, most recently updated first."""
    rows = _records_query(db).limit(limit).offset(offset).all()
    return [PostRecord(post=post, revision=revision) for post, revision in rows]


def load_post(db: Session, post_id: str) -> PostRecord | None:
    row = _records_query(db).filter(Post.id == post_id).first()
    if row is None:
        return None
    post, revision = row
    return PostRecord(post=post, revision=revision)


def list_revisions(db: Session, post_id: str) -> list[PostRevision]:
    """Revisions of a post, newest first."""
    return (
        db.query(PostRevision)
        .filter(PostRevision.post == post_id)
        .order_by(PostRevision.created.desc())
        .all()
    )


def load_revision(db: Session, post_id: str, revision_id: str) -> PostRevision | None:
    return (
        db.query(PostRevision)
        .filter(PostRevision.post == post_id, PostRevision.id == revision_id)
        .first()
    )


def load_revisions(db: Session, post_id: str, *revision_ids: str) -> list[PostRevision]:
    """Load distinct revisions of a post, newest first.

    Raises LookupError unless every id names a different revision of the post.
    """
    ids = [parse_uuid(revision_id) for revision_id in revision_ids]
    revisions = (
        db.query(PostRevision)
        .filter(PostRevision.post == post_id, PostRevision.id.in_(ids))
        .order_by(PostRevision.created.desc())
        .all()
    )
    if len(revisions) != len(ids):
        raise LookupError("not enough revisions found")
    return revisions


def can_edit(sess, author: str, access) -> bool:
    """Whether the session's account may edit a post written by ``author``."""
    if not sess.logged_in():
        return False
    if access.has(PERMISSION_EDIT_ANY_POST):
        return True
    return sess.id == author and access.has(PERMISSION_EDIT_OWN_POST)


def _diff_text(text: str) -> str:
    return str(escape(text)).replace("\n", "&para;<br />")


def render_diff(old: str, new: str) -> Markup:
    """Character level diff of two texts as HTML."""
    parts = []
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)
    for op, i1, i2, j1, j2 in matcher.get_opcodes():
        if op == "equal":
            parts.append(f"<span>{_diff_text(old[i1:i2])}</span>")
            continue
        if op in ("delete", "replace"):
            parts.append(f"<del>{_diff_text(old[i1:i2])}</del>")
        if op in ("insert", "replace"):
            parts.append(f"<ins>{_diff_text(new[j1:j2])}</ins>")
    return Markup("".join(parts))
