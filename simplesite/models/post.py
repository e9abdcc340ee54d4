"""Post and revision models."""
import uuid

from sqlalchemy import Column, ForeignKey, String, Text

from simplesite.database import Base
from simplesite.util import utcnow_iso


class Post(Base):
    """A post; ``revision`` points at the published revision."""

    __tablename__ = "post"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    revision = Column(
        String(36),
        ForeignKey(
            "post_revision.id",
            onupdate="CASCADE",
            ondelete="CASCADE",
            use_alter=True,
            name="post_revision_fk",
        ),
        unique=True,
        nullable=True,
    )
    title = Column(String(255), nullable=False)
    created = Column(String(32), nullable=False, default=utcnow_iso)
    updated = Column(String(32), nullable=False, default=utcnow_iso, index=True)

    def publish(self, revision_id: str) -> None:
        self.revision = revision_id

    def unpublish(self) -> None:
        """Hide the post from the listing pages."""
        self.revision = None


class PostRevision(Base):
    """An immutable revision of a post."""

    __tablename__ = "post_revision"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    post = Column(
        String(36),
        ForeignKey("post.id", onupdate="CASCADE", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content = Column(Text, nullable=False)
    filtered = Column(Text, nullable=False)
    author = Column(
        String(36),
        ForeignKey("account.id", onupdate="CASCADE", ondelete="CASCADE"),
        nullable=False,
    )
    created = Column(String(32), nullable=False, default=utcnow_iso)
