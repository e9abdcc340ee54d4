"""Out-of-band verification tokens."""
from sqlalchemy import Column, String

from simplesite.database import Base


class Token(Base):
    """A single-use token for an entity (``uuid``) and purpose (``category``)."""

    __tablename__ = "token"

    uuid = Column(String(36), primary_key=True)
    category = Column(String(64), primary_key=True)
    token = Column(String(128), unique=True, nullable=False)
    expires = Column(String(32))
