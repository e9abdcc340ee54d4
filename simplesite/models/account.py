"""Account and permission models."""
import uuid

from sqlalchemy import Boolean, Column, ForeignKey, String
from sqlalchemy.orm import relationship

from simplesite.database import Base


class Account(Base):
    """User account. Inactive until the email address is verified."""

    __tablename__ = "account"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(255), unique=True, nullable=False)
    password = Column(String(128), nullable=False)
    salt = Column(String(32), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    active = Column(Boolean, nullable=False, default=False)
    normalized_username = Column(String(255), unique=True, nullable=False)

    permissions = relationship("Permission", back_populates="account", cascade="all, delete-orphan")


class Permission(Base):
    """A capability granted to an account."""

    __tablename__ = "permission"

    id = Column(
        String(36),
        ForeignKey("account.id", onupdate="CASCADE", ondelete="CASCADE", name="permission_account_id_fk"),
        primary_key=True,
    )
    permission = Column(String(255), primary_key=True)

    account = relationship("Account", back_populates="permissions")
