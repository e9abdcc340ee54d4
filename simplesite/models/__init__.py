"""SQLAlchemy models package."""
from simplesite.models.account import Account, Permission
from simplesite.models.post import Post, PostRevision
from simplesite.models.token import Token

__all__ = [
    "Account",
    "Permission",
    "Post",
    "PostRevision",
    "Token",
]
