"""Single-use tokens sent out of band (email verification links)."""
import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.orm import Session

from simplesite.models.token import Token
from simplesite.util import random_hex, utcnow_iso

TOKEN_LENGTH = 64

logger = logging.getLogger(__name__)


class TokenManager:
    """Creates and consumes tokens in the current database session."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, uuid: str, category: str, expires: datetime | None = None) -> str:
        """Create a token, replacing older tokens of the same uuid and category."""
        token = random_hex(TOKEN_LENGTH)
        self.db.query(Token).filter(Token.uuid == uuid, Token.category == category).delete(
            synchronize_session=False
        )
        self.db.add(
            Token(
                uuid=uuid,
                category=category,
                token=token,
                expires=expires.astimezone(timezone.utc).isoformat(timespec="microseconds") if expires else None,
            )
        )
        self.db.flush()
        return token

    def consume(self, uuid: str, category: str, token: str) -> bool:
        """Delete a live matching token. Returns whether there was one."""
        deleted = (
            self.db.query(Token)
            .filter(
                Token.uuid == uuid,
                Token.category == category,
                Token.token == token,
                or_(Token.expires.is_(None), Token.expires > utcnow_iso()),
            )
            .delete(synchronize_session=False)
        )
        return deleted > 0

    def remove_expired(self) -> int:
        removed = self.db.query(Token).filter(Token.expires < utcnow_iso()).delete(synchronize_session=False)
        logger.debug("removed expired tokens count=%d", removed)
        return removed
