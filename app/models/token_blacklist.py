from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.db.base_class import Base
from app.utils.time import utcnow


class TokenBlacklist(Base):
    """Revoked tokens, keyed by a SHA-256 fingerprint of the raw token."""

    __tablename__ = "token_blacklist"

    id = Column(Integer, primary_key=True, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    reason = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
