from sqlalchemy import Column, DateTime, ForeignKey, Integer

from app.db.base_class import Base
from app.utils.time import utcnow


class UserLogoutTimestamp(Base):
    """Per-user "logout everywhere" cutoff.

    Any token whose ``iat`` is at or before ``logout_at`` is rejected.
    """

    __tablename__ = "user_logout_timestamps"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    logout_at = Column(DateTime, default=utcnow, nullable=False, index=True)
