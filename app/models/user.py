from sqlalchemy import Boolean, Column, Integer, String, DateTime
from app.utils.time import utcnow
from app.db.base_class import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)

    # Only the SHA-256 digest of the reset secret is stored.
    password_reset_token_hash = Column(String(64), unique=True, index=True, nullable=True)
    password_reset_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
