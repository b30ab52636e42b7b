from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import EmailAlreadyExists
from app.core.security import hash_password
from app.models.user import User
from app.utils.time import utcnow

logger = structlog.get_logger()

EMAIL_IN_USE = "Email is already in use"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == normalize_email(email)).first()

    @staticmethod
    def get_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def create_user(db: Session, email: str, password: str, name: str) -> User:
        """Persist a new user. The row is committed before this returns."""
        user = User(
            email=normalize_email(email),
            password_hash=hash_password(password),
            name=name.strip(),
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email.
            db.rollback()
            raise EmailAlreadyExists()
        db.refresh(user)

        logger.info("user_created", user_id=user.id)
        return user

    @staticmethod
    def update_profile(
        db: Session,
        user: User,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Apply profile changes. A new email must not belong to another user
        and has to be verified again."""
        if name:
            user.name = name

        if email:
            email = normalize_email(email)
            if email != user.email:
                existing = UserService.get_by_email(db, email)
                if existing is not None and existing.id != user.id:
                    db.rollback()
                    raise EmailAlreadyExists(message=EMAIL_IN_USE)
                user.email = email
                user.email_verified = False

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise EmailAlreadyExists(message=EMAIL_IN_USE)
        db.refresh(user)

        logger.info("user_profile_updated", user_id=user.id)
        return user

    @staticmethod
    def set_password(db: Session, user: User, password: str) -> User:
        user.password_hash = hash_password(password)
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def set_password_reset_token(db: Session, user: User, token_hash: str, expires_at: datetime) -> None:
        """Store a reset secret digest, replacing any earlier one for the user."""
        user.password_reset_token_hash = token_hash
        user.password_reset_expires_at = expires_at
        db.commit()

    @staticmethod
    def consume_password_reset_token(db: Session, token_hash: str, password: str) -> Optional[int]:
        """Swap in a new password if ``token_hash`` is current; return the user id.

        The check and the write are one conditional UPDATE so a token can only
        be spent once. The caller owns the commit.
        """
        now = utcnow()
        user_id = (
            db.query(User.id)
            .filter(
                User.password_reset_token_hash == token_hash,
                User.password_reset_expires_at > now,
            )
            .scalar()
        )
        if user_id is None:
            return None

        result = db.execute(
            update(User)
            .where(
                User.id == user_id,
                User.password_reset_token_hash == token_hash,
                User.password_reset_expires_at > now,
            )
            .values(
                password_hash=hash_password(password),
                password_reset_token_hash=None,
                password_reset_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return user_id
