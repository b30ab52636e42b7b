"""Login, registration, refresh, logout and password reset.

Composes the token codec, the revocation ledger and the user table. Token
issuance after registration is a separate step from user creation: the user
row is committed first and tokens can always be re-derived from it.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidResetToken,
    InvalidToken,
    ValidationError,
)
from app.core.security import (
    ensure_strong_password,
    fingerprint,
    generate_reset_token,
    pwd_context,
    validate_password,
    verify_password,
)
from app.core.tokens import TokenKind, TokenPair, TokenPayload, create_token_pair, decode_token
from app.models.user import User
from app.services.revocation_ledger import RevocationLedger
from app.services.user_service import UserService, normalize_email
from app.utils.email import queue_password_reset_email, queue_welcome_email
from app.utils.time import utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthResult:
    user: User
    tokens: TokenPair


class AuthService:

    @staticmethod
    def issue_tokens(user: User) -> TokenPair:
        return create_token_pair(user)

    @staticmethod
    def register(db: Session, email: str, password: str, name: str) -> AuthResult:
        email = normalize_email(email)

        if UserService.get_by_email(db, email):
            logger.info("registration_rejected", reason="email_exists")
            raise EmailAlreadyExists()

        ensure_strong_password(password)

        user = UserService.create_user(db, email=email, password=password, name=name)
        tokens = AuthService.issue_tokens(user)

        try:
            queue_welcome_email(user.email, user.name)
        except Exception:
            logger.warning("welcome_email_dispatch_failed", user_id=user.id, exc_info=True)

        logger.info("user_registered", user_id=user.id)
        return AuthResult(user=user, tokens=tokens)

    @staticmethod
    def login(db: Session, email: str, password: str) -> AuthResult:
        user = UserService.get_by_email(db, email)

        if user is None:
            # Burn comparable CPU so response timing does not reveal the miss.
            pwd_context.dummy_verify()
            logger.info("login_failed", reason="unknown_email")
            raise InvalidCredentials()

        if not verify_password(password, user.password_hash):
            logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise InvalidCredentials()

        logger.info("login_succeeded", user_id=user.id)
        return AuthResult(user=user, tokens=AuthService.issue_tokens(user))

    @staticmethod
    def _verify(db: Session, token: Optional[str], kind: TokenKind) -> Tuple[TokenPayload, User]:
        """Run every acceptance check for ``token``; raise ``InvalidToken`` on the first failure."""
        payload = decode_token(token, expected_kind=kind)
        if payload is None:
            AuthService._reject("decode", kind)

        if RevocationLedger.is_blacklisted(db, token):
            AuthService._reject("blacklisted", kind, user_id=payload.user_id)

        if not RevocationLedger.is_valid_for_user(db, payload.user_id, payload.issued_at):
            AuthService._reject("logged_out_everywhere", kind, user_id=payload.user_id)

        user = UserService.get_by_id(db, payload.user_id)
        if user is None:
            AuthService._reject("user_missing", kind, user_id=payload.user_id)

        return payload, user

    @staticmethod
    def _reject(step: str, kind: TokenKind, **context) -> None:
        logger.info("token_rejected", step=step, kind=kind.value, **context)
        raise InvalidToken()

    @staticmethod
    def authenticate(db: Session, access_token: Optional[str]) -> User:
        """Resolve the user behind an access token presented with a request."""
        _, user = AuthService._verify(db, access_token, TokenKind.ACCESS)
        return user

    @staticmethod
    def refresh(db: Session, refresh_token: Optional[str]) -> AuthResult:
        """Exchange a refresh token for a new pair; the old refresh token is spent."""
        payload, user = AuthService._verify(db, refresh_token, TokenKind.REFRESH)

        RevocationLedger.blacklist(db, refresh_token, user_id=user.id, reason="refresh_rotated")

        logger.info("tokens_refreshed", user_id=user.id)
        return AuthResult(user=user, tokens=AuthService.issue_tokens(user))

    @staticmethod
    def logout(db: Session, access_token: Optional[str], refresh_token: Optional[str] = None) -> int:
        """Best-effort revocation of the presented tokens.

        Invalid or missing tokens are ignored and storage failures are logged,
        so the caller can always clear the client's cookies.
        """
        revoked = 0
        for token, kind in ((access_token, TokenKind.ACCESS), (refresh_token, TokenKind.REFRESH)):
            payload = decode_token(token, expected_kind=kind)
            if payload is None:
                continue
            try:
                RevocationLedger.blacklist(db, token, user_id=payload.user_id, reason="logout")
                revoked += 1
            except SQLAlchemyError:
                db.rollback()
                logger.exception("logout_blacklist_failed", kind=kind.value, user_id=payload.user_id)

        logger.info("logout", revoked=revoked)
        return revoked

    @staticmethod
    def logout_all(db: Session, user_id: int) -> None:
        RevocationLedger.revoke_all_for_user(db, user_id)

    @staticmethod
    def request_password_reset(db: Session, email: str) -> None:
        """Start a password reset. Callers get the same outcome for unknown emails."""
        user = UserService.get_by_email(db, email)
        if user is None:
            logger.info("password_reset_requested", known=False)
            return

        token = generate_reset_token()
        expires_at = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        UserService.set_password_reset_token(db, user, fingerprint(token), expires_at)

        try:
            queue_password_reset_email(user.email, token)
        except Exception:
            # The stored token stays valid and can still be handed over by support.
            logger.warning("password_reset_dispatch_failed", user_id=user.id, exc_info=True)

        logger.info("password_reset_requested", known=True, user_id=user.id)

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> None:
        ensure_strong_password(new_password)

        user_id = UserService.consume_password_reset_token(db, fingerprint(token), new_password)
        if user_id is None:
            db.rollback()
            logger.info("password_reset_rejected")
            raise InvalidResetToken()

        # Commits the password change together with the session cutoff.
        RevocationLedger.revoke_all_for_user(db, user_id)
        logger.info("password_reset_completed", user_id=user_id)

    @staticmethod
    def change_password(db: Session, user: User, current_password: str, new_password: str) -> User:
        if not verify_password(current_password, user.password_hash):
            raise ValidationError(message="Current password is incorrect")

        ensure_strong_password(new_password)
        UserService.set_password(db, user, new_password)

        logger.info("password_changed", user_id=user.id)
        return user

    @staticmethod
    def validate_password(password: str) -> List[str]:
        return validate_password(password)
