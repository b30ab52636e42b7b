"""Server-side revocation for otherwise stateless tokens.

Two mechanisms:

* individual tokens are blacklisted by SHA-256 fingerprint until well past
  the longest token lifetime;
* a per-user logout timestamp rejects every token issued at or before it.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tokens import token_fingerprint
from app.models.token_blacklist import TokenBlacklist
from app.models.user_logout_timestamp import UserLogoutTimestamp
from app.utils.time import to_epoch, utcnow

logger = structlog.get_logger()


def _dialect_insert(db: Session):
    """Return the dialect ``insert`` construct that supports ON CONFLICT, if any."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


class RevocationLedger:

    @staticmethod
    def blacklist(
        db: Session,
        token: str,
        user_id: Optional[int] = None,
        reason: str = "logout",
        commit: bool = True,
    ) -> None:
        """Reject ``token`` from now on. Blacklisting twice is a no-op."""
        now = utcnow()
        values = {
            "token_hash": token_fingerprint(token),
            "user_id": user_id,
            "expires_at": now + timedelta(days=settings.BLACKLIST_RETENTION_DAYS),
            "reason": reason,
            "created_at": now,
        }

        insert = _dialect_insert(db)
        if insert is not None:
            db.execute(
                insert(TokenBlacklist)
                .values(**values)
                .on_conflict_do_nothing(index_elements=[TokenBlacklist.token_hash])
            )
        else:
            exists = (
                db.query(TokenBlacklist.id)
                .filter(TokenBlacklist.token_hash == values["token_hash"])
                .first()
            )
            if exists is None:
                try:
                    with db.begin_nested():
                        db.add(TokenBlacklist(**values))
                except IntegrityError:
                    pass

        if commit:
            db.commit()
        logger.info("token_blacklisted", user_id=user_id, reason=reason)

    @staticmethod
    def is_blacklisted(db: Session, token: str) -> bool:
        # Rows past expires_at are ignored even before cleanup removes them.
        return (
            db.query(TokenBlacklist.id)
            .filter(
                TokenBlacklist.token_hash == token_fingerprint(token),
                TokenBlacklist.expires_at > utcnow(),
            )
            .first()
            is not None
        )

    @staticmethod
    def revoke_all_for_user(
        db: Session,
        user_id: int,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> datetime:
        """Record a logout-everywhere cutoff for ``user_id`` (overwrites)."""
        logout_at = now or utcnow()
        # Tokens carry millisecond iat; keep the cutoff on the same grid.
        logout_at = logout_at.replace(microsecond=logout_at.microsecond // 1000 * 1000)

        insert = _dialect_insert(db)
        if insert is not None:
            statement = insert(UserLogoutTimestamp).values(user_id=user_id, logout_at=logout_at)
            db.execute(
                statement.on_conflict_do_update(
                    index_elements=[UserLogoutTimestamp.user_id],
                    set_={"logout_at": statement.excluded.logout_at},
                )
            )
        else:
            db.merge(UserLogoutTimestamp(user_id=user_id, logout_at=logout_at))

        if commit:
            db.commit()
        logger.info("user_sessions_revoked", user_id=user_id)
        return logout_at

    @staticmethod
    def logout_cutoff(db: Session, user_id: int) -> Optional[datetime]:
        return (
            db.query(UserLogoutTimestamp.logout_at)
            .filter(UserLogoutTimestamp.user_id == user_id)
            .scalar()
        )

    @staticmethod
    def is_valid_for_user(db: Session, user_id: int, issued_at: float) -> bool:
        """True unless the token was issued at or before the user's cutoff."""
        cutoff = RevocationLedger.logout_cutoff(db, user_id)
        if cutoff is None:
            return True
        return issued_at > to_epoch(cutoff)

    @staticmethod
    def cleanup(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
        """Delete expired blacklist rows and stale logout cutoffs."""
        now = now or utcnow()
        retention_cutoff = now - timedelta(days=settings.LOGOUT_TIMESTAMP_RETENTION_DAYS)
        try:
            blacklist_deleted = (
                db.query(TokenBlacklist)
                .filter(TokenBlacklist.expires_at < now)
                .delete(synchronize_session=False)
            )
            timestamps_deleted = (
                db.query(UserLogoutTimestamp)
                .filter(UserLogoutTimestamp.logout_at < retention_cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "revocation_ledger_cleanup",
            blacklist_deleted=blacklist_deleted,
            logout_timestamps_deleted=timestamps_deleted,
        )
        return {
            "blacklist_deleted": blacklist_deleted,
            "logout_timestamps_deleted": timestamps_deleted,
        }
