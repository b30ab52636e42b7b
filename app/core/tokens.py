"""Signed, self-contained access and refresh tokens.

Tokens are HS256 JWTs carrying ``sub`` (user id), ``email``, ``type``,
``iat``, ``exp`` and a random ``jti``. Verification is a pure function of
the token, the signing secret and the current time; every failure collapses
into ``None`` so callers cannot learn why a token was rejected.
"""
import enum
import math
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from jose import JWTError, jwt

from app.core.config import settings
from app.core.security import fingerprint

logger = structlog.get_logger()

REQUIRED_CLAIMS = ("sub", "email", "type", "iat", "exp")


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"

    @property
    def ttl_seconds(self) -> int:
        if self is TokenKind.ACCESS:
            return settings.ACCESS_TOKEN_EXPIRE_SECONDS
        if self is TokenKind.REFRESH:
            return settings.REFRESH_TOKEN_EXPIRE_SECONDS
        raise ValueError(f"Unhandled token kind: {self!r}")


@dataclass(frozen=True)
class TokenPayload:
    user_id: int
    email: str
    kind: TokenKind
    issued_at: float
    expires_at: float
    jti: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    issued_at: float


def _now() -> float:
    # Millisecond precision, floored, so a token minted just after a
    # logout-all cutoff still compares strictly greater than it.
    return math.floor(time.time() * 1000) / 1000


def create_token(user, kind: TokenKind, now: Optional[float] = None, expires_in: Optional[int] = None) -> str:
    """Create a signed token of ``kind`` for ``user``."""
    issued_at = _now() if now is None else now
    ttl = kind.ttl_seconds if expires_in is None else int(expires_in)

    claims = {
        "sub": str(user.id),
        "email": user.email,
        "type": kind.value,
        "iat": issued_at,
        "exp": issued_at + ttl,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_token_pair(user, now: Optional[float] = None) -> TokenPair:
    """Issue an access and a refresh token sharing the same ``iat``."""
    issued_at = _now() if now is None else now
    return TokenPair(
        access_token=create_token(user, TokenKind.ACCESS, now=issued_at),
        refresh_token=create_token(user, TokenKind.REFRESH, now=issued_at),
        issued_at=issued_at,
    )


def decode_token(token: Optional[str], expected_kind: Optional[TokenKind] = None) -> Optional[TokenPayload]:
    """Verify ``token`` and return its payload, or ``None`` if it is unusable."""
    if not token:
        return None

    try:
        claims = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"require_iat": True, "require_exp": True, "require_sub": True},
        )
    except JWTError as exc:
        logger.debug("token_decode_failed", reason=type(exc).__name__)
        return None

    missing = [claim for claim in REQUIRED_CLAIMS if claims.get(claim) in (None, "")]
    if missing:
        logger.debug("token_missing_claims", missing=missing)
        return None

    try:
        kind = TokenKind(claims["type"])
        payload = TokenPayload(
            user_id=int(claims["sub"]),
            email=str(claims["email"]),
            kind=kind,
            issued_at=float(claims["iat"]),
            expires_at=float(claims["exp"]),
            jti=claims.get("jti"),
        )
    except (TypeError, ValueError):
        logger.debug("token_malformed_claims")
        return None

    if expected_kind is not None and payload.kind is not expected_kind:
        logger.debug("token_kind_mismatch", expected=expected_kind.value, actual=payload.kind.value)
        return None

    return payload


def token_fingerprint(token: str) -> str:
    return fingerprint(token)
