from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.services.auth_service import AuthService

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def get_access_token(request: Request) -> Optional[str]:
    """Access token from the cookie, falling back to a bearer header."""
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from cookie or bearer token."""
    user = AuthService.authenticate(db, get_access_token(request))
    request.state.user_id = user.id
    return user
