from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import ACCESS_COOKIE, REFRESH_COOKIE, get_access_token, get_current_user
from app.core.config import settings
from app.core.rate_limiter import auth_rate_limit, strict_rate_limit
from app.core.tokens import TokenPair
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import (
    ForgotPasswordRequest,
    PasswordValidationResult,
    ResetPasswordRequest,
    ValidatePasswordRequest,
)
from app.schemas.user import UserCreate, UserLogin, UserResponse
from app.services.auth_service import AuthResult, AuthService
from app.utils.response import success

router = APIRouter()


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": settings.COOKIE_SAMESITE,
        "domain": settings.cookie_domain,
        "path": "/",
    }


def _set_auth_cookies(response: JSONResponse, tokens: TokenPair) -> None:
    options = _cookie_options()
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=tokens.access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
        **options,
    )
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=tokens.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_SECONDS,
        **options,
    )


def _clear_auth_cookies(response: JSONResponse) -> None:
    options = _cookie_options()
    response.delete_cookie(key=ACCESS_COOKIE, **options)
    response.delete_cookie(key=REFRESH_COOKIE, **options)


def _user_data(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


def _session_response(result: AuthResult, message: str, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=success(
            data={
                "user": _user_data(result.user),
                "access_token": result.tokens.access_token,
                "refresh_token": result.tokens.refresh_token,
                "token_type": "bearer",
                "expires_in": settings.ACCESS_TOKEN_EXPIRE_SECONDS,
            },
            message=message,
        ),
    )
    _set_auth_cookies(response, result.tokens)
    return response


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    description="""
Creates a new user account and signs the user in.

Validation:
1. Email must be unique
2. Password must satisfy the password policy
3. Password is hashed before persistence
""",
    responses={
        201: {"description": "Registration successful"},
        400: {"description": "Email already registered or validation error"},
        429: {"description": "Too many attempts"},
    },
    dependencies=[Depends(auth_rate_limit)],
)
def register(user_in: UserCreate, db: Session = Depends(get_db)):
    result = AuthService.register(db, email=user_in.email, password=user_in.password, name=user_in.name)
    return _session_response(result, "User registered successfully", status.HTTP_201_CREATED)


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    description="""
Authenticates a user and sets `access_token` and `refresh_token` as httpOnly cookies.

Unknown emails and wrong passwords produce the same 401 response.
""",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
        429: {"description": "Too many attempts"},
    },
    dependencies=[Depends(auth_rate_limit)],
)
def login(credentials: UserLogin, db: Session = Depends(get_db)):
    result = AuthService.login(db, email=credentials.email, password=credentials.password)
    return _session_response(result, "Login successful")


@router.get("/me", response_model=dict)
def me(current_user: User = Depends(get_current_user)):
    return success(data={"user": _user_data(current_user)}, message="Authenticated")


@router.post("/refresh", response_model=dict)
def refresh(request: Request, db: Session = Depends(get_db)):
    result = AuthService.refresh(db, request.cookies.get(REFRESH_COOKIE))
    return _session_response(result, "Tokens refreshed successfully")


@router.post("/logout", response_model=dict)
def logout(request: Request, db: Session = Depends(get_db)):
    AuthService.logout(
        db,
        access_token=get_access_token(request),
        refresh_token=request.cookies.get(REFRESH_COOKIE),
    )

    response = JSONResponse(content=success(message="Logout successful"))
    _clear_auth_cookies(response)
    return response


@router.post("/logout-all", response_model=dict)
def logout_all(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    AuthService.logout_all(db, current_user.id)

    response = JSONResponse(content=success(message="Logged out from all devices"))
    _clear_auth_cookies(response)
    return response


@router.post(
    "/forgot-password",
    response_model=dict,
    dependencies=[Depends(strict_rate_limit)],
)
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    AuthService.request_password_reset(db, payload.email)
    return success(message="If an account with that email exists, a reset link has been sent")


@router.post(
    "/reset-password",
    response_model=dict,
    dependencies=[Depends(strict_rate_limit)],
)
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    AuthService.reset_password(db, token=payload.token, new_password=payload.password)
    return success(message="Password reset successfully")


@router.post("/validate-password", response_model=dict)
def validate_password(payload: ValidatePasswordRequest):
    errors = AuthService.validate_password(payload.password)
    result = PasswordValidationResult(valid=not errors, errors=errors)
    return success(data=result.model_dump())
