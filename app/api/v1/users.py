from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import User
from app.schemas.user import ChangePasswordRequest, UserResponse, UserUpdate
from app.services.auth_service import AuthService
from app.services.user_service import UserService
from app.utils.response import success

router = APIRouter()


@router.get("/me", response_model=dict)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile"""
    return success(data=UserResponse.model_validate(current_user), message="User profile retrieved")


@router.put("/me", response_model=dict)
def update_user_profile(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update user profile"""
    user = UserService.update_profile(db, current_user, name=user_update.name, email=user_update.email)
    return success(data=UserResponse.model_validate(user), message="User profile updated")


@router.post("/me/change-password", response_model=dict)
def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    AuthService.change_password(
        db,
        current_user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return success(message="Password updated successfully")
