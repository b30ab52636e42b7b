from pydantic import BaseModel, EmailStr, Field
from typing import List


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str


class ValidatePasswordRequest(BaseModel):
    password: str


class PasswordValidationResult(BaseModel):
    valid: bool
    errors: List[str]
