"""
Pydantic schemas for authentication and account requests.
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, EmailStr


class SignupRequest(BaseModel):
    """Schema for account creation."""
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="Password (at least 8 characters)")
    confirm_password: str = Field(..., alias="confirmPassword", description="Password confirmation")

    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    """Schema for user login."""
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="User password")


class LoginResponse(BaseModel):
    """Schema for login response with token and user info."""
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Token expiration time in seconds")
    user: Dict[str, Any] = Field(..., description="Public user profile")


class VerifyEmailRequest(BaseModel):
    """Schema for email verification."""
    token: str = Field(..., min_length=1, description="Verification token")


class EmailRequest(BaseModel):
    """Schema for requests that only carry an email (resend verification, forgot password)."""
    email: EmailStr = Field(..., description="User email address")


class ResetPasswordRequest(BaseModel):
    """Schema for password reset."""
    token: str = Field(..., min_length=1, description="Reset token")
    password: str = Field(..., description="New password")
    confirm_password: str = Field(..., alias="confirmPassword", description="Password confirmation")

    class Config:
        populate_by_name = True


class ChangeEmailRequest(BaseModel):
    """Schema for changing the account email."""
    new_email: EmailStr = Field(..., alias="newEmail", description="New email address")
    password: str = Field(..., description="Current password")

    class Config:
        populate_by_name = True


class ChangePasswordRequest(BaseModel):
    """Schema for changing password."""
    current_password: str = Field(..., alias="currentPassword", description="Current password")
    new_password: str = Field(..., alias="newPassword", description="New password")
    confirm_password: Optional[str] = Field(None, alias="confirmPassword", description="Password confirmation")

    class Config:
        populate_by_name = True


class DeleteAccountRequest(BaseModel):
    """Schema for account deletion."""
    password: str = Field(..., description="Current password")


class AssignPlanRequest(BaseModel):
    """Schema for assigning a plan (admin)."""
    plan: str = Field(..., min_length=1, description="Plan name")
