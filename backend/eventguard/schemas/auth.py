"""Auth schemas: login, tokens, password reset, MFA, user representation."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, ValidationInfo, field_validator


def _check_complexity(v: str) -> str:
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    return v


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=256)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class MfaRequiredResponse(BaseModel):
    requires_mfa: bool = True
    mfa_token: str = Field(..., description="Pending token for /auth/mfa/verify")
    expires_in: int  # seconds
    message: str = "Please enter your authentication code"


class RefreshRequest(BaseModel):
    refresh_token: str


class PasswordResetLinkRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)


class PasswordResetLinkResponse(BaseModel):
    message: str
    reset_link: str | None = Field(
        default=None, description="Only returned when the application runs in debug mode"
    )


class PasswordResetRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    token: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=8, max_length=256)
    password_confirmation: str

    @field_validator("password")
    @classmethod
    def password_complexity(cls, v: str) -> str:
        return _check_complexity(v)

    @field_validator("password_confirmation")
    @classmethod
    def passwords_match(cls, v: str, info: ValidationInfo) -> str:
        if info.data.get("password") is not None and v != info.data["password"]:
            raise ValueError("Password confirmation does not match")
        return v


class MfaCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class MfaVerifyRequest(MfaCodeRequest):
    mfa_token: str = Field(..., min_length=1, max_length=2048)


class MfaSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str
    qr_code_url: str


class MfaStatusResponse(BaseModel):
    mfa_enabled: bool
    message: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    is_active: bool
    mfa_enabled: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    message: str
