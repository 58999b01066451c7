"""Authentication API endpoints: login, tokens, password reset and MFA."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from eventguard.api.deps import CurrentUser, DbSession, Services, ThrottleAuth, Users
from eventguard.core.errors import AuthError, ErrorCode
from eventguard.core.security import decode_token
from eventguard.schemas.auth import (
    LoginRequest,
    MessageResponse,
    MfaCodeRequest,
    MfaRequiredResponse,
    MfaSetupResponse,
    MfaStatusResponse,
    MfaVerifyRequest,
    PasswordResetLinkRequest,
    PasswordResetLinkResponse,
    PasswordResetRequest,
    RefreshRequest,
    TokenResponse,
    UserOut,
)
from eventguard.services.auth.login import TokenPair

_log = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_RESET_LINK_SENT = "If that email address is registered, a reset link has been sent."


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post(
    "/login",
    response_model=TokenResponse | MfaRequiredResponse,
    summary="Obtain access and refresh tokens",
    dependencies=[Depends(ThrottleAuth())],
)
async def login(
    body: LoginRequest, users: Users, services: Services
) -> TokenResponse | MfaRequiredResponse:
    """
    Authenticate with email and password.

    Accounts with MFA enabled get ``requires_mfa`` and a pending
    ``mfa_token`` instead of tokens, and must finish at ``/auth/mfa/verify``.
    """
    result = await services.login.login(users, body.email, body.password)
    if result.requires_mfa:
        return MfaRequiredResponse(
            mfa_token=result.mfa_token,
            expires_in=services.settings.mfa_pending_token_expire_minutes * 60,
        )
    return _token_response(result.tokens)


@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(body: RefreshRequest, users: Users, services: Services) -> TokenResponse:
    """Exchange a valid refresh token for a new token pair."""
    payload = decode_token(body.refresh_token, services.settings)
    if payload.get("type") != "refresh":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Not a refresh token")

    subject = str(payload.get("sub", ""))
    user = await users.load(int(subject)) if subject.isdigit() else None
    if user is None or not user.is_active:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "User not found")

    return _token_response(services.login.issue_tokens(user))


@router.get("/me", response_model=UserOut, summary="Current user profile")
async def get_me(current_user: CurrentUser) -> UserOut:
    return UserOut.model_validate(current_user)


@router.post("/logout", response_model=MessageResponse, summary="Log out")
async def logout(current_user: CurrentUser, services: Services) -> MessageResponse:
    """Record the logout. Tokens are stateless and expire on their own."""
    await services.audit.log_auth("logout", current_user)
    return MessageResponse(message="Logged out successfully")


# ── Password reset ────────────────────────────────────────────────────── #


@router.post(
    "/password/email",
    response_model=PasswordResetLinkResponse,
    summary="Request a password reset link",
    dependencies=[Depends(ThrottleAuth())],
)
async def send_reset_link(
    body: PasswordResetLinkRequest, db: DbSession, users: Users, services: Services
) -> PasswordResetLinkResponse:
    """Always answers the same way, whether or not the email is registered."""
    outcome = await services.password_reset.request_reset(db, users, body.email)
    return PasswordResetLinkResponse(
        message=_RESET_LINK_SENT,
        reset_link=outcome.reset_link if services.settings.debug else None,
    )


@router.post(
    "/password/reset",
    response_model=MessageResponse,
    summary="Reset password with an emailed token",
    dependencies=[Depends(ThrottleAuth())],
)
async def reset_password(
    body: PasswordResetRequest, db: DbSession, users: Users, services: Services
) -> MessageResponse:
    await services.password_reset.reset_password(
        db, users, body.email, body.token, body.password
    )
    return MessageResponse(message="Password has been reset successfully.")


# ── MFA ───────────────────────────────────────────────────────────────── #


@router.post("/mfa/setup", response_model=MfaSetupResponse, summary="Start MFA enrolment")
async def mfa_setup(
    current_user: CurrentUser, users: Users, services: Services
) -> MfaSetupResponse:
    setup = await services.mfa.begin_setup(users, current_user)
    return MfaSetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        qr_code_url=setup.qr_code_url,
    )


@router.post("/mfa/confirm", response_model=MfaStatusResponse, summary="Confirm MFA enrolment")
async def mfa_confirm(
    body: MfaCodeRequest, current_user: CurrentUser, users: Users, services: Services
) -> MfaStatusResponse:
    account = await services.mfa.confirm_setup(users, current_user, body.code)
    return MfaStatusResponse(
        mfa_enabled=account.mfa_enabled, message="MFA has been enabled successfully!"
    )


@router.post("/mfa/disable", response_model=MfaStatusResponse, summary="Disable MFA")
async def mfa_disable(
    body: MfaCodeRequest, current_user: CurrentUser, users: Users, services: Services
) -> MfaStatusResponse:
    account = await services.mfa.disable(users, current_user, body.code)
    return MfaStatusResponse(
        mfa_enabled=account.mfa_enabled, message="MFA has been disabled successfully."
    )


@router.post(
    "/mfa/verify",
    response_model=TokenResponse,
    summary="Complete an MFA login",
    dependencies=[Depends(ThrottleAuth())],
)
async def mfa_verify(body: MfaVerifyRequest, users: Users, services: Services) -> TokenResponse:
    result = await services.login.complete_mfa_login(users, body.mfa_token, body.code)
    _log.info("mfa_login_completed", user_id=result.user.id)
    return _token_response(result.tokens)
