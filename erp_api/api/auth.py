from typing import List

from fastapi import APIRouter, Request, Response

from erp_api.auth import change_password, sign_in
from erp_api.database import DbSessionDep
from erp_api.dependencies.auth import CookieServiceDep, CurrentUserDep, RequestContextDep
from erp_api.errors import (
    AccountDeactivatedError,
    AccountLockedError,
    AuthenticationError,
    EmailVerificationRequiredError,
    ValidationError,
)
from erp_api.models.auth import (
    AccessClaims,
    LogoutRequest,
    MessageResponse,
    PasswordResetRequest,
    RefreshTokenRequest,
    RefreshTokenResponse,
    SessionInfo,
    SignInFailure,
    SignInRequest,
    SignInResponse,
    SignInResult,
)
from erp_api.sessions import deactivate_user_sessions, list_active_sessions, logout, refresh_access_token
from erp_api.settings import get_settings


router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses={404: {"description": "Not found"}},
)

def raise_for_failure(result: SignInResult):
    """Translate a failed SignInResult into the matching HTTP error"""
    if result.failure == SignInFailure.ACCOUNT_LOCKED:
        raise AccountLockedError(
            result.message,
            accountLocked=True,
            lockoutTime=result.lockout_time,
            remainingAttempts=0,
        )
    if result.failure == SignInFailure.ACCOUNT_DEACTIVATED:
        raise AccountDeactivatedError(result.message)
    if result.failure == SignInFailure.EMAIL_VERIFICATION_REQUIRED:
        raise EmailVerificationRequiredError(result.message, emailVerificationRequired=True)
    if result.failure == SignInFailure.PASSWORD_VALIDATION:
        raise ValidationError(result.message, errors=result.errors)
    extra = {}
    if result.remaining_attempts is not None:
        extra["remainingAttempts"] = result.remaining_attempts
    raise AuthenticationError(result.message, **extra)

def signed_in_response(result: SignInResult, response: Response, cookies) -> SignInResponse:
    settings = get_settings()
    grant = result.session
    cookies.set_auth_cookies(response, result.access_token, grant.refresh_token, grant.session_id)
    return SignInResponse(
        access_token=result.access_token,
        refresh_token=grant.refresh_token if settings.return_refresh_token_in_body else None,
        session_id=grant.session_id,
        expires_in=result.expires_in,
        expires_at=result.access_token_expires_at,
        user=result.user,
        message=result.message,
    )

@router.post("/sign-in", response_model_exclude_none=True)
def sign_in_user(
    session: DbSessionDep,
    response: Response,
    cookies: CookieServiceDep,
    context: RequestContextDep,
    credentials: SignInRequest,
) -> SignInResponse:
    """Verify e-mail and password, open a session and set the auth cookies"""
    if not credentials.email or not credentials.password:
        raise ValidationError("Email and password are required")

    result = sign_in(session, credentials.email, credentials.password, context)
    if not result.success:
        raise_for_failure(result)
    return signed_in_response(result, response, cookies)

@router.post("/refresh-token")
def refresh_token(
    session: DbSessionDep,
    request: Request,
    response: Response,
    cookies: CookieServiceDep,
    body: RefreshTokenRequest | None = None,
) -> RefreshTokenResponse:
    """Exchange the refresh token (cookie or body) for a new access token"""
    token = cookies.get_refresh_token(request) or (body.refresh_token if body else None)
    if not token:
        raise AuthenticationError("Refresh token is required")

    result = refresh_access_token(session, token)
    if not result.success:
        raise AuthenticationError(result.error or "Invalid refresh token", clear_cookies=True)

    cookies.set_access_token_cookie(response, result.access_token)
    return RefreshTokenResponse(
        access_token=result.access_token,
        expires_at=result.expires_at,
        expires_in=get_settings().jwt_expires_in,
        user=result.claims,
    )

@router.post("/logout")
def logout_user(
    session: DbSessionDep,
    request: Request,
    response: Response,
    cookies: CookieServiceDep,
    body: LogoutRequest | None = None,
) -> MessageResponse:
    """Deactivate the current session and clear the auth cookies"""
    session_id = cookies.get_session_id(request) or (body.session_id if body else None)
    token = cookies.get_refresh_token(request) or (body.refresh_token if body else None)

    logout(session, session_id=session_id, refresh_token=token)
    cookies.clear_all_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")

@router.post("/logout-all")
def logout_all_devices(
    session: DbSessionDep,
    response: Response,
    cookies: CookieServiceDep,
    current_user: CurrentUserDep,
) -> MessageResponse:
    """Deactivate every active session of the caller"""
    count = deactivate_user_sessions(session, current_user.user_id)
    cookies.clear_all_auth_cookies(response)
    return MessageResponse(message="Logged out from all devices", count=count)

@router.get("/me")
def read_current_user(current_user: CurrentUserDep) -> AccessClaims:
    return current_user

@router.get("/sessions")
def read_active_sessions(session: DbSessionDep, current_user: CurrentUserDep) -> List[SessionInfo]:
    """List the caller's active sessions, most recently used first"""
    return [
        SessionInfo(
            session_id=user_session.session_id,
            ip_address=user_session.ip_address,
            user_agent=user_session.user_agent,
            last_activity=user_session.last_activity,
            created_at=user_session.created_at,
            expires_at=user_session.expires_at,
            current=user_session.session_id == current_user.session_id,
        )
        for user_session in list_active_sessions(session, current_user.user_id)
    ]

@router.post("/reset-password")
def reset_password(
    session: DbSessionDep,
    response: Response,
    cookies: CookieServiceDep,
    context: RequestContextDep,
    current_user: CurrentUserDep,
    password_request: PasswordResetRequest,
) -> SignInResponse:
    """Change the caller's password and sign them in with a fresh session"""
    result = change_password(
        session,
        current_user.user_id,
        password_request.current_password,
        password_request.new_password,
        password_request.confirm_password,
        context,
    )
    if not result.success:
        if result.failure == SignInFailure.INVALID_CREDENTIALS:
            raise ValidationError(result.message)
        raise_for_failure(result)
    return signed_in_response(result, response, cookies)
