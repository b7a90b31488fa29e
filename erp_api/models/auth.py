from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

CLAIMS_VERSION = 1

class PermissionGrant(BaseModel):
    resource: str
    actions: List[str] = []

class RoleClaims(BaseModel):
    role_id: int
    name: str
    is_active: bool = True
    permissions: List[PermissionGrant] = []

    def grant_for(self, resource: str) -> PermissionGrant | None:
        for grant in self.permissions:
            if grant.resource == resource:
                return grant
        return None

class AccessClaims(BaseModel):
    """Identity carried by an access token, attached to each authenticated request"""
    ver: int = CLAIMS_VERSION
    type: str = "access"
    user_id: int
    email: str
    role_id: int | None = None
    role: RoleClaims | None = None
    session_id: str | None = None
    jti: str | None = None
    iat: datetime | None = None
    exp: datetime | None = None

class RefreshClaims(BaseModel):
    type: str = "refresh"
    user_id: int
    session_id: str
    jti: str
    iat: datetime | None = None
    exp: datetime | None = None

class RequestContext(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None

class SessionGrant(BaseModel):
    session_id: str
    refresh_token: str
    expires_at: datetime

class SignInFailure(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    ACCOUNT_LOCKED = "account_locked"
    EMAIL_VERIFICATION_REQUIRED = "email_verification_required"
    PASSWORD_VALIDATION = "password_validation"

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class RoleSummary(CamelModel):
    id: int | None = None
    name: str = "Unknown"
    permissions: List[PermissionGrant] = []

class UserProfile(CamelModel):
    id: int
    email: str
    username: str
    full_name: str | None = None
    role: RoleSummary | None = None
    is_active: bool
    is_email_verified: bool
    last_login: datetime | None = None
    password_changed_at: datetime | None = None
    should_change_password: bool = False

class SignInResult(BaseModel):
    """Outcome of a credential check; failures are values, not exceptions"""
    success: bool
    message: str
    failure: SignInFailure | None = None
    user: UserProfile | None = None
    access_token: str | None = None
    access_token_expires_at: datetime | None = None
    expires_in: str | None = None
    session: SessionGrant | None = None
    account_locked: bool = False
    lockout_time: datetime | None = None
    remaining_attempts: int | None = None
    errors: List[str] = []

class RefreshResult(BaseModel):
    success: bool
    error: str | None = None
    access_token: str | None = None
    expires_at: datetime | None = None
    claims: AccessClaims | None = None
    session_id: str | None = None

class SignInRequest(CamelModel):
    email: str | None = None
    password: str | None = None

class RefreshTokenRequest(CamelModel):
    refresh_token: str | None = None

class LogoutRequest(CamelModel):
    session_id: str | None = None
    refresh_token: str | None = None

class PasswordResetRequest(CamelModel):
    current_password: str
    new_password: str
    confirm_password: str | None = None

class SignInResponse(CamelModel):
    success: bool = True
    access_token: str
    refresh_token: str | None = None
    session_id: str
    token_type: str = "Bearer"
    expires_in: str
    expires_at: datetime
    user: UserProfile
    message: str

class RefreshTokenResponse(CamelModel):
    success: bool = True
    access_token: str
    expires_at: datetime
    expires_in: str
    user: AccessClaims
    message: str = "Token refreshed successfully"

class SessionInfo(CamelModel):
    session_id: str
    ip_address: str | None = None
    user_agent: str | None = None
    last_activity: datetime
    created_at: datetime
    expires_at: datetime
    current: bool = False

class MessageResponse(CamelModel):
    success: bool = True
    message: str
    count: int | None = None
