import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from jwt import InvalidTokenError
from pydantic import ValidationError as ClaimsValidationError
from sqlmodel import Session, select

from erp_api.models.auth import AccessClaims, PermissionGrant, RefreshClaims, RoleClaims
from erp_api.models.user import Permission, Role, RolePermission, User
from erp_api.settings import Settings, get_settings
from erp_api.utils import parse_duration

logger = logging.getLogger(__name__)


def access_token_ttl(settings: Settings | None = None) -> timedelta:
    settings = settings or get_settings()
    return parse_duration(settings.jwt_expires_in)


def refresh_token_ttl(settings: Settings | None = None) -> timedelta:
    settings = settings or get_settings()
    return parse_duration(settings.refresh_token_expires_in)


def load_role_claims(session: Session, role_id: int | None) -> RoleClaims | None:
    """Snapshot a role and its per-resource grants for embedding in a token"""
    if role_id is None:
        return None
    role = session.get(Role, role_id)
    if role is None:
        return None

    rows = session.exec(
        select(RolePermission, Permission)
        .join(Permission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role.id)
    ).all()
    grants = [
        PermissionGrant(resource=permission.name, actions=role_permission.granted_actions())
        for role_permission, permission in rows
    ]
    return RoleClaims(role_id=role.id, name=role.name, is_active=role.is_active, permissions=grants)


def build_access_claims(session: Session, user: User, session_id: str | None = None) -> AccessClaims:
    return AccessClaims(
        user_id=user.id,
        email=user.email,
        role_id=user.role_id,
        role=load_role_claims(session, user.role_id),
        session_id=session_id,
    )


def create_access_token(
    claims: AccessClaims,
    expires_delta: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else access_token_ttl(settings))

    to_encode = claims.model_dump(mode="json", exclude={"iat", "exp", "jti"})
    to_encode.update({
        "sub": str(claims.user_id),
        "iat": now,
        "exp": expire,
        "jti": uuid.uuid4().hex,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_refresh_token(
    user_id: int,
    session_id: str,
    expires_delta: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else refresh_token_ttl(settings))

    to_encode = {
        "sub": str(user_id),
        "user_id": user_id,
        "session_id": session_id,
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.refresh_token_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings | None = None) -> AccessClaims | None:
    """Verified claims, or None when the token is forged, expired or malformed"""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        if payload.get("type") != "access":
            logger.warning("Rejected token with type %r as access token", payload.get("type"))
            return None
        return AccessClaims.model_validate(payload)
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except (InvalidTokenError, ClaimsValidationError) as exc:
        logger.warning("Invalid access token: %s", exc)
        return None


def decode_refresh_token(token: str, settings: Settings | None = None) -> RefreshClaims | None:
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.refresh_token_secret, algorithms=[settings.jwt_algorithm])
        if payload.get("type") != "refresh":
            logger.warning("Rejected token with type %r as refresh token", payload.get("type"))
            return None
        return RefreshClaims.model_validate(payload)
    except jwt.ExpiredSignatureError:
        logger.info("Refresh token expired")
        return None
    except (InvalidTokenError, ClaimsValidationError) as exc:
        logger.warning("Invalid refresh token: %s", exc)
        return None
