from datetime import datetime
from typing import Annotated, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, select
from starlette import status

from erp_api.auth import normalize_email
from erp_api.database import DbSessionDep
from erp_api.dependencies.auth import CurrentUserDep
from erp_api.dependencies.permissions import require_admin, require_permission
from erp_api.errors import ConflictError, NotFoundError, ValidationError
from erp_api.models.auth import AccessClaims
from erp_api.models.user import Role, User
from erp_api.passwords import get_password_hash, validate_password_strength
from erp_api.sessions import deactivate_user_sessions
from erp_api.settings import get_settings

RESOURCE = "USER_MANAGEMENT"

class UserCreate(BaseModel):
    username: str
    email: str
    password: str
    full_name: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    role_id: int | None = None

class UserUpdate(BaseModel):
    username: str | None = None
    email: str | None = None
    full_name: str | None = None
    is_active: bool | None = None
    is_email_verified: bool | None = None
    role_id: int | None = None

class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: str | None = None
    is_active: bool
    is_email_verified: bool
    role_id: int | None = None
    failed_login_attempts: int
    account_locked_until: datetime | None = None
    last_login: datetime | None = None

router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={404: {"description": "Not found"}},
)

def to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        is_active=user.is_active,
        is_email_verified=user.is_email_verified,
        role_id=user.role_id,
        failed_login_attempts=user.failed_login_attempts,
        account_locked_until=user.account_locked_until,
        last_login=user.last_login,
    )

def get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user

def ensure_role_exists(session: Session, role_id: int | None):
    if role_id is not None and not session.get(Role, role_id):
        raise NotFoundError("Role not found")

@router.post("/", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_permission(RESOURCE, "canCreate"))])
def create_user(session: DbSessionDep, user_create: UserCreate) -> UserResponse:
    """Create a new user"""
    email = normalize_email(user_create.email)

    # Check if username already exists
    existing_user = session.exec(select(User).where(User.username == user_create.username)).first()
    if existing_user:
        raise ConflictError("Username already exists")

    # Check if email already exists
    existing_email = session.exec(select(User).where(User.email == email)).first()
    if existing_email:
        raise ConflictError("Email already exists")

    errors = validate_password_strength(user_create.password)
    if errors:
        raise ValidationError("Password validation failed", errors=errors)

    ensure_role_exists(session, user_create.role_id)

    db_user = User(
        username=user_create.username,
        email=email,
        hashed_password=get_password_hash(user_create.password),
        full_name=user_create.full_name,
        is_active=user_create.is_active,
        is_email_verified=user_create.is_email_verified,
        role_id=user_create.role_id
    )
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return to_response(db_user)

@router.get("/", dependencies=[Depends(require_permission(RESOURCE, "canView"))])
def list_users(
    session: DbSessionDep,
    role_id: int = None,
    is_active: bool = None,
    skip: int = 0,
    limit: int = 100
) -> List[UserResponse]:
    """List users with optional filtering and pagination"""
    statement = select(User)

    if role_id is not None:
        statement = statement.where(User.role_id == role_id)
    if is_active is not None:
        statement = statement.where(User.is_active == is_active)

    statement = statement.order_by(User.id).offset(skip).limit(limit)
    return [to_response(user) for user in session.exec(statement).all()]

@router.get("/{user_id}", dependencies=[Depends(require_permission(RESOURCE, "canView"))])
def get_user(session: DbSessionDep, user_id: int) -> UserResponse:
    """Get a specific user by ID"""
    return to_response(get_user_or_404(session, user_id))

@router.put("/{user_id}", dependencies=[Depends(require_permission(RESOURCE, "canUpdate"))])
def update_user(
    session: DbSessionDep,
    current_user: CurrentUserDep,
    user_id: int,
    user_update: UserUpdate
) -> UserResponse:
    """Update an existing user; deactivating also revokes their sessions"""
    user = get_user_or_404(session, user_id)

    # Check for username conflicts if updating username
    if user_update.username and user_update.username != user.username:
        existing_user = session.exec(select(User).where(User.username == user_update.username)).first()
        if existing_user:
            raise ConflictError("Username already exists")
        user.username = user_update.username

    # Check for email conflicts if updating email
    if user_update.email and normalize_email(user_update.email) != user.email:
        email = normalize_email(user_update.email)
        existing_email = session.exec(select(User).where(User.email == email)).first()
        if existing_email:
            raise ConflictError("Email already exists")
        user.email = email

    if user_update.role_id is not None:
        ensure_role_exists(session, user_update.role_id)
        user.role_id = user_update.role_id

    if user_update.full_name is not None:
        user.full_name = user_update.full_name
    if user_update.is_email_verified is not None:
        user.is_email_verified = user_update.is_email_verified

    deactivated = False
    if user_update.is_active is not None:
        if not user_update.is_active and user.id == current_user.user_id:
            raise ValidationError("Cannot deactivate your own user account")
        deactivated = user.is_active and not user_update.is_active
        user.is_active = user_update.is_active

    session.add(user)
    session.commit()
    if deactivated:
        deactivate_user_sessions(session, user.id)
    session.refresh(user)
    return to_response(user)

@router.delete("/{user_id}", dependencies=[Depends(require_permission(RESOURCE, "canDelete"))])
def deactivate_user(session: DbSessionDep, current_user: CurrentUserDep, user_id: int) -> UserResponse:
    """Soft-delete a user: deactivate the account and revoke its sessions"""
    user = get_user_or_404(session, user_id)

    # Prevent users from deactivating themselves
    if current_user.user_id == user.id:
        raise ValidationError("Cannot deactivate your own user account")

    # The bootstrap administrator keeps the API reachable
    if user.email == normalize_email(get_settings().superuser_email):
        raise ConflictError("Cannot deactivate the system superuser account")

    user.is_active = False
    session.add(user)
    session.commit()
    deactivate_user_sessions(session, user.id)
    session.refresh(user)
    return to_response(user)

@router.post("/{user_id}/unlock")
def unlock_user(
    session: DbSessionDep,
    current_user: Annotated[AccessClaims, Depends(require_admin)],
    user_id: int
) -> UserResponse:
    """Clear a lockout and the failed sign-in counter"""
    user = get_user_or_404(session, user_id)
    user.failed_login_attempts = 0
    user.account_locked_until = None
    session.add(user)
    session.commit()
    session.refresh(user)
    return to_response(user)
