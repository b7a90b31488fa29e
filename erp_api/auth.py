import logging
from datetime import datetime, timedelta

from sqlalchemy import case, update
from sqlmodel import Session, select

from erp_api.models.auth import RequestContext, RoleSummary, SignInFailure, SignInResult, UserProfile
from erp_api.models.user import User
from erp_api.passwords import burn_password_check, get_password_hash, validate_password_strength, verify_password
from erp_api.sessions import create_session, deactivate_user_sessions
from erp_api.settings import Settings, get_settings
from erp_api.tokens import access_token_ttl, build_access_claims, create_access_token, load_role_claims
from erp_api.utils import minutes_until, utcnow

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


def normalize_email(email: str) -> str:
    return email.strip().lower()

def get_user_by_email(session: Session, email: str) -> User | None:
    return session.exec(select(User).where(User.email == normalize_email(email))).first()

def register_failed_attempt(session: Session, user: User, settings: Settings) -> tuple[int, datetime | None]:
    """Atomically bump the failure counter, locking the account once it reaches the limit"""
    lock_until = utcnow() + timedelta(minutes=settings.account_lockout_minutes)
    statement = (
        update(User)
        .where(User.id == user.id)
        .values(
            failed_login_attempts=User.failed_login_attempts + 1,
            account_locked_until=case(
                (User.failed_login_attempts + 1 >= settings.max_failed_login_attempts, lock_until),
                else_=User.account_locked_until,
            ),
        )
        .returning(User.failed_login_attempts, User.account_locked_until)
        .execution_options(synchronize_session=False)
    )
    attempts, locked_until = session.execute(statement).one()
    session.commit()
    session.refresh(user)
    return attempts, locked_until

def clear_failed_attempts(session: Session, user: User):
    session.execute(
        update(User)
        .where(User.id == user.id)
        .values(failed_login_attempts=0, account_locked_until=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(user)

def should_change_password(user: User, settings: Settings) -> bool:
    if user.password_changed_at is None:
        return True
    return user.password_changed_at < utcnow() - timedelta(days=settings.password_max_age_days)

def build_user_profile(session: Session, user: User, settings: Settings | None = None) -> UserProfile:
    settings = settings or get_settings()
    role_claims = load_role_claims(session, user.role_id)
    role = None
    if role_claims is not None:
        role = RoleSummary(id=role_claims.role_id, name=role_claims.name, permissions=role_claims.permissions)
    return UserProfile(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        role=role,
        is_active=user.is_active,
        is_email_verified=user.is_email_verified,
        last_login=user.last_login,
        password_changed_at=user.password_changed_at,
        should_change_password=should_change_password(user, settings),
    )

def issue_tokens(
    session: Session,
    user: User,
    context: RequestContext | None,
    settings: Settings,
    message: str,
) -> SignInResult:
    """Open a new session for an authenticated user and mint its access token"""
    user.last_login = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)

    grant = create_session(session, user, context, settings=settings)
    claims = build_access_claims(session, user, session_id=grant.session_id)
    access_token = create_access_token(claims, settings=settings)
    return SignInResult(
        success=True,
        message=message,
        user=build_user_profile(session, user, settings),
        access_token=access_token,
        access_token_expires_at=utcnow() + access_token_ttl(settings),
        expires_in=settings.jwt_expires_in,
        session=grant,
    )

def sign_in(
    session: Session,
    email: str,
    password: str,
    context: RequestContext | None = None,
    settings: Settings | None = None,
) -> SignInResult:
    settings = settings or get_settings()
    user = get_user_by_email(session, email)

    if user is None:
        # Same hashing cost as a real check, same message as a wrong password
        burn_password_check(password)
        logger.info("Sign-in attempt for unknown e-mail")
        return SignInResult(
            success=False,
            message=INVALID_CREDENTIALS_MESSAGE,
            failure=SignInFailure.INVALID_CREDENTIALS,
        )

    if not user.is_active:
        logger.info("Sign-in attempt for deactivated user %s", user.id)
        return SignInResult(
            success=False,
            message="Account is deactivated",
            failure=SignInFailure.ACCOUNT_DEACTIVATED,
        )

    now = utcnow()
    if user.is_account_locked(now):
        remaining = minutes_until(user.account_locked_until, now)
        logger.info("Sign-in attempt for locked user %s", user.id)
        return SignInResult(
            success=False,
            message=f"Account is temporarily locked. Try again in {remaining} minutes.",
            failure=SignInFailure.ACCOUNT_LOCKED,
            account_locked=True,
            lockout_time=user.account_locked_until,
            remaining_attempts=0,
        )

    if user.account_locked_until is not None:
        # Lock window is over; start counting afresh
        clear_failed_attempts(session, user)

    if not verify_password(password, user.hashed_password):
        attempts, locked_until = register_failed_attempt(session, user, settings)
        if attempts >= settings.max_failed_login_attempts:
            logger.warning("Locked user %s after %d failed sign-in attempts", user.id, attempts)
            return SignInResult(
                success=False,
                message=(
                    "Account locked due to too many failed attempts. "
                    f"Try again in {settings.account_lockout_minutes} minutes."
                ),
                failure=SignInFailure.ACCOUNT_LOCKED,
                account_locked=True,
                lockout_time=locked_until,
                remaining_attempts=0,
            )
        logger.info("Failed sign-in for user %s (%d attempts)", user.id, attempts)
        return SignInResult(
            success=False,
            message=INVALID_CREDENTIALS_MESSAGE,
            failure=SignInFailure.INVALID_CREDENTIALS,
            remaining_attempts=settings.max_failed_login_attempts - attempts,
        )

    clear_failed_attempts(session, user)

    if settings.require_email_verification and not user.is_email_verified:
        return SignInResult(
            success=False,
            message="Email verification is required before signing in",
            failure=SignInFailure.EMAIL_VERIFICATION_REQUIRED,
        )

    logger.info("User %s signed in", user.id)
    return issue_tokens(session, user, context, settings, "Login successful")

def change_password(
    session: Session,
    user_id: int,
    current_password: str,
    new_password: str,
    confirm_password: str | None = None,
    context: RequestContext | None = None,
    settings: Settings | None = None,
) -> SignInResult:
    """Replace the user's password, revoke their sessions and sign them in again"""
    settings = settings or get_settings()

    errors = []
    if confirm_password is not None and new_password != confirm_password:
        errors.append("Passwords do not match")
    errors.extend(validate_password_strength(new_password))
    if errors:
        return SignInResult(
            success=False,
            message="Password validation failed",
            failure=SignInFailure.PASSWORD_VALIDATION,
            errors=errors,
        )

    user = session.get(User, user_id)
    if user is None or not user.is_active:
        return SignInResult(
            success=False,
            message="Account is deactivated",
            failure=SignInFailure.ACCOUNT_DEACTIVATED,
        )

    if not verify_password(current_password, user.hashed_password):
        return SignInResult(
            success=False,
            message="Current password is incorrect",
            failure=SignInFailure.INVALID_CREDENTIALS,
        )

    now = utcnow()
    user.hashed_password = get_password_hash(new_password)
    user.password_changed_at = now
    user.failed_login_attempts = 0
    user.account_locked_until = None
    session.add(user)
    session.commit()
    session.refresh(user)

    revoked = deactivate_user_sessions(session, user.id)
    logger.info("User %s changed password, revoked %d sessions", user.id, revoked)
    return issue_tokens(session, user, context, settings, "Password updated successfully and user signed in")
