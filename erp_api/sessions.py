import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Callable, List

from sqlalchemy import delete, update
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from erp_api.models.auth import RefreshResult, RequestContext, SessionGrant
from erp_api.models.session import UserSession
from erp_api.models.user import User
from erp_api.settings import Settings, get_settings
from erp_api.tokens import (
    access_token_ttl,
    build_access_claims,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
)
from erp_api.utils import parse_duration, utcnow

logger = logging.getLogger(__name__)


def create_session(
    session: Session,
    user: User,
    context: RequestContext | None = None,
    settings: Settings | None = None,
) -> SessionGrant:
    """Persist a new session for a successful sign-in; one login, one row"""
    settings = settings or get_settings()
    context = context or RequestContext()

    session_id = uuid.uuid4().hex
    refresh_token = create_refresh_token(user.id, session_id, settings=settings)
    now = utcnow()
    expires_at = now + parse_duration(settings.session_lifetime)

    session.add(UserSession(
        session_id=session_id,
        user_id=user.id,
        refresh_token=refresh_token,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        is_active=True,
        expires_at=expires_at,
        last_activity=now,
        created_at=now,
    ))
    session.commit()
    logger.info("Created session %s for user %s", session_id, user.id)
    return SessionGrant(session_id=session_id, refresh_token=refresh_token, expires_at=expires_at)


def find_refreshable_session(session: Session, session_id: str, refresh_token: str) -> UserSession | None:
    user_session = session.exec(
        select(UserSession).where(
            UserSession.session_id == session_id,
            UserSession.refresh_token == refresh_token,
            UserSession.is_active == True,
        )
    ).first()
    if user_session is None or not user_session.is_valid():
        return None
    return user_session


def touch_session(session: Session, user_session: UserSession):
    user_session.last_activity = utcnow()
    session.add(user_session)
    session.commit()


def refresh_access_token(
    session: Session,
    refresh_token: str,
    session_id: str | None = None,
    settings: Settings | None = None,
) -> RefreshResult:
    """Exchange a valid refresh token (and optional session cookie) for a new access token"""
    settings = settings or get_settings()

    claims = decode_refresh_token(refresh_token, settings)
    if claims is None:
        return RefreshResult(success=False, error="Invalid refresh token")
    if session_id is not None and session_id != claims.session_id:
        logger.warning("Session cookie does not match refresh token session %s", claims.session_id)
        return RefreshResult(success=False, error="Session mismatch")

    user_session = find_refreshable_session(session, claims.session_id, refresh_token)
    if user_session is None:
        return RefreshResult(success=False, error="Session expired or invalid")

    user = session.get(User, user_session.user_id)
    if user is None or not user.is_active:
        return RefreshResult(success=False, error="Account is deactivated")

    touch_session(session, user_session)

    access_claims = build_access_claims(session, user, session_id=user_session.session_id)
    access_token = create_access_token(access_claims, settings=settings)
    return RefreshResult(
        success=True,
        access_token=access_token,
        expires_at=utcnow() + access_token_ttl(settings),
        claims=access_claims,
        session_id=user_session.session_id,
    )


def deactivate_session(session: Session, session_id: str) -> bool:
    result = session.execute(
        update(UserSession)
        .where(UserSession.session_id == session_id, UserSession.is_active == True)
        .values(is_active=False)
    )
    session.commit()
    return result.rowcount > 0


def deactivate_user_sessions(session: Session, user_id: int) -> int:
    """Log a user out from every device"""
    result = session.execute(
        update(UserSession)
        .where(UserSession.user_id == user_id, UserSession.is_active == True)
        .values(is_active=False)
    )
    session.commit()
    logger.info("Deactivated %d sessions for user %s", result.rowcount, user_id)
    return result.rowcount


def logout(
    session: Session,
    session_id: str | None = None,
    refresh_token: str | None = None,
    settings: Settings | None = None,
) -> bool:
    if session_id:
        return deactivate_session(session, session_id)
    if refresh_token:
        claims = decode_refresh_token(refresh_token, settings)
        if claims is not None:
            return deactivate_session(session, claims.session_id)
    return False


def list_active_sessions(session: Session, user_id: int) -> List[UserSession]:
    return list(session.exec(
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.is_active == True,
            UserSession.expires_at > utcnow(),
        )
        .order_by(UserSession.last_activity.desc())
    ).all())


def cleanup_expired_sessions(session: Session) -> int:
    """Flag expired sessions inactive; rows stay for audit"""
    result = session.execute(
        update(UserSession)
        .where(UserSession.expires_at < utcnow(), UserSession.is_active == True)
        .values(is_active=False)
    )
    session.commit()
    return result.rowcount


def purge_inactive_sessions(session: Session, older_than: timedelta) -> int:
    """Physically delete inactive sessions whose last activity predates the cutoff"""
    cutoff = utcnow() - older_than
    result = session.execute(
        delete(UserSession).where(UserSession.is_active == False, UserSession.last_activity < cutoff)
    )
    session.commit()
    return result.rowcount


class SessionCleanupService:
    """Periodically sweeps expired sessions while the application runs"""

    def __init__(self, session_factory: Callable[[], Session], interval_seconds: float = 3600):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            logger.warning("Session cleanup service is already running")
            return
        logger.info("Starting session cleanup service (every %ss)", self.interval_seconds)
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session cleanup service stopped")

    def run_once(self) -> int:
        with self.session_factory() as session:
            cleaned = cleanup_expired_sessions(session)
        if cleaned:
            logger.info("Cleaned up %d expired sessions", cleaned)
        return cleaned

    async def _loop(self):
        while True:
            try:
                await run_in_threadpool(self.run_once)
            except Exception:
                logger.exception("Error during session cleanup")
            await asyncio.sleep(self.interval_seconds)
