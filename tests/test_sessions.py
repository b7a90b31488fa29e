import asyncio
import threading
from datetime import timedelta

from sqlmodel import Session, select

from erp_api.database import engine
from erp_api.models.auth import RequestContext
from erp_api.models.session import UserSession
from erp_api.models.user import User
from erp_api.sessions import (
    SessionCleanupService,
    cleanup_expired_sessions,
    create_session,
    deactivate_user_sessions,
    list_active_sessions,
    logout,
    purge_inactive_sessions,
    refresh_access_token,
)
from erp_api.tokens import create_refresh_token, decode_access_token
from erp_api.utils import utcnow


def expire(db_session, session_id, by=timedelta(minutes=1)):
    user_session = db_session.get(UserSession, session_id)
    user_session.expires_at = utcnow() - by
    db_session.add(user_session)
    db_session.commit()


def test_create_session(db_session, make_user, settings):
    user = make_user()

    grant = create_session(db_session, user, RequestContext(ip_address="127.0.0.1", user_agent="pytest"))

    stored = db_session.get(UserSession, grant.session_id)
    assert stored.user_id == user.id
    assert stored.is_active
    assert stored.refresh_token == grant.refresh_token
    assert stored.user_agent == "pytest"
    assert stored.expires_at - utcnow() > timedelta(days=6)


def test_session_row_round_trips_as_naive_utc(db_session, make_user):
    user = make_user(account_locked_until=utcnow() + timedelta(minutes=30))
    grant = create_session(db_session, user)

    with Session(engine) as fresh:
        stored = fresh.get(UserSession, grant.session_id)
        reloaded = fresh.get(User, user.id)

        assert stored.expires_at.tzinfo is None
        assert stored.last_activity.tzinfo is None
        assert stored.expires_at == grant.expires_at
        assert stored.is_valid()
        assert reloaded.account_locked_until.tzinfo is None
        assert reloaded.is_account_locked()


def test_refresh_issues_new_access_token(db_session, make_user):
    user = make_user(role="Manager")
    grant = create_session(db_session, user)

    result = refresh_access_token(db_session, grant.refresh_token, session_id=grant.session_id)

    assert result.success
    claims = decode_access_token(result.access_token)
    assert claims.user_id == user.id
    assert claims.session_id == grant.session_id
    assert claims.role.name == "Manager"


def test_refresh_updates_last_activity(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)
    stored = db_session.get(UserSession, grant.session_id)
    stored.last_activity = utcnow() - timedelta(hours=1)
    db_session.add(stored)
    db_session.commit()

    refresh_access_token(db_session, grant.refresh_token)

    db_session.refresh(stored)
    assert stored.last_activity > utcnow() - timedelta(minutes=1)


def test_same_refresh_token_can_be_used_twice(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)

    first = refresh_access_token(db_session, grant.refresh_token, session_id=grant.session_id)
    second = refresh_access_token(db_session, grant.refresh_token, session_id=grant.session_id)

    assert first.success and second.success
    assert first.access_token != second.access_token


def test_refresh_fails_for_inactive_session(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)
    logout(db_session, session_id=grant.session_id)

    result = refresh_access_token(db_session, grant.refresh_token)

    assert not result.success
    assert result.error == "Session expired or invalid"


def test_refresh_fails_for_expired_session(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)
    expire(db_session, grant.session_id)

    result = refresh_access_token(db_session, grant.refresh_token)

    assert not result.success
    assert result.error == "Session expired or invalid"


def test_refresh_fails_for_session_mismatch(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)
    other = create_session(db_session, user)

    result = refresh_access_token(db_session, grant.refresh_token, session_id=other.session_id)

    assert not result.success
    assert result.error == "Session mismatch"


def test_refresh_fails_for_unknown_or_garbage_token(db_session, make_user):
    user = make_user()
    create_session(db_session, user)

    # Validly signed, but never stored
    assert refresh_access_token(db_session, create_refresh_token(user.id, "nope")).error == "Session expired or invalid"
    assert refresh_access_token(db_session, "garbage").error == "Invalid refresh token"


def test_refresh_fails_for_deactivated_user(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)
    user.is_active = False
    db_session.add(user)
    db_session.commit()

    result = refresh_access_token(db_session, grant.refresh_token)

    assert not result.success
    assert result.error == "Account is deactivated"


def test_logout_by_refresh_token(db_session, make_user):
    user = make_user()
    grant = create_session(db_session, user)

    assert logout(db_session, refresh_token=grant.refresh_token)
    assert not logout(db_session, refresh_token=grant.refresh_token)
    assert not logout(db_session)


def test_deactivate_user_sessions_only_touches_that_user(db_session, make_user):
    alice = make_user()
    bob = make_user(email="bob@x.com")
    create_session(db_session, alice)
    create_session(db_session, alice)
    bobs = create_session(db_session, bob)

    assert deactivate_user_sessions(db_session, alice.id) == 2
    assert list_active_sessions(db_session, alice.id) == []
    assert [s.session_id for s in list_active_sessions(db_session, bob.id)] == [bobs.session_id]


def test_list_active_sessions_skips_expired(db_session, make_user):
    user = make_user()
    live = create_session(db_session, user)
    stale = create_session(db_session, user)
    expire(db_session, stale.session_id)

    assert [s.session_id for s in list_active_sessions(db_session, user.id)] == [live.session_id]


def test_cleanup_flags_expired_sessions(db_session, make_user):
    user = make_user()
    live = create_session(db_session, user)
    stale = create_session(db_session, user)
    expire(db_session, stale.session_id)

    assert cleanup_expired_sessions(db_session) == 1
    assert cleanup_expired_sessions(db_session) == 0

    db_session.expire_all()
    assert db_session.get(UserSession, live.session_id).is_active
    # Rows stay for audit
    assert not db_session.get(UserSession, stale.session_id).is_active


def test_purge_deletes_old_inactive_sessions(db_session, make_user):
    user = make_user()
    old = create_session(db_session, user)
    recent = create_session(db_session, user)
    deactivate_user_sessions(db_session, user.id)
    stored = db_session.get(UserSession, old.session_id)
    stored.last_activity = utcnow() - timedelta(days=60)
    db_session.add(stored)
    db_session.commit()

    assert purge_inactive_sessions(db_session, timedelta(days=30)) == 1

    db_session.expire_all()
    remaining = [s.session_id for s in db_session.exec(select(UserSession)).all()]
    assert remaining == [recent.session_id]


def test_cleanup_service_run_once(db_session, make_user):
    user = make_user()
    stale = create_session(db_session, user)
    expire(db_session, stale.session_id)

    service = SessionCleanupService(lambda: Session(engine))

    assert service.run_once() == 1


def test_cleanup_service_start_and_stop(db_session, make_user):
    user = make_user()
    stale = create_session(db_session, user)
    expire(db_session, stale.session_id)

    swept = threading.Event()

    async def scenario():
        service = SessionCleanupService(lambda: Session(engine), interval_seconds=60)
        run_once = service.run_once

        def tracked_run_once():
            try:
                return run_once()
            finally:
                swept.set()

        service.run_once = tracked_run_once
        service.start()
        assert service.running
        service.start()
        for _ in range(500):
            if swept.is_set():
                break
            await asyncio.sleep(0.01)
        await service.stop()
        assert not service.running

    asyncio.run(scenario())

    assert swept.is_set()
    db_session.expire_all()
    assert not db_session.get(UserSession, stale.session_id).is_active
