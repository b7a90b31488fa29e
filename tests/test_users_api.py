from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from erp_api.main import app
from erp_api.models.session import UserSession
from erp_api.models.user import Role, User
from erp_api.utils import utcnow

from conftest import PASSWORD


@pytest.fixture
def admin_client(client, settings, sign_in):
    response = sign_in(email=settings.superuser_email, password=settings.superuser_password)
    assert response.status_code == 200
    return client


def employee_role_id(db_session):
    return db_session.exec(select(Role).where(Role.name == "Employee")).one().id


def test_create_user(admin_client, db_session):
    response = admin_client.post(
        "/users/",
        json={
            "username": "carol",
            "email": "Carol@X.com",
            "password": PASSWORD,
            "role_id": employee_role_id(db_session),
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "carol@x.com"
    assert body["failed_login_attempts"] == 0
    assert "hashed_password" not in body


def test_created_user_can_sign_in(admin_client, db_session, sign_in):
    admin_client.post(
        "/users/",
        json={"username": "carol", "email": "carol@x.com", "password": PASSWORD, "role_id": employee_role_id(db_session)},
    )

    assert sign_in(email="carol@x.com").status_code == 200


def test_create_user_conflicts(admin_client, make_user):
    make_user()

    same_username = admin_client.post("/users/", json={"username": "alice", "email": "new@x.com", "password": PASSWORD})
    same_email = admin_client.post("/users/", json={"username": "new", "email": "ALICE@x.com", "password": PASSWORD})

    assert same_username.status_code == 409
    assert same_username.json()["message"] == "Username already exists"
    assert same_email.status_code == 409
    assert same_email.json()["message"] == "Email already exists"


def test_create_user_weak_password(admin_client):
    response = admin_client.post("/users/", json={"username": "weak", "email": "weak@x.com", "password": "password"})

    assert response.status_code == 400
    assert "Password is too common, please choose a stronger password" in response.json()["errors"]


def test_create_user_unknown_role(admin_client):
    response = admin_client.post(
        "/users/",
        json={"username": "carol", "email": "carol@x.com", "password": PASSWORD, "role_id": 999},
    )

    assert response.status_code == 404


def test_list_users_with_filters(admin_client, make_user):
    make_user()
    make_user(email="bob@x.com", is_active=False)

    everyone = admin_client.get("/users/").json()
    inactive = admin_client.get("/users/", params={"is_active": False}).json()

    assert len(everyone) == 3
    assert [user["email"] for user in inactive] == ["bob@x.com"]


def test_update_user(admin_client, make_user):
    user = make_user()

    response = admin_client.put(f"/users/{user.id}", json={"full_name": "Alice Smith"})

    assert response.status_code == 200
    assert response.json()["full_name"] == "Alice Smith"


def test_deactivating_user_revokes_sessions(admin_client, db_session, make_user):
    user = make_user()
    alice = TestClient(app)
    alice.post("/auth/sign-in", json={"email": "alice@x.com", "password": PASSWORD})

    response = admin_client.put(f"/users/{user.id}", json={"is_active": False})

    assert response.status_code == 200
    active = db_session.exec(
        select(UserSession).where(UserSession.user_id == user.id, UserSession.is_active == True)
    ).all()
    assert active == []
    alice.cookies.delete("access_token")
    assert alice.get("/auth/me").status_code == 401


def test_cannot_deactivate_self(admin_client, db_session, settings):
    admin = db_session.exec(select(User).where(User.email == settings.superuser_email)).one()

    assert admin_client.put(f"/users/{admin.id}", json={"is_active": False}).status_code == 400
    assert admin_client.delete(f"/users/{admin.id}").status_code == 400


def test_delete_is_soft(admin_client, db_session, make_user):
    user = make_user()

    response = admin_client.delete(f"/users/{user.id}")

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    db_session.refresh(user)
    assert not user.is_active


def test_unlock_user(admin_client, db_session, make_user):
    user = make_user(failed_login_attempts=5, account_locked_until=utcnow() + timedelta(minutes=30))

    response = admin_client.post(f"/users/{user.id}/unlock")

    assert response.status_code == 200
    assert response.json()["failed_login_attempts"] == 0
    assert response.json()["account_locked_until"] is None


def test_unlock_requires_admin(client, make_user, sign_in):
    locked = make_user(email="bob@x.com", account_locked_until=utcnow() + timedelta(minutes=30))
    make_user(role="Manager")
    sign_in()

    response = client.post(f"/users/{locked.id}/unlock")

    assert response.status_code == 403
    assert response.json()["message"] == "Admin access required"


def test_employee_cannot_list_users(client, make_user, sign_in):
    make_user()
    sign_in()

    assert client.get("/users/").status_code == 403


def test_user_routes_require_authentication(client):
    assert client.get("/users/").status_code == 401
