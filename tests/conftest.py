import os

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-for-testing-only")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel, select  # noqa: E402

from erp_api.database import create_db_and_tables, engine  # noqa: E402
from erp_api.main import app  # noqa: E402
from erp_api.models.user import Role, User  # noqa: E402
from erp_api.passwords import get_password_hash  # noqa: E402
from erp_api.settings import get_settings  # noqa: E402
from erp_api.setup import create_initial_roles_and_permissions  # noqa: E402

PASSWORD = "Str0ng!Passw0rd"


@pytest.fixture(autouse=True)
def reset_database():
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    create_initial_roles_and_permissions(engine)
    yield


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    # No context manager: the lifespan (table creation, cleanup task) is not needed here
    return TestClient(app)


@pytest.fixture
def make_user(db_session):
    """Create a user with the given role name and password"""
    def _make_user(email="alice@x.com", password=PASSWORD, role="Employee", **fields):
        role_row = db_session.exec(select(Role).where(Role.name == role)).first() if role else None
        user = User(
            username=fields.pop("username", email.split("@")[0]),
            email=email,
            hashed_password=get_password_hash(password),
            role_id=role_row.id if role_row else None,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def sign_in(client):
    def _sign_in(email="alice@x.com", password=PASSWORD):
        return client.post("/auth/sign-in", json={"email": email, "password": password})

    return _sign_in
