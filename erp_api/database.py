from typing import Annotated

from fastapi import Depends
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from .models import session as _session_models  # noqa: F401
from .models import user as _user_models  # noqa: F401
from .settings import get_settings

settings = get_settings()

engine_kwargs = {}
if settings.db_url.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    if settings.db_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every thread sees its own empty database
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(settings.db_url, echo=settings.db_echo, **engine_kwargs)

def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)

def get_session():
    with Session(engine) as session:
        yield session

DbSessionDep = Annotated[Session, Depends(get_session)]
