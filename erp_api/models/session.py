from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from erp_api.utils import utcnow


class UserSession(SQLModel, table=True):
    """One row per successful sign-in; the source of truth for refresh token validity"""
    __tablename__ = "sessions"

    session_id: str = Field(primary_key=True, max_length=64)
    user_id: int = Field(foreign_key="user.id", index=True)
    refresh_token: str = Field(unique=True, max_length=1024)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = None
    is_active: bool = Field(default=True, index=True)
    expires_at: datetime = Field(index=True, sa_type=DateTime)
    last_activity: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.is_active and not self.is_expired(now)
