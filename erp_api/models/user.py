from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from erp_api.utils import utcnow

# Action flags carried by every RolePermission row, in display order
ACTION_FLAGS = (
    "can_view",
    "can_read",
    "can_create",
    "can_update",
    "can_delete",
    "can_permanently_delete",
    "can_set_permission",
    "can_import",
    "can_export",
    "can_submit",
    "can_cancel",
    "can_approve",
    "can_reject",
    "can_assign",
    "can_view_salary",
    "can_edit_salary",
    "can_view_benefit",
    "can_report",
    "can_view_partial",
    "can_view_belong_to",
    "can_view_owner",
)

class Role(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    description: str | None = None
    is_active: bool = Field(default=True, index=True)
    is_system_role: bool = False  # Seeded roles cannot be deleted
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, sa_column_kwargs={"onupdate": utcnow})

class Permission(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)  # Resource identifier, e.g. EMPLOYEE_MANAGEMENT
    description: str | None = None

class RolePermission(SQLModel, table=True):
    role_id: int | None = Field(default=None, primary_key=True, foreign_key="role.id")
    permission_id: int | None = Field(default=None, primary_key=True, foreign_key="permission.id")

    can_view: bool = False
    can_read: bool = False

    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False
    can_permanently_delete: bool = False

    can_set_permission: bool = False
    can_import: bool = False
    can_export: bool = False

    # Workflow
    can_submit: bool = False
    can_cancel: bool = False
    can_approve: bool = False
    can_reject: bool = False
    can_assign: bool = False

    # HR specific
    can_view_salary: bool = False
    can_edit_salary: bool = False
    can_view_benefit: bool = False

    can_report: bool = False

    # Visibility
    can_view_partial: bool = False
    can_view_belong_to: bool = False
    can_view_owner: bool = False

    def granted_actions(self) -> list[str]:
        return [flag for flag in ACTION_FLAGS if getattr(self, flag)]

class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str | None = None
    is_active: bool = Field(default=True, index=True)
    is_email_verified: bool = False
    role_id: int | None = Field(default=None, foreign_key="role.id", index=True)

    failed_login_attempts: int = Field(default=0, ge=0)
    account_locked_until: datetime | None = Field(default=None, sa_type=DateTime)
    last_login: datetime | None = Field(default=None, sa_type=DateTime)
    password_changed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, sa_column_kwargs={"onupdate": utcnow})

    def is_account_locked(self, now: datetime | None = None) -> bool:
        if self.account_locked_until is None:
            return False
        return (now or utcnow()) < self.account_locked_until
