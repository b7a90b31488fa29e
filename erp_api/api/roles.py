from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import Session, select
from starlette import status

from erp_api.database import DbSessionDep
from erp_api.dependencies.permissions import normalize_action, require_permission
from erp_api.errors import ConflictError, NotFoundError, ValidationError
from erp_api.models.auth import PermissionGrant
from erp_api.models.user import ACTION_FLAGS, Permission, Role, RolePermission, User

RESOURCE = "ROLE_MANAGEMENT"

class PermissionResponse(BaseModel):
    id: int
    name: str
    description: str | None = None

class RoleResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    is_active: bool
    is_system_role: bool
    permissions: List[PermissionGrant] | None = None

class RoleCreate(BaseModel):
    name: str
    description: str | None = None
    permissions: List[PermissionGrant] = []

class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None

class GrantUpdate(BaseModel):
    actions: List[str]

router = APIRouter(
    prefix="/roles",
    tags=["roles"],
    responses={404: {"description": "Not found"}},
)

def get_role_or_404(session: Session, role_id: int) -> Role:
    role = session.get(Role, role_id)
    if not role:
        raise NotFoundError(f"Role with ID {role_id} not found")
    return role

def get_permission_or_404(session: Session, resource: str) -> Permission:
    permission = session.exec(select(Permission).where(Permission.name == resource)).first()
    if not permission:
        raise NotFoundError(f"Permission {resource} not found")
    return permission

def validated_flags(actions: List[str]) -> List[str]:
    flags = [normalize_action(action) for action in actions]
    unknown = [flag for flag in flags if flag not in ACTION_FLAGS]
    if unknown:
        raise ValidationError("Unknown permission actions", errors=unknown)
    return flags

def apply_grant(session: Session, role: Role, permission: Permission, actions: List[str]) -> RolePermission:
    """Create or overwrite the single grant row a role holds for a resource"""
    flags = set(validated_flags(actions))
    grant = session.get(RolePermission, (role.id, permission.id))
    if grant is None:
        grant = RolePermission(role_id=role.id, permission_id=permission.id)
    for flag in ACTION_FLAGS:
        setattr(grant, flag, flag in flags)
    session.add(grant)
    return grant

def role_grants(session: Session, role: Role) -> List[PermissionGrant]:
    rows = session.exec(
        select(RolePermission, Permission)
        .join(Permission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role.id)
        .order_by(Permission.name)
    ).all()
    return [PermissionGrant(resource=perm.name, actions=grant.granted_actions()) for grant, perm in rows]

def to_response(role: Role, permissions: List[PermissionGrant] | None = None) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        is_active=role.is_active,
        is_system_role=role.is_system_role,
        permissions=permissions,
    )

@router.get("/", dependencies=[Depends(require_permission(RESOURCE, "canView"))])
def list_roles(session: DbSessionDep) -> List[RoleResponse]:
    """List all roles"""
    roles = session.exec(select(Role).order_by(Role.name)).all()
    return [to_response(role) for role in roles]

@router.get("/permissions", dependencies=[Depends(require_permission(RESOURCE, "canView"))])
def list_permissions(session: DbSessionDep) -> List[PermissionResponse]:
    """List every resource a role can be granted actions on"""
    permissions = session.exec(select(Permission).order_by(Permission.name)).all()
    return [PermissionResponse(id=perm.id, name=perm.name, description=perm.description) for perm in permissions]

@router.get("/{role_id}", dependencies=[Depends(require_permission(RESOURCE, "canView"))])
def get_role(session: DbSessionDep, role_id: int) -> RoleResponse:
    """Get a role with its permission grants"""
    role = get_role_or_404(session, role_id)
    return to_response(role, role_grants(session, role))

@router.post("/", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_permission(RESOURCE, "canCreate"))])
def create_role(session: DbSessionDep, role_create: RoleCreate) -> RoleResponse:
    """Create a new role, optionally with its initial grants"""
    existing = session.exec(select(Role).where(Role.name == role_create.name)).first()
    if existing:
        raise ConflictError(f'Role with name "{role_create.name}" already exists')

    role = Role(name=role_create.name, description=role_create.description)
    session.add(role)
    session.flush()

    for grant in role_create.permissions:
        apply_grant(session, role, get_permission_or_404(session, grant.resource), grant.actions)

    session.commit()
    session.refresh(role)
    return to_response(role, role_grants(session, role))

@router.put("/{role_id}", dependencies=[Depends(require_permission(RESOURCE, "canUpdate"))])
def update_role(session: DbSessionDep, role_id: int, role_update: RoleUpdate) -> RoleResponse:
    """Update a role's name, description or active flag"""
    role = get_role_or_404(session, role_id)

    # Check for name conflicts if renaming
    if role_update.name and role_update.name != role.name:
        existing = session.exec(select(Role).where(Role.name == role_update.name)).first()
        if existing:
            raise ConflictError(f'Role with name "{role_update.name}" already exists')
        role.name = role_update.name

    if role_update.description is not None:
        role.description = role_update.description
    if role_update.is_active is not None:
        role.is_active = role_update.is_active

    session.add(role)
    session.commit()
    session.refresh(role)
    return to_response(role, role_grants(session, role))

@router.put("/{role_id}/permissions/{resource}", dependencies=[Depends(require_permission(RESOURCE, "canSetPermission"))])
def set_role_permission(session: DbSessionDep, role_id: int, resource: str, grant_update: GrantUpdate) -> RoleResponse:
    """Replace the actions a role may perform on one resource"""
    role = get_role_or_404(session, role_id)
    apply_grant(session, role, get_permission_or_404(session, resource), grant_update.actions)
    session.commit()
    return to_response(role, role_grants(session, role))

@router.delete("/{role_id}/permissions/{resource}", dependencies=[Depends(require_permission(RESOURCE, "canSetPermission"))])
def revoke_role_permission(session: DbSessionDep, role_id: int, resource: str) -> RoleResponse:
    """Remove a role's grant row for a resource"""
    role = get_role_or_404(session, role_id)
    permission = get_permission_or_404(session, resource)
    grant = session.get(RolePermission, (role.id, permission.id))
    if grant is None:
        raise NotFoundError(f"No permission configured for {resource}")
    session.delete(grant)
    session.commit()
    return to_response(role, role_grants(session, role))

@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_permission(RESOURCE, "canDelete"))])
def delete_role(session: DbSessionDep, role_id: int):
    """Delete a role that is neither seeded nor assigned to any user"""
    role = get_role_or_404(session, role_id)
    if role.is_system_role:
        raise ConflictError(f'Cannot delete system role "{role.name}"')

    user_count = session.exec(select(func.count()).select_from(User).where(User.role_id == role.id)).one()
    if user_count:
        raise ConflictError(
            f'Cannot delete role "{role.name}" because it has {user_count} user(s) assigned to it'
        )

    for grant in session.exec(select(RolePermission).where(RolePermission.role_id == role.id)).all():
        session.delete(grant)
    session.delete(role)
    session.commit()
    return None
