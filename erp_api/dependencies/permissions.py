import enum
import logging
import re
from dataclasses import dataclass
from typing import Annotated, Iterable

from fastapi import Depends
from starlette import status

from erp_api.dependencies.auth import authenticate_token
from erp_api.errors import AuthenticationError, AuthorizationError
from erp_api.models.auth import AccessClaims
from erp_api.models.user import ACTION_FLAGS

logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "Admin"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class MatchMode(str, enum.Enum):
    ONE = "one"
    ANY = "any"
    ALL = "all"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    status_code: int = status.HTTP_200_OK
    message: str = ""


def normalize_action(action: str) -> str:
    """Map "canUpdate", "can_update" or "update" onto the RolePermission flag name"""
    snake = _CAMEL_BOUNDARY.sub("_", action.strip()).lower()
    if not snake.startswith("can_"):
        snake = f"can_{snake}"
    return snake

def humanize_resource(resource: str) -> str:
    return resource.lower().replace("_", " ")

def humanize_action(action: str) -> str:
    return normalize_action(action)[len("can_"):].replace("_", " ")

def evaluate_permission(
    identity: AccessClaims | None,
    resource: str,
    actions: Iterable[str],
    mode: MatchMode = MatchMode.ONE,
) -> PermissionDecision:
    actions = list(actions)
    if identity is None:
        return PermissionDecision(False, status.HTTP_401_UNAUTHORIZED, "Authentication required")

    role = identity.role
    if role is None or not role.is_active:
        return PermissionDecision(False, status.HTTP_403_FORBIDDEN, "Role permissions not configured")

    grant = role.grant_for(resource)
    if grant is None:
        return PermissionDecision(False, status.HTTP_403_FORBIDDEN, f"No permission configured for {resource}")

    flags = [normalize_action(action) for action in actions]
    unknown = [flag for flag in flags if flag not in ACTION_FLAGS]
    if unknown:
        logger.warning("Permission check on %s used unknown actions %s", resource, unknown)

    granted = set(grant.actions)
    checks = [flag in granted for flag in flags]

    if mode is MatchMode.ALL:
        allowed = bool(checks) and all(checks)
        denial = f"You do not have all required permissions for {humanize_resource(resource)}"
    elif mode is MatchMode.ANY:
        allowed = any(checks)
        denial = f"You do not have sufficient permissions for {humanize_resource(resource)}"
    else:
        allowed = bool(checks) and checks[0]
        action_text = humanize_action(actions[0]) if actions else "access"
        denial = f"You do not have permission to {action_text} {humanize_resource(resource)}"

    if not allowed:
        return PermissionDecision(False, status.HTTP_403_FORBIDDEN, denial)
    return PermissionDecision(True)

def enforce(decision: PermissionDecision):
    if decision.allowed:
        return
    if decision.status_code == status.HTTP_401_UNAUTHORIZED:
        raise AuthenticationError(decision.message)
    raise AuthorizationError(decision.message)


class PermissionChecker:
    """Route dependency: the caller's role must grant the action(s) on the resource"""

    def __init__(self, resource: str, actions: str | list[str], mode: MatchMode = MatchMode.ONE):
        self.resource = resource
        self.actions = actions if isinstance(actions, list) else [actions]
        self.mode = mode

    def __call__(self, current_user: Annotated[AccessClaims, Depends(authenticate_token)]) -> AccessClaims:
        decision = evaluate_permission(current_user, self.resource, self.actions, self.mode)
        if not decision.allowed:
            logger.info(
                "Denied user %s %s on %s: %s",
                current_user.user_id, self.actions, self.resource, decision.message,
            )
        enforce(decision)
        return current_user

def require_permission(resource: str, action: str) -> PermissionChecker:
    return PermissionChecker(resource, action)

def require_any_permission(resource: str, actions: list[str]) -> PermissionChecker:
    return PermissionChecker(resource, actions, MatchMode.ANY)

def require_all_permissions(resource: str, actions: list[str]) -> PermissionChecker:
    return PermissionChecker(resource, actions, MatchMode.ALL)

def evaluate_admin(identity: AccessClaims | None) -> PermissionDecision:
    if identity is None:
        return PermissionDecision(False, status.HTTP_401_UNAUTHORIZED, "Authentication required")
    if identity.role is None or identity.role.name != ADMIN_ROLE_NAME:
        return PermissionDecision(False, status.HTTP_403_FORBIDDEN, "Admin access required")
    return PermissionDecision(True)

def require_admin(current_user: Annotated[AccessClaims, Depends(authenticate_token)]) -> AccessClaims:
    enforce(evaluate_admin(current_user))
    return current_user
