import logging

from sqlmodel import Session, select

from .models.user import ACTION_FLAGS, User, Role, Permission, RolePermission
from .passwords import get_password_hash
from .settings import get_settings

logger = logging.getLogger(__name__)

# Resources guarded by the permission evaluator
PERMISSIONS_DATA = [
    ("USER_MANAGEMENT", "User accounts"),
    ("ROLE_MANAGEMENT", "Roles and permission grants"),
    ("EMPLOYEE_MANAGEMENT", "Employee records"),
    ("DEPARTMENT_MANAGEMENT", "Departments"),
    ("POSITION_MANAGEMENT", "Positions"),
    ("CONTRACT_MANAGEMENT", "Employment contracts"),
    ("LEAVE_MANAGEMENT", "Leave requests"),
    ("PROJECT_MANAGEMENT", "Projects"),
    ("NOTIFICATION_MANAGEMENT", "Notifications"),
]

VIEW = ["can_view", "can_read"]

# role name -> (description, {resource: [flags]}); "*" means every resource
ROLES_DATA = {
    "Admin": ("Administrator with full access", {"*": list(ACTION_FLAGS)}),
    "Manager": ("Department manager", {
        "EMPLOYEE_MANAGEMENT": VIEW + ["can_create", "can_update", "can_export", "can_view_salary"],
        "DEPARTMENT_MANAGEMENT": VIEW,
        "POSITION_MANAGEMENT": VIEW,
        "CONTRACT_MANAGEMENT": VIEW + ["can_create", "can_update"],
        "LEAVE_MANAGEMENT": VIEW + ["can_approve", "can_reject", "can_assign"],
        "PROJECT_MANAGEMENT": VIEW + ["can_create", "can_update", "can_assign"],
        "NOTIFICATION_MANAGEMENT": VIEW + ["can_create"],
    }),
    "Employee": ("Regular employee", {
        "EMPLOYEE_MANAGEMENT": ["can_view_owner"],
        "LEAVE_MANAGEMENT": ["can_view_owner", "can_create", "can_submit", "can_cancel"],
        "PROJECT_MANAGEMENT": ["can_view_belong_to"],
        "NOTIFICATION_MANAGEMENT": ["can_view_owner"],
    }),
}

def seed_roles_and_permissions(session: Session) -> dict[str, Role]:
    permissions = {}
    for perm_name, perm_desc in PERMISSIONS_DATA:
        permission = Permission(name=perm_name, description=perm_desc)
        session.add(permission)
        permissions[perm_name] = permission
    session.commit()

    # Refresh permissions to get their IDs
    for perm in permissions.values():
        session.refresh(perm)

    roles = {}
    for role_name, (role_desc, grants) in ROLES_DATA.items():
        role = Role(name=role_name, description=role_desc, is_system_role=True)
        session.add(role)
        session.commit()
        session.refresh(role)
        roles[role_name] = role

        if "*" in grants:
            grants = {perm_name: grants["*"] for perm_name in permissions}
        for perm_name, flags in grants.items():
            session.add(RolePermission(
                role_id=role.id,
                permission_id=permissions[perm_name].id,
                **{flag: True for flag in flags},
            ))
    session.commit()
    return roles

def create_initial_roles_and_permissions(engine):
    """Create initial roles, permissions, and superuser on first database setup"""
    with Session(engine) as session:
        # Check if roles already exist to avoid duplicate creation
        existing_roles = session.exec(select(Role)).first()
        if existing_roles:
            logger.info("Database already initialized with roles and permissions.")
            return

        logger.info("Initializing database with roles, permissions, and superuser...")
        roles = seed_roles_and_permissions(session)

        settings = get_settings()
        superuser_email = settings.superuser_email.strip().lower()
        existing_superuser = session.exec(
            select(User).where(User.email == superuser_email)
        ).first()

        if not existing_superuser:
            session.add(User(
                username=settings.superuser_username,
                email=superuser_email,
                hashed_password=get_password_hash(settings.superuser_password),
                full_name="System Administrator",
                is_active=True,
                is_email_verified=True,
                role_id=roles["Admin"].id
            ))
            session.commit()
            logger.warning("Created superuser %s; change the default password after first login!", superuser_email)
        else:
            logger.info("Superuser %s already exists.", superuser_email)

        logger.info("Database initialization completed successfully!")
