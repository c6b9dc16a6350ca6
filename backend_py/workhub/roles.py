"""Role-based access control.

Five roles, from most to least privileged:

    OWNER  - company owner, full system access
    ADMIN  - administrators, manage users and settings
    LEAD   - team leads, manage their team
    MEMBER - standard team members
    GUEST  - view-only access

``PERMISSIONS`` maps a ``<module>:<action>`` permission to the roles that
hold it. OWNER implicitly holds every permission.
"""

from __future__ import annotations

from typing import Dict, List, Union

from .models import Role

OWNER, ADMIN, LEAD, MEMBER, GUEST = Role.OWNER, Role.ADMIN, Role.LEAD, Role.MEMBER, Role.GUEST
EVERYONE = [OWNER, ADMIN, LEAD, MEMBER, GUEST]

PERMISSIONS: Dict[str, List[Role]] = {
    # User management
    "users:read": [OWNER, ADMIN, LEAD],
    "users:create": [OWNER, ADMIN],
    "users:update": [OWNER, ADMIN],
    "users:delete": [OWNER, ADMIN],
    "users:read:all": [OWNER, ADMIN],
    "users:read:department": [LEAD],

    # Departments
    "departments:read": EVERYONE,
    "departments:create": [OWNER, ADMIN],
    "departments:update": [OWNER, ADMIN],
    "departments:delete": [OWNER],

    # Chat and messaging
    "channels:read": EVERYONE,
    "channels:create": [OWNER, ADMIN, LEAD, MEMBER],
    "channels:update": [OWNER, ADMIN, LEAD],
    "channels:delete": [OWNER, ADMIN],
    "messages:send": [OWNER, ADMIN, LEAD, MEMBER],
    "messages:delete": [OWNER, ADMIN],

    # Projects and tasks
    "projects:read": EVERYONE,
    "projects:create": [OWNER, ADMIN, LEAD],
    "projects:update": [OWNER, ADMIN, LEAD],
    "projects:delete": [OWNER, ADMIN],
    "tasks:read": EVERYONE,
    "tasks:create": [OWNER, ADMIN, LEAD, MEMBER],
    "tasks:update": [OWNER, ADMIN, LEAD, MEMBER],
    "tasks:delete": [OWNER, ADMIN, LEAD],
    "tasks:assign": [OWNER, ADMIN, LEAD],

    # Performance, KPIs, OKRs
    "performance:read": [OWNER, ADMIN, LEAD],
    "performance:read:own": [MEMBER],
    "performance:create": [OWNER, ADMIN, LEAD],
    "performance:update": [OWNER, ADMIN, LEAD],
    "performance:delete": [OWNER, ADMIN],
    "kpis:read": [OWNER, ADMIN, LEAD],
    "kpis:read:own": [MEMBER],
    "kpis:create": [OWNER, ADMIN, LEAD],
    "kpis:update": [OWNER, ADMIN, LEAD],
    "kpis:delete": [OWNER, ADMIN],
    "okrs:read": [OWNER, ADMIN, LEAD],
    "okrs:read:own": [MEMBER],
    "okrs:create": [OWNER, ADMIN, LEAD, MEMBER],
    "okrs:update": [OWNER, ADMIN, LEAD, MEMBER],
    "okrs:delete": [OWNER, ADMIN],

    # Leave and attendance
    "leave:read": [OWNER, ADMIN, LEAD],
    "leave:read:own": [MEMBER],
    "leave:create": [OWNER, ADMIN, LEAD, MEMBER],
    "leave:approve": [OWNER, ADMIN, LEAD],
    "leave:delete": [OWNER, ADMIN],
    "attendance:read": [OWNER, ADMIN, LEAD],
    "attendance:read:own": [MEMBER],
    "attendance:create": [OWNER, ADMIN, LEAD, MEMBER],
    "attendance:update": [OWNER, ADMIN],

    # Documents
    "documents:read": [OWNER, ADMIN, LEAD, MEMBER],
    "documents:upload": [OWNER, ADMIN, LEAD, MEMBER],
    "documents:delete": [OWNER, ADMIN],

    # Workflows
    "workflows:read": [OWNER, ADMIN],
    "workflows:create": [OWNER, ADMIN],
    "workflows:update": [OWNER, ADMIN],
    "workflows:delete": [OWNER],
    "workflows:approve": [OWNER, ADMIN, LEAD],

    # Analytics
    "analytics:read": [OWNER, ADMIN],
    "analytics:read:department": [LEAD],
    "analytics:export": [OWNER, ADMIN],

    # System settings and audit
    "settings:read": [OWNER, ADMIN],
    "settings:update": [OWNER],
    "admin:settings": [OWNER, ADMIN],
    "audit:read": [OWNER, ADMIN],
}

ROLE_HIERARCHY: Dict[Role, int] = {
    OWNER: 100,
    ADMIN: 80,
    LEAD: 60,
    MEMBER: 40,
    GUEST: 10,
}

ROLE_NAMES: Dict[Role, str] = {
    OWNER: "Owner",
    ADMIN: "Admin",
    LEAD: "Team Lead",
    MEMBER: "Member",
    GUEST: "Guest",
}


def _as_role(role: Union[Role, str]) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


def has_permission(role: Union[Role, str], permission: str) -> bool:
    """Return True if ``role`` holds ``permission``. Unknown permissions are denied."""
    resolved = _as_role(role)
    if resolved is None:
        return False
    if resolved == OWNER:
        return True
    return resolved in PERMISSIONS.get(permission, [])


def get_role_permissions(role: Union[Role, str]) -> List[str]:
    resolved = _as_role(role)
    if resolved == OWNER:
        return list(PERMISSIONS)
    return [perm for perm, roles in PERMISSIONS.items() if resolved in roles]


def is_role_higher(role_a: Union[Role, str], role_b: Union[Role, str]) -> bool:
    a, b = _as_role(role_a), _as_role(role_b)
    return ROLE_HIERARCHY.get(a, 0) > ROLE_HIERARCHY.get(b, 0)


def get_role_name(role: Union[Role, str]) -> str:
    resolved = _as_role(role)
    return ROLE_NAMES.get(resolved, str(role))


def can_moderate_messages(role: Union[Role, str]) -> bool:
    """Elevated roles may edit or delete messages written by someone else."""
    return has_permission(role, "messages:delete")
