"""
Permission resolution — the single role → permissions table.

The table lives in process memory. It starts from the code defaults below,
is replaced from the database at startup and after every matrix change,
and is read by both the server-side guards and the ``/users/me/permissions``
endpoint the UI uses for gating.

Rules:
  * ``admin`` holds every permission, known or not, without a lookup.
  * Any other role resolves to its stored grants; unknown roles and unknown
    permission names resolve to ``False`` (deny by default), never raise.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

# ── Permission catalogue ────────────────────────────────────────────
PERMISSIONS: dict[str, str] = {
    # name -> category
    "user_management": "User Management",
    "manage_roles": "User Management",
    "manage_permissions": "User Management",
    "project_creation": "Project Management",
    "project_management": "Project Management",
    "project_deletion": "Project Management",
    "team_management": "Team Management",
    "team_add": "Team Management",
    "team_remove": "Team Management",
    "team_view": "Team Management",
    "task_creation": "Task Management",
    "task_assignment": "Task Management",
    "task_management": "Task Management",
    "task_deletion": "Task Management",
    "view_projects": "General",
    "edit_profile": "General",
    "system_settings": "System",
    "view_dashboard": "General",
    "attendance_management": "Attendance",
    "view_team_attendance": "Attendance",
}

SYSTEM_ROLES: dict[str, str] = {
    "admin": "Full access to all system features",
    "manager": "Can manage projects, tasks, and team members",
    "user": "Regular user with limited permissions",
    "guest": "View-only access to projects",
}

DEFAULT_MATRIX: dict[str, frozenset[str]] = {
    "admin": frozenset(PERMISSIONS),
    "manager": frozenset(
        {
            "project_creation",
            "project_management",
            "team_management",
            "team_add",
            "team_remove",
            "team_view",
            "task_creation",
            "task_assignment",
            "task_management",
            "task_deletion",
            "view_projects",
            "edit_profile",
            "view_dashboard",
            "attendance_management",
            "view_team_attendance",
        }
    ),
    "user": frozenset(
        {
            "task_creation",
            "task_management",
            "view_projects",
            "edit_profile",
            "view_dashboard",
            "team_view",
        }
    ),
    "guest": frozenset({"view_projects"}),
}


def describe_permission(name: str) -> str:
    return f"Permission to {name.replace('_', ' ')}"


class PermissionTable:
    """Deny-by-default lookup of role → granted permission names."""

    def __init__(self, matrix: Mapping[str, Iterable[str]] | None = None) -> None:
        self._grants: dict[str, frozenset[str]] = {}
        self.load(matrix if matrix is not None else DEFAULT_MATRIX)

    def load(self, matrix: Mapping[str, Iterable[str]]) -> None:
        """Replace the whole table in one assignment."""
        self._grants = {role: frozenset(perms) for role, perms in matrix.items()}
        logger.info("Permission table loaded: %d roles", len(self._grants))

    def has_permission(self, role: str | None, permission: str | None) -> bool:
        if role == ADMIN_ROLE:
            return True
        if not role or not permission:
            return False
        return permission in self._grants.get(role, frozenset())

    def get_permissions_for_role(self, role: str | None) -> set[str]:
        if role == ADMIN_ROLE:
            known: set[str] = set(PERMISSIONS)
            for perms in self._grants.values():
                known |= perms
            return known
        return set(self._grants.get(role or "", frozenset()))

    def matrix(self) -> dict[str, list[str]]:
        return {role: sorted(perms) for role, perms in sorted(self._grants.items())}


permission_table = PermissionTable()
