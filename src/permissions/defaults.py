"""Seeded permission names and role defaults.

Permissions follow the `module.action` convention. These are the values the
school backend is seeded with; at runtime the catalog always comes from the
backend, this module only feeds the mock backend, the CLI and tests.
"""

from __future__ import annotations

from src.permissions.models import module_of

# ── Roles that the administrative surface must never edit or delete ──

SYSTEM_ROLES: frozenset[str] = frozenset({"admin", "super-admin", "system"})

# ── All known permissions ────────────────────────────────────

_ACTIONS_CRUD = ("view", "create", "edit", "delete", "manage")

ACADEMIC_PERMISSIONS = [
    "dashboard.view", "dashboard.admin", "dashboard.teacher", "dashboard.student",
    *(f"students.{a}" for a in _ACTIONS_CRUD),
    "students.grades", "students.attendance", "students.reports",
    *(f"teachers.{a}" for a in _ACTIONS_CRUD), "teachers.assign",
    *(f"courses.{a}" for a in _ACTIONS_CRUD), "courses.assign",
    *(f"classes.{a}" for a in _ACTIONS_CRUD), "classes.schedule",
    *(f"grades.{a}" for a in _ACTIONS_CRUD), "grades.reports",
    *(f"attendance.{a}" for a in _ACTIONS_CRUD), "attendance.reports",
    *(f"enrollments.{a}" for a in _ACTIONS_CRUD),
    "enrollment.view", "enrollment.review",
    "academic.view",
    *(f"schedules.{a}" for a in _ACTIONS_CRUD),
    *(f"events.{a}" for a in _ACTIONS_CRUD),
    *(f"library.{a}" for a in _ACTIONS_CRUD), "library.borrow", "library.return",
]

COMMUNICATION_PERMISSIONS = [
    *(f"communications.{a}" for a in _ACTIONS_CRUD),
    "communications.send", "communication.access",
    *(f"documents.{a}" for a in _ACTIONS_CRUD), "documents.upload", "documents.download",
]

ADMINISTRATION_PERMISSIONS = [
    *(f"users.{a}" for a in _ACTIONS_CRUD), "users.import", "users.export",
    "reports.view", "reports.generate", "reports.export", "reports.academic",
    "reports.attendance", "reports.grades", "reports.financial",
    "settings.view", "settings.edit", "settings.system", "settings.academic",
    "settings.notifications",
    *(f"roles.{a}" for a in _ACTIONS_CRUD),
    "permissions.view", "permissions.assign", "permissions.manage",
    *(f"finance.{a}" for a in _ACTIONS_CRUD), "finance.payments", "finance.reports",
    *(f"inventory.{a}" for a in _ACTIONS_CRUD),
    "audit.view", "audit.manage", "logs.view", "logs.manage",
    "backup.create", "backup.restore", "backup.manage",
    "maintenance.view", "maintenance.manage",
]

ALL_PERMISSIONS: list[str] = sorted(
    {*ACADEMIC_PERMISSIONS, *COMMUNICATION_PERMISSIONS, *ADMINISTRATION_PERMISSIONS}
)

# ── Role → default permissions ───────────────────────────────

ROLE_DEFAULT_PERMISSIONS: dict[str, list[str]] = {
    "admin": ALL_PERMISSIONS.copy(),
    "teacher": [
        "dashboard.view", "dashboard.teacher",
        "students.view", "students.grades", "students.attendance",
        "courses.view",
        "classes.view", "classes.manage",
        "grades.view", "grades.create", "grades.edit",
        "attendance.view", "attendance.create", "attendance.edit",
        "communications.view", "communications.create",
        "reports.view", "reports.academic", "reports.attendance", "reports.grades",
        "documents.view", "documents.upload",
        "schedules.view",
        "events.view",
        "library.view",
    ],
    "student": [
        "dashboard.view", "dashboard.student",
        "grades.view",
        "attendance.view",
        "courses.view",
        "classes.view",
        "communications.view",
        "documents.view",
        "schedules.view",
        "events.view",
        "library.view", "library.borrow", "library.return",
    ],
}


def permission_groups(names: list[str]) -> dict[str, list[str]]:
    """Group permission names by module, preserving input order (for UI rendering)."""
    groups: dict[str, list[str]] = {}
    for name in names:
        groups.setdefault(module_of(name), []).append(name)
    return groups


PERMISSION_GROUPS: dict[str, list[str]] = permission_groups(ALL_PERMISSIONS)
