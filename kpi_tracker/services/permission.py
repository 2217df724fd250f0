"""
KPI Tracker — Role-Based Access Control

Actor identity plus the role → action matrix for imports and the history
ledger. Supports area-scoped roles (an area_manager may only delete history
entries that touched nothing but their own area).

Usage:
    from kpi_tracker.services.permission import check_permission, can_delete_entry

    # Raises PermissionDeniedError if not allowed
    check_permission(actor, "import")

    # Boolean check
    if can_delete_entry(entry, actor):
        ...
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from kpi_tracker.core.exceptions import PermissionDeniedError

# ── Roles ────────────────────────────────────────────────────────────────────

ROLE_ADMIN = "admin"
ROLE_AREA_MANAGER = "area_manager"
ROLE_ANALYST = "analyst"
ROLE_CONSULTANT = "consultant"

ROLES = {ROLE_ADMIN, ROLE_AREA_MANAGER, ROLE_ANALYST, ROLE_CONSULTANT}

# ── Actions ──────────────────────────────────────────────────────────────────

ACTION_IMPORT = "import"
ACTION_DELETE_HISTORY = "delete_history"
ACTION_PURGE_HISTORY = "purge_history"
ACTION_DELETE_IMPORTED_DATA = "delete_imported_data"
ACTION_EDIT_DATASET = "edit_dataset"

PERMISSION_MATRIX = {
    ROLE_ADMIN: {
        ACTION_IMPORT, ACTION_DELETE_HISTORY, ACTION_PURGE_HISTORY,
        ACTION_DELETE_IMPORTED_DATA, ACTION_EDIT_DATASET,
    },
    ROLE_AREA_MANAGER: {ACTION_IMPORT, ACTION_DELETE_HISTORY, ACTION_EDIT_DATASET},
    ROLE_ANALYST: {ACTION_IMPORT, ACTION_EDIT_DATASET},
    ROLE_CONSULTANT: set(),
}


@dataclass(frozen=True)
class Actor:
    """Who is performing the current operation."""
    id: str
    name: str
    role: str
    area: str | None = None

    @classmethod
    def from_claims(cls, claims: dict) -> "Actor":
        return cls(
            id=str(claims.get("sub", "")),
            name=claims.get("name") or "",
            role=claims.get("role") or ROLE_CONSULTANT,
            area=claims.get("area"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def has_permission(actor: Actor | None, action: str) -> bool:
    if actor is None:
        return False
    return action in PERMISSION_MATRIX.get(actor.role, set())


def check_permission(actor: Actor | None, action: str) -> None:
    """Raise PermissionDeniedError unless the actor's role grants ``action``."""
    if not has_permission(actor, action):
        raise PermissionDeniedError(action, actor.role if actor else None)


def can_import(actor: Actor | None) -> bool:
    return has_permission(actor, ACTION_IMPORT)


def can_delete_entry(entry, actor: Actor | None) -> bool:
    """
    admin         → any entry
    area_manager  → entries whose areas are non-empty and all equal the
                    manager's own area
    everyone else → never
    """
    if actor is None:
        return False
    if actor.role == ROLE_ADMIN:
        return True
    if actor.role == ROLE_AREA_MANAGER:
        areas = list(entry.areas or [])
        return bool(areas) and bool(actor.area) and all(a == actor.area for a in areas)
    return False
