"""
Admin roles and permissions

Each staff role maps to a fixed set of named capabilities. Checks are plain
set membership; there is no inheritance between roles.
"""

from typing import Dict, FrozenSet, Iterable, Optional

from fastapi import Header, HTTPException

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "super_admin": frozenset({
        "users.view", "users.create", "users.edit", "users.delete", "users.ban", "users.verify",
        "vendors.view", "vendors.approve", "vendors.reject", "vendors.suspend", "vendors.edit",
        "vendors.delete", "vendors.verify", "vendors.commission",
        "products.view", "products.approve", "products.reject", "products.edit", "products.delete",
        "products.feature",
        "orders.view", "orders.edit", "orders.cancel", "orders.refund", "orders.export",
        "ads.view", "ads.approve", "ads.reject", "ads.pause", "ads.delete",
        "reviews.view", "reviews.approve", "reviews.reject", "reviews.delete",
        "finance.view", "finance.payouts", "finance.refunds", "finance.reports", "finance.settings",
        "settings.view", "settings.edit", "settings.categories", "settings.shipping", "settings.payment",
        "analytics.view", "analytics.export",
        "system.logs", "system.backup", "system.maintenance",
        "admins.view", "admins.create", "admins.edit", "admins.delete",
    }),
    "admin": frozenset({
        "users.view", "users.edit", "users.ban", "users.verify",
        "vendors.view", "vendors.approve", "vendors.reject", "vendors.suspend", "vendors.edit",
        "vendors.verify",
        "products.view", "products.approve", "products.reject", "products.edit", "products.delete",
        "products.feature",
        "orders.view", "orders.edit", "orders.cancel", "orders.refund", "orders.export",
        "ads.view", "ads.approve", "ads.reject", "ads.pause", "ads.delete",
        "reviews.view", "reviews.approve", "reviews.reject", "reviews.delete",
        "finance.view", "finance.payouts", "finance.refunds", "finance.reports",
        "settings.view", "settings.edit", "settings.categories", "settings.shipping",
        "analytics.view", "analytics.export",
        "system.logs",
    }),
    "moderator": frozenset({
        "users.view", "users.ban",
        "vendors.view",
        "products.view", "products.approve", "products.reject",
        "orders.view",
        "ads.view", "ads.approve", "ads.reject",
        "reviews.view", "reviews.approve", "reviews.reject", "reviews.delete",
        "analytics.view",
    }),
    "support": frozenset({
        "users.view",
        "vendors.view",
        "products.view",
        "orders.view", "orders.edit",
        "reviews.view",
        "analytics.view",
    }),
}

ROLE_LEVELS = {
    "super_admin": 4,
    "admin": 3,
    "moderator": 2,
    "support": 1,
}


def get_role_permissions(role: Optional[str]) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: Optional[str], permission: str) -> bool:
    return permission in get_role_permissions(role)


def has_any_permission(role: Optional[str], permissions: Iterable[str]) -> bool:
    granted = get_role_permissions(role)
    return any(p in granted for p in permissions)


def has_all_permissions(role: Optional[str], permissions: Iterable[str]) -> bool:
    granted = get_role_permissions(role)
    return all(p in granted for p in permissions)


def can_manage_role(manager_role: Optional[str], target_role: Optional[str]) -> bool:
    """A staff member may only manage roles strictly below their own level."""
    return ROLE_LEVELS.get(manager_role or "", 0) > ROLE_LEVELS.get(target_role or "", 0)


class StaffIdentity:
    def __init__(self, admin_id: Optional[str], role: Optional[str]):
        self.admin_id = admin_id
        self.role = role

    def can(self, permission: str) -> bool:
        return has_permission(self.role, permission)


def get_staff(
    x_admin_id: Optional[str] = Header(None),
    x_admin_role: Optional[str] = Header(None),
) -> StaffIdentity:
    # identity headers are set by the authenticating gateway in front of the API
    return StaffIdentity(x_admin_id, x_admin_role)


def require_permission(staff: StaffIdentity, permission: str) -> None:
    if not staff.role:
        raise HTTPException(status_code=403, detail="Admin access required")
    if not staff.can(permission):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
