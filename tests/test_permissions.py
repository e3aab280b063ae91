import pytest
from fastapi import HTTPException

from permissions import (
    StaffIdentity,
    can_manage_role,
    get_role_permissions,
    has_all_permissions,
    has_any_permission,
    has_permission,
    require_permission,
)


def test_role_table():
    assert has_permission("super_admin", "admins.delete")
    assert has_permission("admin", "orders.edit")
    assert not has_permission("admin", "admins.create")
    assert has_permission("moderator", "ads.approve")
    assert not has_permission("moderator", "ads.pause")
    assert has_permission("support", "orders.edit")
    assert not has_permission("support", "reviews.approve")


def test_unknown_role_has_nothing():
    assert get_role_permissions("intern") == frozenset()
    assert get_role_permissions(None) == frozenset()
    assert not has_permission(None, "users.view")


def test_any_and_all():
    assert has_any_permission("support", ["ads.view", "orders.view"])
    assert not has_all_permissions("support", ["ads.view", "orders.view"])
    assert has_all_permissions("admin", ["ads.view", "orders.view"])


def test_role_hierarchy():
    assert can_manage_role("super_admin", "admin")
    assert can_manage_role("admin", "moderator")
    assert not can_manage_role("moderator", "admin")
    assert not can_manage_role("admin", "admin")


def test_require_permission():
    require_permission(StaffIdentity("a1", "admin"), "products.edit")

    with pytest.raises(HTTPException) as exc:
        require_permission(StaffIdentity(None, None), "products.edit")
    assert exc.value.status_code == 403
    assert exc.value.detail == "Admin access required"

    with pytest.raises(HTTPException) as exc:
        require_permission(StaffIdentity("s1", "support"), "products.edit")
    assert exc.value.detail == "Insufficient permissions"
