"""
test_hierarchy.py — Delegation trees, orphans and user management
"""

import pytest

from districtdesk.errors import NotFound, PermissionDenied, ValidationFailed
from districtdesk.hierarchy import (
    UserService,
    build_hierarchy,
    can_manage,
    find_orphans,
    is_ancestor,
    manageable_users,
)
from districtdesk.models import UserRole, UserStatus
from districtdesk.utils import UserCreate, UserUpdate


def _emails(nodes):
    return [n.user.email for n in nodes]


# ── Trees ─────────────────────────────────────────────────────────────────────
def test_main_admin_tree_nests_three_levels(org):
    tree = build_hierarchy(list(org.values()), UserRole.MAIN_ADMIN, org["root"].email)

    assert _emails(tree) == ["sa1@demo.com", "sa2@demo.com"]
    sa1 = tree[0]
    assert _emails(sa1.children) == ["a1@demo.com", "a2@demo.com"]
    assert _emails(sa1.children[0].children) == ["u1@demo.com", "u2@demo.com"]
    assert sa1.children[1].children == []


def test_super_admin_tree_is_limited_to_own_admins(org):
    tree = build_hierarchy(list(org.values()), "super_admin", "sa2@demo.com")
    assert _emails(tree) == ["a3@demo.com"]
    assert _emails(tree[0].children) == ["u3@demo.com"]


def test_admin_tree_is_flat(org):
    tree = build_hierarchy(list(org.values()), UserRole.ADMIN, "a1@demo.com")
    assert _emails(tree) == ["u1@demo.com", "u2@demo.com"]
    assert all(node.children == [] for node in tree)


def test_plain_user_has_no_tree(org):
    assert build_hierarchy(list(org.values()), UserRole.USER, "u1@demo.com") == []


def test_member_count_matches_direct_filter(org):
    users = list(org.values())
    tree = build_hierarchy(users, UserRole.MAIN_ADMIN, org["root"].email)

    for sa_node in tree:
        admins = [u for u in users if u.role == UserRole.ADMIN and u.created_by == sa_node.user.email]
        admin_emails = {a.email for a in admins}
        leaf_users = [u for u in users if u.role == UserRole.USER and u.created_by in admin_emails]
        assert sa_node.member_count == len(admins) + len(leaf_users)

    assert tree[0].member_count == 4
    assert tree[1].member_count == 2


def test_linkage_is_exact_string_match(org, make_user):
    users = list(org.values()) + [make_user("u9@demo.com", UserRole.USER, "A1@demo.com")]
    tree = build_hierarchy(users, UserRole.ADMIN, "a1@demo.com")
    assert "u9@demo.com" not in _emails(tree)


def test_orphans_are_absent_from_every_tree(org):
    users = list(org.values())
    seen = {
        node.user.email
        for role, email in [(u.role, u.email) for u in users]
        for root in build_hierarchy(users, role, email)
        for node in root.walk()
    }
    assert "ghost@demo.com" not in seen
    assert "stray@demo.com" not in seen


def test_tree_serialises_member_count(org):
    tree = build_hierarchy(list(org.values()), UserRole.SUPER_ADMIN, "sa1@demo.com")
    data = tree[0].to_dict()
    assert data["email"] == "a1@demo.com"
    assert data["memberCount"] == 2
    assert "passwordHash" not in data


# ── Diagnostics ───────────────────────────────────────────────────────────────
def test_find_orphans_reports_missing_and_mismatched_creators(org):
    diagnostics = {d.email: d for d in find_orphans(list(org.values()))}

    assert set(diagnostics) == {"ghost@demo.com", "stray@demo.com"}
    assert diagnostics["ghost@demo.com"].reason == "missing_creator"
    assert diagnostics["ghost@demo.com"].relink_candidate == "sa2@demo.com"
    assert diagnostics["stray@demo.com"].reason == "creator_role_mismatch"
    assert diagnostics["stray@demo.com"].to_dict()["createdBy"] == "sa1@demo.com"


# ── Ancestry ──────────────────────────────────────────────────────────────────
def test_is_ancestor_walks_created_by_chain(org):
    users = list(org.values())
    assert is_ancestor(users, org["sa1"], org["u1"])
    assert is_ancestor(users, org["root"], org["u3"])
    assert not is_ancestor(users, org["sa2"], org["u1"])


def test_is_ancestor_survives_cycles(make_user):
    x = make_user("x@demo.com", UserRole.ADMIN, "y@demo.com")
    y = make_user("y@demo.com", UserRole.ADMIN, "x@demo.com")
    z = make_user("z@demo.com", UserRole.SUPER_ADMIN)
    assert not is_ancestor([x, y, z], z, x)


def test_can_manage(org):
    users = list(org.values())
    assert can_manage(users, org["a1"], org["u1"])
    assert not can_manage(users, org["a2"], org["u1"])
    assert not can_manage(users, org["u1"], org["u2"])
    assert not can_manage(users, org["a1"], org["sa1"])
    # main admin reaches orphans too
    assert can_manage(users, org["root"], org["ghost"])


def test_manageable_users_flattens_tree(org):
    emails = {u.email for u in manageable_users(list(org.values()), org["sa1"])}
    assert emails == {"a1@demo.com", "a2@demo.com", "u1@demo.com", "u2@demo.com"}


# ── User service ──────────────────────────────────────────────────────────────
async def test_create_user_enforces_child_role(seeded_store, org):
    service = UserService(seeded_store)

    created = await service.create_user(
        org["a1"], UserCreate(email="new@demo.com", name="New", password="secret123", role="user")
    )
    assert created.created_by == "a1@demo.com"
    assert created.creator_id == "a1"
    assert (await service.get_by_email("new@demo.com")).id == created.id

    with pytest.raises(ValidationFailed):
        await service.create_user(
            org["a1"], UserCreate(email="boss@demo.com", name="B", password="secret123", role="admin")
        )
    with pytest.raises(PermissionDenied):
        await service.create_user(
            org["u1"], UserCreate(email="x@demo.com", name="X", password="secret123", role="user")
        )


async def test_create_user_rejects_duplicate_email(seeded_store, org):
    with pytest.raises(ValidationFailed):
        await UserService(seeded_store).create_user(
            org["a1"], UserCreate(email="u1@demo.com", name="Dup", password="secret123", role="user")
        )


def test_user_create_rejects_main_admin_role():
    with pytest.raises(ValueError):
        UserCreate(email="r@demo.com", name="R", password="secret123", role="main_admin")


async def test_authenticate(seeded_store, org):
    service = UserService(seeded_store)
    await service.create_user(
        org["a1"], UserCreate(email="login@demo.com", name="L", password="secret123", role="user")
    )
    assert (await service.authenticate("login@demo.com", "secret123")).email == "login@demo.com"
    assert await service.authenticate("login@demo.com", "wrong-pass") is None
    assert await service.authenticate("nobody@demo.com", "secret123") is None


async def test_soft_delete_marks_inactive_and_keeps_descendants(seeded_store, org):
    service = UserService(seeded_store)
    await service.delete_user(org["sa1"], "a1")

    assert (await service.get_user("a1")).status == UserStatus.INACTIVE
    assert (await service.get_user("u1")).created_by == "a1@demo.com"

    await service.delete_user(org["root"], "u3", hard=True)
    with pytest.raises(NotFound):
        await service.get_user("u3")


async def test_update_user_requires_ancestry(seeded_store, org):
    service = UserService(seeded_store)
    updated = await service.update_user(org["a1"], "u1", UserUpdate(name="Renamed"))
    assert updated.name == "Renamed"

    with pytest.raises(PermissionDenied):
        await service.update_user(org["a3"], "u1", UserUpdate(name="Nope"))


async def test_role_change_must_stay_below_creator(seeded_store, org):
    with pytest.raises(ValidationFailed):
        await UserService(seeded_store).update_user(org["sa1"], "u1", UserUpdate(role="admin"))


async def test_role_change_repairs_creator_mismatch(seeded_store, org):
    service = UserService(seeded_store)
    repaired = await service.update_user(org["root"], "stray", UserUpdate(role="admin"))
    assert repaired.role == UserRole.ADMIN

    users = await service.list_users()
    assert "stray@demo.com" not in {d.email for d in find_orphans(users)}
    tree = build_hierarchy(users, UserRole.SUPER_ADMIN, "sa1@demo.com")
    assert "stray@demo.com" in _emails(tree)


async def test_ensure_main_admin_is_idempotent(store):
    service = UserService(store)
    first = await service.ensure_main_admin("root@demo.com", "rootpass123")
    second = await service.ensure_main_admin("other@demo.com", "rootpass123")
    assert first.id == second.id
    assert len(await service.list_users()) == 1
