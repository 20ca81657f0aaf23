"""
hierarchy.py — Delegation Tree Resolution & User Management
District Data Console

The four roles form a strict chain: main_admin → super_admin → admin → user.
A user belongs under a parent when its `createdBy` equals the parent's email
(exact string match). Accounts whose creator cannot be resolved are orphans:
they stay in the raw user set but appear in no tree.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from loguru import logger

from districtdesk.database import DocumentStore
from districtdesk.errors import NotFound, PermissionDenied, ValidationFailed
from districtdesk.models import User, UserRole, UserStatus
from districtdesk.models.db_models import USERS_COLLECTION, to_document, user_path
from districtdesk.utils import UserCreate, UserUpdate, hash_password, utcnow, verify_password


# ── Tree ──────────────────────────────────────────────────────────────────────
@dataclass
class HierarchyNode:
    user: User
    children: List["HierarchyNode"] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        """Direct children plus everything nested below them."""
        return len(self.children) + sum(child.member_count for child in self.children)

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict:
        return {
            **self.user.public(),
            "memberCount": self.member_count,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class OrphanDiagnostic:
    user_id: str
    email: str
    role: UserRole
    created_by: str
    reason: str                                 # missing_creator | creator_role_mismatch
    relink_candidate: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "email": self.email,
            "role": self.role.value,
            "createdBy": self.created_by,
            "reason": self.reason,
            "relinkCandidate": self.relink_candidate,
        }


def _created_by(users: Sequence[User], creator_email: str, role: UserRole) -> List[User]:
    return [u for u in users if u.role == role and u.created_by == creator_email]


def _subtree(users: Sequence[User], parent: User) -> HierarchyNode:
    child_role = parent.role.child_role
    if child_role is None:
        return HierarchyNode(parent)
    return HierarchyNode(
        parent,
        [_subtree(users, child) for child in _created_by(users, parent.email, child_role)],
    )


def build_hierarchy(users: Sequence[User], caller_role, caller_email: str) -> List[HierarchyNode]:
    """
    Descendants the caller may manage, nested by creator.

      main_admin  → super_admins → admins → users
      super_admin → own admins → their users
      admin       → own users (flat)
      user        → nothing
    """
    role = UserRole(caller_role)
    if role == UserRole.MAIN_ADMIN:
        roots = {u.email for u in users if u.role == UserRole.MAIN_ADMIN}
        return [
            _subtree(users, sa)
            for sa in users
            if sa.role == UserRole.SUPER_ADMIN and sa.created_by in roots
        ]
    if role == UserRole.SUPER_ADMIN:
        return [_subtree(users, a) for a in _created_by(users, caller_email, UserRole.ADMIN)]
    if role == UserRole.ADMIN:
        return [HierarchyNode(u) for u in _created_by(users, caller_email, UserRole.USER)]
    return []


def manageable_users(users: Sequence[User], caller: User) -> List[User]:
    return [
        node.user
        for root in build_hierarchy(users, caller.role, caller.email)
        for node in root.walk()
    ]


def find_orphans(users: Sequence[User]) -> List[OrphanDiagnostic]:
    """Accounts whose creator link does not resolve to a valid parent."""
    by_email: Dict[str, User] = {u.email: u for u in users}
    by_id: Dict[str, User] = {u.id: u for u in users if u.id}
    diagnostics = []

    for u in users:
        if u.is_root:
            continue
        creator = by_email.get(u.created_by) if u.created_by else None
        if creator is None:
            candidate = by_id.get(u.creator_id) if u.creator_id else None
            diagnostics.append(OrphanDiagnostic(
                u.id, u.email, u.role, u.created_by, "missing_creator",
                relink_candidate=candidate.email if candidate else None,
            ))
        elif creator.role != u.role.parent_role:
            diagnostics.append(OrphanDiagnostic(
                u.id, u.email, u.role, u.created_by, "creator_role_mismatch",
            ))

    for d in diagnostics:
        logger.warning(
            f"Orphaned account {d.email} ({d.role.value}): createdBy={d.created_by!r} "
            f"→ {d.reason}" + (f", creatorId now belongs to {d.relink_candidate}" if d.relink_candidate else "")
        )
    return diagnostics


def is_ancestor(users: Sequence[User], ancestor: User, target: User) -> bool:
    """Walk target's createdBy chain looking for ancestor."""
    by_email = {u.email: u for u in users}
    seen = set()
    current = target
    while current.created_by and current.created_by not in seen:
        seen.add(current.created_by)
        if current.created_by == ancestor.email:
            return True
        current = by_email.get(current.created_by)
        if current is None:
            return False
    return False


def can_manage(users: Sequence[User], actor: User, target: User) -> bool:
    """main_admin manages every lower account; others only their descendants."""
    if not actor.is_active or not actor.role.outranks(target.role):
        return False
    return actor.is_root or is_ancestor(users, actor, target)


# ── User service ──────────────────────────────────────────────────────────────
class UserService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def list_users(self) -> List[User]:
        docs = await self.store.stream(USERS_COLLECTION)
        return [User(id=doc.id, **doc.data) for doc in docs]

    async def get_user(self, user_id: str) -> User:
        data = await self.store.get(user_path(user_id))
        if data is None:
            raise NotFound(f"User {user_id} not found.")
        return User(id=user_id, **data)

    async def get_by_email(self, email: str) -> Optional[User]:
        docs = await self.store.stream(USERS_COLLECTION, where=[("email", email)])
        return User(id=docs[0].id, **docs[0].data) if docs else None

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        user = await self.get_by_email(email)
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            return None
        return user

    async def create_user(self, actor: User, payload: UserCreate) -> User:
        if not actor.is_active:
            raise PermissionDenied("Inactive accounts cannot create users.")
        child_role = actor.role.child_role
        if child_role is None:
            raise PermissionDenied("Users cannot create accounts.")
        if payload.role != child_role:
            raise ValidationFailed(
                f"A {actor.role.value} can only create {child_role.value} accounts."
            )
        if await self.get_by_email(payload.email):
            raise ValidationFailed(f"User with email {payload.email} already exists.")

        now = utcnow()
        user = User(
            id=uuid.uuid4().hex,
            email=payload.email,
            name=payload.name,
            phone=payload.phone,
            role=payload.role,
            status=UserStatus.ACTIVE,
            created_by=actor.email,
            creator_id=actor.id,
            password_hash=hash_password(payload.password),
            created_at=now,
            updated_at=now,
        )
        await self.store.set(user_path(user.id), to_document(user))
        logger.info(f"{actor.email} created {user.role.value} {user.email}.")
        return user

    async def _managed_target(self, actor: User, user_id: str) -> User:
        target = await self.get_user(user_id)
        if not can_manage(await self.list_users(), actor, target):
            raise PermissionDenied(f"{actor.email} cannot manage {target.email}.")
        return target

    async def update_user(self, actor: User, user_id: str, changes: UserUpdate) -> User:
        """
        Apply profile changes to an account the actor manages.

        A role change is accepted only when the new role is exactly one level
        below the creator's role. Since creation already enforces that rule,
        changing the role only repairs a creator_role_mismatch orphan; it
        cannot promote or demote an account that is correctly linked.
        """
        target = await self._managed_target(actor, user_id)
        update = {}
        if changes.name is not None:
            update["name"] = changes.name
        if changes.phone is not None:
            update["phone"] = changes.phone
        if changes.password is not None:
            update["passwordHash"] = hash_password(changes.password)
        if changes.role is not None and changes.role != target.role:
            creator = await self.get_by_email(target.created_by) if target.created_by else None
            if creator is None or creator.role.child_role != changes.role:
                raise ValidationFailed(
                    f"{target.email} must stay one level below its creator's role."
                )
            if not actor.role.outranks(changes.role):
                raise PermissionDenied(f"{actor.email} cannot assign role {changes.role.value}.")
            update["role"] = changes.role.value
        if not update:
            return target

        update["updatedAt"] = utcnow().isoformat()
        await self.store.set(user_path(user_id), update, merge=True)
        logger.info(f"{actor.email} updated {target.email}: {sorted(update)}")
        return await self.get_user(user_id)

    async def delete_user(self, actor: User, user_id: str, hard: bool = False) -> None:
        """Soft delete marks the account inactive. Descendants keep their createdBy."""
        target = await self._managed_target(actor, user_id)
        if hard:
            await self.store.delete(user_path(user_id))
        else:
            await self.store.set(
                user_path(user_id),
                {"status": UserStatus.INACTIVE.value, "updatedAt": utcnow().isoformat()},
                merge=True,
            )
        logger.info(f"{actor.email} {'deleted' if hard else 'deactivated'} {target.email}.")

    async def ensure_main_admin(self, email: str, password: str, name: str = "Main Admin") -> User:
        existing = await self.store.stream(USERS_COLLECTION, where=[("role", UserRole.MAIN_ADMIN.value)])
        if existing:
            return User(id=existing[0].id, **existing[0].data)
        now = utcnow()
        root = User(
            id=uuid.uuid4().hex,
            email=email,
            name=name,
            role=UserRole.MAIN_ADMIN,
            password_hash=hash_password(password),
            created_at=now,
            updated_at=now,
        )
        await self.store.set(user_path(root.id), to_document(root))
        logger.info(f"Main admin account created: {email}")
        return root

    async def hierarchy_for(self, caller: User) -> List[HierarchyNode]:
        return build_hierarchy(await self.list_users(), caller.role, caller.email)

    async def diagnostics(self) -> List[OrphanDiagnostic]:
        return find_orphans(await self.list_users())
