"""
allocation.py — Allocation Resolution & Data Allocation Service
District Data Console

An allocation grants one user visibility over one district location for an
optional calendar window. Resolution for a given day:

  1. drop allocations whose district is not in the location catalog
  2. keep allocations active on that day (missing dates → always active)
  3. districts = sorted distinct districts of the active set
  4. villages  = allocation villages ∪ villages registered in the partition
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set
from loguru import logger
from pydantic import ValidationError

from districtdesk.catalog import LocationCatalog, get_catalog
from districtdesk.database import DocumentStore
from districtdesk.errors import NotFound, PermissionDenied, StoreUnavailable, ValidationFailed
from districtdesk.hierarchy import UserService, can_manage, manageable_users
from districtdesk.models import Allocation, LocationType, User
from districtdesk.models.db_models import allocation_path, allocations_collection, to_document
from districtdesk.utils import AllocationGrantRequest, today, utcnow
from districtdesk.visibility import list_villages


# ── Pure resolution ───────────────────────────────────────────────────────────
def is_allocation_active(allocation: Allocation, as_of: date) -> bool:
    """
    Inclusive calendar-day window: the whole start day and the whole end day
    count. An allocation missing either date never expires.
    """
    if allocation.start_date is None or allocation.end_date is None:
        return True
    return allocation.start_date <= as_of <= allocation.end_date


@dataclass
class ResolvedLocations:
    active: List[Allocation] = field(default_factory=list)
    expired: List[Allocation] = field(default_factory=list)
    orphaned: List[Allocation] = field(default_factory=list)
    districts: List[str] = field(default_factory=list)


def resolve_allocations(
    allocations: Iterable[Allocation],
    valid_districts: Set[str],
    as_of: date,
) -> ResolvedLocations:
    resolved = ResolvedLocations()
    for a in allocations:
        if a.district not in valid_districts:
            logger.warning(
                f"Allocation {a.id or '?'} for {a.user_email or a.user_id} references "
                f"unknown district {a.district!r} — skipped."
            )
            resolved.orphaned.append(a)
        elif is_allocation_active(a, as_of):
            resolved.active.append(a)
        else:
            resolved.expired.append(a)
    resolved.districts = sorted({a.district for a in resolved.active if a.district})
    return resolved


def villages_for_district(
    active: Sequence[Allocation],
    district: str,
    registered: Iterable[str] = (),
) -> List[str]:
    """Sorted, case-sensitive union of granted and registered villages."""
    granted = [a for a in active if a.district == district]
    if not granted:
        return []
    names = {name for a in granted for name in a.location_names()}
    names.update(registered)
    return sorted(n for n in names if n)


def _parse_allocations(user_id: str, docs) -> List[Allocation]:
    """Stored allocations that still parse; a malformed one is logged and skipped."""
    allocations = []
    for doc in docs:
        try:
            allocations.append(Allocation(id=doc.id, **{"userId": user_id, **doc.data}))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed allocation {doc.id} of {user_id}: {e.error_count()} invalid fields."
            )
    return allocations


# ── Results ───────────────────────────────────────────────────────────────────
@dataclass
class GrantResult:
    success: bool
    allocation_ids: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "allocationIds": self.allocation_ids,
            "skipped": self.skipped,
            "error": self.error,
        }


# ── Service ───────────────────────────────────────────────────────────────────
class AllocationService:
    def __init__(self, store: DocumentStore, catalog: Optional[LocationCatalog] = None):
        self.store = store
        self.catalog = catalog or get_catalog(store)
        self.users = UserService(store)

    async def list_for_user(self, user_id: str) -> List[Allocation]:
        docs = await self.store.stream(allocations_collection(user_id))
        return _parse_allocations(user_id, docs)

    async def list_by_granter(self, granter_email: str) -> List[Allocation]:
        allocations = []
        for user in await self.users.list_users():
            docs = await self.store.stream(
                allocations_collection(user.id), where=[("allocatedBy", granter_email)]
            )
            allocations.extend(_parse_allocations(user.id, docs))
        return allocations

    async def list_for_manageable(self, actor: User) -> Dict[str, List[Allocation]]:
        """Allocations of every account in the actor's tree, keyed by user id."""
        users = await self.users.list_users()
        return {u.id: await self.list_for_user(u.id) for u in manageable_users(users, actor)}

    async def grant(self, request: AllocationGrantRequest, granter: User) -> GrantResult:
        grantee = await self.users.get_user(request.user_id)
        if not can_manage(await self.users.list_users(), granter, grantee):
            raise PermissionDenied(f"{granter.email} cannot allocate data to {grantee.email}.")

        district = request.district.strip()
        if district not in await self.catalog.districts():
            raise ValidationFailed(f"District {district!r} is not in the location catalog.")

        catalog_entries = {}
        for loc in request.locations:
            name = loc.name.strip()
            entry = await self.catalog.find_location(district, name)
            if entry is None:
                raise ValidationFailed(f"Location {name!r} is not in district {district!r}.")
            catalog_entries[name] = entry

        taken = {
            name
            for a in await self.list_for_user(grantee.id)
            if a.district == district
            for name in a.location_names()
        }
        result = GrantResult(success=True)
        batch = self.store.batch()
        now = utcnow()

        for loc in request.locations:
            name = loc.name.strip()
            if name in taken:
                logger.info(f"Skipping duplicate allocation {district}-{name} for {grantee.email}.")
                result.skipped.append(name)
                continue
            taken.add(name)

            entry = catalog_entries[name]
            allocation = Allocation(
                id=uuid.uuid4().hex,
                user_id=grantee.id,
                user_email=grantee.email,
                district=district,
                location=name,
                location_type=entry.type,
                taluka=entry.taluka,
                city=name if entry.type == LocationType.CITY else None,
                village=name if entry.type == LocationType.VILLAGE else None,
                start_date=loc.start_date,
                end_date=loc.end_date,
                allocated_by=granter.email,
                allocated_at=now,
            )
            if len(batch) >= batch.limit:
                await batch.commit()
                batch = self.store.batch()
            batch.set(allocation_path(grantee.id, allocation.id), to_document(allocation))
            result.allocation_ids.append(allocation.id)

        await batch.commit()
        logger.info(
            f"{granter.email} allocated {len(result.allocation_ids)} location(s) in {district} "
            f"to {grantee.email} ({len(result.skipped)} duplicate(s) skipped)."
        )
        return result

    async def remove(self, actor: User, user_id: str, allocation_id: str) -> None:
        grantee = await self.users.get_user(user_id)
        if not can_manage(await self.users.list_users(), actor, grantee):
            raise PermissionDenied(f"{actor.email} cannot manage allocations of {grantee.email}.")
        path = allocation_path(user_id, allocation_id)
        if await self.store.get(path) is None:
            raise NotFound(f"Allocation {allocation_id} not found.")
        await self.store.delete(path)
        logger.info(f"{actor.email} removed allocation {allocation_id} from {grantee.email}.")

    # ── Visibility ────────────────────────────────────────────────────────────
    async def _valid_districts(self) -> Optional[Set[str]]:
        try:
            return await self.catalog.districts()
        except (StoreUnavailable, OSError, ValueError) as e:
            logger.error(f"Location catalog unavailable, hiding all districts: {e}")
            return None

    async def resolve_for_user(self, user: User, as_of: Optional[date] = None) -> ResolvedLocations:
        valid = await self._valid_districts()
        if valid is None or not user.is_active:
            return ResolvedLocations()
        return resolve_allocations(await self.list_for_user(user.id), valid, as_of or today())

    async def visible_districts(self, user: User, as_of: Optional[date] = None) -> List[str]:
        if user.is_root and user.is_active:
            valid = await self._valid_districts()
            return sorted(valid) if valid else []
        return (await self.resolve_for_user(user, as_of)).districts

    async def visible_villages(
        self, user: User, district: str, as_of: Optional[date] = None
    ) -> List[str]:
        if district not in await self.visible_districts(user, as_of):
            return []
        registered = await list_villages(self.store, district)
        if user.is_root:
            return registered
        resolved = await self.resolve_for_user(user, as_of)
        return villages_for_district(resolved.active, district, registered)

    async def ensure_visible(self, user: User, district: str, village: Optional[str] = None) -> None:
        if district not in await self.visible_districts(user):
            raise PermissionDenied(f"District {district!r} is not allocated to {user.email}.")
        if village and village not in await self.visible_villages(user, district):
            raise PermissionDenied(f"{district}/{village} is not allocated to {user.email}.")

    async def summary(self, user: User, as_of: Optional[date] = None) -> dict:
        resolved = await self.resolve_for_user(user, as_of)
        return {
            "activeAllocations": len(resolved.active),
            "expiredAllocations": len(resolved.expired),
            "orphanedAllocations": len(resolved.orphaned),
            "districts": {
                d: villages_for_district(resolved.active, d, await list_villages(self.store, d))
                for d in resolved.districts
            },
        }
