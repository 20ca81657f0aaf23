"""
visibility.py — Partition Queries (counts, records, villages, district listing)
District Data Console

These helpers read the data partition only. Callers decide which districts
and villages a user may see (see allocation.AllocationService).
"""

from datetime import datetime
from typing import Iterable, List, Optional
from loguru import logger

from districtdesk.database import DocumentStore
from districtdesk.models import DistrictMeta, DistrictSummary, VillageMeta
from districtdesk.models.db_models import (
    DISTRICTS_COLLECTION,
    records_collection,
    villages_collection,
)


async def list_villages(store: DocumentStore, district: str) -> List[str]:
    return sorted(doc.id for doc in await store.stream(villages_collection(district)))


async def village_metadata(store: DocumentStore, district: str) -> List[VillageMeta]:
    docs = await store.stream(villages_collection(district))
    return [
        VillageMeta(**{"villageName": doc.id, "districtName": district, **doc.data})
        for doc in docs
    ]


async def count_records(store: DocumentStore, district: str, village: Optional[str] = None) -> int:
    """
    Exact record count. Without a village every registered village of the
    district is counted and summed.
    """
    if village:
        return await store.count(records_collection(district, village))

    total = 0
    villages = await list_villages(store, district)
    for name in villages:
        total += await store.count(records_collection(district, name))
    logger.debug(f"Counted {total} records across {len(villages)} villages of {district}.")
    return total


async def list_records(
    store: DocumentStore,
    district: str,
    village: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    villages = [village] if village else await list_villages(store, district)
    records = []
    for name in villages:
        for doc in await store.stream(records_collection(district, name)):
            records.append({"id": doc.id, **doc.data})
            if limit is not None and len(records) >= limit:
                return records
    return records


def _latest(*stamps: Optional[datetime]) -> Optional[datetime]:
    present = [s for s in stamps if s is not None]
    return max(present) if present else None


async def list_districts(
    store: DocumentStore,
    names: Optional[Iterable[str]] = None,
) -> List[DistrictSummary]:
    """
    Listing rows for the given districts (all districts when names is None).
      totalConsumers   = sum of village recordCount
      contributorCount = distinct uploader emails across villages
    """
    wanted = set(names) if names is not None else None
    summaries = []
    for doc in await store.stream(DISTRICTS_COLLECTION):
        if wanted is not None and doc.id not in wanted:
            continue
        meta = DistrictMeta(**{"name": doc.id, **doc.data})
        villages = await village_metadata(store, doc.id)
        contributors = set()
        for v in villages:
            contributors.update(v.uploaders)
        summaries.append(DistrictSummary(
            district_name=doc.id,
            total_consumers=sum(v.record_count for v in villages),
            contributor_count=len(contributors),
            last_updated=_latest(meta.last_updated, *(v.last_updated for v in villages)),
        ))
    return summaries
