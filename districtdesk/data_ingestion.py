"""
data_ingestion.py — Bulk Consumer Import & Partition Delete
District Data Console

Supports:
  1. Spreadsheet import into districts/{d}/villages/{v}/data, in write batches
  2. Address-partitioned import ("City, District, ..." per row)
  3. Cascading delete of a village or a whole district partition
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
from loguru import logger

from districtdesk.database import DocumentStore
from districtdesk.errors import NotFound, StoreUnavailable, ValidationFailed
from districtdesk.models import ConsumerRecord, DistrictMeta, VillageMeta
from districtdesk.models.db_models import (
    district_path,
    record_path,
    records_collection,
    to_document,
    village_path,
)
from districtdesk.preprocessing import (
    build_column_mapping,
    extract_rows,
    parse_address,
    parse_upload_filename,
    read_spreadsheet,
    sanitize_partition_key,
)
from districtdesk.utils import utcnow
from districtdesk.visibility import list_villages

ProgressCallback = Callable[[int, str], None]


# ── Results ───────────────────────────────────────────────────────────────────
@dataclass
class ImportResult:
    success: bool
    district: Optional[str] = None
    village: Optional[str] = None
    record_count: int = 0
    batches_committed: int = 0
    partitions: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "district": self.district,
            "village": self.village,
            "recordCount": self.record_count,
            "batchesCommitted": self.batches_committed,
            "partitions": self.partitions,
            "error": self.error,
        }


@dataclass
class DeleteResult:
    success: bool
    deleted_count: int = 0
    villages_deleted: List[str] = field(default_factory=list)
    district_deleted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "deletedCount": self.deleted_count,
            "villagesDeleted": self.villages_deleted,
            "districtDeleted": self.district_deleted,
            "error": self.error,
        }


# ── Import ────────────────────────────────────────────────────────────────────
async def _record_partition_metadata(
    store: DocumentStore,
    district: str,
    village: str,
    written: int,
    uploaded_by: str,
    filename: str,
    headers: List[str],
    now: datetime,
) -> None:
    """Single writes, outside the record batches."""
    if await store.get(district_path(district)) is None:
        meta = DistrictMeta(name=district, has_villages=True, created_at=now, last_updated=now)
        await store.set(district_path(district), to_document(meta))
    else:
        await store.set(
            district_path(district),
            {"hasVillages": True, "lastUpdated": now.isoformat()},
            merge=True,
        )

    existing = await store.get(village_path(district, village))
    if existing:
        village_meta = VillageMeta(**{"villageName": village, "districtName": district, **existing})
    else:
        village_meta = VillageMeta(village_name=village, district_name=district, uploaded_at=now)
    village_meta.record_count += written
    village_meta.uploaders[uploaded_by] = village_meta.uploaders.get(uploaded_by, 0) + written
    village_meta.uploaded_by = uploaded_by
    village_meta.last_updated = now
    village_meta.file_name = filename
    village_meta.headers = headers
    await store.set(village_path(district, village), to_document(village_meta))


async def import_spreadsheet(
    store: DocumentStore,
    content: bytes,
    filename: str,
    uploaded_by: str,
    district: Optional[str] = None,
    village: Optional[str] = None,
    partition_by_address: bool = False,
    on_progress: Optional[ProgressCallback] = None,
) -> ImportResult:
    """
    Write every non-blank row as a consumer record.

    The target partition comes from the explicit district/village, else the
    "<District>-<Village>" filename, else (partition_by_address) each row's
    address. Records go out in batches of store.batch_limit; a failing batch
    stops the import and the result reports what was already committed.
    """
    def progress(percent: int, message: str) -> None:
        if on_progress is not None:
            on_progress(percent, message)

    if not partition_by_address and not (district and village):
        parsed_district, parsed_village = parse_upload_filename(filename)
        district = district or parsed_district
        village = village or parsed_village

    progress(0, f"Reading {filename}")
    df = read_spreadsheet(content, filename)
    headers = list(df.columns)
    mapping = build_column_mapping(headers)
    rows = extract_rows(df, mapping)
    if not rows:
        raise ValidationFailed(f"{filename} contains no data rows.")

    groups: Dict[Tuple[str, str], List[Dict[str, str]]] = {}
    if partition_by_address:
        for row in rows:
            row_district, row_city = parse_address(row["address"])
            key = (sanitize_partition_key(row_district), sanitize_partition_key(row_city))
            groups.setdefault(key, []).append(row)
    else:
        district = sanitize_partition_key(district)
        village = sanitize_partition_key(village)
        groups[(district, village)] = rows

    result = ImportResult(success=True, district=district, village=village)
    total = len(rows)
    now = utcnow()
    progress(5, f"Uploading {total} records")

    for (part_district, part_village), group in groups.items():
        written = 0
        batch = store.batch()
        try:
            for row in group:
                record = ConsumerRecord(
                    name=row["name"],
                    mobile_number=row["mobileNumber"],
                    address=row["address"],
                    district_name=part_district,
                    village_name=part_village,
                    uploaded_by=uploaded_by,
                    uploaded_at=now,
                )
                batch.set(
                    record_path(part_district, part_village, uuid.uuid4().hex),
                    to_document(record),
                )
                if len(batch) >= batch.limit:
                    written += await batch.commit()
                    result.batches_committed += 1
                    done = result.record_count + written
                    progress(5 + int(90 * done / total), f"Uploaded {done} of {total} records")
            if len(batch):
                written += await batch.commit()
                result.batches_committed += 1
        except StoreUnavailable as e:
            done = result.record_count + written
            logger.error(f"Import of {filename} stopped after {done} of {total} records: {e.message}")
            result.success = False
            result.error = f"Upload stopped after {done} of {total} records: {e.message}"

        if written:
            try:
                await _record_partition_metadata(
                    store, part_district, part_village, written, uploaded_by, filename, headers, now
                )
            except StoreUnavailable as e:
                logger.error(f"Metadata update for {part_district}/{part_village} failed: {e.message}")
                result.success = False
                result.error = result.error or f"Records written but metadata update failed: {e.message}"

        result.partitions[f"{part_district}/{part_village}"] = written
        result.record_count += written
        if not result.success:
            break

    if result.success:
        progress(100, f"Uploaded {result.record_count} records")
        logger.info(
            f"Import complete: {filename} → {result.record_count} records in "
            f"{len(result.partitions)} partition(s), {result.batches_committed} batch(es) by {uploaded_by}."
        )
    return result


# ── Delete ────────────────────────────────────────────────────────────────────
async def delete_partition(
    store: DocumentStore,
    district: str,
    village: Optional[str] = None,
) -> DeleteResult:
    """
    Delete a village's records (or every village's when village is None),
    then the village documents, then the district once no village remains.
    """
    villages = await list_villages(store, district)
    if village:
        if village not in villages:
            raise NotFound(f"Village {district}/{village} not found.")
        targets = [village]
    else:
        if not villages and await store.get(district_path(district)) is None:
            raise NotFound(f"District {district} not found.")
        targets = villages

    result = DeleteResult(success=True)
    for name in targets:
        try:
            batch = store.batch()
            for doc in await store.stream(records_collection(district, name)):
                if len(batch) >= batch.limit:
                    result.deleted_count += await batch.commit()
                    batch = store.batch()
                batch.delete(record_path(district, name, doc.id))
            result.deleted_count += await batch.commit()
            await store.delete(village_path(district, name))
            result.villages_deleted.append(name)
        except StoreUnavailable as e:
            logger.error(f"Delete of {district}/{name} stopped after {result.deleted_count} records: {e.message}")
            result.success = False
            result.error = f"Delete stopped after {result.deleted_count} records: {e.message}"
            return result

    if not await list_villages(store, district):
        await store.delete(district_path(district))
        result.district_deleted = True

    logger.info(
        f"Deleted {result.deleted_count} records from {district}"
        f"{'/' + village if village else ''} ({len(result.villages_deleted)} village(s))."
    )
    return result
