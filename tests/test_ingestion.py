"""
test_ingestion.py — Batched import and cascading partition delete
"""

import pytest

from districtdesk.data_ingestion import delete_partition, import_spreadsheet
from districtdesk.database import MemoryStore
from districtdesk.errors import NotFound, StoreUnavailable, ValidationFailed
from districtdesk.models.db_models import district_path, records_collection, village_path
from districtdesk.visibility import count_records, list_villages


def _rows(n, address="Kothrud, Pune"):
    return [{"Consumer Name": f"Consumer {i}", "Mobile": f"98{i:08d}", "Address": address} for i in range(n)]


class FlakyStore(MemoryStore):
    """Fails the nth batch commit."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.attempts = 0

    async def _commit(self, ops):
        self.attempts += 1
        if self.attempts == self.fail_on:
            raise StoreUnavailable("deadline exceeded")
        await super()._commit(ops)


# ── Import ────────────────────────────────────────────────────────────────────
async def test_1200_rows_commit_in_three_batches(store, spreadsheet):
    progress = []
    result = await import_spreadsheet(
        store, spreadsheet(_rows(1200), fmt="csv"), "Pune-Kothrud.csv", "mainadmin@demo.com",
        on_progress=lambda pct, msg: progress.append(pct),
    )

    assert result.success
    assert result.record_count == 1200
    assert result.batches_committed == 3
    assert store.committed_batches == [500, 500, 200]
    assert await count_records(store, "Pune", "Kothrud") == 1200
    assert progress[0] == 0 and progress[-1] == 100
    assert progress == sorted(progress)


async def test_import_writes_partition_metadata(store, spreadsheet):
    await import_spreadsheet(store, spreadsheet(_rows(3)), "Pune-Kothrud.xlsx", "sa1@demo.com")
    await import_spreadsheet(store, spreadsheet(_rows(2)), "Pune-Kothrud.xlsx", "sa2@demo.com")

    district = await store.get(district_path("Pune"))
    village = await store.get(village_path("Pune", "Kothrud"))
    assert district["name"] == "Pune" and district["hasVillages"] is True
    assert village["recordCount"] == 5
    assert village["uploaders"] == {"sa1@demo.com": 3, "sa2@demo.com": 2}
    assert village["headers"] == ["Consumer Name", "Mobile", "Address"]
    assert village["fileName"] == "Pune-Kothrud.xlsx"


async def test_records_carry_partition_and_uploader(store, spreadsheet):
    await import_spreadsheet(store, spreadsheet(_rows(1)), "Pune-Kothrud.xlsx", "mainadmin@demo.com")
    [doc] = await store.stream(records_collection("Pune", "Kothrud"))
    assert doc.data["name"] == "Consumer 0"
    assert doc.data["mobileNumber"] == "9800000000"
    assert doc.data["address"] == "Kothrud, Pune"
    assert doc.data["districtName"] == "Pune"
    assert doc.data["villageName"] == "Kothrud"
    assert doc.data["uploadedBy"] == "mainadmin@demo.com"


async def test_explicit_partition_overrides_filename_and_is_sanitized(store, spreadsheet):
    result = await import_spreadsheet(
        store, spreadsheet(_rows(2)), "consumers.xlsx", "mainadmin@demo.com",
        district="Pune", village="Ward 4/5",
    )
    assert result.village == "Ward 4_5"
    assert await list_villages(store, "Pune") == ["Ward 4_5"]


async def test_malformed_filename_is_rejected(store, spreadsheet):
    with pytest.raises(ValidationFailed):
        await import_spreadsheet(store, spreadsheet(_rows(2)), "consumers.xlsx", "mainadmin@demo.com")
    assert store.committed_batches == []


async def test_address_partitioned_import(store, spreadsheet):
    rows = _rows(2, "Kothrud, Pune, MH") + _rows(1, "Bandra, Mumbai") + _rows(1, "")
    result = await import_spreadsheet(
        store, spreadsheet(rows), "bulk.xlsx", "mainadmin@demo.com", partition_by_address=True,
    )
    assert result.partitions == {"Pune/Kothrud": 2, "Mumbai/Bandra": 1, "UNKNOWN/UNKNOWN": 1}
    assert result.record_count == 4


async def test_failed_batch_reports_what_was_committed(spreadsheet):
    store = FlakyStore(fail_on=2)
    result = await import_spreadsheet(
        store, spreadsheet(_rows(1200), fmt="csv"), "Pune-Kothrud.csv", "mainadmin@demo.com",
    )

    assert not result.success
    assert result.record_count == 500
    assert result.batches_committed == 1
    assert "500 of 1200" in result.error
    assert await count_records(store, "Pune", "Kothrud") == 500
    assert (await store.get(village_path("Pune", "Kothrud")))["recordCount"] == 500


# ── Delete ────────────────────────────────────────────────────────────────────
async def test_delete_village_then_district_cascade(store, spreadsheet):
    await import_spreadsheet(store, spreadsheet(_rows(3)), "Pune-Kothrud.xlsx", "mainadmin@demo.com")
    await import_spreadsheet(store, spreadsheet(_rows(2)), "Pune-Aundh.xlsx", "mainadmin@demo.com")

    first = await delete_partition(store, "Pune", "Kothrud")
    assert first.deleted_count == 3
    assert first.villages_deleted == ["Kothrud"]
    assert not first.district_deleted
    assert await store.get(district_path("Pune")) is not None

    second = await delete_partition(store, "Pune", "Aundh")
    assert second.district_deleted
    assert await store.get(district_path("Pune")) is None
    assert await count_records(store, "Pune") == 0


async def test_delete_whole_district_in_batches(spreadsheet):
    store = MemoryStore(batch_limit=500)
    await import_spreadsheet(store, spreadsheet(_rows(700), fmt="csv"), "Pune-Kothrud.csv", "m@demo.com")
    await import_spreadsheet(store, spreadsheet(_rows(10), fmt="csv"), "Pune-Aundh.csv", "m@demo.com")
    store.committed_batches.clear()

    result = await delete_partition(store, "Pune")
    assert result.success
    assert result.deleted_count == 710
    assert sorted(result.villages_deleted) == ["Aundh", "Kothrud"]
    assert result.district_deleted
    assert store.committed_batches == [10, 500, 200]


async def test_delete_unknown_partition(store):
    with pytest.raises(NotFound):
        await delete_partition(store, "Atlantis")
    with pytest.raises(NotFound):
        await delete_partition(store, "Atlantis", "Harbour")
