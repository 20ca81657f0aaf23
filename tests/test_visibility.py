"""
test_visibility.py — Partition counts, listings and the district summary
"""

from districtdesk.models.db_models import district_path, record_path, village_path
from districtdesk.visibility import count_records, list_districts, list_records, list_villages


async def _seed(store, district, village, n, uploaders, last_updated="2024-05-01T10:00:00+00:00"):
    await store.set(district_path(district), {"name": district, "hasVillages": True})
    await store.set(village_path(district, village), {
        "villageName": village,
        "districtName": district,
        "recordCount": n,
        "uploaders": uploaders,
        "lastUpdated": last_updated,
    })
    for i in range(n):
        await store.set(record_path(district, village, f"{village}-{i}"), {"name": f"C{i}"})


async def test_count_without_village_sums_every_village(store):
    await _seed(store, "Pune", "Kothrud", 3, {"a@demo.com": 3})
    await _seed(store, "Pune", "Aundh", 4, {"b@demo.com": 4})
    await _seed(store, "Mumbai", "Bandra", 2, {"a@demo.com": 2})

    assert await count_records(store, "Pune", "Kothrud") == 3
    assert await count_records(store, "Pune") == 7
    assert await count_records(store, "Nashik") == 0


async def test_list_records_across_villages_with_limit(store):
    await _seed(store, "Pune", "Kothrud", 3, {})
    await _seed(store, "Pune", "Aundh", 4, {})

    assert len(await list_records(store, "Pune")) == 7
    assert len(await list_records(store, "Pune", limit=5)) == 5
    records = await list_records(store, "Pune", "Kothrud")
    assert {r["id"] for r in records} == {"Kothrud-0", "Kothrud-1", "Kothrud-2"}


async def test_list_villages_sorted(store):
    await _seed(store, "Pune", "Kothrud", 0, {})
    await _seed(store, "Pune", "Aundh", 0, {})
    assert await list_villages(store, "Pune") == ["Aundh", "Kothrud"]


async def test_district_summary_totals_and_contributors(store):
    await _seed(store, "Pune", "Kothrud", 3, {"a@demo.com": 3}, "2024-05-01T10:00:00+00:00")
    await _seed(store, "Pune", "Aundh", 4, {"a@demo.com": 1, "b@demo.com": 3}, "2024-06-01T10:00:00+00:00")
    await _seed(store, "Mumbai", "Bandra", 2, {"c@demo.com": 2})

    summaries = {s.district_name: s for s in await list_districts(store)}
    pune = summaries["Pune"]
    assert pune.total_consumers == 7
    assert pune.contributor_count == 2
    assert pune.last_updated.month == 6

    only_mumbai = await list_districts(store, names=["Mumbai"])
    assert [s.district_name for s in only_mumbai] == ["Mumbai"]
    assert only_mumbai[0].model_dump(by_alias=True)["totalConsumers"] == 2
