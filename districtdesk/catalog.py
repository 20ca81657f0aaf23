"""
catalog.py — Location Catalog (district → taluka → city/village)
District Data Console

Two sources are supported:
  1. "seed"  — static reference data (built-in, or a JSON file at CATALOG_PATH)
  2. "store" — the district/village partitions that exist in the document store
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Set
from loguru import logger
from districtdesk.config import settings
from districtdesk.database import DocumentStore
from districtdesk.models import LocationType
from districtdesk.models.db_models import DISTRICTS_COLLECTION, villages_collection


# ── Seed data ─────────────────────────────────────────────────────────────────
SEED_CATALOG: Dict[str, Dict[str, List[str]]] = {
    "Mumbai": {
        "Mumbai City": ["Colaba", "Fort", "Marine Lines", "Churchgate", "Dadar", "Parel"],
        "Mumbai Suburban": ["Andheri", "Borivali", "Malad", "Goregaon", "Bandra", "Kurla"],
    },
    "Pune": {
        "Pune City": ["Shivajinagar", "Koregaon Park", "Deccan", "Kothrud", "Aundh"],
        "Pimpri-Chinchwad": ["Pimpri", "Chinchwad", "Akurdi"],
        "Haveli": ["Kharadi", "Wagholi", "Hadapsar"],
    },
    "Nashik": {
        "Nashik City": ["Nasik Road", "Panchavati", "College Road", "Satpur"],
        "Igatpuri": ["Igatpuri", "Kasara"],
        "Dindori": ["Dindori", "Peth"],
    },
    "Nagpur": {
        "Nagpur City": ["Sitabuldi", "Dharampeth", "Civil Lines", "Sadar"],
        "Kamptee": ["Kamptee", "Kalmeshwar"],
        "Hingna": ["Hingna", "Parseoni"],
    },
    "Thane": {
        "Thane City": ["Kopri", "Kolshet", "Mira Road", "Bhayander"],
        "Kalyan": ["Kalyan West", "Kalyan East", "Dombivli"],
        "Ulhasnagar": ["Ulhasnagar 1", "Ulhasnagar 2", "Ulhasnagar 3"],
    },
    "Aurangabad": {
        "Aurangabad City": ["Kranti Chowk", "CIDCO", "Cantonment"],
        "Paithan": ["Paithan", "Gangapur"],
    },
    "Solapur": {
        "Solapur City": ["North Solapur", "South Solapur"],
        "Pandharpur": ["Pandharpur", "Malshiras"],
    },
    "Kolhapur": {
        "Kolhapur City": ["Shahupuri", "Rajarampuri", "Tarabai Park"],
        "Ichalkaranji": ["Ichalkaranji", "Hatkanangle"],
    },
}


class CatalogLocation(NamedTuple):
    name: str
    taluka: Optional[str]
    type: LocationType


# ── Catalog interface ─────────────────────────────────────────────────────────
class LocationCatalog:
    async def districts(self) -> Set[str]:
        raise NotImplementedError

    async def locations(self, district: str) -> List[CatalogLocation]:
        raise NotImplementedError

    async def find_location(self, district: str, name: str) -> Optional[CatalogLocation]:
        for loc in await self.locations(district):
            if loc.name == name:
                return loc
        return None


class StaticLocationCatalog(LocationCatalog):
    def __init__(self, data: Optional[Dict[str, Dict[str, List[str]]]] = None):
        self._data = data if data is not None else SEED_CATALOG

    @classmethod
    def from_json(cls, path: str) -> "StaticLocationCatalog":
        """Load a {district: {taluka: [city, ...]}} mapping."""
        with Path(path).open(encoding="utf-8") as fh:
            data = json.load(fh)
        logger.info(f"Location catalog loaded from {path}: {len(data)} districts.")
        return cls(data)

    async def districts(self) -> Set[str]:
        return set(self._data)

    async def locations(self, district: str) -> List[CatalogLocation]:
        talukas = self._data.get(district, {})
        return [
            CatalogLocation(city, taluka, LocationType.CITY)
            for taluka, cities in talukas.items()
            for city in cities
        ]


class StoreLocationCatalog(LocationCatalog):
    """Districts and villages that currently hold uploaded data."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def districts(self) -> Set[str]:
        return {doc.id for doc in await self._store.stream(DISTRICTS_COLLECTION)}

    async def locations(self, district: str) -> List[CatalogLocation]:
        docs = await self._store.stream(villages_collection(district))
        return [CatalogLocation(doc.id, None, LocationType.VILLAGE) for doc in docs]


@lru_cache()
def _seed_catalog(path: Optional[str]) -> StaticLocationCatalog:
    return StaticLocationCatalog.from_json(path) if path else StaticLocationCatalog()


def get_catalog(store: DocumentStore) -> LocationCatalog:
    source = settings.CATALOG_SOURCE.lower()
    if source == "store":
        return StoreLocationCatalog(store)
    if source == "seed":
        return _seed_catalog(settings.CATALOG_PATH)
    raise ValueError(f"Unknown CATALOG_SOURCE: {source!r}")
