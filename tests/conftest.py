"""
conftest.py — Shared fixtures
District Data Console
"""

import io
import os

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("CATALOG_SOURCE", "store")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MAIN_ADMIN_EMAIL", "mainadmin@demo.com")
os.environ.setdefault("MAIN_ADMIN_PASSWORD", "rootpass123")

import pandas as pd
import pytest

from districtdesk.database import MemoryStore
from districtdesk.models import User, UserRole
from districtdesk.models.db_models import to_document, user_path


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_user():
    def _make(email, role, created_by="", user_id=None, **extra):
        return User(
            id=user_id or email.split("@")[0],
            email=email,
            name=email.split("@")[0].upper(),
            role=role,
            created_by=created_by,
            **extra,
        )
    return _make


@pytest.fixture
def org(make_user):
    """
    mainadmin
      ├── sa1 ── a1 ── u1, u2
      │      └── a2
      └── sa2 ── a3 ── u3
    plus ghost (admin, creator deleted) and stray (user created by a super_admin)
    """
    root = make_user("mainadmin@demo.com", UserRole.MAIN_ADMIN)
    users = {
        "root": root,
        "sa1": make_user("sa1@demo.com", UserRole.SUPER_ADMIN, root.email),
        "sa2": make_user("sa2@demo.com", UserRole.SUPER_ADMIN, root.email),
        "a1": make_user("a1@demo.com", UserRole.ADMIN, "sa1@demo.com"),
        "a2": make_user("a2@demo.com", UserRole.ADMIN, "sa1@demo.com"),
        "a3": make_user("a3@demo.com", UserRole.ADMIN, "sa2@demo.com"),
        "u1": make_user("u1@demo.com", UserRole.USER, "a1@demo.com"),
        "u2": make_user("u2@demo.com", UserRole.USER, "a1@demo.com"),
        "u3": make_user("u3@demo.com", UserRole.USER, "a3@demo.com"),
        "ghost": make_user("ghost@demo.com", UserRole.ADMIN, "deleted@demo.com", creator_id="sa2"),
        "stray": make_user("stray@demo.com", UserRole.USER, "sa1@demo.com"),
    }
    return users


@pytest.fixture
async def seeded_store(store, org):
    for user in org.values():
        await store.set(user_path(user.id), to_document(user))
    return store


@pytest.fixture
def spreadsheet():
    """Build upload bytes from a list of row dicts."""
    def _build(rows, fmt="xlsx"):
        df = pd.DataFrame(rows)
        buf = io.BytesIO()
        if fmt == "csv":
            df.to_csv(buf, index=False)
        else:
            df.to_excel(buf, index=False, engine="openpyxl")
        return buf.getvalue()
    return _build
