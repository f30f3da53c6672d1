"""Shared fixtures: a seeded fake Supabase and a TestClient wired to it."""

import pytest
from fastapi.testclient import TestClient

from app.modules.auth import service as auth_service
from tests.fakes import ADMIN_ID, MEMBER_ID, OTHER_OWNER_ID, OWNER_ID, ROOT, STRANGER_ID, FakeSupabase


@pytest.fixture(autouse=True)
def _clear_auth_cache():
    auth_service._AUTH_USER_CACHE.clear()
    yield
    auth_service._AUTH_USER_CACHE.clear()


@pytest.fixture
def supabase():
    db = FakeSupabase()
    db.seed(
        "libraries",
        {"id": "lib-tzolak", "slug": "tzolak", "name": "Tzolak Tavern", "owner_id": OWNER_ID},
        {"id": "lib-games", "slug": "gamesclub", "name": "Games Club", "owner_id": OTHER_OWNER_ID,
         "custom_domain": "games.example.org"},
        {"id": "lib-closed", "slug": "closed", "name": "Closed Shelf", "owner_id": OWNER_ID,
         "is_active": False},
    )
    db.seed(
        "library_members",
        {"id": "m-owner", "library_id": "lib-tzolak", "user_id": OWNER_ID, "role": "owner"},
        {"id": "m-member", "library_id": "lib-tzolak", "user_id": MEMBER_ID, "role": "member"},
        {"id": "m-other", "library_id": "lib-games", "user_id": OTHER_OWNER_ID, "role": "owner"},
    )
    db.auth.add_user("tok-owner", OWNER_ID, "owner@example.com", password="owner-pass")
    db.auth.add_user("tok-other", OTHER_OWNER_ID, "other@example.com")
    db.auth.add_user("tok-member", MEMBER_ID, "member@example.com")
    db.auth.add_user("tok-admin", ADMIN_ID, "admin@example.com", app_metadata={"type": "super_user"})
    db.auth.add_user("tok-stranger", STRANGER_ID, "stranger@example.com")
    return db


@pytest.fixture
def strategy(supabase):
    from app.modules.isolation.strategies import SharedSchemaStrategy
    from app.modules.provisioning.service import SupabaseTenantProvisioner
    from app.modules.tenancy.directory import SupabaseTenantDirectory
    from app.modules.tenancy.reserved import ReservedSlugGuard
    from app.modules.tenancy.resolver import HostnameResolver

    guard = ReservedSlugGuard()
    resolver = HostnameResolver(SupabaseTenantDirectory(supabase), guard, ROOT)
    return SharedSchemaStrategy(resolver, supabase, SupabaseTenantProvisioner(supabase, guard, ROOT))


@pytest.fixture
def client(supabase, strategy):
    from app.database.supabase_client import get_service_supabase, get_supabase
    from app.main import app

    app.state.isolation_strategy = strategy
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_service_supabase] = lambda: supabase
    with TestClient(app, base_url=f"http://{ROOT}") as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.isolation_strategy = None
