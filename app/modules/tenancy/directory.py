"""
Tenant directory backends.

The directory maps a slug or custom domain to a tenant. Lookups are plain reads;
store errors propagate untouched so the resolver can tell "no tenant" apart from
"could not tell".
"""

from typing import Optional, Protocol

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from supabase import Client

from app.modules.provisioning.models import tenants
from app.modules.tenancy.schemas import TenantRef

LIBRARY_COLUMNS = "id, slug, name, owner_id, custom_domain"


class TenantDirectory(Protocol):
    def find_active_by_slug(self, slug: str) -> Optional[TenantRef]:
        ...

    def find_active_by_custom_domain(self, domain: str) -> Optional[TenantRef]:
        ...

    def slug_exists(self, slug: str) -> bool:
        ...

    def custom_domain_exists(self, domain: str) -> bool:
        ...


class SupabaseTenantDirectory:
    """Shared-schema directory backed by the `libraries` table."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _find_active(self, column: str, value: str) -> Optional[TenantRef]:
        result = self.supabase.table("libraries")\
            .select(LIBRARY_COLUMNS)\
            .eq(column, value)\
            .eq("is_active", True)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return TenantRef(**result.data[0])

    def find_active_by_slug(self, slug: str) -> Optional[TenantRef]:
        return self._find_active("slug", slug)

    def find_active_by_custom_domain(self, domain: str) -> Optional[TenantRef]:
        return self._find_active("custom_domain", domain)

    def slug_exists(self, slug: str) -> bool:
        result = self.supabase.table("libraries")\
            .select("id")\
            .eq("slug", slug)\
            .limit(1)\
            .execute()
        return bool(result.data)

    def custom_domain_exists(self, domain: str) -> bool:
        result = self.supabase.table("libraries")\
            .select("id")\
            .eq("custom_domain", domain)\
            .limit(1)\
            .execute()
        return bool(result.data)


class SqlTenantDirectory:
    """Schema-per-tenant directory backed by the core `tenants` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _find_active(self, column: sa.Column, value: str) -> Optional[TenantRef]:
        stmt = sa.select(
            tenants.c.id,
            tenants.c.slug,
            tenants.c.display_name,
            tenants.c.owner_id,
            tenants.c.custom_domain,
        ).where(column == value, tenants.c.status == "active").limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            return None
        return TenantRef(
            id=row["id"],
            slug=row["slug"],
            name=row["display_name"],
            owner_id=row["owner_id"],
            custom_domain=row["custom_domain"],
        )

    def _exists(self, column: sa.Column, value: str) -> bool:
        stmt = sa.select(tenants.c.id).where(column == value).limit(1)
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def find_active_by_slug(self, slug: str) -> Optional[TenantRef]:
        return self._find_active(tenants.c.slug, slug)

    def find_active_by_custom_domain(self, domain: str) -> Optional[TenantRef]:
        return self._find_active(tenants.c.custom_domain, domain)

    def slug_exists(self, slug: str) -> bool:
        return self._exists(tenants.c.slug, slug)

    def custom_domain_exists(self, domain: str) -> bool:
        return self._exists(tenants.c.custom_domain, domain)
