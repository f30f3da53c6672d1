"""
Tenant isolation strategies.

Both deployment modes answer the same three questions: which tenant does a host
belong to, how is a new tenant created, and how is a query confined to one tenant.

    shared  one set of tables, a library_id column on every tenant-scoped row,
            Postgres RLS (compiled from app.config.isolation_policies) as the backstop
    schema  one schema per tenant built from a fixed template; isolation is structural
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import sqlalchemy as sa
from supabase import Client

from app.core.exceptions import TenantNotFound
from app.database.sql_engine import get_engine
from app.database.supabase_client import SupabaseClient
from app.modules.provisioning.models import tenant_metadata, tenants
from app.modules.provisioning.schemas import ProvisionRequest, ProvisionResult
from app.modules.provisioning.service import SupabaseTenantProvisioner, TenantProvisioner
from app.modules.provisioning.store import SqlProvisioningStore
from app.modules.tenancy.directory import SqlTenantDirectory, SupabaseTenantDirectory
from app.modules.tenancy.reserved import ReservedSlugGuard
from app.modules.tenancy.resolver import HostnameResolver
from app.modules.tenancy.schemas import TenantRef

logger = logging.getLogger(__name__)

# Tables that reach their library through a parent game rather than a library_id column
GAME_SCOPED_TABLES = {"game_admin_data", "game_sessions"}


class TenantIsolationStrategy(ABC):
    mode: str

    def __init__(self, resolver: HostnameResolver):
        self.resolver = resolver

    @property
    def directory(self):
        return self.resolver.directory

    def resolve(self, hostname: str) -> Optional[TenantRef]:
        return self.resolver.resolve(hostname)

    @abstractmethod
    def provision(self, request: ProvisionRequest) -> ProvisionResult:
        ...

    @abstractmethod
    def scope_query(self, tenant: TenantRef, table: str, **kwargs) -> Any:
        """A query over `table` that can only see rows of `tenant`."""


class SharedSchemaStrategy(TenantIsolationStrategy):
    mode = "shared"

    def __init__(self, resolver: HostnameResolver, supabase: Client, provisioner: SupabaseTenantProvisioner):
        super().__init__(resolver)
        self.supabase = supabase
        self.provisioner = provisioner

    def provision(self, request: ProvisionRequest) -> ProvisionResult:
        return self.provisioner.provision_request(request)

    def scope_query(self, tenant: TenantRef, table: str, columns: str = "*",
                    access_token: Optional[str] = None, **kwargs):
        """Supabase select builder filtered to the tenant.

        With an access token the query runs as that user, so RLS applies on top of
        the tenant filter.
        """
        client = SupabaseClient.get_user_client(access_token) if access_token else self.supabase
        if table == "game_session_players":
            return client.table(table)\
                .select(f"{columns}, game_sessions!inner(games!inner(library_id))")\
                .eq("game_sessions.games.library_id", tenant.id)
        if table in GAME_SCOPED_TABLES:
            return client.table(table)\
                .select(f"{columns}, games!inner(library_id)")\
                .eq("games.library_id", tenant.id)
        return client.table(table)\
            .select(columns)\
            .eq("library_id", tenant.id)


class SchemaPerTenantStrategy(TenantIsolationStrategy):
    mode = "schema"

    def __init__(self, resolver: HostnameResolver, engine: sa.engine.Engine, provisioner: TenantProvisioner):
        super().__init__(resolver)
        self.engine = engine
        self.provisioner = provisioner

    def provision(self, request: ProvisionRequest) -> ProvisionResult:
        if not request.owner_password_hash:
            raise ValueError("owner_password_hash is required for schema-per-tenant provisioning")
        return self.provisioner.provision_request(request)

    def schema_for(self, tenant: TenantRef) -> str:
        with self.engine.connect() as conn:
            schema_name = conn.execute(
                sa.select(tenants.c.schema_name).where(tenants.c.id == tenant.id)
            ).scalar()
        if schema_name is None:
            raise TenantNotFound(tenant.slug)
        return schema_name

    def scope_query(self, tenant: TenantRef, table: str, **kwargs) -> sa.Select:
        schema_name = self.schema_for(tenant)
        try:
            scoped = tenant_metadata(schema_name).tables[f"{schema_name}.{table}"]
        except KeyError:
            raise ValueError(f"'{table}' is not a tenant table") from None
        return sa.select(scoped)


def get_isolation_strategy(settings) -> TenantIsolationStrategy:
    """Build the strategy named by ISOLATION_MODE."""
    guard = ReservedSlugGuard.from_settings(settings)
    root_domain = settings.canonical_domain
    mode = settings.isolation_mode.strip().lower()

    if mode == "shared":
        supabase = SupabaseClient.get_service_client()
        resolver = HostnameResolver(SupabaseTenantDirectory(supabase), guard, root_domain)
        provisioner = SupabaseTenantProvisioner(supabase, guard, root_domain)
        return SharedSchemaStrategy(resolver, supabase, provisioner)

    if mode == "schema":
        engine = get_engine()
        resolver = HostnameResolver(SqlTenantDirectory(engine), guard, root_domain)
        provisioner = TenantProvisioner(SqlProvisioningStore(engine), guard, root_domain)
        return SchemaPerTenantStrategy(resolver, engine, provisioner)

    raise ValueError(f"Unknown ISOLATION_MODE '{settings.isolation_mode}' (expected shared or schema)")
