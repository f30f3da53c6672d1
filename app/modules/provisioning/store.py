"""
Provisioning units of work.

A ProvisioningStore hands out one unit of work per provisioning attempt through
`transaction()`. Everything done through the unit commits together or not at all.
Concurrent attempts for the same slug are settled by the unique index on the tenant
slug: the loser's insert_tenant raises ReservedSlugConflict.
"""

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.schema import CreateSchema, CreateTable, DropSchema

from app.core.exceptions import ReservedSlugConflict, StoreUnavailable
from app.modules.provisioning.models import (
    core_metadata, tenant_members, tenant_metadata, tenants, users
)

logger = logging.getLogger(__name__)


class ProvisioningUnit(Protocol):
    def slug_exists(self, slug: str) -> bool:
        ...

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ...

    def insert_user(self, email: str, password_hash: str, display_name: Optional[str]) -> Dict[str, Any]:
        ...

    def insert_tenant(self, slug: str, display_name: str, owner_id: str, schema_name: str) -> Dict[str, Any]:
        ...

    def insert_membership(self, tenant_id: str, user_id: str, role: str) -> Dict[str, Any]:
        ...

    def create_schema(self, schema_name: str) -> None:
        ...

    def delete_tenant(self, slug: str) -> Optional[Dict[str, Any]]:
        ...

    def drop_schema(self, schema_name: str) -> None:
        ...


class ProvisioningStore(Protocol):
    transactional_ddl: bool

    def transaction(self) -> Iterator[ProvisioningUnit]:
        ...


# CREATE statements on these dialects commit the open transaction
NON_TRANSACTIONAL_DDL_DIALECTS = ("mysql", "mariadb")


def supports_transactional_ddl(dialect) -> bool:
    return dialect.name not in NON_TRANSACTIONAL_DDL_DIALECTS


def tenant_schema_ddl(schema_name: str, dialect) -> List[str]:
    """Statements that materialize one tenant schema, compiled for `dialect`."""
    statements = [str(CreateSchema(schema_name).compile(dialect=dialect))]
    for table in tenant_metadata(schema_name).sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())
    return statements


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------

class _SqlUnit:
    def __init__(self, conn: Connection, created_schemas: List[str]):
        self.conn = conn
        self.created_schemas = created_schemas

    def slug_exists(self, slug):
        stmt = sa.select(tenants.c.id).where(tenants.c.slug == slug).limit(1)
        return self.conn.execute(stmt).first() is not None

    def find_user_by_email(self, email):
        stmt = sa.select(users).where(sa.func.lower(users.c.email) == email.lower()).limit(1)
        row = self.conn.execute(stmt).mappings().first()
        return dict(row) if row else None

    def insert_user(self, email, password_hash, display_name):
        values = {
            "id": str(uuid.uuid4()),
            "email": email.lower(),
            "password_hash": password_hash,
            "display_name": display_name,
        }
        self.conn.execute(users.insert().values(**values))
        return values

    def insert_tenant(self, slug, display_name, owner_id, schema_name):
        values = {
            "id": str(uuid.uuid4()),
            "slug": slug,
            "display_name": display_name,
            "owner_id": owner_id,
            "schema_name": schema_name,
        }
        try:
            # Savepoint so a lost race leaves the outer transaction usable for rollback
            with self.conn.begin_nested():
                self.conn.execute(tenants.insert().values(**values))
        except IntegrityError as e:
            logger.info(f"Tenant insert for '{slug}' hit the unique index: {e.orig}")
            raise ReservedSlugConflict(slug, "taken") from e
        return values

    def insert_membership(self, tenant_id, user_id, role):
        values = {"id": str(uuid.uuid4()), "tenant_id": tenant_id, "user_id": user_id, "role": role}
        self.conn.execute(tenant_members.insert().values(**values))
        return values

    def create_schema(self, schema_name):
        self.conn.execute(CreateSchema(schema_name))
        self.created_schemas.append(schema_name)
        tenant_metadata(schema_name).create_all(self.conn)

    def delete_tenant(self, slug):
        row = self.conn.execute(
            sa.select(tenants).where(tenants.c.slug == slug)
        ).mappings().first()
        if row is None:
            return None
        self.conn.execute(tenant_members.delete().where(tenant_members.c.tenant_id == row["id"]))
        self.conn.execute(tenants.delete().where(tenants.c.id == row["id"]))
        return dict(row)

    def drop_schema(self, schema_name):
        cascade = self.conn.dialect.name == "postgresql"
        self.conn.execute(DropSchema(schema_name, cascade=cascade))


class SqlProvisioningStore:
    """One SQLAlchemy transaction per attempt.

    PostgreSQL runs the schema DDL inside the transaction. On MySQL/MariaDB every
    CREATE statement commits implicitly, so the provisioner materializes the schema
    before writing any directory rows, and a failed attempt gets a compensating
    DROP SCHEMA once the row inserts have rolled back.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def transactional_ddl(self) -> bool:
        return supports_transactional_ddl(self.engine.dialect)

    def create_core_tables(self) -> None:
        core_metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[_SqlUnit]:
        created_schemas: List[str] = []
        try:
            with self.engine.begin() as conn:
                yield _SqlUnit(conn, created_schemas)
        except OperationalError as e:
            self._compensate(created_schemas)
            raise StoreUnavailable(str(e.orig or e)) from e
        except Exception:
            self._compensate(created_schemas)
            raise

    def _compensate(self, created_schemas: List[str]) -> None:
        if self.transactional_ddl:
            return
        for schema_name in created_schemas:
            try:
                self._drop_schema(schema_name)
                logger.warning(f"Dropped schema {schema_name} after failed provisioning")
            except Exception as e:
                logger.error(f"Could not drop schema {schema_name} after failed provisioning: {e}")

    def _drop_schema(self, schema_name: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(DropSchema(schema_name))


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryProvisioningStore:
    """Dict-backed store with the same contract as SqlProvisioningStore.

    One lock serializes transactions; a failed transaction restores the snapshot taken
    when it began. `fail(method, exc)` makes the next call to a unit method raise.
    """

    transactional_ddl = True

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tenants: Dict[str, Dict[str, Any]] = {}
        self.members: Dict[str, Dict[str, Any]] = {}
        self.schemas: Dict[str, List[str]] = {}
        self.write_count = 0
        self._failures: Dict[str, List[BaseException]] = {}
        self._lock = threading.Lock()

    def fail(self, method: str, exc: BaseException, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([exc] * times)

    def _maybe_fail(self, method: str) -> None:
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def _snapshot(self):
        return copy.deepcopy((self.users, self.tenants, self.members, self.schemas, self.write_count))

    @contextmanager
    def transaction(self) -> Iterator["InMemoryProvisioningStore"]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                self.users, self.tenants, self.members, self.schemas, self.write_count = snapshot
                raise

    # Unit of work

    def slug_exists(self, slug):
        self._maybe_fail("slug_exists")
        return any(t["slug"] == slug for t in self.tenants.values())

    def find_user_by_email(self, email):
        self._maybe_fail("find_user_by_email")
        for user in self.users.values():
            if user["email"] == email.lower():
                return dict(user)
        return None

    def insert_user(self, email, password_hash, display_name):
        self._maybe_fail("insert_user")
        user = {
            "id": str(uuid.uuid4()),
            "email": email.lower(),
            "password_hash": password_hash,
            "display_name": display_name,
        }
        self.users[user["id"]] = user
        self.write_count += 1
        return dict(user)

    def insert_tenant(self, slug, display_name, owner_id, schema_name):
        self._maybe_fail("insert_tenant")
        if any(t["slug"] == slug or t["schema_name"] == schema_name for t in self.tenants.values()):
            raise ReservedSlugConflict(slug, "taken")
        tenant = {
            "id": str(uuid.uuid4()),
            "slug": slug,
            "display_name": display_name,
            "owner_id": owner_id,
            "schema_name": schema_name,
            "status": "active",
        }
        self.tenants[tenant["id"]] = tenant
        self.write_count += 1
        return dict(tenant)

    def insert_membership(self, tenant_id, user_id, role):
        self._maybe_fail("insert_membership")
        member = {"id": str(uuid.uuid4()), "tenant_id": tenant_id, "user_id": user_id, "role": role}
        self.members[member["id"]] = member
        self.write_count += 1
        return dict(member)

    def create_schema(self, schema_name):
        self._maybe_fail("create_schema")
        if schema_name in self.schemas:
            raise ValueError(f"schema {schema_name} already exists")
        self.schemas[schema_name] = [t.name for t in tenant_metadata(schema_name).sorted_tables]
        self.write_count += 1

    def delete_tenant(self, slug):
        self._maybe_fail("delete_tenant")
        for tenant_id, tenant in list(self.tenants.items()):
            if tenant["slug"] == slug:
                self.members = {k: m for k, m in self.members.items() if m["tenant_id"] != tenant_id}
                del self.tenants[tenant_id]
                self.write_count += 1
                return tenant
        return None

    def drop_schema(self, schema_name):
        self._maybe_fail("drop_schema")
        self.schemas.pop(schema_name, None)
        self.write_count += 1
