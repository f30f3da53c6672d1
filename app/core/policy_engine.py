"""
Row-level isolation policies evaluated in application code.

A policy rule attaches a condition to a (table, operation) pair. For a request the
engine collects every rule for that pair and grants the operation when ANY rule's
condition holds (permissive policies are OR-combined, as Postgres does). A pair with
no rules is denied for everyone, owners and admins included.

Conditions are small composable objects. Each one declares the tables it reads so a
rule that would read the table it protects is rejected at registration, and the
evaluation context rejects such a read at runtime as well. Lookups made by conditions
go to the raw row source, never back through the policies (the SECURITY DEFINER
pattern), so evaluation cannot recurse.

Every condition also renders to a Postgres predicate, which lets the same rule set
be compiled into native RLS policies (see render_policy_sql).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Tuple, Union
)

from app.core.exceptions import PolicyRecursionError

logger = logging.getLogger(__name__)

TENANT_TABLE = "libraries"
MEMBERSHIP_TABLE = "library_members"
SQL_SCHEMA = "public"


class Operation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


ALL_OPERATIONS: FrozenSet[Operation] = frozenset(Operation)

Row = Mapping[str, Any]


@dataclass(frozen=True)
class Principal:
    """The acting caller. user_id is None for anonymous requests."""
    user_id: Optional[str] = None
    is_platform_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls()

    @classmethod
    def from_user_data(cls, user_data: Optional[Mapping[str, Any]]) -> "Principal":
        """Build from the dict returned by AuthService.get_current_user."""
        if not user_data:
            return cls()
        app_metadata = user_data.get("app_metadata") or {}
        is_admin = app_metadata.get("type") == "super_user" or app_metadata.get("role") == "admin"
        return cls(user_id=user_data.get("id"), is_platform_admin=is_admin)


class RowSource(Protocol):
    """Unpoliced access to stored rows. Rows are dicts keyed by column, with an "id"."""

    def fetch(self, table: str, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def update(self, table: str, row_id: Any, changes: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def delete(self, table: str, row_id: Any) -> None:
        ...


class PolicyContext:
    """Per-evaluation lookup helper handed to conditions."""

    def __init__(self, source: RowSource, table: str):
        self.source = source
        self.table = table
        self.rule_name: Optional[str] = None
        self._cache: Dict[Tuple[str, Tuple[Tuple[str, Any], ...]], List[Dict[str, Any]]] = {}

    def lookup(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        if table == self.table:
            raise PolicyRecursionError(table, self.rule_name)
        key = (table, tuple(sorted(filters.items())))
        if key not in self._cache:
            self._cache[key] = self.source.fetch(table, filters)
        return self._cache[key]

    def lookup_one(self, table: str, **filters: Any) -> Optional[Dict[str, Any]]:
        rows = self.lookup(table, **filters)
        return rows[0] if rows else None

    def tenant(self, tenant_id: Any) -> Optional[Dict[str, Any]]:
        if tenant_id is None:
            return None
        return self.lookup_one(TENANT_TABLE, id=tenant_id)

    def has_role(self, principal: Principal, tenant: Optional[Row], roles: FrozenSet[str]) -> bool:
        """Owner comes from the tenant record; other roles from the membership table."""
        if not principal.is_authenticated or not tenant:
            return False
        if "owner" in roles and tenant.get("owner_id") == principal.user_id:
            return True
        memberships = self.lookup(MEMBERSHIP_TABLE, library_id=tenant.get("id"), user_id=principal.user_id)
        return any(m.get("role") in roles for m in memberships)


def _col(alias: str, column: str) -> str:
    return f"{alias}.{column}" if alias else column


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "NULL"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


# ---------------------------------------------------------------------------
# Tenant links: how a row reaches the library that owns it
# ---------------------------------------------------------------------------

class TenantLink:
    reads: FrozenSet[str] = frozenset()

    def tenant(self, ctx: PolicyContext, row: Row) -> Optional[Row]:
        raise NotImplementedError

    def render(self, tenant_sql: Callable[[str], str], outer: str = "", depth: int = 0) -> str:
        raise NotImplementedError


class RowIsTenant(TenantLink):
    """The row is the library itself (the libraries table)."""

    def tenant(self, ctx, row):
        return row

    def render(self, tenant_sql, outer="", depth=0):
        return tenant_sql(outer)


class Direct(TenantLink):
    """The row carries the library id in `column`."""

    def __init__(self, column: str = "library_id"):
        self.column = column
        self.reads = frozenset({TENANT_TABLE})

    def tenant(self, ctx, row):
        return ctx.tenant(row.get(self.column))

    def render(self, tenant_sql, outer="", depth=0):
        alias = f"lib{depth}"
        return (
            f"EXISTS (SELECT 1 FROM {SQL_SCHEMA}.{TENANT_TABLE} {alias} "
            f"WHERE {alias}.id = {_col(outer, self.column)} AND {tenant_sql(alias)})"
        )


class Via(TenantLink):
    """The row reaches its library through a parent row, e.g. game_id -> games.library_id."""

    def __init__(self, column: str, table: str, inner: TenantLink):
        self.column = column
        self.table = table
        self.inner = inner
        self.reads = frozenset({table}) | inner.reads

    def tenant(self, ctx, row):
        parent_id = row.get(self.column)
        if parent_id is None:
            return None
        parent = ctx.lookup_one(self.table, id=parent_id)
        if parent is None:
            return None
        return self.inner.tenant(ctx, parent)

    def render(self, tenant_sql, outer="", depth=0):
        alias = f"p{depth}"
        return (
            f"EXISTS (SELECT 1 FROM {SQL_SCHEMA}.{self.table} {alias} "
            f"WHERE {alias}.id = {_col(outer, self.column)} "
            f"AND {self.inner.render(tenant_sql, alias, depth + 1)})"
        )


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

class Condition:
    reads: FrozenSet[str] = frozenset()

    def evaluate(self, ctx: PolicyContext, principal: Principal, row: Row) -> bool:
        raise NotImplementedError

    def to_sql(self) -> str:
        raise NotImplementedError

    def __or__(self, other: "Condition") -> "Condition":
        return AnyOf(self, other)

    def __and__(self, other: "Condition") -> "Condition":
        return AllOf(self, other)


class Always(Condition):
    def evaluate(self, ctx, principal, row):
        return True

    def to_sql(self):
        return "true"


class Never(Condition):
    def evaluate(self, ctx, principal, row):
        return False

    def to_sql(self):
        return "false"


class Authenticated(Condition):
    def evaluate(self, ctx, principal, row):
        return principal.is_authenticated

    def to_sql(self):
        return "auth.uid() IS NOT NULL"


class RowOwner(Condition):
    """Self-scoped access: the row's user column is the caller."""

    def __init__(self, column: str = "user_id"):
        self.column = column

    def evaluate(self, ctx, principal, row):
        return principal.is_authenticated and row.get(self.column) == principal.user_id

    def to_sql(self):
        return f"{self.column} = auth.uid()"


class ColumnIn(Condition):
    def __init__(self, column: str, values: Iterable[Any]):
        self.column = column
        self.values = tuple(values)

    def evaluate(self, ctx, principal, row):
        return row.get(self.column) in self.values

    def to_sql(self):
        if len(self.values) == 1:
            return f"{self.column} = {_literal(self.values[0])}"
        return f"{self.column} IN ({', '.join(_literal(v) for v in self.values)})"


class PlatformAdmin(Condition):
    """Platform-wide admin, taken from the caller's token claims."""

    def evaluate(self, ctx, principal, row):
        return principal.is_platform_admin

    def to_sql(self):
        return "public.has_role(auth.uid(), 'admin')"


class TenantActive(Condition):
    def __init__(self, link: TenantLink):
        self.link = link
        self.reads = link.reads

    def evaluate(self, ctx, principal, row):
        tenant = self.link.tenant(ctx, row)
        return bool(tenant) and tenant.get("is_active") is True

    def to_sql(self):
        return self.link.render(lambda t: f"{_col(t, 'is_active')} = true")


class TenantOwner(Condition):
    def __init__(self, link: TenantLink):
        self.link = link
        self.reads = link.reads

    def evaluate(self, ctx, principal, row):
        if not principal.is_authenticated:
            return False
        tenant = self.link.tenant(ctx, row)
        return bool(tenant) and tenant.get("owner_id") == principal.user_id

    def to_sql(self):
        return self.link.render(lambda t: f"{_col(t, 'owner_id')} = auth.uid()")


class HasTenantRole(Condition):
    """Caller holds one of `roles` in the row's library ("owner" matches the library owner)."""

    def __init__(self, link: TenantLink, roles: Iterable[str]):
        self.link = link
        self.roles = frozenset(roles)
        self.reads = link.reads | {MEMBERSHIP_TABLE}

    def evaluate(self, ctx, principal, row):
        if not principal.is_authenticated:
            return False
        return ctx.has_role(principal, self.link.tenant(ctx, row), self.roles)

    def to_sql(self):
        member_roles = sorted(self.roles - {"owner"})

        def tenant_sql(t: str) -> str:
            parts = []
            if "owner" in self.roles:
                parts.append(f"{_col(t, 'owner_id')} = auth.uid()")
            if member_roles:
                role_list = ", ".join(_literal(r) for r in member_roles)
                parts.append(
                    f"EXISTS (SELECT 1 FROM {SQL_SCHEMA}.{MEMBERSHIP_TABLE} m "
                    f"WHERE m.library_id = {_col(t, 'id')} AND m.user_id = auth.uid() "
                    f"AND m.role IN ({role_list}))"
                )
            return "(" + " OR ".join(parts) + ")" if len(parts) > 1 else parts[0]

        return self.link.render(tenant_sql)


class AnyOf(Condition):
    def __init__(self, *conditions: Condition):
        self.conditions = conditions
        self.reads = frozenset().union(*(c.reads for c in conditions))

    def evaluate(self, ctx, principal, row):
        return any(c.evaluate(ctx, principal, row) for c in self.conditions)

    def to_sql(self):
        return "(" + " OR ".join(c.to_sql() for c in self.conditions) + ")"


class AllOf(Condition):
    def __init__(self, *conditions: Condition):
        self.conditions = conditions
        self.reads = frozenset().union(*(c.reads for c in conditions))

    def evaluate(self, ctx, principal, row):
        return all(c.evaluate(ctx, principal, row) for c in self.conditions)

    def to_sql(self):
        return "(" + " AND ".join(c.to_sql() for c in self.conditions) + ")"


class Predicate(Condition):
    """Escape hatch for hand-written checks; `reads` must list every table `fn` consults."""

    def __init__(
        self,
        fn: Callable[[PolicyContext, Principal, Row], bool],
        reads: Iterable[str] = (),
        sql: Optional[str] = None,
    ):
        self.fn = fn
        self.reads = frozenset(reads)
        self.sql = sql

    def evaluate(self, ctx, principal, row):
        return bool(self.fn(ctx, principal, row))

    def to_sql(self):
        if self.sql is None:
            raise ValueError("Predicate has no SQL rendering")
        return self.sql


# ---------------------------------------------------------------------------
# Rules, registry, engine
# ---------------------------------------------------------------------------

OperationSpec = Union[str, Operation, Iterable[Union[str, Operation]]]


def _operations(spec: OperationSpec) -> FrozenSet[Operation]:
    if isinstance(spec, Operation):
        return frozenset({spec})
    if isinstance(spec, str):
        if spec.lower() == "all":
            return ALL_OPERATIONS
        return frozenset({Operation(spec.lower())})
    return frozenset(Operation(op) if not isinstance(op, Operation) else op for op in spec)


@dataclass(frozen=True)
class PolicyRule:
    name: str
    table: str
    operations: FrozenSet[Operation]
    using: Condition
    check: Optional[Condition] = None

    @property
    def reads(self) -> FrozenSet[str]:
        reads = self.using.reads
        if self.check is not None:
            reads = reads | self.check.reads
        return reads

    def condition_for_new_row(self) -> Condition:
        return self.check if self.check is not None else self.using


@dataclass
class PolicyRegistry:
    _rules: Dict[Tuple[str, Operation], List[PolicyRule]] = field(default_factory=lambda: defaultdict(list))
    _tables: Dict[str, List[PolicyRule]] = field(default_factory=dict)
    _service_only: set = field(default_factory=set)

    def register(self, rule: PolicyRule) -> PolicyRule:
        if rule.table in rule.reads:
            raise PolicyRecursionError(rule.table, rule.name)
        if rule.table in self._service_only:
            raise ValueError(f"'{rule.table}' is service-only and cannot carry policies")
        if not rule.operations:
            raise ValueError(f"Rule '{rule.name}' covers no operation")
        for op in rule.operations:
            self._rules[(rule.table, op)].append(rule)
        self._tables.setdefault(rule.table, []).append(rule)
        return rule

    def allow(
        self,
        name: str,
        table: str,
        operations: OperationSpec,
        using: Condition,
        check: Optional[Condition] = None,
    ) -> PolicyRule:
        return self.register(PolicyRule(name, table, _operations(operations), using, check))

    def scoped_table(self, table: str) -> None:
        """Declare a table under isolation before (or without) giving it rules."""
        self._tables.setdefault(table, [])

    def service_only(self, table: str) -> None:
        """No principal may touch the table; only trusted backend code outside the engine can."""
        if self._tables.get(table):
            raise ValueError(f"'{table}' already has policies")
        self._tables.setdefault(table, [])
        self._service_only.add(table)

    def is_service_only(self, table: str) -> bool:
        return table in self._service_only

    def rules_for(self, table: str, operation: Union[str, Operation]) -> Tuple[PolicyRule, ...]:
        return tuple(self._rules.get((table, Operation(operation)), ()))

    def rules_for_table(self, table: str) -> Tuple[PolicyRule, ...]:
        return tuple(self._tables.get(table, ()))

    def tables(self) -> List[str]:
        return list(self._tables)

    def uncovered(self) -> Dict[str, List[Operation]]:
        """(table, operation) pairs that will deny everyone, service-only tables excluded."""
        missing: Dict[str, List[Operation]] = {}
        for table in self._tables:
            if table in self._service_only:
                continue
            ops = [op for op in Operation if not self._rules.get((table, op))]
            if ops:
                missing[table] = ops
        return missing


class PolicyEngine:
    def __init__(self, registry: PolicyRegistry, source: RowSource):
        self.registry = registry
        self.source = source

    def is_allowed(
        self,
        table: str,
        operation: Union[str, Operation],
        principal: Principal,
        row: Row,
        new_row: Optional[Row] = None,
    ) -> bool:
        """Decide one operation on one row.

        SELECT/DELETE test the rules' USING condition against `row`. INSERT tests the
        WITH CHECK condition (USING when absent) against `row`, the row to be written.
        UPDATE needs a USING match on the current `row` and, when `new_row` is given,
        a WITH CHECK match on the result.
        """
        op = Operation(operation)
        rules = self.registry.rules_for(table, op)
        if not rules:
            logger.debug(f"No policy for {op.value} on {table}; denying")
            return False
        ctx = PolicyContext(self.source, table)
        if op is Operation.INSERT:
            return self._any(rules, ctx, principal, row, for_new_row=True)
        if not self._any(rules, ctx, principal, row, for_new_row=False):
            return False
        if op is Operation.UPDATE and new_row is not None:
            return self._any(rules, ctx, principal, new_row, for_new_row=True)
        return True

    def visible_rows(self, table: str, principal: Principal, rows: Iterable[Row]) -> List[Row]:
        return [row for row in rows if self.is_allowed(table, Operation.SELECT, principal, row)]

    @staticmethod
    def _any(rules, ctx: PolicyContext, principal: Principal, row: Row, for_new_row: bool) -> bool:
        for rule in rules:
            ctx.rule_name = rule.name
            condition = rule.condition_for_new_row() if for_new_row else rule.using
            if condition.evaluate(ctx, principal, row):
                return True
        return False


# ---------------------------------------------------------------------------
# Compilation to Postgres RLS
# ---------------------------------------------------------------------------

def _render_rule(rule: PolicyRule) -> List[str]:
    target = f"{SQL_SCHEMA}.{rule.table}"
    if rule.operations == ALL_OPERATIONS:
        commands = [("ALL", rule.name)]
    else:
        ordered = [op for op in Operation if op in rule.operations]
        commands = [
            (op.value.upper(), rule.name if len(ordered) == 1 else f"{rule.name} ({op.value})")
            for op in ordered
        ]

    statements = []
    for command, name in commands:
        lines = [
            f'DROP POLICY IF EXISTS "{name}" ON {target};',
            f'CREATE POLICY "{name}" ON {target}',
            f"    FOR {command}",
        ]
        if command == "INSERT":
            lines.append(f"    WITH CHECK ({rule.condition_for_new_row().to_sql()})")
        else:
            lines.append(f"    USING ({rule.using.to_sql()})")
            if command in ("UPDATE", "ALL") and rule.check is not None:
                lines.append(f"    WITH CHECK ({rule.check.to_sql()})")
        lines[-1] += ";"
        statements.append("\n".join(lines))
    return statements


def render_policy_sql(registry: PolicyRegistry) -> str:
    statements = []
    for table in registry.tables():
        target = f"{SQL_SCHEMA}.{table}"
        statements.append(f"ALTER TABLE {target} ENABLE ROW LEVEL SECURITY;")
        if registry.is_service_only(table):
            statements.append(
                f'DROP POLICY IF EXISTS "Deny direct access" ON {target};\n'
                f'CREATE POLICY "Deny direct access" ON {target}\n'
                f"    FOR ALL USING (false);"
            )
            continue
        for rule in registry.rules_for_table(table):
            statements.extend(_render_rule(rule))
    return "\n\n".join(statements) + "\n"
