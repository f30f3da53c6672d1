"""
Policy-enforced data access.

PolicyEnforcedStore puts the policy engine in front of a RowSource. Reads silently
drop rows the principal may not see; single-row access and writes that no rule
allows raise PolicyDenied, which the HTTP layer renders exactly like a missing row.
"""

import copy
import logging
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional

from supabase import Client

from app.core.exceptions import PolicyDenied
from app.core.policy_engine import Operation, PolicyEngine, Principal

logger = logging.getLogger(__name__)


class InMemoryRowSource:
    """Dict-backed RowSource for tests and local development."""

    def __init__(self, tables: Optional[Mapping[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        for table, rows in (tables or {}).items():
            for row in rows:
                self.insert(table, row)

    def fetch(self, table: str, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._tables.get(table, [])
            return [
                copy.deepcopy(row) for row in rows
                if all(row.get(k) == v for k, v in filters.items())
            ]

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        with self._lock:
            self._tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    def update(self, table: str, row_id: Any, changes: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            for row in self._tables.get(table, []):
                if row.get("id") == row_id:
                    row.update(changes)
                    return copy.deepcopy(row)
        raise KeyError(f"{table}:{row_id}")

    def delete(self, table: str, row_id: Any) -> None:
        with self._lock:
            rows = self._tables.get(table, [])
            self._tables[table] = [row for row in rows if row.get("id") != row_id]


class SupabaseRowSource:
    """RowSource over the service-role client (no RLS), so policy lookups never recurse."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def fetch(self, table: str, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        query = self.supabase.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        result = query.execute()
        return result.data or []

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        result = self.supabase.table(table).insert(dict(row)).execute()
        return result.data[0]

    def update(self, table: str, row_id: Any, changes: Mapping[str, Any]) -> Dict[str, Any]:
        result = self.supabase.table(table)\
            .update(dict(changes))\
            .eq("id", row_id)\
            .execute()
        return result.data[0]

    def delete(self, table: str, row_id: Any) -> None:
        self.supabase.table(table).delete().eq("id", row_id).execute()


class PolicyEnforcedStore:
    def __init__(self, engine: PolicyEngine, principal: Principal):
        self.engine = engine
        self.source = engine.source
        self.principal = principal

    def _allowed(self, table: str, op: Operation, row: Mapping[str, Any],
                 new_row: Optional[Mapping[str, Any]] = None) -> bool:
        return self.engine.is_allowed(table, op, self.principal, row, new_row)

    def select(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        rows = self.source.fetch(table, filters)
        return self.engine.visible_rows(table, self.principal, rows)

    def get(self, table: str, row_id: Any) -> Dict[str, Any]:
        """Single row by id; missing and invisible rows are indistinguishable."""
        for row in self.source.fetch(table, {"id": row_id}):
            if self._allowed(table, Operation.SELECT, row):
                return row
        raise PolicyDenied(table, Operation.SELECT.value)

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        if not self._allowed(table, Operation.INSERT, row):
            logger.debug(f"Insert into {table} denied for {self.principal.user_id}")
            raise PolicyDenied(table, Operation.INSERT.value)
        return self.source.insert(table, row)

    def update(self, table: str, changes: Mapping[str, Any], **filters: Any) -> List[Dict[str, Any]]:
        """Apply `changes` to every matching row the principal may update.

        Rows hidden by USING are skipped silently. A visible row whose updated form
        fails WITH CHECK raises PolicyDenied, with no row written.
        """
        candidates = self.source.fetch(table, filters)
        planned = []
        for row in candidates:
            if not self._allowed(table, Operation.UPDATE, row):
                continue
            new_row = {**row, **changes}
            if not self._allowed(table, Operation.UPDATE, row, new_row):
                raise PolicyDenied(table, Operation.UPDATE.value)
            planned.append(row)
        return [self.source.update(table, row["id"], changes) for row in planned]

    def delete(self, table: str, **filters: Any) -> int:
        deleted = 0
        for row in self.source.fetch(table, filters):
            if self._allowed(table, Operation.DELETE, row):
                self.source.delete(table, row["id"])
                deleted += 1
        return deleted
