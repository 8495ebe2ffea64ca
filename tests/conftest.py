from __future__ import annotations

import itertools
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from postgrest.exceptions import APIError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from creatorpay.services.entities import EntityStore  # noqa: E402


def missing_relation(table: str) -> APIError:
    return APIError(
        {
            "message": f'relation "public.{table}" does not exist',
            "code": "42P01",
            "hint": None,
            "details": None,
        }
    )


class FakeResult:
    def __init__(self, data: Any) -> None:
        self.data = data


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str, op: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.db = db
        self.table = table
        self.op = op
        self.payload = payload
        self.predicates: List[Callable[[Dict[str, Any]], bool]] = []
        self.ordering: Optional[tuple] = None
        self.row_limit: Optional[int] = None

    def select(self, *_: Any) -> "FakeQuery":
        return self

    def eq(self, key: str, value: Any) -> "FakeQuery":
        self.db.calls.append((self.table, "eq", key, value))
        self.predicates.append(lambda row: row.get(key) == value)
        return self

    def in_(self, key: str, values: List[Any]) -> "FakeQuery":
        self.db.calls.append((self.table, "in", key, list(values)))
        self.predicates.append(lambda row: row.get(key) in values)
        return self

    def is_(self, key: str, value: Any) -> "FakeQuery":
        self.db.calls.append((self.table, "is", key, value))
        self.predicates.append(lambda row: row.get(key) is None)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.db.calls.append((self.table, "order", column, desc))
        self.ordering = (column, desc)
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.db.calls.append((self.table, "limit", n))
        self.row_limit = n
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        rows = [row for row in self.db.tables[self.table] if all(p(row) for p in self.predicates)]
        if self.ordering:
            column, desc = self.ordering
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if self.row_limit is not None:
            rows = rows[: self.row_limit]
        return rows

    def execute(self) -> FakeResult:
        self.db.executed.append((self.table, self.op))
        if self.table in self.db.failures:
            raise self.db.failures[self.table]
        if self.table not in self.db.tables:
            raise missing_relation(self.table)

        if self.op == "select":
            return FakeResult([dict(r) for r in self._matching()])
        if self.op == "insert":
            row = dict(self.payload or {})
            row.setdefault("id", f"{self.table}-{next(self.db.ids)}")
            self.db.tables[self.table].append(row)
            return FakeResult([dict(row)])
        if self.op == "update":
            out = []
            for row in self._matching():
                row.update(self.payload or {})
                out.append(dict(row))
            return FakeResult(out)
        if self.op == "delete":
            doomed = self._matching()
            self.db.tables[self.table] = [r for r in self.db.tables[self.table] if r not in doomed]
            return FakeResult([dict(r) for r in doomed])
        raise AssertionError(f"unsupported op {self.op}")


class FakeTable:
    def __init__(self, db: "FakeSupabase", name: str) -> None:
        self.db = db
        self.name = name

    def select(self, *_: Any) -> FakeQuery:
        return FakeQuery(self.db, self.name, "select")

    def insert(self, payload: Dict[str, Any]) -> FakeQuery:
        return FakeQuery(self.db, self.name, "insert", payload)

    def update(self, payload: Dict[str, Any]) -> FakeQuery:
        return FakeQuery(self.db, self.name, "update", payload)

    def delete(self) -> FakeQuery:
        return FakeQuery(self.db, self.name, "delete")


class FakeSupabase:
    """In-memory stand-in for the supabase query builder used by EntityStore."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {k: [dict(r) for r in v] for k, v in (tables or {}).items()}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.executed: List[tuple] = []
        self.ids = itertools.count(1)

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])


COMMERCE_TABLES = (
    "users",
    "subscriptions",
    "marketplace_purchases",
    "marketplace_assets",
    "featured_asset_sponsorships",
    "custom_aimodels",
    "analytics_events",
    "processed_webhook_events",
)


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase({name: [] for name in COMMERCE_TABLES})


@pytest.fixture
def store(fake_db: FakeSupabase) -> EntityStore:
    return EntityStore(client=fake_db)
