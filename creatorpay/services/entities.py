"""Name-addressed CRUD over supabase tables.

Callers address records by logical entity name (``User``, ``MarketplaceAsset``,
``UserInvite``). Physical table naming has drifted over time, so each
operation walks an ordered list of candidate table names and uses the first
one that exists:

    UserInvite -> ["UserInvite", "user_invite", "user_invites"]

A "relation does not exist" error moves on to the next candidate, any other
error is surfaced immediately. The winning table name is remembered per
entity for the lifetime of the store.
"""
from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from postgrest.exceptions import APIError

from creatorpay.core.db import supabase_client
from creatorpay.core.errors import EntityBackendError, EntityNotResolvedError
from creatorpay.metrics import record_table_resolution

logger = logging.getLogger(__name__)

T = TypeVar("T")

MISSING_TABLE_CODES = ("42P01", "PGRST205")

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[\s\-]+")


def to_snake_case(name: str) -> str:
    s = _CAMEL_BOUNDARY.sub(r"\1_\2", str(name or ""))
    return _SEPARATORS.sub("_", s).lower()


def pluralize(name: str) -> str:
    return name if name.endswith("s") else f"{name}s"


def table_candidates(entity_name: str) -> List[str]:
    exact = str(entity_name)
    snake = to_snake_case(exact)
    out: List[str] = []
    for candidate in (exact, snake, pluralize(snake)):
        if candidate not in out:
            out.append(candidate)
    return out


def order_from_sort(sort: Optional[str]) -> Optional[Tuple[str, bool]]:
    """Return ``(column, descending)`` for a ``"-created_at"`` style sort string."""
    if not sort:
        return None
    raw = str(sort)
    if raw.startswith("-"):
        return raw[1:], True
    return raw, False


def is_missing_table_error(err: Exception) -> bool:
    code = str(getattr(err, "code", "") or "")
    if code in MISSING_TABLE_CODES:
        return True
    if code:
        # e.g. 42703 "column ... does not exist" is a backend failure, not a missing table
        return False
    message = str(getattr(err, "message", "") or err).lower()
    if "could not find the table" in message:
        return True
    return "relation" in message and "does not exist" in message


def apply_filters(query: Any, filters: Optional[Mapping[str, Any]]) -> Any:
    for key, value in (filters or {}).items():
        if value is None:
            query = query.is_(key, "null")
        elif isinstance(value, (list, tuple, set, frozenset)):
            query = query.in_(key, list(value))
        else:
            query = query.eq(key, value)
    return query


def apply_order_and_limit(query: Any, sort: Optional[str], limit: Optional[int]) -> Any:
    ordering = order_from_sort(sort)
    if ordering:
        column, desc = ordering
        query = query.order(column, desc=desc)
    if isinstance(limit, int) and not isinstance(limit, bool):
        query = query.limit(limit)
    return query


def _many(data: Any) -> List[Dict[str, Any]]:
    return list(data) if isinstance(data, list) else []


def _one(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class EntityStore:
    def __init__(self, client: Any = None) -> None:
        self._client = client
        self._resolved: Dict[str, str] = {}

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = supabase_client()
        return self._client

    def entity(self, name: str) -> "Entity":
        return Entity(self, name)

    def resolved_table(self, entity_name: str) -> Optional[str]:
        return self._resolved.get(entity_name)

    def _ordered_candidates(self, entity_name: str) -> List[str]:
        candidates = table_candidates(entity_name)
        cached = self._resolved.get(entity_name)
        if cached in candidates:
            candidates.remove(cached)
            candidates.insert(0, cached)
        return candidates

    def run(self, entity_name: str, execute: Callable[[Any], T]) -> T:
        """Run ``execute(table_builder)`` against the first existing candidate table."""
        last_error: Optional[Exception] = None
        for table in self._ordered_candidates(entity_name):
            try:
                result = execute(self.client.table(table))
            except APIError as e:
                if not is_missing_table_error(e):
                    raise EntityBackendError(
                        f"{entity_name} operation failed on table {table}: {e.message or e}",
                        entity=entity_name,
                        table=table,
                        cause=e,
                    ) from e
                logger.debug("Table %s missing for entity %s, trying next candidate", table, entity_name)
                last_error = e
                if self._resolved.get(entity_name) == table:
                    self._resolved.pop(entity_name, None)
                continue
            if self._resolved.get(entity_name) != table:
                self._resolved[entity_name] = table
                record_table_resolution(entity_name, table)
                logger.debug("Entity %s resolved to table %s", entity_name, table)
            return result

        raise EntityNotResolvedError(
            f'No table resolved for entity "{entity_name}".',
            entity=entity_name,
            cause=last_error,
        )


class Entity:
    """CRUD handle for one logical entity."""

    def __init__(self, store: EntityStore, name: str) -> None:
        self.store = store
        self.name = name

    def list(self, sort: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        def _execute(table: Any) -> List[Dict[str, Any]]:
            query = apply_order_and_limit(table.select("*"), sort, limit)
            return _many(query.execute().data)

        return self.store.run(self.name, _execute)

    def filter(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        def _execute(table: Any) -> List[Dict[str, Any]]:
            query = apply_filters(table.select("*"), filters)
            query = apply_order_and_limit(query, sort, limit)
            return _many(query.execute().data)

        return self.store.run(self.name, _execute)

    def first(self, filters: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.filter(filters)
        return rows[0] if rows else None

    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        def _execute(table: Any) -> Optional[Dict[str, Any]]:
            return _one(table.select("*").eq("id", record_id).limit(1).execute().data)

        return self.store.run(self.name, _execute)

    def create(self, payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        def _execute(table: Any) -> Optional[Dict[str, Any]]:
            return _one(table.insert(dict(payload)).execute().data)

        return self.store.run(self.name, _execute)

    def update(self, record_id: Any, payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        def _execute(table: Any) -> Optional[Dict[str, Any]]:
            return _one(table.update(dict(payload)).eq("id", record_id).execute().data)

        return self.store.run(self.name, _execute)

    def delete(self, record_id: Any) -> Optional[Dict[str, Any]]:
        def _execute(table: Any) -> Optional[Dict[str, Any]]:
            return _one(table.delete().eq("id", record_id).execute().data)

        return self.store.run(self.name, _execute)


@lru_cache(maxsize=1)
def get_entity_store() -> EntityStore:
    return EntityStore()
