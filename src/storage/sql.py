"""SQL implementation of the DataStore protocol.

Tables are discovered with the SQLAlchemy inspector and reflected on first
use. Each FieldMatch is rendered against the reflected table:

- a plain field matches a column of that name, compared as text;
- a dotted field ("user.id") matches a path inside a JSON/JSONB column
  named after the first segment.

Matches that do not apply to a table are dropped. A table left with no
applicable clause matches nothing, so it is never queried.

Anonymization patches follow the same addressing: dotted keys rewrite an
existing JSON path (jsonb_set on PostgreSQL, json_replace on SQLite).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    ColumnElement,
    MetaData,
    String,
    Table,
    Text,
    cast,
    delete,
    func,
    inspect,
    literal,
    or_,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.ext.asyncio import AsyncEngine

from src.storage.interface import MatchPredicate

logger = logging.getLogger(__name__)


def render_predicate(table: Table, predicate: MatchPredicate) -> ColumnElement[bool] | None:
    """Translate a MatchPredicate into a WHERE clause for `table`, or None if nothing applies."""
    clauses: list[ColumnElement[bool]] = []
    for match in predicate.matches:
        head, *rest = match.path
        if head not in table.c:
            continue
        column = table.c[head]
        if not rest:
            clauses.append(cast(column, String) == match.value)
        elif isinstance(column.type, JSON):
            clauses.append(column[tuple(rest)].as_string() == match.value)
    if not clauses:
        return None
    return or_(*clauses)


def _replace_json_path(
    target: ColumnElement[Any], column: Column[Any], path: Sequence[str], value: Any, dialect: str
) -> ColumnElement[Any]:
    """Replace the value at `path` inside a JSON column, leaving absent paths absent."""
    if dialect == "postgresql":
        replaced = func.jsonb_set(
            cast(target, JSONB),
            literal(list(path), ARRAY(Text)),
            literal(value, JSONB),
            literal(False),
        )
        return cast(replaced, column.type)
    if dialect == "sqlite":
        return func.json_replace(target, "$" + "".join(f'."{part}"' for part in path), value)
    msg = f"Nested JSON updates are not supported on {dialect}"
    raise NotImplementedError(msg)


def patch_values(table: Table, patch: Mapping[str, Any], dialect: str) -> dict[Column[Any], Any]:
    """Translate an update_many patch into UPDATE ... SET values for `table`.

    Plain keys set the column of that name. Dotted keys rewrite a path inside
    the JSON column named by the first segment. Keys with no such column are
    dropped.
    """
    values: dict[Column[Any], Any] = {}
    for key, value in patch.items():
        head, *rest = key.split(".")
        if head not in table.c:
            continue
        column = table.c[head]
        if not rest:
            values[column] = value
        elif isinstance(column.type, JSON):
            values[column] = _replace_json_path(values.get(column, column), column, rest, value, dialect)
    return values


class SqlDataStore:
    """DataStore over an AsyncEngine. Each call runs in its own connection/transaction."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._tables: dict[str, Table] = {}

    async def list_collections(self) -> list[str]:
        async with self._engine.connect() as conn:
            names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        logger.debug("Discovered %d tables", len(names))
        return list(names)

    async def _table(self, name: str) -> Table:
        table = self._tables.get(name)
        if table is None:
            async with self._engine.connect() as conn:
                table = await conn.run_sync(
                    lambda sync_conn: Table(name, MetaData(), autoload_with=sync_conn)
                )
            self._tables[name] = table
        return table

    async def find(self, collection: str, predicate: MatchPredicate) -> Sequence[Mapping[str, Any]]:
        table = await self._table(collection)
        where = render_predicate(table, predicate)
        if where is None:
            return []
        async with self._engine.connect() as conn:
            result = await conn.execute(select(table).where(where))
            return [dict(row._mapping) for row in result]

    async def delete_many(self, collection: str, predicate: MatchPredicate) -> int:
        table = await self._table(collection)
        where = render_predicate(table, predicate)
        if where is None:
            return 0
        async with self._engine.begin() as conn:
            result = await conn.execute(delete(table).where(where))
        return result.rowcount

    async def update_many(
        self, collection: str, predicate: MatchPredicate, patch: Mapping[str, Any]
    ) -> int:
        table = await self._table(collection)
        where = render_predicate(table, predicate)
        if where is None:
            return 0
        values = patch_values(table, patch, self._engine.dialect.name)
        if not values:
            logger.warning("No anonymizable columns in %s; matching rows left untouched", collection)
            return 0
        async with self._engine.begin() as conn:
            result = await conn.execute(update(table).where(where).values(values))
        return result.rowcount
