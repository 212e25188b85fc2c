"""Relational data source over SQLAlchemy Core.

``RelationalSource`` exposes one environment's database to the engine:
table listing (with the environment's table prefix removed), column and
primary-key discovery through the SQLAlchemy inspector, batched reads,
and single-statement writes keyed by primary key.

Table names seen by callers are always *logical* (unprefixed); the
physical name is ``table_prefix + logical``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    MetaData,
    Table,
    create_engine,
    delete,
    insert,
    inspect,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DBAPIError,
    NoSuchTableError,
    OperationalError,
    SQLAlchemyError,
)

from staging_sync.diff.models import Row, row_from_mapping
from staging_sync.errors import DestinationUnavailableError, SchemaError

logger = logging.getLogger(__name__)


def _chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class RelationalSource:
    """One side's relational database.

    Args:
        engine: SQLAlchemy engine bound to the environment's database.
        table_prefix: Physical table name prefix of this environment.
        label: Name used in log messages (``"source"``/``"destination"``).
    """

    def __init__(
        self,
        engine: Engine,
        table_prefix: str = "",
        label: str = "database",
    ) -> None:
        self._engine = engine
        self.table_prefix = table_prefix
        self.label = label
        self._tables: dict[str, Table] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_url(
        cls, url: str, table_prefix: str = "", label: str = "database"
    ) -> RelationalSource:
        """Create a source with its own engine for *url*."""
        return cls(create_engine(url), table_prefix, label)

    @property
    def engine(self) -> Engine:
        return self._engine

    # ------------------------------------------------------------------
    # Schema discovery
    # ------------------------------------------------------------------

    def physical_name(self, table: str) -> str:
        """Return the prefixed table name for logical *table*."""
        return f"{self.table_prefix}{table}"

    def list_tables(self) -> list[str]:
        """Logical names of all tables carrying this environment's prefix."""
        prefix = self.table_prefix
        names = inspect(self._engine).get_table_names()
        return sorted(
            name[len(prefix) :]
            for name in names
            if name.startswith(prefix) and len(name) > len(prefix)
        )

    def columns(self, table: str) -> list[tuple[str, str]]:
        """Return ``(column_name, type_name)`` pairs for *table*."""
        return [
            (column.name, str(column.type))
            for column in self._table(table).columns
        ]

    def primary_key(self, table: str) -> str:
        """Discover the single primary-key column of *table*.

        Raises:
            SchemaError: If the table is missing or its primary key is
                absent or composite.
        """
        pk_columns = [c.name for c in self._table(table).primary_key]
        if len(pk_columns) != 1:
            raise SchemaError(
                table,
                "no single-column primary key "
                f"(found {len(pk_columns)} key columns)",
            )
        return pk_columns[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_keys(self, table: str, pk: str) -> dict[str, Any]:
        """Return every primary-key value of *table*, keyed by its string form."""
        t = self._table(table)
        with self._engine.connect() as conn:
            values = conn.execute(select(t.c[pk])).scalars().all()
        return {str(value): value for value in values}

    def fetch_rows(
        self,
        table: str,
        pk: str,
        keys: Sequence[Any],
        batch_size: int = 500,
    ) -> dict[str, Row]:
        """Fetch rows for native *keys* in batches.

        Returns:
            Typed rows keyed by the string form of their primary key.
        """
        t = self._table(table)
        rows: dict[str, Row] = {}
        if not keys:
            return rows
        with self._engine.connect() as conn:
            for chunk in _chunked(list(keys), batch_size):
                result = conn.execute(select(t).where(t.c[pk].in_(chunk)))
                for record in result.mappings():
                    rows[str(record[pk])] = row_from_mapping(record)
        return rows

    def fetch_row(self, table: str, key: str) -> Row | None:
        """Fetch a single row by the string form of its primary key."""
        t = self._table(table)
        pk = self.primary_key(table)
        stmt = select(t).where(t.c[pk] == self._coerce_key(t, pk, key))
        with self._engine.connect() as conn:
            record = conn.execute(stmt).mappings().first()
        return row_from_mapping(record) if record is not None else None

    # ------------------------------------------------------------------
    # Writes (one statement each)
    # ------------------------------------------------------------------

    def insert_row(self, table: str, values: Mapping[str, Any]) -> None:
        """Insert one row; columns unknown to this side are dropped."""
        with self._connection_guard():
            t = self._table(table)
            payload = self._known_columns(t, values)
            with self._engine.begin() as conn:
                conn.execute(insert(t).values(payload))

    def update_row(
        self, table: str, key: str, values: Mapping[str, Any]
    ) -> int:
        """Update non-key columns of the row with primary key *key*.

        Returns:
            Number of rows matched.
        """
        with self._connection_guard():
            t = self._table(table)
            pk = self.primary_key(table)
            payload = {
                column: value
                for column, value in self._known_columns(t, values).items()
                if column != pk
            }
            if not payload:
                return 0
            stmt = (
                update(t)
                .where(t.c[pk] == self._coerce_key(t, pk, key))
                .values(payload)
            )
            with self._engine.begin() as conn:
                return conn.execute(stmt).rowcount

    def delete_row(self, table: str, key: str) -> int:
        """Delete the row with primary key *key*.

        Returns:
            Number of rows deleted (0 when already absent).
        """
        with self._connection_guard():
            t = self._table(table)
            pk = self.primary_key(table)
            stmt = delete(t).where(t.c[pk] == self._coerce_key(t, pk, key))
            with self._engine.begin() as conn:
                return conn.execute(stmt).rowcount

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return ``True`` if the database answers a trivial query."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("%s database unreachable: %s", self.label, exc)
            return False
        return True

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    @contextmanager
    def _connection_guard(self) -> Iterator[None]:
        """Turn a lost connection during a write into ``DestinationUnavailableError``.

        An ``OperationalError`` counts as lost only when the database also
        stops answering ``ping()``; SQLite reports plain statement errors
        with the same class.
        """
        try:
            yield
        except DBAPIError as exc:
            lost = exc.connection_invalidated or (
                isinstance(exc, OperationalError) and not self.ping()
            )
            if not lost:
                raise
            raise DestinationUnavailableError(
                f"{self.label} database unavailable: {exc.orig}"
            ) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _table(self, table: str) -> Table:
        """Reflect (and memoize) the ``Table`` for logical *table*."""
        with self._lock:
            cached = self._tables.get(table)
            if cached is not None:
                return cached
            try:
                reflected = Table(
                    self.physical_name(table),
                    MetaData(),
                    autoload_with=self._engine,
                )
            except NoSuchTableError as exc:
                raise SchemaError(
                    table, f"table missing in {self.label}"
                ) from exc
            self._tables[table] = reflected
            return reflected

    @staticmethod
    def _known_columns(
        t: Table, values: Mapping[str, Any]
    ) -> dict[str, Any]:
        known = set(t.columns.keys())
        dropped = [c for c in values if c not in known]
        if dropped:
            logger.debug(
                "Dropping columns unknown to %s: %s", t.name, dropped
            )
        return {c: v for c, v in values.items() if c in known}

    @staticmethod
    def _coerce_key(t: Table, pk: str, key: str) -> Any:
        """Convert the string form of a key back to the column's type."""
        try:
            python_type = t.c[pk].type.python_type
        except NotImplementedError:
            return key
        if python_type in (int, float, Decimal):
            try:
                return python_type(key)
            except (ValueError, ArithmeticError):
                return key
        return key
