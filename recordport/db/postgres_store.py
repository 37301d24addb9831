from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from typing import Any

import psycopg2
from psycopg2 import sql

from recordport.catalog import ModuleCatalog
from recordport.models.field_definition import DataType

from .store import RecordStore, StoredRecord, StoreError, StoreUnavailableError, TagDeletion

"""PostgreSQL RecordStore (psycopg2).

One table per module, named after the module, with the catalog fields as
columns plus bookkeeping columns:

- ``id`` bigserial primary key (exposed as str)
- ``import_job_tag`` text: id of the import job that inserted the row
- ``import_modified`` boolean: row changed by another writer after the import
- ``created_at`` / ``updated_at`` timestamptz

Every operation runs on its own cursor and commits; a psycopg2 error rolls
back and is re-raised as StoreError (StoreUnavailableError for connection
level failures). A lock serializes use of the shared connection.
"""

__all__ = [
    "PostgresRecordStore",
    "column_type",
]

_COLUMN_TYPES = {
    DataType.STRING: "text",
    DataType.EMAIL: "text",
    DataType.PHONE: "text",
    DataType.NUMBER: "numeric",
    DataType.CURRENCY: "numeric(14,2)",
    DataType.BOOLEAN: "boolean",
    DataType.DATE: "date",
}


def column_type(data_type: DataType) -> str:
    return _COLUMN_TYPES[data_type]


class PostgresRecordStore(RecordStore):
    supports_job_tags = True

    def __init__(self, connection: Any) -> None:
        self._conn = connection
        self._lock = threading.Lock()

    def _run(self, query: Any, params: Sequence[Any] | None = None, *, fetch: str | None = None) -> Any:
        """Execute one statement and commit.

        fetch: None | "one" | "all"
        """
        with self._lock:
            try:
                with self._conn.cursor() as cur:
                    cur.execute(query, params)
                    if fetch == "one":
                        result = cur.fetchone()
                    elif fetch == "all":
                        result = cur.fetchall()
                    else:
                        result = None
                    description = cur.description
                self._conn.commit()
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                raise StoreUnavailableError(f"database unavailable: {e}") from e
            except psycopg2.Error as e:
                try:
                    self._conn.rollback()
                except psycopg2.Error as rb:
                    raise StoreUnavailableError(f"rollback failed: {rb}") from e
                raise StoreError(str(e).strip()) from e
        return result, description

    def ensure_table(self, catalog: ModuleCatalog) -> None:
        """CREATE TABLE IF NOT EXISTS for one module."""
        columns = [
            sql.SQL("{} {}").format(sql.Identifier(f.field), sql.SQL(column_type(f.data_type)))
            for f in catalog.fields
        ]
        query = sql.SQL(
            "CREATE TABLE IF NOT EXISTS {table} ("
            "id bigserial PRIMARY KEY, {columns}, "
            "import_job_tag text, "
            "import_modified boolean NOT NULL DEFAULT false, "
            "created_at timestamptz NOT NULL DEFAULT now(), "
            "updated_at timestamptz NOT NULL DEFAULT now())"
        ).format(table=sql.Identifier(catalog.module), columns=sql.SQL(", ").join(columns))
        self._run(query)

    def find_by_natural_key(self, module: str, key: Mapping[str, Any]) -> StoredRecord | None:
        conditions = [
            sql.SQL("lower(trim({}::text)) = lower(trim(%s))").format(sql.Identifier(k)) for k in key
        ]
        query = sql.SQL("SELECT * FROM {table} WHERE {cond} ORDER BY id LIMIT 1").format(
            table=sql.Identifier(module), cond=sql.SQL(" AND ").join(conditions)
        )
        row, description = self._run(query, [str(v) for v in key.values()], fetch="one")
        if row is None:
            return None
        names = [d[0] for d in description]
        data = dict(zip(names, row, strict=False))
        record_id = str(data.pop("id"))
        for bookkeeping in ("import_job_tag", "import_modified", "created_at", "updated_at"):
            data.pop(bookkeeping, None)
        return StoredRecord(id=record_id, fields=data)

    def insert(self, module: str, record: Mapping[str, Any], job_tag: str | None = None) -> str:
        columns = [*record.keys(), "import_job_tag"]
        query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) RETURNING id").format(
            table=sql.Identifier(module),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        row, _ = self._run(query, [*record.values(), job_tag], fetch="one")
        if row is None:
            raise StoreError(f"insert into {module} returned no id")
        return str(row[0])

    def update(
        self, module: str, record_id: str, fields: Mapping[str, Any], job_tag: str | None = None
    ) -> None:
        if not fields:
            return
        assignments = [sql.SQL("{} = %s").format(sql.Identifier(k)) for k in fields]
        query = sql.SQL(
            "UPDATE {table} SET {assign}, updated_at = now(), "
            "import_modified = import_modified OR "
            "(import_job_tag IS NOT NULL AND import_job_tag IS DISTINCT FROM %s) "
            "WHERE id = %s RETURNING id"
        ).format(table=sql.Identifier(module), assign=sql.SQL(", ").join(assignments))
        row, _ = self._run(query, [*fields.values(), job_tag, int(record_id)], fetch="one")
        if row is None:
            raise StoreError(f"{module} record {record_id} not found")

    def delete_by_job_tag(self, module: str, job_tag: str) -> TagDeletion:
        query = sql.SQL("DELETE FROM {table} WHERE import_job_tag = %s RETURNING id, import_modified").format(
            table=sql.Identifier(module)
        )
        rows, _ = self._run(query, [job_tag], fetch="all")
        deleted = tuple(str(r[0]) for r in rows)
        modified = tuple(str(r[0]) for r in rows if r[1])
        return TagDeletion(deleted_ids=deleted, modified_ids=modified)

    def query(
        self,
        module: str,
        fields: Sequence[str],
        filter: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        query = sql.SQL("SELECT {cols} FROM {table}").format(
            cols=sql.SQL(", ").join(sql.Identifier(f) for f in fields),
            table=sql.Identifier(module),
        )
        params: list[Any] = []
        if filter:
            conditions = [sql.SQL("{} = %s").format(sql.Identifier(k)) for k in filter]
            query = query + sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions)
            params = list(filter.values())
        query = query + sql.SQL(" ORDER BY id")
        rows, _ = self._run(query, params, fetch="all")
        return [dict(zip(fields, r, strict=False)) for r in rows]
