from __future__ import annotations

import copy
import json
import logging
import re
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import settings
from .errors import DuplicateRecord, NotFound, PersistenceError
from .query import DESC, AnyOf, Between, Eq, Filter, IContains, Sort, as_condition, matches, sort_documents
from .store import store

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_UUID_FIELDS = {"id", "owner", "adId"}
_DATETIME_FIELDS = {"createdAt", "updatedAt", "lastNotificationDate"}


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid identifier: {name!r}")
    return name


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Persistence:
    """Document-style storage gateway.

    Every record is a plain dict with an ``id`` (UUID) and a ``createdAt``
    timestamp; one collection per ad category plus ``users`` and ``saved_ads``.
    """

    def find(
        self,
        collection: str,
        flt: Filter | None = None,
        sort: Sort | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def find_one(self, collection: str, flt: Filter) -> dict[str, Any] | None:
        rows = self.find(collection, flt, limit=1)
        return rows[0] if rows else None

    def get(self, collection: str, doc_id: UUID) -> dict[str, Any] | None:
        return self.find_one(collection, {"id": doc_id})

    def count_documents(self, collection: str, flt: Filter | None = None) -> int:
        raise NotImplementedError

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_own_fields(self, collection: str, doc_id: UUID, patch: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_one(self, collection: str, doc_id: UUID) -> None:
        raise NotImplementedError

    def delete_many(self, collection: str, flt: Filter) -> int:
        raise NotImplementedError

    def populate(
        self,
        record: dict[str, Any],
        field: str,
        collection: str,
        projection: tuple[str, ...],
        as_field: str | None = None,
    ) -> dict[str, Any]:
        """Attach the projected document referenced by ``record[field]``."""
        target = as_field or field
        ref = record.get(field)
        referenced = self.get(collection, ref) if ref is not None else None
        populated = dict(record)
        if referenced is None:
            populated[target] = None
        else:
            populated[target] = {"id": referenced["id"], **{key: referenced.get(key) for key in projection}}
        return populated

    def _prepare(self, record: dict[str, Any]) -> dict[str, Any]:
        row = dict(record)
        row.setdefault("id", store.make_id())
        row.setdefault("createdAt", store.now())
        return row


class InMemoryPersistence(Persistence):
    def find(
        self,
        collection: str,
        flt: Filter | None = None,
        sort: Sort | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [d for d in store.collection(collection).values() if matches(d, flt)]
        rows = sort_documents(rows, sort)
        end = None if limit is None else skip + limit
        return [copy.deepcopy(d) for d in rows[skip:end]]

    def count_documents(self, collection: str, flt: Filter | None = None) -> int:
        return sum(1 for d in store.collection(collection).values() if matches(d, flt))

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        row = self._prepare(record)
        store.collection(collection)[row["id"]] = copy.deepcopy(row)
        return row

    def update_own_fields(self, collection: str, doc_id: UUID, patch: dict[str, Any]) -> dict[str, Any]:
        row = store.collection(collection).get(doc_id)
        if row is None:
            raise NotFound(f"{collection} record not found: {doc_id}")
        row.update({k: copy.deepcopy(v) for k, v in patch.items() if k != "id"})
        return copy.deepcopy(row)

    def delete_one(self, collection: str, doc_id: UUID) -> None:
        store.collection(collection).pop(doc_id, None)

    def delete_many(self, collection: str, flt: Filter) -> int:
        rows = store.collection(collection)
        doomed = [k for k, v in rows.items() if matches(v, flt)]
        for key in doomed:
            del rows[key]
        return len(doomed)


class PostgresPersistence(Persistence):
    """JSONB-backed document tables, one per collection."""

    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._ready: set[str] = set()

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except IntegrityError as exc:
            logger.warning("postgres constraint violation: %s", exc.__class__.__name__)
            raise DuplicateRecord() from exc
        except SQLAlchemyError as exc:
            logger.error("postgres error: %s", exc.__class__.__name__)
            raise PersistenceError() from exc

    def _table(self, collection: str) -> str:
        table = _check_identifier(collection)
        if table not in self._ready:
            self._run(
                f"""
                create table if not exists {table} (
                  id uuid primary key,
                  created_at timestamp not null,
                  body jsonb not null
                )
                """
            )
            self._run(f"create index if not exists idx_{table}_created on {table}(created_at desc)")
            self._ready.add(table)
        return table

    @staticmethod
    def _encode(record: dict[str, Any]) -> str:
        return json.dumps(jsonable_encoder(record), ensure_ascii=False)

    @staticmethod
    def _decode(row: dict[str, Any]) -> dict[str, Any]:
        body = row["body"]
        if isinstance(body, str):
            body = json.loads(body)
        doc = dict(body)
        for key in _UUID_FIELDS & doc.keys():
            if doc[key] is not None:
                doc[key] = UUID(str(doc[key]))
        for key in _DATETIME_FIELDS & doc.keys():
            if isinstance(doc[key], str):
                doc[key] = datetime.fromisoformat(doc[key])
        doc["id"] = row["id"] if isinstance(row["id"], UUID) else UUID(str(row["id"]))
        doc["createdAt"] = row["created_at"]
        return doc

    @staticmethod
    def _field_expr(field: str) -> str:
        if field == "id":
            return "id"
        if field == "createdAt":
            return "created_at"
        return f"body->>'{_check_identifier(field)}'"

    def _compile_filter(self, flt: Filter | None) -> tuple[str, dict[str, Any]]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        for idx, (field, raw) in enumerate((flt or {}).items()):
            cond = as_condition(raw)
            key = f"p{idx}"
            expr = self._field_expr(field)
            if isinstance(cond, Eq):
                if field in {"id", "createdAt"}:
                    clauses.append(f"{expr} = :{key}")
                    params[key] = cond.value
                elif cond.value is None:
                    clauses.append(f"{expr} is null")
                else:
                    clauses.append(f"body @> cast(:{key} as jsonb)")
                    params[key] = self._encode({field: cond.value})
            elif isinstance(cond, IContains):
                clauses.append(f"{expr} ilike :{key}")
                params[key] = f"%{_escape_like(cond.text)}%"
            elif isinstance(cond, AnyOf):
                options = []
                for n, option in enumerate(cond.texts):
                    options.append(f"{expr} ilike :{key}_{n}")
                    params[f"{key}_{n}"] = f"%{_escape_like(option)}%"
                clauses.append("(" + " or ".join(options or ["false"]) + ")")
            elif isinstance(cond, Between):
                column = expr if field == "createdAt" else f"({expr})::timestamp"
                clauses.append(f"{column} >= :{key}_start and {column} < :{key}_end")
                params[f"{key}_start"] = cond.start
                params[f"{key}_end"] = cond.end
        where = " where " + " and ".join(clauses) if clauses else ""
        return where, params

    def _compile_sort(self, sort: Sort | None) -> str:
        if not sort:
            return ""
        parts = [f"{self._field_expr(field)} {'desc' if direction == DESC else 'asc'}" for field, direction in sort]
        return " order by " + ", ".join(parts)

    def find(
        self,
        collection: str,
        flt: Filter | None = None,
        sort: Sort | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        table = self._table(collection)
        where, params = self._compile_filter(flt)
        sql = f"select id, created_at, body from {table}{where}{self._compile_sort(sort)}"
        if limit is not None:
            sql += " limit :_limit"
            params["_limit"] = limit
        if skip:
            sql += " offset :_skip"
            params["_skip"] = skip
        return [self._decode(row) for row in self._run(sql, params)]

    def count_documents(self, collection: str, flt: Filter | None = None) -> int:
        table = self._table(collection)
        where, params = self._compile_filter(flt)
        rows = self._run(f"select count(*) as total from {table}{where}", params)
        return int(rows[0]["total"])

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        table = self._table(collection)
        row = self._prepare(record)
        body = {k: v for k, v in row.items() if k not in {"id", "createdAt"}}
        inserted = self._run(
            f"insert into {table} (id, created_at, body) values (:id, :created_at, cast(:body as jsonb)) returning id, created_at, body",
            {"id": row["id"], "created_at": row["createdAt"], "body": self._encode(body)},
        )
        return self._decode(inserted[0])

    def update_own_fields(self, collection: str, doc_id: UUID, patch: dict[str, Any]) -> dict[str, Any]:
        table = self._table(collection)
        body = {k: v for k, v in patch.items() if k not in {"id", "createdAt"}}
        updated = self._run(
            f"update {table} set body = body || cast(:patch as jsonb) where id = :id returning id, created_at, body",
            {"id": doc_id, "patch": self._encode(body)},
        )
        if not updated:
            raise NotFound(f"{collection} record not found: {doc_id}")
        return self._decode(updated[0])

    def delete_one(self, collection: str, doc_id: UUID) -> None:
        table = self._table(collection)
        self._run(f"delete from {table} where id = :id", {"id": doc_id})

    def delete_many(self, collection: str, flt: Filter) -> int:
        table = self._table(collection)
        where, params = self._compile_filter(flt)
        return len(self._run(f"delete from {table}{where} returning id", params))


def get_persistence() -> Persistence:
    if settings.storage_backend == "postgres":
        return PostgresPersistence(settings.database_url)
    return InMemoryPersistence()
