"""SQLAlchemy implementation of ``RecordStore``.

Store-managed behaviour mirrored from the target document model:

* creating a ``DocumentVersion`` without a ``document_id`` generates the
  parent ``Document``; the generated id is *not* part of the create result
* creating a ``NoteDocument`` generates a ``Document`` plus its first
  ``DocumentVersion`` and records the version id on the note
* versions created without an ``owner_id`` are owned by the acting user

Each mutating call is one transaction when ``commit_each_call`` is set.
Database errors surface as ``StoreError``; the call is rolled back only
when the store owns the transaction, otherwise rollback is left to the caller.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, inspect, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from docmigrate.core.errors import StoreError
from docmigrate.db.models import (
    Document,
    DocumentLink,
    DocumentVersion,
    LegacyAttachment,
    LegacyNote,
    NoteDocument,
    User,
)
from docmigrate.store.base import EntityType, RecordStore, Row, SaveResult, ScopeFilter
from docmigrate.store.validation import Operation, ValidationRules

logger = logging.getLogger(__name__)

_MODELS: dict[EntityType, type] = {
    EntityType.USER: User,
    EntityType.ATTACHMENT: LegacyAttachment,
    EntityType.NOTE: LegacyNote,
    EntityType.DOCUMENT: Document,
    EntityType.DOCUMENT_VERSION: DocumentVersion,
    EntityType.NOTE_DOCUMENT: NoteDocument,
    EntityType.DOCUMENT_LINK: DocumentLink,
}

_SOURCE_TYPES = frozenset({EntityType.ATTACHMENT, EntityType.NOTE})

# Upper bound on bind parameters per IN (...) clause
_IN_CHUNK_SIZE = 500

NOTE_FILE_EXTENSION = ".snote"


def _columns(model: type) -> frozenset[str]:
    return frozenset(attr.key for attr in inspect(model).column_attrs)


def _chunked(values: list[Any], size: int) -> Iterator[list[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _keyset_after(columns: list[Any], key: tuple[Any, ...]):
    """WHERE clause selecting rows strictly after *key* in *columns* order."""
    clauses = []
    for position, column in enumerate(columns):
        equal_prefix = [columns[i] == key[i] for i in range(position)]
        clauses.append(and_(*equal_prefix, column > key[position]))
    return or_(*clauses)


class SqlAlchemyRecordStore(RecordStore):
    """Record store backed by the ORM models in ``docmigrate.db.models``.

    Parameters
    ----------
    db:
        Session all calls run in.
    acting_user_id:
        Principal that owns versions created without an explicit owner.
    rules:
        Store-side validation rules; defaults to ``ValidationRules.default()``.
    commit_each_call:
        Commit after every mutating call.  When ``False`` the call only
        flushes and the caller owns the transaction boundary.
    fetch_size:
        Rows fetched per keyset query by ``query_scope``.
    """

    def __init__(
        self,
        db: Session,
        *,
        acting_user_id: UUID | None = None,
        rules: ValidationRules | None = None,
        commit_each_call: bool = True,
        fetch_size: int = 1000,
    ) -> None:
        if fetch_size < 1:
            raise ValueError("fetch_size must be positive")
        self.db = db
        self.acting_user_id = acting_user_id
        self.rules = rules if rules is not None else ValidationRules.default()
        self.commit_each_call = commit_each_call
        self.fetch_size = fetch_size

    # -- mutations ----------------------------------------------------------

    def bulk_create(self, entity_type: EntityType, records: Sequence[Mapping[str, Any]]) -> list[SaveResult]:
        model = self._model(entity_type)
        writable = _columns(model) - {"id"}
        results: list[SaveResult] = []
        try:
            for record in records:
                unknown = set(record) - writable
                if unknown:
                    results.append(SaveResult.failed(None, f"unknown fields: {', '.join(sorted(unknown))}"))
                    continue
                errors = self.rules.check(self.db, entity_type, Operation.CREATE, record)
                if errors:
                    results.append(SaveResult.failed(None, *errors))
                    continue
                entity = model(**record)
                self._create_entity(entity_type, entity)
                results.append(SaveResult.ok(entity.id))
            self._end_call()
        except SQLAlchemyError as exc:
            self._fail_call()
            raise StoreError("bulk_create", entity_type, str(exc)) from exc

        self._log_call("bulk_create", entity_type, results)
        return results

    def bulk_update(self, entity_type: EntityType, records: Sequence[Mapping[str, Any]]) -> list[SaveResult]:
        model = self._model(entity_type)
        writable = _columns(model) - {"id"}
        results: list[SaveResult] = []
        try:
            for record in records:
                entity_id = record.get("id")
                changes = {key: value for key, value in record.items() if key != "id"}
                unknown = set(changes) - writable
                if unknown:
                    results.append(SaveResult.failed(entity_id, f"unknown fields: {', '.join(sorted(unknown))}"))
                    continue
                entity = self.db.get(model, entity_id) if entity_id is not None else None
                if entity is None:
                    results.append(SaveResult.failed(entity_id, f"{entity_type} {entity_id} does not exist"))
                    continue
                errors = self.rules.check(self.db, entity_type, Operation.UPDATE, record)
                if errors:
                    results.append(SaveResult.failed(entity_id, *errors))
                    continue
                for key, value in changes.items():
                    setattr(entity, key, value)
                if "updated_at" in changes:
                    # an unchanged value would otherwise let onupdate overwrite it
                    flag_modified(entity, "updated_at")
                self.db.flush()
                results.append(SaveResult.ok(entity_id))
            self._end_call()
        except SQLAlchemyError as exc:
            self._fail_call()
            raise StoreError("bulk_update", entity_type, str(exc)) from exc

        self._log_call("bulk_update", entity_type, results)
        return results

    def bulk_delete(self, entity_type: EntityType, ids: Sequence[UUID]) -> list[SaveResult]:
        model = self._model(entity_type)
        results: list[SaveResult] = []
        try:
            for entity_id in ids:
                entity = self.db.get(model, entity_id)
                if entity is None:
                    results.append(SaveResult.failed(entity_id, f"{entity_type} {entity_id} does not exist"))
                    continue
                errors = self.rules.check(self.db, entity_type, Operation.DELETE, {"id": entity_id})
                if errors:
                    results.append(SaveResult.failed(entity_id, *errors))
                    continue
                self.db.delete(entity)
                self.db.flush()
                results.append(SaveResult.ok(entity_id))
            self._end_call()
        except SQLAlchemyError as exc:
            self._fail_call()
            raise StoreError("bulk_delete", entity_type, str(exc)) from exc

        self._log_call("bulk_delete", entity_type, results)
        return results

    # -- reads --------------------------------------------------------------

    def bulk_query_by_ids(
        self,
        entity_type: EntityType,
        ids: Iterable[UUID],
        fields: Sequence[str],
    ) -> list[Row]:
        return self.bulk_query_by_field(entity_type, "id", ids, fields)

    def bulk_query_by_field(
        self,
        entity_type: EntityType,
        field_name: str,
        values: Iterable[Any],
        fields: Sequence[str],
    ) -> list[Row]:
        model = self._model(entity_type)
        known = _columns(model)
        requested = ["id", *(name for name in fields if name != "id")]
        missing = [name for name in (field_name, *requested) if name not in known]
        if missing:
            raise ValueError(f"Unknown fields for {entity_type}: {', '.join(missing)}")

        columns = [getattr(model, name) for name in requested]
        filter_column = getattr(model, field_name)
        rows: list[Row] = []
        try:
            for chunk in _chunked(list(dict.fromkeys(values)), _IN_CHUNK_SIZE):
                stmt = select(*columns).where(filter_column.in_(chunk))
                rows.extend(dict(row._mapping) for row in self.db.execute(stmt))
        except SQLAlchemyError as exc:
            raise StoreError("bulk_query", entity_type, str(exc)) from exc
        return rows

    def query_scope(
        self,
        entity_type: EntityType,
        scope_filter: ScopeFilter,
        order_by: Sequence[str] = ("parent_id", "id"),
    ) -> Iterator[Row]:
        """Yield scope rows using keyset pagination.

        Each chunk is fully materialised before it is yielded, so callers may
        delete already-yielded rows between chunks without invalidating the
        cursor.
        """
        model = self._source_model(entity_type)
        order_names = list(order_by)
        if "id" not in order_names:
            order_names.append("id")
        unknown = [name for name in order_names if name not in _columns(model)]
        if unknown:
            raise ValueError(f"Cannot order {entity_type} by: {', '.join(unknown)}")
        if scope_filter.parent_ids is not None and not scope_filter.parent_ids:
            return

        order_columns = [getattr(model, name) for name in order_names]
        base = self._scope_statement(model, scope_filter)
        last_key: tuple[Any, ...] | None = None
        while True:
            stmt = base.order_by(*order_columns).limit(self.fetch_size)
            if last_key is not None:
                stmt = stmt.where(_keyset_after(order_columns, last_key))
            try:
                chunk = [self._scope_row(entity, owner_active) for entity, owner_active in self.db.execute(stmt)]
            except SQLAlchemyError as exc:
                raise StoreError("query_scope", entity_type, str(exc)) from exc
            yield from chunk
            if len(chunk) < self.fetch_size:
                return
            last_key = tuple(chunk[-1][name] for name in order_names)

    def count_scope(self, entity_type: EntityType, scope_filter: ScopeFilter) -> int:
        model = self._source_model(entity_type)
        if scope_filter.parent_ids is not None and not scope_filter.parent_ids:
            return 0
        stmt = select(func.count()).select_from(self._scope_statement(model, scope_filter).subquery())
        try:
            return self.db.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError("count_scope", entity_type, str(exc)) from exc

    # -- internal -----------------------------------------------------------

    def _model(self, entity_type: EntityType) -> type:
        try:
            return _MODELS[EntityType(entity_type)]
        except (KeyError, ValueError):
            raise ValueError(f"Unsupported entity type: {entity_type!r}") from None

    def _source_model(self, entity_type: EntityType) -> type:
        if entity_type not in _SOURCE_TYPES:
            raise ValueError(f"{entity_type} is not a source entity type")
        return self._model(entity_type)

    def _scope_statement(self, model: type, scope_filter: ScopeFilter):
        stmt = select(model, User.is_active).join(User, model.owner_id == User.id)
        if scope_filter.active_owner_only:
            stmt = stmt.where(User.is_active.is_(True))
        if scope_filter.parent_ids is not None:
            stmt = stmt.where(model.parent_id.in_(list(scope_filter.parent_ids)))
        return stmt

    def _scope_row(self, entity: Any, owner_active: bool) -> Row:
        row = {name: getattr(entity, name) for name in _columns(type(entity))}
        row["owner_active"] = bool(owner_active)
        return row

    def _create_entity(self, entity_type: EntityType, entity: Any) -> None:
        if entity_type == EntityType.DOCUMENT_VERSION:
            self._create_version(entity)
        elif entity_type == EntityType.NOTE_DOCUMENT:
            self._create_note(entity)
        else:
            self.db.add(entity)
            self.db.flush()

    def _create_version(self, version: DocumentVersion) -> None:
        if version.owner_id is None:
            version.owner_id = self.acting_user_id
        document = None
        if version.document_id is None:
            document = Document(title=version.title)
            self.db.add(document)
            self.db.flush()
            version.document_id = document.id
        self.db.add(version)
        self.db.flush()
        if document is None:
            document = self.db.get(Document, version.document_id)
        if document is not None:
            document.latest_version_id = version.id
            self.db.flush()

    def _create_note(self, note: NoteDocument) -> None:
        content = note.content or ""
        version = DocumentVersion(
            title=note.title,
            path_on_client=f"{note.title}{NOTE_FILE_EXTENSION}",
            content=content.encode("utf-8"),
        )
        self._create_version(version)
        note.content = content
        note.latest_version_id = version.id
        self.db.add(note)
        self.db.flush()

    def _fail_call(self) -> None:
        if self.commit_each_call:
            self.db.rollback()

    def _end_call(self) -> None:
        if self.commit_each_call:
            self.db.commit()
        else:
            self.db.flush()

    def _log_call(self, operation: str, entity_type: EntityType, results: list[SaveResult]) -> None:
        rejected = sum(1 for result in results if not result.success)
        logger.debug(
            "%s %s: %d records, %d rejected",
            operation,
            entity_type,
            len(results),
            rejected,
        )
