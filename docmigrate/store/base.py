"""Record store capability set consumed by the conversion engine.

The engine only ever talks to the store through the bulk operations declared
on ``RecordStore``.  Two ordering rules hold for every implementation:

    bulk_create        : results are positionally aligned with the input
    bulk_query_by_ids  : result order is unspecified; callers key by ``id``

Mutating calls never raise for a single rejected record.  Each input record
gets a ``SaveResult``; a call raises ``StoreError`` only when the call as a
whole could not be executed.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import UUID


class EntityType(StrEnum):
    USER = "user"
    ATTACHMENT = "attachment"
    NOTE = "note"
    DOCUMENT = "document"
    DOCUMENT_VERSION = "document_version"
    NOTE_DOCUMENT = "note_document"
    DOCUMENT_LINK = "document_link"


class ShareType(StrEnum):
    VIEWER = "V"
    COLLABORATOR = "C"
    INFERRED = "I"


class Visibility(StrEnum):
    ALL_USERS = "AllUsers"
    INTERNAL_USERS = "InternalUsers"


@dataclass(slots=True)
class SaveResult:
    """Outcome of one record within a bulk create, update or delete."""

    id: UUID | None
    success: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, entity_id: UUID) -> SaveResult:
        return cls(id=entity_id, success=True)

    @classmethod
    def failed(cls, entity_id: UUID | None, *errors: str) -> SaveResult:
        return cls(id=entity_id, success=False, errors=list(errors))


@dataclass(frozen=True, slots=True)
class ScopeFilter:
    """Predicate for ``query_scope``.

    ``parent_ids=None`` means unrestricted; an empty frozenset matches nothing.
    """

    parent_ids: frozenset[UUID] | None = None
    active_owner_only: bool = True


Row = dict[str, Any]


class RecordStore(ABC):
    """Bulk capability set the conversion engine requires."""

    @abstractmethod
    def bulk_create(self, entity_type: EntityType, records: Sequence[Mapping[str, Any]]) -> list[SaveResult]:
        """Insert *records*; result ``i`` belongs to input ``i``."""
        ...

    @abstractmethod
    def bulk_query_by_ids(
        self,
        entity_type: EntityType,
        ids: Iterable[UUID],
        fields: Sequence[str],
    ) -> list[Row]:
        """Return one row per existing id with ``id`` plus *fields*, in no particular order."""
        ...

    @abstractmethod
    def bulk_query_by_field(
        self,
        entity_type: EntityType,
        field_name: str,
        values: Iterable[Any],
        fields: Sequence[str],
    ) -> list[Row]:
        """Return rows whose *field_name* is in *values*, in no particular order."""
        ...

    @abstractmethod
    def bulk_update(self, entity_type: EntityType, records: Sequence[Mapping[str, Any]]) -> list[SaveResult]:
        """Apply partial updates; every record must carry its ``id``."""
        ...

    @abstractmethod
    def bulk_delete(self, entity_type: EntityType, ids: Sequence[UUID]) -> list[SaveResult]:
        """Delete by id; result ``i`` belongs to ``ids[i]``."""
        ...

    @abstractmethod
    def query_scope(
        self,
        entity_type: EntityType,
        scope_filter: ScopeFilter,
        order_by: Sequence[str] = ("parent_id", "id"),
    ) -> Iterator[Row]:
        """Lazily yield source rows matching *scope_filter* in *order_by* order."""
        ...

    @abstractmethod
    def count_scope(self, entity_type: EntityType, scope_filter: ScopeFilter) -> int:
        """Return how many rows ``query_scope`` would yield."""
        ...
