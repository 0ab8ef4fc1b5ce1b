"""Scope selector: which legacy records a run converts, and in what order.

Records are ordered by parent so that siblings tend to land in the same
page.  Records whose owner has been deactivated never enter the scope.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from uuid import UUID

from docmigrate.conversion.models import SourceKind, SourceRecord
from docmigrate.core.errors import ScopeError
from docmigrate.store.base import RecordStore, Row, ScopeFilter

logger = logging.getLogger(__name__)

SCOPE_ORDER = ("parent_id", "id")


def normalize_parent_ids(parent_ids: Iterable[UUID | str] | None) -> frozenset[UUID] | None:
    """Validate a parent filter: ``None`` is unrestricted, empty matches nothing."""
    if parent_ids is None:
        return None
    if isinstance(parent_ids, (str, bytes)):
        raise ScopeError("parent ids must be a collection of identifiers, not a single string")
    try:
        items = list(parent_ids)
    except TypeError:
        raise ScopeError(f"parent ids must be iterable, got {type(parent_ids).__name__}") from None

    normalized: set[UUID] = set()
    for item in items:
        if isinstance(item, UUID):
            normalized.add(item)
            continue
        try:
            normalized.add(UUID(str(item)))
        except ValueError:
            raise ScopeError(f"invalid parent id: {item!r}") from None
    return frozenset(normalized)


def _to_source_record(kind: SourceKind, row: Row) -> SourceRecord:
    if kind == SourceKind.ATTACHMENT:
        return SourceRecord(
            id=row["id"],
            kind=kind,
            parent_id=row["parent_id"],
            owner_id=row["owner_id"],
            owner_active=row["owner_active"],
            title=row["name"],
            payload=row["body"],
            is_private=row["is_private"],
            description=row.get("description"),
            content_type=row.get("content_type"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
    return SourceRecord(
        id=row["id"],
        kind=kind,
        parent_id=row["parent_id"],
        owner_id=row["owner_id"],
        owner_active=row["owner_active"],
        title=row["title"],
        payload=row["body"] or "",
        is_private=row["is_private"],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _scope_filter(parent_ids: Iterable[UUID | str] | None) -> ScopeFilter:
    return ScopeFilter(parent_ids=normalize_parent_ids(parent_ids), active_owner_only=True)


def select_scope(
    store: RecordStore,
    kind: SourceKind,
    parent_ids: Iterable[UUID | str] | None = None,
) -> Iterator[SourceRecord]:
    """Return a lazy cursor over convertible records of *kind*.

    The filter is validated eagerly, so a malformed one raises ``ScopeError``
    here rather than on first iteration.
    """
    kind = SourceKind(kind)
    scope_filter = _scope_filter(parent_ids)
    if scope_filter.parent_ids is not None and not scope_filter.parent_ids:
        logger.info("Empty parent filter for %s scope; nothing to convert", kind)
        return iter(())

    rows = store.query_scope(kind.entity_type, scope_filter, order_by=SCOPE_ORDER)
    return (_to_source_record(kind, row) for row in rows)


def count_scope(
    store: RecordStore,
    kind: SourceKind,
    parent_ids: Iterable[UUID | str] | None = None,
) -> int:
    kind = SourceKind(kind)
    return store.count_scope(kind.entity_type, _scope_filter(parent_ids))
