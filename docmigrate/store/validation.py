"""Store-side validation rules.

Rules run per record before the record is written.  A rule returns an error
message to reject the record or ``None`` to accept it.  Rejected records are
reported through ``SaveResult`` and never reach the database, so the rest of
the bulk call proceeds normally.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from docmigrate.db.models import Document, DocumentLink, User
from docmigrate.store.base import EntityType, ShareType, Visibility

ValidationRule = Callable[[Session, Mapping[str, Any]], "str | None"]

MAX_TITLE_LENGTH = 255

_SHARE_TYPES = frozenset(s.value for s in ShareType)
_VISIBILITIES = frozenset(v.value for v in Visibility)


class Operation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# ---- built-in rules -------------------------------------------------------


def require_title(_: Session, record: Mapping[str, Any]) -> str | None:
    title = record.get("title")
    if not title or not str(title).strip():
        return "title is required"
    if len(title) > MAX_TITLE_LENGTH:
        return f"title exceeds {MAX_TITLE_LENGTH} characters"
    return None


def owner_must_be_active(db: Session, record: Mapping[str, Any]) -> str | None:
    owner_id = record.get("owner_id")
    if owner_id is None:
        return None
    owner = db.get(User, owner_id)
    if owner is None:
        return f"owner {owner_id} does not exist"
    if not owner.is_active:
        return f"owner {owner_id} is inactive"
    return None


def link_document_must_exist(db: Session, record: Mapping[str, Any]) -> str | None:
    document_id = record.get("document_id")
    if document_id is None or db.get(Document, document_id) is None:
        return f"document {document_id} does not exist"
    return None


def link_must_be_unique(db: Session, record: Mapping[str, Any]) -> str | None:
    existing = db.execute(
        select(DocumentLink.id).where(
            DocumentLink.document_id == record.get("document_id"),
            DocumentLink.linked_entity_id == record.get("linked_entity_id"),
        )
    ).first()
    if existing is not None:
        return "document is already linked to this entity"
    return None


def link_values_must_be_known(_: Session, record: Mapping[str, Any]) -> str | None:
    share_type = record.get("share_type", ShareType.VIEWER.value)
    if share_type not in _SHARE_TYPES:
        return f"unknown share_type {share_type!r}"
    visibility = record.get("visibility", Visibility.ALL_USERS.value)
    if visibility not in _VISIBILITIES:
        return f"unknown visibility {visibility!r}"
    return None


# ---- registry -------------------------------------------------------------


class ValidationRules:
    """Per (entity type, operation) list of rules, evaluated in registration order."""

    def __init__(self) -> None:
        self._rules: dict[tuple[EntityType, Operation], list[ValidationRule]] = defaultdict(list)

    def register(self, entity_type: EntityType, operation: Operation, rule: ValidationRule) -> None:
        self._rules[(entity_type, operation)].append(rule)

    def check(
        self,
        db: Session,
        entity_type: EntityType,
        operation: Operation,
        record: Mapping[str, Any],
    ) -> list[str]:
        """Return every error message raised by the applicable rules."""
        errors: list[str] = []
        for rule in self._rules.get((entity_type, operation), ()):
            message = rule(db, record)
            if message:
                errors.append(message)
        return errors

    @classmethod
    def default(cls) -> ValidationRules:
        rules = cls()
        rules.register(EntityType.DOCUMENT_VERSION, Operation.CREATE, require_title)
        rules.register(EntityType.DOCUMENT_VERSION, Operation.CREATE, owner_must_be_active)
        rules.register(EntityType.DOCUMENT_VERSION, Operation.UPDATE, owner_must_be_active)
        rules.register(EntityType.NOTE_DOCUMENT, Operation.CREATE, require_title)
        rules.register(EntityType.DOCUMENT_LINK, Operation.CREATE, link_values_must_be_known)
        rules.register(EntityType.DOCUMENT_LINK, Operation.CREATE, link_document_must_exist)
        rules.register(EntityType.DOCUMENT_LINK, Operation.CREATE, link_must_be_unique)
        return rules
