from __future__ import annotations

from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from docmigrate.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: UUID) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return self.db.execute(stmt).scalars().all()

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.flush()


class UserRepository(BaseRepository[models.User]):
    model = models.User

    def deactivate(self, user: models.User) -> models.User:
        return self.update(user, is_active=False)


class LegacyAttachmentRepository(BaseRepository[models.LegacyAttachment]):
    model = models.LegacyAttachment


class LegacyNoteRepository(BaseRepository[models.LegacyNote]):
    model = models.LegacyNote


class DocumentRepository(BaseRepository[models.Document]):
    model = models.Document


class DocumentVersionRepository(BaseRepository[models.DocumentVersion]):
    model = models.DocumentVersion

    def find_by_original_record(self, record_id: UUID) -> list[models.DocumentVersion]:
        stmt = select(models.DocumentVersion).where(models.DocumentVersion.original_record_id == record_id)
        return self.db.execute(stmt).scalars().all()


class NoteDocumentRepository(BaseRepository[models.NoteDocument]):
    model = models.NoteDocument


class DocumentLinkRepository(BaseRepository[models.DocumentLink]):
    model = models.DocumentLink

    def list_for_document(self, document_id: UUID) -> list[models.DocumentLink]:
        stmt = select(models.DocumentLink).where(models.DocumentLink.document_id == document_id)
        return self.db.execute(stmt).scalars().all()
