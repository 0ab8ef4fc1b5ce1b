"""Value types shared by the scope selector, engine and runner."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from docmigrate.store.base import EntityType, ShareType, Visibility


class SourceKind(StrEnum):
    ATTACHMENT = "attachment"
    NOTE = "note"

    @property
    def entity_type(self) -> EntityType:
        return EntityType.ATTACHMENT if self is SourceKind.ATTACHMENT else EntityType.NOTE


@dataclass(frozen=True, slots=True)
class SourceRecord:
    """Snapshot of a legacy attachment or note taken when it was selected."""

    id: UUID
    kind: SourceKind
    parent_id: UUID
    owner_id: UUID
    owner_active: bool
    title: str
    payload: bytes | str
    is_private: bool = False
    description: str | None = None
    content_type: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ConversionConfig:
    """Immutable per-run settings handed to every page invocation."""

    delete_upon_conversion: bool = False
    share_private_with_parent: bool = False
    scope_parent_ids: frozenset[UUID] | None = None
    share_type: ShareType = ShareType.VIEWER
    visibility: Visibility = Visibility.ALL_USERS
    skip_already_converted: bool = False
    preserve_timestamps: bool = True

    def __post_init__(self) -> None:
        # Normalise plain strings coming from settings or request bodies
        object.__setattr__(self, "share_type", ShareType(self.share_type))
        object.__setattr__(self, "visibility", Visibility(self.visibility))

    @classmethod
    def from_settings(cls, settings, **overrides) -> ConversionConfig:
        values = {
            "delete_upon_conversion": settings.delete_upon_conversion,
            "share_private_with_parent": settings.share_private_with_parent,
            "share_type": settings.share_type,
            "visibility": settings.link_visibility,
            "skip_already_converted": settings.skip_already_converted,
            "preserve_timestamps": settings.preserve_timestamps,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


class RecordState(StrEnum):
    SELECTED = "selected"
    TARGET_CREATED = "target_created"
    CORRELATED = "correlated"
    LINKED = "linked"
    SKIPPED = "skipped"
    DELETED = "deleted"
    RETAINED = "retained"
    FAILED = "failed"
    ALREADY_CONVERTED = "already_converted"
    INELIGIBLE = "ineligible"


@dataclass(slots=True)
class RecordOutcome:
    """Progress of one source record through a page."""

    source_id: UUID
    state: RecordState = RecordState.SELECTED
    version_id: UUID | None = None
    document_id: UUID | None = None
    linked: bool = False
    deleted: bool = False
    # target version came from an earlier run
    resumed: bool = False
    errors: list[str] = field(default_factory=list)

    def fail(self, *errors: str) -> None:
        self.state = RecordState.FAILED
        self.errors.extend(errors)


class PageStatus(StrEnum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


@dataclass(slots=True)
class PageResult:
    page_number: int
    kind: SourceKind
    outcomes: dict[UUID, RecordOutcome] = field(default_factory=dict)
    status: PageStatus = PageStatus.COMPLETED
    error: str | None = None

    @classmethod
    def start(cls, page_number: int, kind: SourceKind, page: list[SourceRecord]) -> PageResult:
        return cls(
            page_number=page_number,
            kind=kind,
            outcomes={record.id: RecordOutcome(source_id=record.id) for record in page},
        )

    def finish(self) -> PageResult:
        if self.status != PageStatus.FAILED:
            has_errors = any(outcome.errors for outcome in self.outcomes.values())
            self.status = PageStatus.COMPLETED_WITH_ERRORS if has_errors else PageStatus.COMPLETED
        return self

    def abort(self, error: str) -> PageResult:
        self.status = PageStatus.FAILED
        self.error = error
        return self

    def count(self, state: RecordState) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.state == state)


@dataclass(slots=True)
class RunSummary:
    kind: SourceKind
    pages: list[PageResult] = field(default_factory=list)

    @property
    def records_seen(self) -> int:
        return sum(len(page.outcomes) for page in self.pages)

    @property
    def failed_pages(self) -> list[PageResult]:
        return [page for page in self.pages if page.status == PageStatus.FAILED]

    def count(self, state: RecordState) -> int:
        return sum(page.count(state) for page in self.pages)

    @property
    def converted(self) -> int:
        """Records this run converted on pages that were not aborted."""
        return sum(
            1
            for page in self.pages
            if page.status != PageStatus.FAILED
            for outcome in page.outcomes.values()
            if outcome.version_id is not None and not outcome.resumed and outcome.state != RecordState.FAILED
        )

    @property
    def resumed(self) -> int:
        """Records whose version an earlier run created and this run finished off."""
        return sum(1 for page in self.pages for outcome in page.outcomes.values() if outcome.resumed)
