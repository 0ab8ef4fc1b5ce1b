"""Tests for the single-round (attachment) conversion pipeline.

Covers:
- one version per active-owner record, provenance mirroring the source
- ownership re-stamped from the acting user to the source owner
- link creation per privacy policy, with configured share type / visibility
- inactive owners never produce a target
- delete-on-success and retention
- correlation survives a store that returns re-queries in reverse order
- partial create / update / link / delete failures handled per record
- re-run dedupe when skip_already_converted is set, resuming interrupted pages
- a failed delete call retains sources without failing the page
"""
from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import select

from docmigrate.conversion.engine import ConversionEngine
from docmigrate.conversion.models import (
    ConversionConfig,
    PageStatus,
    RecordState,
    SourceKind,
    SourceRecord,
)
from docmigrate.conversion.runner import ConversionRunner
from docmigrate.conversion.scope import select_scope
from docmigrate.core.errors import StoreError
from docmigrate.db.models import DocumentLink, DocumentVersion, LegacyAttachment
from docmigrate.store.base import EntityType, SaveResult, ShareType, Visibility
from docmigrate.store.sqlalchemy_store import SqlAlchemyRecordStore
from docmigrate.store.validation import Operation, ValidationRules
from tests.factories import make_attachment, make_user


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ReversingStore(SqlAlchemyRecordStore):
    """Returns every re-query in reverse order to defeat positional matching."""

    def bulk_query_by_ids(self, entity_type, ids, fields):
        return list(reversed(super().bulk_query_by_ids(entity_type, ids, fields)))


def _convert(store, config=None, parent_ids=None):
    page = list(select_scope(store, SourceKind.ATTACHMENT, parent_ids))
    return ConversionEngine(store).convert_attachments(page, config or ConversionConfig())


def _versions(db):
    return db.execute(select(DocumentVersion)).scalars().all()


def _links(db):
    return db.execute(select(DocumentLink)).scalars().all()


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_single_public_record_default_config(db_session, store, admin):
    owner = make_user(db_session)
    parent = uuid4()
    source = make_attachment(db_session, owner, parent, name="contract.pdf", body=b"PDF")

    result = _convert(store)

    assert result.status == PageStatus.COMPLETED
    (version,) = _versions(db_session)
    assert (version.original_record_id, version.original_parent_id, version.original_owner_id) == (
        source.id,
        parent,
        owner.id,
    )
    assert version.owner_id == owner.id
    assert version.owner_id != admin.id
    assert version.content == b"PDF"
    assert version.title == "contract.pdf"
    assert version.path_on_client == "contract.pdf"

    (link,) = _links(db_session)
    assert link.document_id == version.document_id
    assert link.linked_entity_id == parent
    assert link.share_type == "V"
    assert link.visibility == "AllUsers"

    assert db_session.get(LegacyAttachment, source.id) is not None
    outcome = result.outcomes[source.id]
    assert outcome.state == RecordState.RETAINED
    assert outcome.linked is True
    assert outcome.version_id == version.id
    assert outcome.document_id == version.document_id


def test_share_type_and_visibility_come_from_config(db_session, store):
    owner = make_user(db_session)
    make_attachment(db_session, owner)

    _convert(store, ConversionConfig(share_type=ShareType.INFERRED, visibility=Visibility.INTERNAL_USERS))

    (link,) = _links(db_session)
    assert (link.share_type, link.visibility) == ("I", "InternalUsers")


def test_timestamps_preserved_when_enabled(db_session, store):
    owner = make_user(db_session)
    created = datetime(2019, 5, 1, 12, 30, 0)
    make_attachment(db_session, owner, created_at=created, updated_at=created)

    _convert(store)

    (version,) = _versions(db_session)
    assert version.created_at.replace(tzinfo=None) == created
    assert version.updated_at.replace(tzinfo=None) == created


# ---------------------------------------------------------------------------
# Privacy policy
# ---------------------------------------------------------------------------

def test_private_record_is_converted_but_not_linked_by_default(db_session, store):
    owner = make_user(db_session)
    source = make_attachment(db_session, owner, is_private=True)

    result = _convert(store)

    assert len(_versions(db_session)) == 1
    assert _links(db_session) == []
    assert result.outcomes[source.id].linked is False
    assert result.outcomes[source.id].state == RecordState.RETAINED


def test_private_record_linked_when_sharing_enabled(db_session, store):
    owner = make_user(db_session)
    parent = uuid4()
    make_attachment(db_session, owner, parent, is_private=True)

    _convert(store, ConversionConfig(share_private_with_parent=True))

    (link,) = _links(db_session)
    assert link.linked_entity_id == parent


# ---------------------------------------------------------------------------
# Ownership / scope
# ---------------------------------------------------------------------------

def test_deactivated_owner_record_is_not_converted(db_session, store):
    parent = uuid4()
    active = make_user(db_session, "still-here")
    leaver = make_user(db_session, "leaver")
    kept = make_attachment(db_session, active, parent)
    make_attachment(db_session, leaver, parent)
    leaver.is_active = False
    db_session.flush()

    _convert(store)

    (version,) = _versions(db_session)
    assert version.original_record_id == kept.id


def test_inactive_owner_in_page_is_marked_ineligible(db_session, store):
    leaver = make_user(db_session, active=False)
    source = SourceRecord(
        id=uuid4(),
        kind=SourceKind.ATTACHMENT,
        parent_id=uuid4(),
        owner_id=leaver.id,
        owner_active=False,
        title="old.pdf",
        payload=b"x",
    )

    result = ConversionEngine(store).convert_attachments([source], ConversionConfig())

    assert _versions(db_session) == []
    assert result.outcomes[source.id].state == RecordState.INELIGIBLE
    assert result.outcomes[source.id].errors == []
    assert result.status == PageStatus.COMPLETED


def test_scope_restriction_leaves_other_parents_untouched(db_session, store):
    owner = make_user(db_session)
    p1, p2 = uuid4(), uuid4()
    converted_id = make_attachment(db_session, owner, p1).id
    untouched_id = make_attachment(db_session, owner, p2).id

    _convert(store, ConversionConfig(delete_upon_conversion=True), parent_ids={p1})

    (version,) = _versions(db_session)
    assert version.original_record_id == converted_id
    assert db_session.get(LegacyAttachment, converted_id) is None
    assert db_session.get(LegacyAttachment, untouched_id) is not None


# ---------------------------------------------------------------------------
# Delete on success
# ---------------------------------------------------------------------------

def test_delete_upon_conversion_removes_sources(db_session, store):
    owner = make_user(db_session)
    source_ids = [make_attachment(db_session, owner, is_private=private).id for private in (False, True)]

    result = _convert(store, ConversionConfig(delete_upon_conversion=True))

    for source_id in source_ids:
        assert db_session.get(LegacyAttachment, source_id) is None
        assert result.outcomes[source_id].state == RecordState.DELETED
        assert result.outcomes[source_id].deleted is True
    assert len(_versions(db_session)) == 2


def test_delete_failure_retains_source_and_keeps_conversion(db_session, admin):
    owner = make_user(db_session)
    blocked_id = make_attachment(db_session, owner, name="locked.pdf").id
    freed_id = make_attachment(db_session, owner, name="free.pdf").id
    rules = ValidationRules.default()
    rules.register(
        EntityType.ATTACHMENT,
        Operation.DELETE,
        lambda db, record: "record is locked" if record["id"] == blocked_id else None,
    )
    store = SqlAlchemyRecordStore(db_session, acting_user_id=admin.id, rules=rules)

    result = _convert(store, ConversionConfig(delete_upon_conversion=True))

    assert result.status == PageStatus.COMPLETED_WITH_ERRORS
    outcome = result.outcomes[blocked_id]
    assert outcome.state == RecordState.RETAINED
    assert outcome.linked is True
    assert outcome.errors == ["delete: record is locked"]
    assert db_session.get(LegacyAttachment, blocked_id) is not None
    assert db_session.get(LegacyAttachment, freed_id) is None
    assert len(_versions(db_session)) == 2
    assert len(_links(db_session)) == 2


# ---------------------------------------------------------------------------
# Weak ordering
# ---------------------------------------------------------------------------

def test_correlation_survives_reordered_requery(db_session, admin):
    store = ReversingStore(db_session, acting_user_id=admin.id)
    owners = [make_user(db_session) for _ in range(4)]
    parents = [uuid4() for _ in range(4)]
    sources = [make_attachment(db_session, o, p, name=f"f{i}") for i, (o, p) in enumerate(zip(owners, parents))]

    result = _convert(store)

    assert result.status == PageStatus.COMPLETED
    by_record = {v.original_record_id: v for v in _versions(db_session)}
    links = {link.document_id: link.linked_entity_id for link in _links(db_session)}
    for source in sources:
        version = by_record[source.id]
        assert version.owner_id == source.owner_id
        assert version.title == source.name
        assert links[version.document_id] == source.parent_id


# ---------------------------------------------------------------------------
# Partial failures
# ---------------------------------------------------------------------------

def test_rejected_create_is_excluded_from_later_steps(db_session, admin):
    owner = make_user(db_session)
    bad = make_attachment(db_session, owner, name="x" * 300)
    good_id = make_attachment(db_session, owner, name="ok.pdf").id
    store = SqlAlchemyRecordStore(db_session, acting_user_id=admin.id)

    result = _convert(store, ConversionConfig(delete_upon_conversion=True))

    assert result.status == PageStatus.COMPLETED_WITH_ERRORS
    bad_outcome = result.outcomes[bad.id]
    assert bad_outcome.state == RecordState.FAILED
    assert bad_outcome.errors == ["create: title exceeds 255 characters"]
    assert bad_outcome.version_id is None
    assert db_session.get(LegacyAttachment, bad.id) is not None

    assert result.outcomes[good_id].state == RecordState.DELETED
    (version,) = _versions(db_session)
    assert version.original_record_id == good_id
    assert len(_links(db_session)) == 1


def test_rejected_ownership_update_skips_link_and_delete(db_session, admin):
    owner = make_user(db_session)
    source = make_attachment(db_session, owner)
    page = list(select_scope(SqlAlchemyRecordStore(db_session), SourceKind.ATTACHMENT))
    # owner leaves after the page was selected
    owner.is_active = False
    db_session.flush()
    store = SqlAlchemyRecordStore(db_session, acting_user_id=admin.id)

    result = ConversionEngine(store).convert_attachments(page, ConversionConfig(delete_upon_conversion=True))

    outcome = result.outcomes[source.id]
    assert outcome.state == RecordState.FAILED
    assert outcome.errors[0].startswith("update: owner")
    assert _links(db_session) == []
    assert db_session.get(LegacyAttachment, source.id) is not None


def test_rejected_link_is_reported_and_source_not_deleted(db_session, admin):
    owner = make_user(db_session)
    source = make_attachment(db_session, owner)
    rules = ValidationRules.default()
    rules.register(EntityType.DOCUMENT_LINK, Operation.CREATE, lambda db, record: "sharing disabled")
    store = SqlAlchemyRecordStore(db_session, acting_user_id=admin.id, rules=rules)

    result = _convert(store, ConversionConfig(delete_upon_conversion=True))

    outcome = result.outcomes[source.id]
    assert outcome.state == RecordState.FAILED
    assert outcome.errors == ["link: sharing disabled"]
    assert db_session.get(LegacyAttachment, source.id) is not None


def test_short_create_response_aborts_page(db_session, admin):
    class TruncatingStore(SqlAlchemyRecordStore):
        def bulk_create(self, entity_type, records):
            return super().bulk_create(entity_type, records)[:-1]

    owner = make_user(db_session)
    make_attachment(db_session, owner)
    make_attachment(db_session, owner)
    store = TruncatingStore(db_session, acting_user_id=admin.id)

    result = _convert(store)

    assert result.status == PageStatus.FAILED
    assert "1 results for 2 records" in result.error
    assert _links(db_session) == []


def test_requery_missing_a_version_aborts_page(db_session, admin):
    class ForgetfulStore(SqlAlchemyRecordStore):
        def bulk_query_by_ids(self, entity_type, ids, fields):
            return super().bulk_query_by_ids(entity_type, ids, fields)[1:]

    owner = make_user(db_session)
    make_attachment(db_session, owner)
    make_attachment(db_session, owner)

    result = _convert(ForgetfulStore(db_session, acting_user_id=admin.id))

    assert result.status == PageStatus.FAILED
    assert "re-query returned 1 of 2" in result.error
    assert _links(db_session) == []


# ---------------------------------------------------------------------------
# Re-run dedupe
# ---------------------------------------------------------------------------

def test_rerun_duplicates_without_dedupe(db_session, store):
    owner = make_user(db_session)
    make_attachment(db_session, owner)

    _convert(store)
    _convert(store)

    assert len(_versions(db_session)) == 2


def test_rerun_skips_already_converted_with_dedupe(db_session, store):
    owner = make_user(db_session)
    source = make_attachment(db_session, owner)
    config = ConversionConfig(skip_already_converted=True)

    first = _convert(store, config)
    second = _convert(store, config)

    assert len(_versions(db_session)) == 1
    assert len(_links(db_session)) == 1
    outcome = second.outcomes[source.id]
    assert outcome.resumed is True
    assert outcome.linked is True
    assert outcome.state == RecordState.RETAINED
    assert outcome.version_id == first.outcomes[source.id].version_id
    assert second.status == PageStatus.COMPLETED


def test_retry_with_dedupe_finishes_interrupted_page(db_session, store, admin):
    class LinkOutageStore(SqlAlchemyRecordStore):
        def bulk_create(self, entity_type, records):
            if entity_type == EntityType.DOCUMENT_LINK:
                raise StoreError("bulk_create", entity_type, "connection reset")
            return super().bulk_create(entity_type, records)

    owner = make_user(db_session)
    parent = uuid4()
    source_id = make_attachment(db_session, owner, parent).id
    config = ConversionConfig(skip_already_converted=True, delete_upon_conversion=True)

    interrupted = _convert(LinkOutageStore(db_session, acting_user_id=admin.id), config)
    assert interrupted.status == PageStatus.FAILED
    assert _links(db_session) == []

    retried = _convert(store, config)

    assert retried.status == PageStatus.COMPLETED
    (version,) = _versions(db_session)
    (link,) = _links(db_session)
    assert (link.document_id, link.linked_entity_id) == (version.document_id, parent)
    assert db_session.get(LegacyAttachment, source_id) is None
    outcome = retried.outcomes[source_id]
    assert outcome.resumed is True
    assert outcome.state == RecordState.DELETED
    assert outcome.version_id == version.id


def test_failed_delete_call_retains_sources_and_completes_page(db_session, admin):
    class DeleteOutageStore(SqlAlchemyRecordStore):
        def bulk_delete(self, entity_type, ids):
            raise StoreError("bulk_delete", entity_type, "lock timeout")

    owner = make_user(db_session)
    source_id = make_attachment(db_session, owner).id
    store = DeleteOutageStore(db_session, acting_user_id=admin.id)

    summary = ConversionRunner(store).run(SourceKind.ATTACHMENT, ConversionConfig(delete_upon_conversion=True))

    (page,) = summary.pages
    assert page.status == PageStatus.COMPLETED_WITH_ERRORS
    outcome = page.outcomes[source_id]
    assert outcome.state == RecordState.RETAINED
    assert outcome.linked is True
    assert outcome.deleted is False
    assert outcome.errors == ["delete: bulk_delete on attachment failed: lock timeout"]
    assert summary.converted == 1
    assert db_session.get(LegacyAttachment, source_id) is not None
    assert len(_links(db_session)) == 1


def test_empty_page_makes_no_store_calls(db_session, store, monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("no bulk call expected")

    monkeypatch.setattr(store, "bulk_create", _boom)

    result = ConversionEngine(store).convert_attachments([], ConversionConfig())

    assert result.status == PageStatus.COMPLETED
    assert result.outcomes == {}


def test_save_result_helpers():
    entity_id = uuid4()
    assert SaveResult.ok(entity_id) == SaveResult(id=entity_id, success=True, errors=[])
    assert SaveResult.failed(None, "a", "b").errors == ["a", "b"]
