"""Tests for docmigrate/conversion/scope.py — scope selection.

Covers:
- unrestricted, empty and restricted parent filters
- inactive owners always excluded
- ordering by parent then id, across keyset fetch boundaries
- malformed filters raise ScopeError before the store is queried
- count_scope agrees with select_scope
"""
from __future__ import annotations

from uuid import UUID, uuid4

import pytest

from docmigrate.conversion.models import SourceKind
from docmigrate.conversion.scope import count_scope, normalize_parent_ids, select_scope
from docmigrate.core.errors import ScopeError
from tests.factories import make_attachment, make_note, make_user


# ---------------------------------------------------------------------------
# normalize_parent_ids
# ---------------------------------------------------------------------------

class TestNormalizeParentIds:
    def test_none_is_unrestricted(self):
        assert normalize_parent_ids(None) is None

    def test_empty_collection_is_empty_scope(self):
        assert normalize_parent_ids([]) == frozenset()

    def test_strings_and_uuids_are_accepted(self):
        pid = uuid4()
        assert normalize_parent_ids([pid, str(pid)]) == frozenset({pid})

    def test_bare_string_rejected(self):
        with pytest.raises(ScopeError, match="not a single string"):
            normalize_parent_ids(str(uuid4()))

    def test_invalid_identifier_rejected(self):
        with pytest.raises(ScopeError, match="invalid parent id"):
            normalize_parent_ids(["not-a-uuid"])

    def test_non_iterable_rejected(self):
        with pytest.raises(ScopeError, match="must be iterable"):
            normalize_parent_ids(42)


# ---------------------------------------------------------------------------
# select_scope
# ---------------------------------------------------------------------------

def test_unrestricted_scope_excludes_inactive_owners(db_session, store):
    active = make_user(db_session, "active")
    gone = make_user(db_session, "gone", active=False)
    kept = make_attachment(db_session, active)
    make_attachment(db_session, gone)

    records = list(select_scope(store, SourceKind.ATTACHMENT))

    assert [r.id for r in records] == [kept.id]
    assert records[0].owner_active is True


def test_restricted_scope_only_returns_requested_parents(db_session, store):
    owner = make_user(db_session)
    p1, p2 = uuid4(), uuid4()
    in_scope = make_attachment(db_session, owner, p1)
    make_attachment(db_session, owner, p2)

    records = list(select_scope(store, SourceKind.ATTACHMENT, {p1}))

    assert [r.id for r in records] == [in_scope.id]


def test_empty_parent_filter_selects_nothing_without_querying(store, monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("store must not be queried")

    monkeypatch.setattr(store, "query_scope", _boom)

    assert list(select_scope(store, SourceKind.NOTE, set())) == []


def test_malformed_filter_raises_before_iteration(store):
    with pytest.raises(ScopeError):
        select_scope(store, SourceKind.ATTACHMENT, ["nope"])


def test_scope_is_ordered_by_parent_then_id_across_fetches(db_session, store):
    # store fixture fetches 3 rows per keyset query; 8 rows span 3 fetches
    owner = make_user(db_session)
    parents = [uuid4() for _ in range(3)]
    created = [make_note(db_session, owner, parents[i % 3], title=f"n{i}") for i in range(8)]

    records = list(select_scope(store, SourceKind.NOTE))

    keys = [(r.parent_id.hex, r.id.hex) for r in records]
    assert keys == sorted(keys)
    assert {r.id for r in records} == {n.id for n in created}


def test_note_records_are_mapped_from_note_columns(db_session, store):
    owner = make_user(db_session)
    note = make_note(db_session, owner, title="Call", body="Line one", is_private=True)

    (record,) = select_scope(store, SourceKind.NOTE)

    assert record.kind == SourceKind.NOTE
    assert record.title == "Call"
    assert record.payload == "Line one"
    assert record.is_private is True
    assert record.parent_id == note.parent_id
    assert record.owner_id == owner.id
    assert isinstance(record.id, UUID)


def test_attachment_records_carry_payload_and_description(db_session, store):
    owner = make_user(db_session)
    make_attachment(db_session, owner, name="a.txt", body=b"abc", description="desc", content_type="text/plain")

    (record,) = select_scope(store, SourceKind.ATTACHMENT)

    assert record.title == "a.txt"
    assert record.payload == b"abc"
    assert record.description == "desc"
    assert record.content_type == "text/plain"


def test_count_scope_matches_selection(db_session, store):
    owner = make_user(db_session)
    gone = make_user(db_session, active=False)
    p1 = uuid4()
    make_attachment(db_session, owner, p1)
    make_attachment(db_session, owner, p1)
    make_attachment(db_session, owner)
    make_attachment(db_session, gone, p1)

    assert count_scope(store, SourceKind.ATTACHMENT) == 3
    assert count_scope(store, SourceKind.ATTACHMENT, [p1]) == 2
    assert count_scope(store, SourceKind.ATTACHMENT, []) == 0
