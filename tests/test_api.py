"""Tests for the FastAPI routes.

Covers:
- GET /conversions/{kind}/scope — eligible record counts, parent filter
- POST /conversions/{kind} — full run with request overrides
- unknown kind (404) and malformed parent ids (400)
"""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import func, select

from docmigrate.db.models import DocumentLink, DocumentVersion, LegacyAttachment, LegacyNote
from tests.factories import make_attachment, make_note, make_user


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


# ---------------------------------------------------------------------------
# GET /conversions/{kind}/scope
# ---------------------------------------------------------------------------


def test_scope_counts_only_active_owners(client, db_session):
    active = make_user(db_session)
    leaver = make_user(db_session, active=False)
    make_attachment(db_session, active)
    make_attachment(db_session, active)
    make_attachment(db_session, leaver)

    response = client.get("/conversions/attachments/scope")

    assert response.status_code == 200
    assert response.json() == {"kind": "attachment", "eligible": 2}


def test_scope_filtered_by_parent(client, db_session):
    owner = make_user(db_session)
    p1, p2 = uuid4(), uuid4()
    make_note(db_session, owner, p1)
    make_note(db_session, owner, p2)
    make_note(db_session, owner, p2)

    response = client.get("/conversions/notes/scope", params={"parent_id": [str(p2)]})

    assert response.status_code == 200
    assert response.json()["eligible"] == 2


def test_scope_rejects_malformed_parent_id(client):
    response = client.get("/conversions/notes/scope", params={"parent_id": ["nope"]})

    assert response.status_code == 400
    assert "invalid parent id" in response.json()["detail"]


def test_unknown_kind_returns_404(client):
    assert client.get("/conversions/emails/scope").status_code == 404
    assert client.post("/conversions/emails").status_code == 404


# ---------------------------------------------------------------------------
# POST /conversions/{kind}
# ---------------------------------------------------------------------------


def test_run_attachments_with_settings_defaults(client, db_session):
    owner = make_user(db_session)
    make_attachment(db_session, owner)
    make_attachment(db_session, owner, is_private=True)

    response = client.post("/conversions/attachments")

    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == "attachment"
    assert body["records_seen"] == 2
    assert body["converted"] == 2
    assert body["resumed"] == 0
    assert body["by_state"] == {"retained": 2}
    assert body["failed_pages"] == []
    assert body["record_errors"] == []
    assert _count(db_session, DocumentVersion) == 2
    assert _count(db_session, DocumentLink) == 1
    assert _count(db_session, LegacyAttachment) == 2


def test_run_notes_with_overrides_and_paging(client, db_session):
    owner = make_user(db_session)
    parent = uuid4()
    for index in range(3):
        make_note(db_session, owner, parent, title=f"note {index}", is_private=True)
    make_note(db_session, owner, title="elsewhere")

    response = client.post(
        "/conversions/notes",
        json={
            "parent_ids": [str(parent)],
            "delete_upon_conversion": True,
            "share_private_with_parent": True,
            "share_type": "C",
            "page_size": 2,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["records_seen"] == 3
    assert [page["records"] for page in body["pages"]] == [2, 1]
    assert body["by_state"] == {"deleted": 3}
    links = db_session.execute(select(DocumentLink)).scalars().all()
    assert {link.share_type for link in links} == {"C"}
    assert len(links) == 3
    assert _count(db_session, LegacyNote) == 1


def test_run_reports_record_errors(client, db_session):
    owner = make_user(db_session)
    bad = make_attachment(db_session, owner, name="")

    response = client.post("/conversions/attachments")

    body = response.json()
    assert body["by_state"] == {"failed": 1}
    assert body["record_errors"] == [
        {
            "page_number": 0,
            "source_id": str(bad.id),
            "state": "failed",
            "errors": ["create: title is required"],
        }
    ]
    assert body["pages"][0]["status"] == "completed_with_errors"


def test_run_rejects_malformed_parent_ids(client):
    response = client.post("/conversions/attachments", json={"parent_ids": ["not-a-uuid"]})

    assert response.status_code == 400


def test_run_rejects_non_positive_page_size(client):
    response = client.post("/conversions/attachments", json={"page_size": 0})

    assert response.status_code == 422
