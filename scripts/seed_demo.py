#!/usr/bin/env python3
"""Seed demo data: users, legacy attachments and legacy notes under a few parents.

One user is deactivated so its records show up as excluded from the scope.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

import sys
from uuid import uuid4

from sqlalchemy.orm import Session

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from docmigrate.db.base import Base
from docmigrate.db.repositories import LegacyAttachmentRepository, LegacyNoteRepository, UserRepository
from docmigrate.db.session import get_engine, get_session_factory


def seed(session: Session) -> None:
    """Insert demo users and legacy records across three parent records."""
    users = UserRepository(session)
    attachments = LegacyAttachmentRepository(session)
    notes = LegacyNoteRepository(session)

    alice = users.create(username="alice")
    bob = users.create(username="bob")
    carol = users.create(username="carol")
    users.deactivate(carol)

    parents = [uuid4() for _ in range(3)]

    demo_attachments = [
        # (parent index, owner, name, body, is_private)
        (0, alice, "contract.pdf", b"%PDF-1.4 demo contract", False),
        (0, bob, "pricing.xlsx", b"PK demo spreadsheet", True),
        (1, alice, "site-photo.jpg", b"\xff\xd8\xff demo photo", False),
        (2, carol, "old-invoice.pdf", b"%PDF-1.4 demo invoice", False),
    ]
    for parent_index, owner, name, body, is_private in demo_attachments:
        attachments.create(
            parent_id=parents[parent_index],
            owner_id=owner.id,
            name=name,
            body=body,
            is_private=is_private,
        )

    demo_notes = [
        (0, alice, "Kick-off call", "Agreed on scope.\nNext review in two weeks.", False),
        (1, bob, "Access codes", "Gate code <ask facilities> & badge #12", True),
        (2, carol, "Legacy note", "Written by a deactivated user.", False),
    ]
    for parent_index, owner, title, body, is_private in demo_notes:
        notes.create(
            parent_id=parents[parent_index],
            owner_id=owner.id,
            title=title,
            body=body,
            is_private=is_private,
        )

    session.commit()
    print(
        f"Seeded 3 users (1 inactive), {len(demo_attachments)} attachments and "
        f"{len(demo_notes)} notes under {len(parents)} parents."
    )


def main() -> None:
    Base.metadata.create_all(get_engine())

    with get_session_factory()() as session:
        seed(session)


if __name__ == "__main__":
    main()
