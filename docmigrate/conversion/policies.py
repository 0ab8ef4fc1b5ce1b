"""Per-record conversion policy.

Pure functions over a ``SourceRecord`` snapshot and configuration values.
None of them touch the record store.
"""
from __future__ import annotations

from uuid import UUID

from docmigrate.conversion.models import SourceRecord


def is_eligible(record: SourceRecord) -> bool:
    """Records owned by deactivated accounts are never converted.

    The target model cannot own a version by an inactive user, so such
    records have to be reassigned upstream first.
    """
    return record.owner_active


def should_link(record: SourceRecord, share_private_with_parent: bool) -> bool:
    """Share the converted document with the source's parent record?

    Private records stay unlinked (visible to their owner only) unless
    sharing of private content was explicitly enabled.
    """
    return not (record.is_private and not share_private_with_parent)


def should_delete(record: SourceRecord, delete_upon_conversion: bool) -> bool:
    """Delete the source after a successful conversion? No per-record override."""
    return delete_upon_conversion


def target_owner(record: SourceRecord) -> UUID:
    """Owner to stamp on the target version.

    Unconditional: without it the version stays owned by whoever ran the
    conversion.
    """
    return record.owner_id


def provenance_for(record: SourceRecord) -> dict[str, UUID]:
    return {
        "original_record_id": record.id,
        "original_parent_id": record.parent_id,
        "original_owner_id": record.owner_id,
    }
