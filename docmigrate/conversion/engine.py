"""Conversion engine: turn one page of legacy records into documents.

Page flow
---------
1. create      -- bulk-create target entities; correlate by position
2. re-query    -- read generated ids back (unordered); look up via the map
3. ownership   -- bulk-update every version's owner to the source's owner
4. links       -- bulk-create sharing links where policy allows
5. cleanup     -- bulk-delete sources when delete-on-success is enabled

Attachments need one create round.  Notes need two: the note wrapper is
created first and its generated version is discovered by a second read, so
the correlation is composed across both hops before step 2.

With ``skip_already_converted`` a record that already has a version skips
step 1 and re-enters at step 2, so a retried page finishes the links and
deletes an interrupted run left undone.

A record rejected by any bulk call is marked failed and left out of every
later step.  A correlation inconsistency or a failed store call aborts the
page; the failure is returned on the ``PageResult`` instead of raised.  A
failed delete call is the exception: the conversions it follows are already
committed, so the sources are retained and the page completes with errors.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from docmigrate.conversion.content import attachment_content, escape_note_content
from docmigrate.conversion.correlation import CorrelationMap
from docmigrate.conversion.models import (
    ConversionConfig,
    PageResult,
    RecordState,
    SourceKind,
    SourceRecord,
)
from docmigrate.conversion.policies import (
    is_eligible,
    provenance_for,
    should_delete,
    should_link,
    target_owner,
)
from docmigrate.core.errors import ConversionError, CorrelationError, StoreError
from docmigrate.store.base import EntityType, RecordStore, SaveResult

logger = logging.getLogger(__name__)


def _aligned(step: str, records: Sequence[Any], results: Sequence[SaveResult]) -> list[tuple[Any, SaveResult]]:
    if len(records) != len(results):
        raise CorrelationError(f"{step} returned {len(results)} results for {len(records)} records")
    return list(zip(records, results))


class ConversionEngine:
    """Convert pages of legacy records against a ``RecordStore``.

    Usage::

        engine = ConversionEngine(store)
        result = engine.convert_page(SourceKind.NOTE, page, config, page_number=3)

    The engine keeps no state between pages; everything page-specific lives
    in locals and in the returned ``PageResult``.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def convert_page(
        self,
        kind: SourceKind,
        page: Sequence[SourceRecord],
        config: ConversionConfig,
        page_number: int = 0,
    ) -> PageResult:
        if SourceKind(kind) == SourceKind.ATTACHMENT:
            return self.convert_attachments(page, config, page_number)
        return self.convert_notes(page, config, page_number)

    # -- single-round variant -----------------------------------------------

    def convert_attachments(
        self,
        page: Sequence[SourceRecord],
        config: ConversionConfig,
        page_number: int = 0,
    ) -> PageResult:
        result = PageResult.start(page_number, SourceKind.ATTACHMENT, list(page))
        try:
            pending, correlation = self._admit(page, config, result)
            if pending:
                payloads = [self._version_payload(source, config) for source in pending]
                created = self.store.bulk_create(EntityType.DOCUMENT_VERSION, payloads)
                created_map = CorrelationMap.from_create_results(pending, created)
                self._record_creates(created_map, result, holds_versions=True)
                correlation = correlation.merged(created_map)
            self._complete(correlation, config, result, stamp_provenance=False)
        except ConversionError as exc:
            return self._abort(result, exc)
        return self._finish(result)

    # -- two-round variant --------------------------------------------------

    def convert_notes(
        self,
        page: Sequence[SourceRecord],
        config: ConversionConfig,
        page_number: int = 0,
    ) -> PageResult:
        result = PageResult.start(page_number, SourceKind.NOTE, list(page))
        try:
            pending, correlation = self._admit(page, config, result)
            if pending:
                payloads = [
                    {"title": source.title, "content": escape_note_content(source.payload)}
                    for source in pending
                ]
                created = self.store.bulk_create(EntityType.NOTE_DOCUMENT, payloads)
                note_map = CorrelationMap.from_create_results(pending, created)
                self._record_creates(note_map, result, holds_versions=False)

                version_map = note_map.compose(self._generated_versions(note_map))
                for version_id, source in version_map.items():
                    result.outcomes[source.id].version_id = version_id
                correlation = correlation.merged(version_map)
            self._complete(correlation, config, result, stamp_provenance=True)
        except ConversionError as exc:
            return self._abort(result, exc)
        return self._finish(result)

    # -- steps --------------------------------------------------------------

    def _admit(
        self,
        page: Sequence[SourceRecord],
        config: ConversionConfig,
        result: PageResult,
    ) -> tuple[list[SourceRecord], CorrelationMap]:
        """Split the page into records still to create and records to resume.

        With ``skip_already_converted`` set, a record that already has a
        version carrying its provenance is not created again.  Its existing
        version is returned in the map so the remaining steps (ownership,
        link, cleanup) can finish what an earlier, interrupted run started.
        """
        pending: list[SourceRecord] = []
        for source in page:
            if is_eligible(source):
                pending.append(source)
            else:
                result.outcomes[source.id].state = RecordState.INELIGIBLE

        if not config.skip_already_converted or not pending:
            return pending, CorrelationMap({})

        rows = self.store.bulk_query_by_field(
            EntityType.DOCUMENT_VERSION,
            "original_record_id",
            [source.id for source in pending],
            ["original_record_id", "document_id"],
        )
        converted = {row["original_record_id"]: row for row in rows}
        remaining: list[SourceRecord] = []
        resumed: dict[UUID, SourceRecord] = {}
        for source in pending:
            row = converted.get(source.id)
            if row is None:
                remaining.append(source)
                continue
            outcome = result.outcomes[source.id]
            outcome.state = RecordState.ALREADY_CONVERTED
            outcome.resumed = True
            outcome.version_id = row["id"]
            outcome.document_id = row["document_id"]
            resumed[row["id"]] = source
        if resumed:
            logger.info(
                "Page %d: %d records already converted, resuming without create",
                result.page_number,
                len(resumed),
            )
        return remaining, CorrelationMap(resumed)

    def _version_payload(self, source: SourceRecord, config: ConversionConfig) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": source.title,
            "path_on_client": source.title,
            "content": attachment_content(source.payload),
            "description": source.description,
            **provenance_for(source),
        }
        payload.update(self._timestamps(source, config))
        return payload

    def _timestamps(self, source: SourceRecord, config: ConversionConfig) -> dict[str, Any]:
        if not config.preserve_timestamps:
            return {}
        return {
            name: value
            for name, value in (("created_at", source.created_at), ("updated_at", source.updated_at))
            if value is not None
        }

    def _record_creates(self, correlation: CorrelationMap, result: PageResult, *, holds_versions: bool) -> None:
        for failure in correlation.failures:
            result.outcomes[failure.source.id].fail(*(f"create: {error}" for error in failure.errors))
        for target_id, source in correlation.items():
            outcome = result.outcomes[source.id]
            outcome.state = RecordState.TARGET_CREATED
            if holds_versions:
                outcome.version_id = target_id

    def _generated_versions(self, note_map: CorrelationMap) -> dict[UUID, UUID | None]:
        """Second hop for notes: note wrapper id -> generated version id."""
        rows = self.store.bulk_query_by_ids(EntityType.NOTE_DOCUMENT, note_map.target_ids(), ["latest_version_id"])
        hop: dict[UUID, UUID | None] = {}
        for row in rows:
            if row["id"] in hop:
                raise CorrelationError(f"re-query returned note {row['id']} more than once")
            if row["id"] not in note_map:
                raise CorrelationError(f"re-query returned unrequested note {row['id']}")
            hop[row["id"]] = row["latest_version_id"]
        return hop

    def _complete(
        self,
        correlation: CorrelationMap,
        config: ConversionConfig,
        result: PageResult,
        *,
        stamp_provenance: bool,
    ) -> None:
        """Re-query, re-own, link and clean up the correlated versions."""
        if not len(correlation):
            return

        rows = self.store.bulk_query_by_ids(EntityType.DOCUMENT_VERSION, correlation.target_ids(), ["document_id"])
        seen: set[UUID] = set()
        updates: list[dict[str, Any]] = []
        for row in rows:
            version_id = row["id"]
            if version_id in seen:
                raise CorrelationError(f"re-query returned version {version_id} more than once")
            seen.add(version_id)
            source = correlation.source_for(version_id)
            outcome = result.outcomes[source.id]
            outcome.document_id = row["document_id"]
            outcome.state = RecordState.CORRELATED

            update: dict[str, Any] = {"id": version_id, "owner_id": target_owner(source)}
            if stamp_provenance:
                update.update(provenance_for(source))
            # sent again so the update does not bump updated_at
            update.update(self._timestamps(source, config))
            updates.append(update)

        if len(seen) != len(correlation):
            raise CorrelationError(
                f"re-query returned {len(seen)} of {len(correlation)} created versions"
            )

        owned: list[SourceRecord] = []
        saved_updates = self.store.bulk_update(EntityType.DOCUMENT_VERSION, updates)
        for update, saved in _aligned("ownership update", updates, saved_updates):
            source = correlation.source_for(update["id"])
            if saved.success:
                owned.append(source)
            else:
                result.outcomes[source.id].fail(*(f"update: {error}" for error in saved.errors))

        settled = self._link(owned, config, result)
        self._cleanup(settled, config, result)

    def _link(self, owned: list[SourceRecord], config: ConversionConfig, result: PageResult) -> list[SourceRecord]:
        existing = self._existing_links([source for source in owned if result.outcomes[source.id].resumed], result)
        to_link: list[SourceRecord] = []
        settled: list[SourceRecord] = []
        for source in owned:
            outcome = result.outcomes[source.id]
            if not should_link(source, config.share_private_with_parent):
                outcome.state = RecordState.SKIPPED
                settled.append(source)
            elif (outcome.document_id, source.parent_id) in existing:
                outcome.state = RecordState.LINKED
                outcome.linked = True
                settled.append(source)
            else:
                to_link.append(source)

        if not to_link:
            return settled

        links = [
            {
                "document_id": result.outcomes[source.id].document_id,
                "linked_entity_id": source.parent_id,
                "share_type": config.share_type.value,
                "visibility": config.visibility.value,
            }
            for source in to_link
        ]
        created = self.store.bulk_create(EntityType.DOCUMENT_LINK, links)
        for source, saved in _aligned("link create", to_link, created):
            outcome = result.outcomes[source.id]
            if saved.success:
                outcome.state = RecordState.LINKED
                outcome.linked = True
                settled.append(source)
            else:
                outcome.fail(*(f"link: {error}" for error in saved.errors))
        return settled

    def _existing_links(self, resumed: list[SourceRecord], result: PageResult) -> set[tuple[UUID, UUID]]:
        """(document, parent) pairs an earlier run already linked."""
        if not resumed:
            return set()
        rows = self.store.bulk_query_by_field(
            EntityType.DOCUMENT_LINK,
            "document_id",
            [result.outcomes[source.id].document_id for source in resumed],
            ["document_id", "linked_entity_id"],
        )
        return {(row["document_id"], row["linked_entity_id"]) for row in rows}

    def _cleanup(self, settled: list[SourceRecord], config: ConversionConfig, result: PageResult) -> None:
        doomed = [source for source in settled if should_delete(source, config.delete_upon_conversion)]
        doomed_ids = {source.id for source in doomed}
        for source in settled:
            if source.id not in doomed_ids:
                result.outcomes[source.id].state = RecordState.RETAINED
        if not doomed:
            return

        entity_type = result.kind.entity_type
        try:
            deleted = self.store.bulk_delete(entity_type, [source.id for source in doomed])
        except StoreError as exc:
            # Conversions are already committed; the sources stay for a later run.
            logger.warning(
                "Page %d: source delete failed, %d records retained: %s",
                result.page_number,
                len(doomed),
                exc,
            )
            for source in doomed:
                outcome = result.outcomes[source.id]
                outcome.state = RecordState.RETAINED
                outcome.errors.append(f"delete: {exc}")
            return
        for source, saved in _aligned("source delete", doomed, deleted):
            outcome = result.outcomes[source.id]
            if saved.success:
                outcome.state = RecordState.DELETED
                outcome.deleted = True
            else:
                # Conversion already committed; keeping the source is safe.
                outcome.state = RecordState.RETAINED
                outcome.errors.extend(f"delete: {error}" for error in saved.errors)

    # -- reporting ----------------------------------------------------------

    def _abort(self, result: PageResult, exc: ConversionError) -> PageResult:
        logger.error("Page %d (%s) aborted: %s", result.page_number, result.kind, exc)
        return result.abort(str(exc))

    def _finish(self, result: PageResult) -> PageResult:
        result.finish()
        counts: dict[str, int] = {}
        for outcome in result.outcomes.values():
            counts[outcome.state] = counts.get(outcome.state, 0) + 1
        logger.info(
            "Page %d (%s) %s: %d records, %s",
            result.page_number,
            result.kind,
            result.status,
            len(result.outcomes),
            ", ".join(f"{state}={count}" for state, count in sorted(counts.items())),
        )
        return result
