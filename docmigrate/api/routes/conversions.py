"""Conversion routes.

GET  /conversions/{kind}/scope  counts the records a run would pick up.
POST /conversions/{kind}        runs a conversion over the whole scope,
                                page by page, and returns the run summary.

``kind`` is ``attachments`` or ``notes``.  Request fields left out fall back
to the service settings.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from docmigrate.api.deps import get_record_store
from docmigrate.conversion.models import ConversionConfig, PageResult, RecordState, RunSummary, SourceKind
from docmigrate.conversion.runner import ConversionRunner
from docmigrate.conversion.scope import count_scope, normalize_parent_ids
from docmigrate.core.errors import ScopeError
from docmigrate.core.settings import get_settings
from docmigrate.store.base import ShareType, Visibility
from docmigrate.store.sqlalchemy_store import SqlAlchemyRecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversions", tags=["conversions"])

_KINDS: dict[str, SourceKind] = {
    "attachments": SourceKind.ATTACHMENT,
    "notes": SourceKind.NOTE,
}


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ConversionRequest(BaseModel):
    parent_ids: list[str] | None = None
    delete_upon_conversion: bool | None = None
    share_private_with_parent: bool | None = None
    share_type: ShareType | None = None
    visibility: Visibility | None = None
    skip_already_converted: bool | None = None
    preserve_timestamps: bool | None = None
    page_size: int | None = Field(default=None, ge=1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _resolve_kind(kind: str) -> SourceKind:
    try:
        return _KINDS[kind]
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown conversion kind: {kind}") from None


def _page_payload(page: PageResult) -> dict:
    return {
        "page_number": page.page_number,
        "status": page.status.value,
        "error": page.error,
        "records": len(page.outcomes),
    }


def _summary_payload(summary: RunSummary) -> dict:
    by_state = {state.value: summary.count(state) for state in RecordState if summary.count(state)}
    problems = [
        {
            "page_number": page.page_number,
            "source_id": str(outcome.source_id),
            "state": outcome.state.value,
            "errors": outcome.errors,
        }
        for page in summary.pages
        for outcome in page.outcomes.values()
        if outcome.errors
    ]
    return {
        "kind": summary.kind.value,
        "records_seen": summary.records_seen,
        "converted": summary.converted,
        "resumed": summary.resumed,
        "by_state": by_state,
        "pages": [_page_payload(page) for page in summary.pages],
        "failed_pages": [page.page_number for page in summary.failed_pages],
        "record_errors": problems,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/{kind}/scope", summary="Count records eligible for conversion")
def get_scope(
    kind: str,
    parent_id: list[str] | None = Query(default=None),
    store: SqlAlchemyRecordStore = Depends(get_record_store),
) -> dict:
    source_kind = _resolve_kind(kind)
    try:
        total = count_scope(store, source_kind, parent_id)
    except ScopeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"kind": source_kind.value, "eligible": total}


@router.post("/{kind}", summary="Convert legacy records into documents")
def run_conversion(
    kind: str,
    body: ConversionRequest | None = None,
    store: SqlAlchemyRecordStore = Depends(get_record_store),
) -> dict:
    source_kind = _resolve_kind(kind)
    body = body or ConversionRequest()
    settings = get_settings()

    try:
        parent_ids = normalize_parent_ids(body.parent_ids)
    except ScopeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    config = ConversionConfig.from_settings(
        settings,
        delete_upon_conversion=body.delete_upon_conversion,
        share_private_with_parent=body.share_private_with_parent,
        share_type=body.share_type,
        visibility=body.visibility,
        skip_already_converted=body.skip_already_converted,
        preserve_timestamps=body.preserve_timestamps,
        scope_parent_ids=parent_ids,
    )
    runner = ConversionRunner(store, page_size=body.page_size or settings.page_size)
    summary = runner.run(source_kind, config)
    return _summary_payload(summary)
