"""Page iterator: drive the engine over a whole scope.

Pages run one after another.  A page that fails is recorded and the run
moves on; retrying it is up to whoever started the run.  Re-running with
``skip_already_converted`` reuses versions an earlier run created and
finishes their links and deletes instead of duplicating them.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TypeVar

from docmigrate.conversion.engine import ConversionEngine
from docmigrate.conversion.models import (
    ConversionConfig,
    PageStatus,
    RecordState,
    RunSummary,
    SourceKind,
)
from docmigrate.conversion.scope import select_scope
from docmigrate.store.base import RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def iter_pages(records: Iterable[T], page_size: int) -> Iterator[list[T]]:
    """Split *records* into lists of at most *page_size* items."""
    if page_size < 1:
        raise ValueError("page_size must be a positive integer")
    iterator = iter(records)
    while True:
        page = list(islice(iterator, page_size))
        if not page:
            return
        yield page


class ConversionRunner:
    """Select the scope for a run and convert it page by page."""

    def __init__(self, store: RecordStore, page_size: int = 200) -> None:
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")
        self.store = store
        self.page_size = page_size
        self.engine = ConversionEngine(store)

    def run(self, kind: SourceKind, config: ConversionConfig) -> RunSummary:
        kind = SourceKind(kind)
        # Selection errors surface here, before any page runs
        cursor = select_scope(self.store, kind, config.scope_parent_ids)

        summary = RunSummary(kind=kind)
        logger.info(
            "Starting %s conversion: page_size=%d delete=%s share_private=%s",
            kind,
            self.page_size,
            config.delete_upon_conversion,
            config.share_private_with_parent,
        )
        for page_number, page in enumerate(iter_pages(cursor, self.page_size)):
            result = self.engine.convert_page(kind, page, config, page_number=page_number)
            summary.pages.append(result)
            if result.status == PageStatus.FAILED:
                logger.warning("Page %d failed and can be retried: %s", page_number, result.error)

        logger.info(
            "%s conversion finished: %d pages (%d failed), %d records, %d converted, %d deleted",
            kind,
            len(summary.pages),
            len(summary.failed_pages),
            summary.records_seen,
            summary.converted,
            summary.count(RecordState.DELETED),
        )
        return summary
