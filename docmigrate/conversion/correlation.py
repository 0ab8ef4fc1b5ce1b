"""Identity-keyed correlation between generated entities and their sources.

The record store only promises that a bulk create answers in input order.
Everything read back afterwards comes in arbitrary order, so the positional
pairing is captured exactly once, right after the create, and every later
step looks sources up by generated id.

A map covers one hop.  The note pipeline needs two (source -> note wrapper
-> generated version); ``compose`` chains them and checks that neither hop
lost or duplicated anything.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from docmigrate.conversion.models import SourceRecord
from docmigrate.core.errors import CorrelationError
from docmigrate.store.base import SaveResult


@dataclass(frozen=True, slots=True)
class CreateFailure:
    source: SourceRecord
    errors: tuple[str, ...]


class CorrelationMap:
    """Generated entity id -> originating ``SourceRecord``."""

    def __init__(
        self,
        by_target: Mapping[UUID, SourceRecord],
        failures: Sequence[CreateFailure] = (),
    ) -> None:
        self._by_target = dict(by_target)
        self.failures: tuple[CreateFailure, ...] = tuple(failures)

    @classmethod
    def from_create_results(
        cls,
        sources: Sequence[SourceRecord],
        results: Sequence[SaveResult],
    ) -> CorrelationMap:
        """Pair ``results[i]`` with ``sources[i]``.

        Only valid on the direct response of a bulk create.  Rejected creates
        are kept in ``failures`` so they can be reported per record.
        """
        if len(results) != len(sources):
            raise CorrelationError(
                f"bulk create returned {len(results)} results for {len(sources)} records"
            )

        by_target: dict[UUID, SourceRecord] = {}
        failures: list[CreateFailure] = []
        for source, result in zip(sources, results):
            if not result.success or result.id is None:
                failures.append(CreateFailure(source, tuple(result.errors) or ("create rejected",)))
                continue
            if result.id in by_target:
                raise CorrelationError(f"bulk create returned duplicate id {result.id}")
            by_target[result.id] = source
        return cls(by_target, failures)

    # -- lookup -------------------------------------------------------------

    def source_for(self, target_id: UUID) -> SourceRecord:
        try:
            return self._by_target[target_id]
        except KeyError:
            raise CorrelationError(f"no source correlated with {target_id}") from None

    def target_ids(self) -> list[UUID]:
        return list(self._by_target)

    def sources(self) -> list[SourceRecord]:
        return list(self._by_target.values())

    def items(self) -> Iterator[tuple[UUID, SourceRecord]]:
        return iter(self._by_target.items())

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._by_target

    def __len__(self) -> int:
        return len(self._by_target)

    def __iter__(self) -> Iterator[UUID]:
        return iter(self._by_target)

    # -- composition --------------------------------------------------------

    def merged(self, other: CorrelationMap) -> CorrelationMap:
        """Union of two maps whose generated ids must not overlap."""
        overlap = self._by_target.keys() & other._by_target.keys()
        if overlap:
            raise CorrelationError(f"generated entity {min(overlap)} claimed by more than one source")
        return CorrelationMap({**self._by_target, **other._by_target}, self.failures + other.failures)

    def compose(self, hop: Mapping[UUID, UUID | None]) -> CorrelationMap:
        """Re-key this map through *hop* (current id -> next id).

        The page is unrecoverable if the hop does not cover exactly the ids
        of this map, if any entry lacks a next id, or if two entries share
        one; guessing would attach content to the wrong parent or owner.
        Creation failures carry over unchanged.
        """
        if len(hop) != len(self._by_target):
            raise CorrelationError(
                f"correlation count mismatch: {len(self._by_target)} created, {len(hop)} re-queried"
            )

        composed: dict[UUID, SourceRecord] = {}
        for current_id, source in self._by_target.items():
            if current_id not in hop:
                raise CorrelationError(f"re-query did not return {current_id}")
            next_id = hop[current_id]
            if next_id is None:
                raise CorrelationError(f"{current_id} has no generated entity")
            if next_id in composed:
                raise CorrelationError(f"generated entity {next_id} claimed by more than one source")
            composed[next_id] = source
        return CorrelationMap(composed, self.failures)
