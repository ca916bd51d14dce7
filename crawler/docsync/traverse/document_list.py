"""
Merge-sort traversal engine for content changes.

The DocumentList fuses three pre-fetched change batches (added/modified
documents, deletion events, custom delete query results) into one ordered
sequence of document events, advancing one checkpoint slot per consumed
record.

Ordering:
    Records are sorted by (modify_time ascending, id ascending in database
    collation). Re-running with the same inputs always yields the same
    emission order.

Invariants:
    - Emitted events are non-decreasing in (modify_time, id)
    - Unreleased deletions are never emitted (SkippedDocumentError instead)
    - Each consumed record advances only the slot of its own stream
    - A record older than its slot's stored position is a fatal error
    - Records without a modification time are dropped with a warning
    - A delete without a version series id is a per-item failure

How to change safely:
    - The merge order is what makes checkpoints resumable; never change it
      without changing the change source queries in the same release
    - Keep emit() free of I/O so it stays testable on its own
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace

from ..checkpoint.codec import Checkpoint, CheckpointSlot, Position
from ..errors import (
    ChangeSourceContractError,
    RepositoryDocumentError,
    SkippedDocumentError,
)
from ..source.base import ChangeKind, ChangeRecord
from ..source.ids import DatabaseType, id_sort_key
from .documents import AddDocument, DeleteDocument, DocumentEvent

logger = logging.getLogger(__name__)

_SLOT_FOR_KIND = {
    ChangeKind.ADD: CheckpointSlot.ADD,
    ChangeKind.DELETION_EVENT: CheckpointSlot.DELETION_EVENT,
    ChangeKind.CUSTOM_DELETE: CheckpointSlot.CUSTOM_DELETE,
}


def slot_for(kind: ChangeKind) -> CheckpointSlot:
    """Checkpoint slot advanced by records of a stream kind."""
    return _SLOT_FOR_KIND[kind]


def compare_records(
    first: ChangeRecord,
    second: ChangeRecord,
    database_type: DatabaseType | None = None,
) -> int:
    """Compare two records by (modify_time, id).

    A comparison that cannot be evaluated ranks the records equal, so the
    sort stays total and keeps their relative order.
    """
    try:
        if first.modify_time < second.modify_time:
            return -1
        if first.modify_time > second.modify_time:
            return 1
        first_key = id_sort_key(first.id, database_type)
        second_key = id_sort_key(second.id, database_type)
        return (first_key > second_key) - (first_key < second_key)
    except TypeError as e:
        logger.warning(
            "Unable to compare time",
            extra={"first_id": first.id, "second_id": second.id, "error": str(e)},
        )
        return 0


@dataclass(frozen=True)
class Step:
    """Outcome of consuming one record.

    Attributes:
        checkpoint: Checkpoint after the record
        event: Emitted event, or None when the record was skipped
        skip_reason: Why the record was skipped
        failure: Why the record could not be turned into an event
    """

    checkpoint: Checkpoint
    event: DocumentEvent | None = None
    skip_reason: str | None = None
    failure: str | None = None


def emit(
    record: ChangeRecord,
    checkpoint: Checkpoint,
    database_type: DatabaseType | None = None,
    display_url: str | None = None,
) -> Step:
    """Consume one record against a checkpoint.

    Args:
        record: Record with a modification time
        checkpoint: Checkpoint before the record
        database_type: Collation for id comparisons
        display_url: Base URL that add events append their version series to

    Returns:
        Step with the advanced checkpoint and the event (or the skip reason
        or failure)

    Raises:
        ChangeSourceContractError: If the record is older than the stored
            position of its slot
    """
    slot = slot_for(record.kind)
    position = Position(time=record.modify_time, uuid=record.id)
    stored = checkpoint.get(slot)

    if stored is not None:
        try:
            new_key = position.sort_key(database_type)
            stored_key = stored.sort_key(database_type)
        except TypeError:
            new_key = stored_key = None
        if new_key is not None:
            try:
                regressed = new_key < stored_key
                duplicate = new_key == stored_key
            except TypeError:
                logger.warning(
                    "Unable to compare record with checkpoint",
                    extra={"record_id": record.id, "slot": slot.name, "stored": str(stored)},
                )
                regressed = duplicate = False
            if regressed:
                raise ChangeSourceContractError(
                    f"Record {record.id} at {record.modify_time} is older than "
                    f"checkpoint {stored} for {slot.name}",
                    slot=slot.name,
                    record_id=record.id,
                )
            if duplicate:
                return Step(
                    checkpoint=checkpoint,
                    skip_reason=f"Record {record.id} was already delivered",
                )

    advanced = checkpoint.with_position(slot, position)

    if record.kind.is_delete:
        if not record.is_released_version:
            if record.kind == ChangeKind.DELETION_EVENT:
                reason = f"Skip a deletion event [ID: {record.id}] of an unreleased document."
            else:
                reason = (
                    f"Skip custom deletion [ID: {record.id}] because document "
                    "is not a released version."
                )
            return Step(checkpoint=advanced, skip_reason=reason)

        if not record.version_series_id:
            logger.warning(
                "Delete record has no version series id",
                extra={"doc_id": record.id, "kind": record.kind.value},
            )
            return Step(
                checkpoint=advanced,
                failure=f"Delete record {record.id} has no version series id",
            )

        logger.debug(
            "Delete document",
            extra={"doc_id": record.id, "version_series_id": record.version_series_id},
        )
        event: DocumentEvent = DeleteDocument(
            version_series_id=record.version_series_id,
            modify_time=record.modify_time,
            source_kind=record.kind,
        )
    else:
        logger.debug("Add document", extra={"doc_id": record.id})
        series = record.version_series_id or record.id
        event = AddDocument(
            doc_id=record.id,
            version_series_id=record.version_series_id,
            modify_time=record.modify_time,
            display_url=f"{display_url}{series}" if display_url else None,
        )

    return Step(checkpoint=advanced, event=event)


class DocumentList:
    """Ordered, resumable sequence of content document events.

    Pull protocol:
        next_document() returns the next event, raises SkippedDocumentError
        for a record that is intentionally not emitted (call again), and
        returns None at end-of-sequence. checkpoint() may be called after
        any of these and reflects every record consumed so far.

    Thread safety:
        Not thread-safe. One driver pulls from one list at a time.

    Example:
        >>> docs = DocumentList(added, deletion_events, checkpoint=cp)
        >>> for event in docs:
        ...     sink.feed(event)
        ...     store.save("content", docs.checkpoint())
    """

    def __init__(
        self,
        added: Sequence[ChangeRecord],
        deletion_events: Sequence[ChangeRecord],
        custom_deletes: Sequence[ChangeRecord] | None = None,
        checkpoint: Checkpoint | None = None,
        database_type: DatabaseType | None = None,
        display_url: str | None = None,
    ) -> None:
        """Merge the three batches.

        Args:
            added: New or modified documents, sorted
            deletion_events: Deletion events, sorted
            custom_deletes: Custom delete query results, sorted; None when the
                custom delete query is not configured
            checkpoint: Checkpoint the batches were fetched with
            database_type: Collation for id comparisons
            display_url: Base display URL for add events

        Raises:
            ChangeSourceContractError: If a batch is not sorted
        """
        self.database_type = database_type
        self.display_url = display_url
        self._checkpoint = checkpoint or Checkpoint()

        logger.info("Number of new documents discovered: %d", len(added))
        logger.info(
            "Number of new documents to be removed (Documents deleted from repository): %d",
            len(deletion_events),
        )
        if custom_deletes is not None:
            logger.info(
                "Number of new documents to be removed (Documents satisfying "
                "additional delete clause): %d",
                len(custom_deletes),
            )

        merged = self._merge(added, deletion_events, custom_deletes or ())
        self._size = len(merged)
        self._records: Iterator[ChangeRecord] = iter(merged)
        self._emitted = 0
        self._skipped = 0
        self._failed = 0

        logger.debug("Total objects: %d", self._size)

    def _merge(
        self,
        added: Sequence[ChangeRecord],
        deletion_events: Sequence[ChangeRecord],
        custom_deletes: Sequence[ChangeRecord],
    ) -> list[ChangeRecord]:
        combined: list[ChangeRecord] = []
        for kind, batch in (
            (ChangeKind.ADD, added),
            (ChangeKind.DELETION_EVENT, deletion_events),
            (ChangeKind.CUSTOM_DELETE, custom_deletes),
        ):
            tagged = self._tag(kind, batch)
            self._check_batch_order(kind, tagged)
            combined.extend(tagged)

        compare = functools.partial(compare_records, database_type=self.database_type)
        return sorted(combined, key=functools.cmp_to_key(compare))

    def _tag(self, kind: ChangeKind, batch: Sequence[ChangeRecord]) -> list[ChangeRecord]:
        tagged = []
        for record in batch:
            if record.modify_time is None:
                logger.warning(
                    "Dropping record without modification time",
                    extra={"doc_id": record.id, "kind": kind.value},
                )
                continue
            tagged.append(record if record.kind == kind else replace(record, kind=kind))
        return tagged

    def _check_batch_order(self, kind: ChangeKind, batch: list[ChangeRecord]) -> None:
        for previous, current in zip(batch, batch[1:]):
            if compare_records(previous, current, self.database_type) > 0:
                raise ChangeSourceContractError(
                    f"Change source returned {kind.value} records out of order: "
                    f"{previous.id} at {previous.modify_time} before "
                    f"{current.id} at {current.modify_time}",
                    slot=slot_for(kind).name,
                    record_id=current.id,
                )

    def next_document(self) -> DocumentEvent | None:
        """Return the next event, or None at end-of-sequence.

        Raises:
            SkippedDocumentError: The record was consumed but not emitted
            RepositoryDocumentError: The record was consumed but could not be
                turned into an event
            ChangeSourceContractError: The record regresses its slot
        """
        record = next(self._records, None)
        if record is None:
            return None

        step = emit(record, self._checkpoint, self.database_type, self.display_url)
        self._checkpoint = step.checkpoint

        if step.failure is not None:
            self._failed += 1
            raise RepositoryDocumentError(step.failure, doc_id=record.id)
        if step.event is None:
            self._skipped += 1
            raise SkippedDocumentError(step.skip_reason or "Skipped", doc_id=record.id)

        self._emitted += 1
        return step.event

    def checkpoint(self) -> str:
        """Serialized checkpoint reflecting every record consumed so far."""
        state = self._checkpoint.serialize()
        logger.debug("Last checkpoint: %s", state)
        return state

    @property
    def current_checkpoint(self) -> Checkpoint:
        return self._checkpoint

    @property
    def size(self) -> int:
        """Number of records merged into the list."""
        return self._size

    @property
    def stats(self) -> dict[str, int]:
        return {
            "size": self._size,
            "emitted": self._emitted,
            "skipped": self._skipped,
            "failed": self._failed,
        }

    def __iter__(self) -> Iterator[DocumentEvent]:
        while True:
            try:
                event = self.next_document()
            except SkippedDocumentError as e:
                logger.debug(e.message)
                continue
            except RepositoryDocumentError as e:
                logger.warning(e.message, extra={"doc_id": e.doc_id})
                continue
            if event is None:
                return
            yield event


def build_document_list(
    added: Sequence[ChangeRecord],
    deletion_events: Sequence[ChangeRecord],
    custom_deletes: Sequence[ChangeRecord] | None = None,
    checkpoint: Checkpoint | None = None,
    database_type: DatabaseType | None = None,
    display_url: str | None = None,
) -> DocumentList:
    """Build a DocumentList from pre-fetched batches. See DocumentList."""
    return DocumentList(
        added,
        deletion_events,
        custom_deletes,
        checkpoint=checkpoint,
        database_type=database_type,
        display_url=display_url,
    )
