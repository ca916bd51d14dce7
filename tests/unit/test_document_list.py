"""
Unit tests for the merge-sort traversal engine.

Tests cover:
- Merge ordering across add, deletion event and custom delete batches
- Per-slot checkpoint advance
- Skipping unreleased deletions
- Deletions without a version series id
- Change source contract violations
- Comparator fallback and defective records
"""

import logging
import random
from datetime import datetime, timedelta, timezone

import pytest

from crawler.docsync.checkpoint import Checkpoint, CheckpointSlot, Position
from crawler.docsync.errors import (
    ChangeSourceContractError,
    RepositoryDocumentError,
    SkippedDocumentError,
)
from crawler.docsync.source import ChangeKind, ChangeRecord, DatabaseType, id_sort_key
from crawler.docsync.traverse import (
    AddDocument,
    DeleteDocument,
    DocumentList,
    build_document_list,
    compare_records,
    emit,
)

T0 = datetime(2015, 4, 1, 17, 0, 0, 100000, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def guid(n: int) -> str:
    return "{%08X-0000-0000-0000-%012X}" % (n, n)


def add(doc_id: str, when: datetime, **kwargs) -> ChangeRecord:
    return ChangeRecord(id=doc_id, modify_time=when, kind=ChangeKind.ADD, **kwargs)


def deletion(event_id: str, when: datetime, released: bool = True, series: str = None):
    return ChangeRecord(
        id=event_id,
        modify_time=when,
        kind=ChangeKind.DELETION_EVENT,
        is_released_version=released,
        version_series_id=series or f"vs-{event_id}",
    )


def custom(doc_id: str, when: datetime, released: bool = True) -> ChangeRecord:
    return ChangeRecord(
        id=doc_id,
        modify_time=when,
        kind=ChangeKind.CUSTOM_DELETE,
        is_released_version=released,
        version_series_id=f"vs-{doc_id}",
    )


def drain(docs: DocumentList) -> list:
    """Pull every event, recording skips as None."""
    events = []
    while True:
        try:
            event = docs.next_document()
        except SkippedDocumentError:
            events.append(None)
            continue
        if event is None:
            return events
        events.append(event)


class TestMergeOrder:
    """Tests for merge ordering."""

    def test_add_delete_add_interleave(self):
        """Add(T1), Delete(T1.5), Add(T2) come out in time order."""
        a1 = add(guid(1), at(1))
        a2 = add(guid(2), at(2))
        d = deletion(guid(3), at(1.5))

        docs = build_document_list([a1, a2], [d])
        events = list(docs)

        assert [type(e) for e in events] == [AddDocument, DeleteDocument, AddDocument]
        assert events[0].doc_id == guid(1)
        assert events[1].version_series_id == f"vs-{guid(3)}"
        assert events[2].doc_id == guid(2)

    def test_checkpoint_advances_only_own_slot(self):
        """Each event moves only the slot of its stream."""
        a1 = add(guid(1), at(1))
        a2 = add(guid(2), at(2))
        d = deletion(guid(3), at(1.5))
        docs = build_document_list([a1, a2], [d])

        docs.next_document()
        cp = Checkpoint.parse(docs.checkpoint())
        assert cp.get(CheckpointSlot.ADD) == Position(at(1), guid(1))
        assert cp.get(CheckpointSlot.DELETION_EVENT) is None

        docs.next_document()
        cp = Checkpoint.parse(docs.checkpoint())
        assert cp.get(CheckpointSlot.ADD) == Position(at(1), guid(1))
        assert cp.get(CheckpointSlot.DELETION_EVENT) == Position(at(1.5), guid(3))

        docs.next_document()
        cp = Checkpoint.parse(docs.checkpoint())
        assert cp.get(CheckpointSlot.ADD) == Position(at(2), guid(2))
        assert cp.get(CheckpointSlot.DELETION_EVENT) == Position(at(1.5), guid(3))
        assert cp.get(CheckpointSlot.CUSTOM_DELETE) is None

    def test_random_batches_emit_in_order(self):
        """Any combination of sorted batches merges into sorted output."""
        rng = random.Random(20150401)
        for _ in range(25):
            adds = sorted(
                (add(guid(rng.randrange(1 << 20)), at(rng.randrange(50))) for _ in range(10)),
                key=lambda r: (r.modify_time, id_sort_key(r.id)),
            )
            dels = sorted(
                (deletion(guid(rng.randrange(1 << 20)), at(rng.randrange(50))) for _ in range(6)),
                key=lambda r: (r.modify_time, id_sort_key(r.id)),
            )
            customs = sorted(
                (custom(guid(rng.randrange(1 << 20)), at(rng.randrange(50))) for _ in range(4)),
                key=lambda r: (r.modify_time, id_sort_key(r.id)),
            )

            events = list(build_document_list(adds, dels, customs))

            times = [e.modify_time for e in events]
            assert times == sorted(times)
            assert len(events) == len(adds) + len(dels) + len(customs)

    def test_same_time_ordered_by_database_collation(self):
        """Ties on time break by id the way the database orders GUIDs."""
        first_text = "{00000000-0000-0000-0000-000000000001}"
        second_text = "{00000001-0000-0000-0000-000000000000}"

        oracle = list(
            build_document_list(
                [add(first_text, at(1)), add(second_text, at(1))],
                [],
                database_type=DatabaseType.ORACLE,
            )
        )
        assert [e.doc_id for e in oracle] == [first_text, second_text]

        mssql = list(
            build_document_list(
                [add(second_text, at(1)), add(first_text, at(1))],
                [],
                database_type=DatabaseType.MSSQL,
            )
        )
        assert [e.doc_id for e in mssql] == [second_text, first_text]

    def test_identical_inputs_give_identical_order(self):
        """Re-running with the same inputs gives the same emission order."""
        adds = [add(guid(1), at(1)), add(guid(2), at(1))]
        dels = [deletion(guid(3), at(1))]

        first = [e.to_dict() for e in build_document_list(adds, dels)]
        second = [e.to_dict() for e in build_document_list(adds, dels)]
        assert first == second

    def test_records_tagged_by_collection(self):
        """Records are treated as the kind of the batch they arrived in."""
        record = ChangeRecord(id=guid(9), modify_time=at(1), version_series_id="vs-9")

        events = list(build_document_list([], [record]))

        assert len(events) == 1
        assert isinstance(events[0], DeleteDocument)
        assert events[0].source_kind == ChangeKind.DELETION_EVENT


class TestDeletions:
    """Tests for deletion events and custom deletes."""

    def test_unreleased_deletion_is_skipped(self):
        """Unreleased deletion events raise SkippedDocumentError."""
        docs = build_document_list([], [deletion(guid(1), at(1), released=False)])

        with pytest.raises(SkippedDocumentError) as exc_info:
            docs.next_document()

        assert exc_info.value.doc_id == guid(1)
        assert docs.next_document() is None

    def test_skip_still_advances_slot(self):
        """A skipped record is consumed, so a resumed traversal passes it."""
        docs = build_document_list([], [deletion(guid(1), at(1), released=False)])

        with pytest.raises(SkippedDocumentError):
            docs.next_document()

        cp = Checkpoint.parse(docs.checkpoint())
        assert cp.get(CheckpointSlot.DELETION_EVENT) == Position(at(1), guid(1))

    def test_unreleased_deletions_never_iterated(self):
        """Iteration passes over skips silently."""
        docs = build_document_list(
            [add(guid(1), at(1))],
            [deletion(guid(2), at(2), released=False), deletion(guid(3), at(3))],
            [custom(guid(4), at(4), released=False)],
        )

        events = list(docs)

        assert [type(e) for e in events] == [AddDocument, DeleteDocument]
        assert docs.stats == {"size": 4, "emitted": 2, "skipped": 2, "failed": 0}

    def test_custom_delete_advances_custom_slot(self):
        """Released custom deletes emit DeleteDocument on their own slot."""
        docs = build_document_list([], [], [custom(guid(5), at(5))])

        event = docs.next_document()

        assert isinstance(event, DeleteDocument)
        assert event.source_kind == ChangeKind.CUSTOM_DELETE
        assert event.version_series_id == f"vs-{guid(5)}"
        cp = Checkpoint.parse(docs.checkpoint())
        assert cp.get(CheckpointSlot.CUSTOM_DELETE) == Position(at(5), guid(5))
        assert cp.get(CheckpointSlot.DELETION_EVENT) is None

    def test_none_custom_deletes_is_empty_stream(self):
        """custom_deletes=None behaves as an empty batch."""
        docs = build_document_list([add(guid(1), at(1))], [], None)
        assert len(list(docs)) == 1


class TestDeletionWithoutSeries:
    """Tests for delete records that name no version series."""

    @staticmethod
    def orphan(event_id: str, when: datetime) -> ChangeRecord:
        return ChangeRecord(id=event_id, modify_time=when, kind=ChangeKind.DELETION_EVENT)

    def test_emit_reports_failure(self, caplog):
        """The event id is never used in place of the version series id."""
        with caplog.at_level(logging.WARNING):
            step = emit(self.orphan(guid(1), at(1)), Checkpoint())

        assert step.event is None
        assert guid(1) in step.failure
        assert step.checkpoint.get(CheckpointSlot.DELETION_EVENT) == Position(at(1), guid(1))
        assert "no version series id" in caplog.text

    def test_next_document_raises_per_item_failure(self):
        """The record is consumed and reported, then traversal continues."""
        docs = build_document_list([], [self.orphan(guid(1), at(1)), deletion(guid(2), at(2))])

        with pytest.raises(RepositoryDocumentError) as exc_info:
            docs.next_document()

        assert not isinstance(exc_info.value, SkippedDocumentError)
        assert exc_info.value.doc_id == guid(1)
        cp = Checkpoint.parse(docs.checkpoint())
        assert cp.get(CheckpointSlot.DELETION_EVENT) == Position(at(1), guid(1))
        assert docs.next_document().version_series_id == f"vs-{guid(2)}"
        assert docs.stats["failed"] == 1

    def test_iteration_passes_over_failure(self):
        docs = build_document_list([add(guid(1), at(1))], [self.orphan(guid(2), at(2))])

        assert [type(e) for e in docs] == [AddDocument]


class TestCheckpointHandling:
    """Tests for resuming against stored positions."""

    def test_empty_batches_end_immediately(self):
        """Zero records: end-of-sequence and unchanged checkpoint."""
        cp = Checkpoint().with_position(CheckpointSlot.ADD, Position(at(1), guid(1)))
        docs = build_document_list([], [], [], checkpoint=cp)

        assert docs.next_document() is None
        assert docs.checkpoint() == cp.serialize()

    def test_untouched_slots_carry_forward(self):
        """Slots not touched by the traversal keep their prior values."""
        cp = Checkpoint().with_position(CheckpointSlot.FOLDER, Position(at(0), "folder"))
        docs = build_document_list([add(guid(1), at(1))], [], checkpoint=cp)

        list(docs)

        result = Checkpoint.parse(docs.checkpoint())
        assert result.get(CheckpointSlot.FOLDER) == Position(at(0), "folder")
        assert result.get(CheckpointSlot.ADD) == Position(at(1), guid(1))

    def test_record_equal_to_checkpoint_is_skipped(self):
        """A record at the stored position was already delivered."""
        cp = Checkpoint().with_position(CheckpointSlot.ADD, Position(at(1), guid(1)))
        docs = build_document_list([add(guid(1), at(1)), add(guid(2), at(2))], [], checkpoint=cp)

        with pytest.raises(SkippedDocumentError):
            docs.next_document()
        assert docs.next_document().doc_id == guid(2)

    def test_record_older_than_checkpoint_is_fatal(self):
        """A record before the stored position breaks the source contract."""
        cp = Checkpoint().with_position(CheckpointSlot.ADD, Position(at(5), guid(1)))
        docs = build_document_list([add(guid(2), at(1))], [], checkpoint=cp)

        with pytest.raises(ChangeSourceContractError) as exc_info:
            docs.next_document()

        assert exc_info.value.slot == "ADD"
        assert exc_info.value.record_id == guid(2)

    def test_unsorted_batch_is_fatal(self):
        """A batch that is not sorted by (time, id) is rejected up front."""
        with pytest.raises(ChangeSourceContractError) as exc_info:
            build_document_list([add(guid(1), at(2)), add(guid(2), at(1))], [])

        assert exc_info.value.record_id == guid(2)

    def test_extra_fields_survive_traversal(self):
        """Unknown persisted fields are written back unchanged."""
        state = (
            '{"connectorVersion":"2.8",'
            '"lastModified":"2015-04-01T10:00:00.100-0700","uuid":"x"}'
        )
        docs = build_document_list([add(guid(1), at(3600))], [], checkpoint=Checkpoint.parse(state))

        list(docs)

        assert '"connectorVersion":"2.8"' in docs.checkpoint()


class TestDefectiveRecords:
    """Tests for records that cannot be ordered normally."""

    def test_missing_time_is_dropped(self, caplog):
        """Records without modify_time are excluded with a warning."""
        broken = ChangeRecord(id=guid(1), modify_time=None)

        with caplog.at_level(logging.WARNING):
            docs = build_document_list([broken, add(guid(2), at(1))], [])

        assert docs.size == 1
        assert [e.doc_id for e in docs] == [guid(2)]
        assert "without modification time" in caplog.text

    def test_incomparable_times_rank_equal(self, caplog):
        """Naive vs aware timestamps compare equal with a warning."""
        naive = add(guid(1), datetime(2015, 4, 1, 10, 0, 0))
        aware = add(guid(2), at(1))

        with caplog.at_level(logging.WARNING):
            assert compare_records(naive, aware) == 0

        assert "Unable to compare time" in caplog.text

    def test_compare_orders_by_time_then_id(self):
        """compare_records is a three-way comparison."""
        assert compare_records(add(guid(1), at(1)), add(guid(1), at(2))) == -1
        assert compare_records(add(guid(1), at(2)), add(guid(1), at(1))) == 1
        assert compare_records(add(guid(1), at(1)), add(guid(2), at(1))) == -1
        assert compare_records(add(guid(1), at(1)), add(guid(1), at(1))) == 0


class TestEmit:
    """Tests for the per-record step function."""

    def test_emit_does_not_modify_input_checkpoint(self):
        """emit() returns a new checkpoint and leaves the input alone."""
        cp = Checkpoint()

        step = emit(add(guid(1), at(1)), cp)

        assert cp.is_empty
        assert step.checkpoint.get(CheckpointSlot.ADD) == Position(at(1), guid(1))
        assert isinstance(step.event, AddDocument)

    def test_emit_skip_carries_reason(self):
        """Skipped records return no event and a reason."""
        step = emit(deletion(guid(1), at(1), released=False), Checkpoint())

        assert step.event is None
        assert "unreleased" in step.skip_reason

    def test_display_url_gets_version_series(self):
        """Add events link to the display URL plus version series id."""
        record = add(guid(1), at(1), version_series_id="{VS}")

        step = emit(record, Checkpoint(), display_url="http://host/getContent?vsId=")

        assert step.event.display_url == "http://host/getContent?vsId={VS}"
        assert step.event.index_id == "{VS}"

    def test_no_display_url_when_not_configured(self):
        """Without a display URL, add events carry none."""
        step = emit(add(guid(1), at(1)), Checkpoint())
        assert step.event.display_url is None
