"""
Unit tests for the content traversal manager.

Tests cover:
- Fresh and resumed traversals
- Per-slot fetch positions
- Custom delete stream enablement
- Malformed checkpoints
- Idempotent replay
"""

from datetime import datetime, timedelta, timezone

import pytest

from crawler.docsync.checkpoint import Checkpoint, CheckpointSlot, Position
from crawler.docsync.errors import CheckpointFormatError
from crawler.docsync.source import ChangeKind, InMemoryRepository
from crawler.docsync.traverse import AddDocument, DeleteDocument, TraversalManager

T0 = datetime(2015, 4, 1, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def repo():
    repo = InMemoryRepository(custom_delete_filter=lambda d: d.properties.get("expired", False))
    repo.add_document("a", at(1))
    repo.add_document("b", at(3), properties={"expired": True})
    repo.add_deletion_event("ev1", "old-series", at(2))
    repo.add_deletion_event("ev2", "draft-series", at(4), is_released_version=False)
    return repo


class TestTraversal:
    """Tests for building document lists."""

    def test_start_traversal_merges_streams(self, repo):
        """A fresh traversal sees adds and deletion events in time order."""
        manager = TraversalManager(repo)

        events = list(manager.start_traversal())

        assert [type(e) for e in events] == [AddDocument, DeleteDocument, AddDocument]
        assert [e.index_id for e in events] == ["a", "old-series", "b"]

    def test_custom_deletes_only_when_enabled(self, repo):
        """The custom delete stream is queried only when enabled."""
        TraversalManager(repo).start_traversal()
        assert ChangeKind.CUSTOM_DELETE not in [c[0] for c in repo.fetch_calls]

        repo.fetch_calls.clear()
        events = list(TraversalManager(repo, custom_deletes_enabled=True).start_traversal())

        assert ChangeKind.CUSTOM_DELETE in [c[0] for c in repo.fetch_calls]
        custom = [
            e
            for e in events
            if isinstance(e, DeleteDocument) and e.source_kind == ChangeKind.CUSTOM_DELETE
        ]
        assert [e.version_series_id for e in custom] == ["b"]

    def test_each_stream_fetched_after_own_slot(self, repo):
        """Streams resume from their own positions."""
        cp = (
            Checkpoint()
            .with_position(CheckpointSlot.ADD, Position(at(1), "a"))
            .with_position(CheckpointSlot.DELETION_EVENT, Position(at(2), "ev1"))
        )
        manager = TraversalManager(repo, batch_hint=50)

        manager.resume_traversal(cp.serialize())

        calls = {kind: (after, hint) for kind, after, hint in repo.fetch_calls}
        assert calls[ChangeKind.ADD] == (Position(at(1), "a"), 50)
        assert calls[ChangeKind.DELETION_EVENT] == (Position(at(2), "ev1"), 50)

    def test_display_url_passed_through(self, repo):
        manager = TraversalManager(repo, display_url="http://host/getContent?vsId=")
        first = next(iter(manager.start_traversal()))
        assert first.display_url == "http://host/getContent?vsId=a"

    def test_set_batch_hint(self, repo):
        manager = TraversalManager(repo)
        manager.set_batch_hint(1)

        events = list(manager.start_traversal())

        assert [e.index_id for e in events] == ["a", "old-series"]
        with pytest.raises(ValueError):
            manager.set_batch_hint(0)


class TestCheckpoints:
    """Tests for checkpoint handling."""

    def test_malformed_checkpoint_fails_before_fetch(self, repo):
        """A malformed checkpoint aborts before any repository call."""
        with pytest.raises(CheckpointFormatError):
            TraversalManager(repo).resume_traversal("{{{ not a checkpoint")
        assert repo.fetch_calls == []

    def test_replay_from_checkpoint_is_idempotent(self, repo):
        """Resuming from a returned checkpoint emits nothing already emitted."""
        manager = TraversalManager(repo)
        first = manager.start_traversal()
        list(first)

        second = manager.resume_traversal(first.checkpoint())

        assert list(second) == []
        assert second.checkpoint() == first.checkpoint()

    def test_replay_mid_traversal(self, repo):
        """Stopping after one event and resuming yields the rest once."""
        manager = TraversalManager(repo)
        first = manager.start_traversal()
        head = first.next_document()

        rest = list(manager.resume_traversal(first.checkpoint()))

        assert [head.index_id] + [e.index_id for e in rest] == ["a", "old-series", "b"]

    def test_new_changes_picked_up(self, repo):
        """Changes after the checkpoint show up in the next traversal."""
        manager = TraversalManager(repo)
        first = manager.start_traversal()
        list(first)
        repo.add_document("c", at(10))

        events = list(manager.resume_traversal(first.checkpoint()))

        assert [e.index_id for e in events] == ["c"]
