"""
Unit tests for the in-memory repository.

Tests cover:
- Change stream queries and their ordering contract
- Content fetch
- Folder tree helpers
"""

from datetime import datetime, timedelta, timezone

import pytest

from crawler.docsync.checkpoint import Position
from crawler.docsync.errors import DocumentNotFoundError, RepositoryError
from crawler.docsync.source import (
    ChangeKind,
    ChangeSource,
    FolderSource,
    InMemoryRepository,
    ObjectStore,
    create_repository,
)

T0 = datetime(2015, 4, 1, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class TestProtocols:
    """The in-memory repository plays every collaborator role."""

    def test_implements_protocols(self):
        repo = InMemoryRepository()
        assert isinstance(repo, ChangeSource)
        assert isinstance(repo, ObjectStore)
        assert isinstance(repo, FolderSource)

    def test_factory_uses_database_type(self):
        class Cfg:
            database_type = None

        assert isinstance(create_repository(Cfg()), InMemoryRepository)


class TestFetch:
    """Tests for change stream queries."""

    @pytest.fixture
    def repo(self):
        repo = InMemoryRepository()
        repo.add_document("c", at(3))
        repo.add_document("a", at(1))
        repo.add_document("b", at(2))
        return repo

    def test_adds_sorted(self, repo):
        """Records come back sorted by (time, id)."""
        records = repo.fetch(ChangeKind.ADD, None, 10)
        assert [r.id for r in records] == ["a", "b", "c"]
        assert all(r.kind == ChangeKind.ADD for r in records)

    def test_after_position_is_exclusive(self, repo):
        """Records at the position itself are not returned."""
        records = repo.fetch(ChangeKind.ADD, Position(at(2), "b"), 10)
        assert [r.id for r in records] == ["c"]

    def test_batch_hint_limits(self, repo):
        assert [r.id for r in repo.fetch(ChangeKind.ADD, None, 2)] == ["a", "b"]

    def test_fetch_calls_recorded(self, repo):
        repo.fetch(ChangeKind.ADD, None, 7)
        assert repo.fetch_calls == [(ChangeKind.ADD, None, 7)]

    def test_delete_document_records_event(self, repo):
        """Deleting a document produces a deletion event for its series."""
        repo.delete_document("a", at(4), event_id="ev1")

        events = repo.fetch(ChangeKind.DELETION_EVENT, None, 10)

        assert [(e.id, e.version_series_id) for e in events] == [("ev1", "a")]
        assert repo.document_count() == 2

    def test_delete_unknown_document(self, repo):
        with pytest.raises(DocumentNotFoundError):
            repo.delete_document("missing", at(4))

    def test_custom_deletes_need_filter(self, repo):
        """Without a filter the custom delete stream is empty."""
        assert repo.fetch(ChangeKind.CUSTOM_DELETE, None, 10) == []

    def test_custom_delete_filter(self):
        """Documents matching the filter are reported as custom deletes."""
        repo = InMemoryRepository(custom_delete_filter=lambda d: d.properties.get("expired"))
        repo.add_document("keep", at(1))
        repo.add_document("drop", at(2), properties={"expired": True})

        records = repo.fetch(ChangeKind.CUSTOM_DELETE, None, 10)

        assert [(r.id, r.kind) for r in records] == [("drop", ChangeKind.CUSTOM_DELETE)]


class TestFetchDocument:
    """Tests for content fetch."""

    def test_fetch_document(self):
        repo = InMemoryRepository()
        repo.add_document("a", at(1), version_series_id="vs", content=b"hello")

        content = repo.fetch_document("a")

        assert content.content == b"hello"
        assert content.version_series_id == "vs"

    def test_missing_document(self):
        with pytest.raises(DocumentNotFoundError):
            InMemoryRepository().fetch_document("gone")


class TestFolders:
    """Tests for folder helpers."""

    def test_find_folders_returns_roots_only(self):
        repo = InMemoryRepository()
        repo.add_folder("root", at(1))
        repo.add_folder("child", at(2), parent="root")

        assert [f.id for f in repo.find_folders(None, 10)] == ["root"]
        assert [f.id for f in repo.get_folder("root").sub_folders()] == ["child"]

    def test_duplicate_folder_rejected(self):
        repo = InMemoryRepository()
        repo.add_folder("root", at(1))
        with pytest.raises(ValueError):
            repo.add_folder("root", at(2))

    def test_unknown_parent_rejected(self):
        with pytest.raises(ValueError):
            InMemoryRepository().add_folder("child", at(1), parent="nowhere")

    def test_injected_permission_failure(self):
        repo = InMemoryRepository()
        folder = repo.add_folder("f", at(1), fail_permissions=True)
        with pytest.raises(RepositoryError):
            folder.permissions()
