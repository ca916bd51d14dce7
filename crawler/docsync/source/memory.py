"""
In-memory repository implementation for testing.

This module provides a simple in-memory repository that implements every
collaborator protocol (ChangeSource, ObjectStore, FolderSource) for:
- Unit tests
- Integration tests
- Local development without a repository server

Invariants:
    - All data is lost on process exit
    - fetch() honors the same ordering contract as production sources
    - Folder ids are unique across the whole tree

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the protocols in base.py
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..acl import AccessEntry
from ..errors import DocumentNotFoundError, RepositoryError
from .base import ChangeKind, ChangeRecord, DocumentContent
from .ids import DatabaseType, id_sort_key

if TYPE_CHECKING:
    from ..checkpoint.codec import Position

logger = logging.getLogger(__name__)


@dataclass
class StoredDocument:
    """A document held by the in-memory repository."""

    id: str
    modify_time: datetime
    version_series_id: str
    is_released_version: bool = True
    content: bytes | None = None
    mime_type: str | None = "text/plain"
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredDeletionEvent:
    """A recorded hard deletion."""

    id: str
    version_series_id: str
    time: datetime
    is_released_version: bool = True


class InMemoryFolder:
    """Folder in the in-memory tree.

    Attributes:
        id: Folder id
        name: Folder name
        modify_time: Last modification time
        children: Direct sub-folders in insertion order
        documents: Ids of documents filed in the folder
        fail_permissions: Raise RepositoryError from permissions() (testing)
    """

    def __init__(
        self,
        id: str,
        modify_time: datetime,
        name: str | None = None,
        permissions: Iterable[AccessEntry] = (),
        documents: Iterable[str] = (),
        fail_permissions: bool = False,
    ) -> None:
        self.id = id
        self.name = name or id
        self.modify_time = modify_time
        self.children: list[InMemoryFolder] = []
        self.documents: list[str] = list(documents)
        self.fail_permissions = fail_permissions
        self._permissions = list(permissions)
        self.permission_reads = 0

    def permissions(self) -> list[AccessEntry]:
        self.permission_reads += 1
        if self.fail_permissions:
            raise RepositoryError(f"Unable to read permissions of folder {self.id}")
        return list(self._permissions)

    def contained_documents(self) -> list[str]:
        return list(self.documents)

    def sub_folders(self) -> list[InMemoryFolder]:
        return list(self.children)

    def __repr__(self) -> str:
        return f"InMemoryFolder(id={self.id!r}, children={len(self.children)})"


class InMemoryRepository:
    """In-memory implementation of the repository collaborators.

    Example:
        >>> repo = InMemoryRepository()
        >>> repo.add_document("{A...}", when)
        >>> repo.fetch(ChangeKind.ADD, None, 100)
        [ChangeRecord(add, id={A...}, ...)]
    """

    def __init__(
        self,
        database_type: DatabaseType | None = None,
        custom_delete_filter: Callable[[StoredDocument], bool] | None = None,
    ) -> None:
        """Initialize an empty repository.

        Args:
            database_type: Collation used to order ids
            custom_delete_filter: Documents matching it are reported on the
                custom delete stream
        """
        self._database_type = database_type
        self.custom_delete_filter = custom_delete_filter
        self._documents: dict[str, StoredDocument] = {}
        self._deletion_events: list[StoredDeletionEvent] = []
        self._folders: dict[str, InMemoryFolder] = {}
        self._root_folders: list[InMemoryFolder] = []
        self.fetch_calls: list[tuple[ChangeKind, Position | None, int]] = []

    @property
    def database_type(self) -> DatabaseType | None:
        return self._database_type

    # ChangeSource

    def fetch(
        self,
        kind: ChangeKind,
        after: Position | None,
        batch_hint: int,
    ) -> list[ChangeRecord]:
        """Fetch records for one stream kind after a position."""
        self.fetch_calls.append((kind, after, batch_hint))

        if kind == ChangeKind.ADD:
            records = [self._record_for(doc, kind) for doc in self._documents.values()]
        elif kind == ChangeKind.DELETION_EVENT:
            records = [
                ChangeRecord(
                    id=event.id,
                    modify_time=event.time,
                    kind=kind,
                    is_released_version=event.is_released_version,
                    version_series_id=event.version_series_id,
                )
                for event in self._deletion_events
            ]
        elif kind == ChangeKind.CUSTOM_DELETE:
            if self.custom_delete_filter is None:
                return []
            records = [
                self._record_for(doc, kind)
                for doc in self._documents.values()
                if self.custom_delete_filter(doc)
            ]
        else:
            raise RepositoryError(f"Unknown change kind: {kind}")

        if after is not None:
            floor = after.sort_key(self._database_type)
            records = [r for r in records if self._key(r.modify_time, r.id) > floor]

        records.sort(key=lambda r: self._key(r.modify_time, r.id))
        return records[:batch_hint]

    # ObjectStore

    def fetch_document(self, doc_id: str) -> DocumentContent:
        """Fetch content for a document."""
        doc = self._documents.get(doc_id)
        if doc is None:
            raise DocumentNotFoundError(doc_id)
        return DocumentContent(
            doc_id=doc.id,
            version_series_id=doc.version_series_id,
            properties=dict(doc.properties),
            content=doc.content,
            mime_type=doc.mime_type,
        )

    # FolderSource

    def find_folders(self, after: Position | None, batch_hint: int) -> list[InMemoryFolder]:
        """Root folders modified after a position."""
        folders = list(self._root_folders)
        if after is not None:
            floor = after.sort_key(self._database_type)
            folders = [f for f in folders if self._key(f.modify_time, f.id) > floor]
        folders.sort(key=lambda f: self._key(f.modify_time, f.id))
        return folders[:batch_hint]

    # Testing helpers

    def add_document(
        self,
        doc_id: str,
        modify_time: datetime,
        version_series_id: str | None = None,
        is_released_version: bool = True,
        content: bytes | None = b"",
        properties: dict[str, Any] | None = None,
    ) -> StoredDocument:
        """Add or replace a document (testing helper)."""
        doc = StoredDocument(
            id=doc_id,
            modify_time=modify_time,
            version_series_id=version_series_id or doc_id,
            is_released_version=is_released_version,
            content=content,
            properties=properties or {},
        )
        self._documents[doc_id] = doc
        return doc

    def delete_document(
        self,
        doc_id: str,
        deleted_at: datetime,
        event_id: str | None = None,
    ) -> StoredDeletionEvent:
        """Remove a document and record a deletion event (testing helper)."""
        doc = self._documents.pop(doc_id, None)
        if doc is None:
            raise DocumentNotFoundError(doc_id)
        return self.add_deletion_event(
            event_id or doc_id,
            version_series_id=doc.version_series_id,
            time=deleted_at,
            is_released_version=doc.is_released_version,
        )

    def add_deletion_event(
        self,
        event_id: str,
        version_series_id: str,
        time: datetime,
        is_released_version: bool = True,
    ) -> StoredDeletionEvent:
        """Record a deletion event without touching documents (testing helper)."""
        event = StoredDeletionEvent(
            id=event_id,
            version_series_id=version_series_id,
            time=time,
            is_released_version=is_released_version,
        )
        self._deletion_events.append(event)
        return event

    def add_folder(
        self,
        folder_id: str,
        modify_time: datetime,
        parent: InMemoryFolder | str | None = None,
        name: str | None = None,
        permissions: Iterable[AccessEntry] = (),
        documents: Iterable[str] = (),
        fail_permissions: bool = False,
    ) -> InMemoryFolder:
        """Add a folder, under ``parent`` or at root level (testing helper)."""
        if folder_id in self._folders:
            raise ValueError(f"Folder already exists: {folder_id}")

        folder = InMemoryFolder(
            folder_id,
            modify_time,
            name=name,
            permissions=permissions,
            documents=documents,
            fail_permissions=fail_permissions,
        )

        if parent is None:
            self._root_folders.append(folder)
        else:
            parent_id = parent if isinstance(parent, str) else parent.id
            if parent_id not in self._folders:
                raise ValueError(f"Unknown parent folder: {parent_id}")
            self._folders[parent_id].children.append(folder)

        self._folders[folder_id] = folder
        return folder

    def get_folder(self, folder_id: str) -> InMemoryFolder:
        return self._folders[folder_id]

    def document_count(self) -> int:
        return len(self._documents)

    def _record_for(self, doc: StoredDocument, kind: ChangeKind) -> ChangeRecord:
        return ChangeRecord(
            id=doc.id,
            modify_time=doc.modify_time,
            kind=kind,
            is_released_version=doc.is_released_version,
            version_series_id=doc.version_series_id,
        )

    def _key(self, when: datetime, object_id: str) -> tuple[datetime, tuple[int, str]]:
        return (when, id_sort_key(object_id, self._database_type))


def create_repository(config: Any = None) -> InMemoryRepository:
    """Repository factory for local development.

    Args:
        config: RepositoryConfig (only database_type is used)
    """
    database_type = getattr(config, "database_type", None)
    logger.warning("Using in-memory repository; no documents will be discovered")
    return InMemoryRepository(database_type=database_type)
