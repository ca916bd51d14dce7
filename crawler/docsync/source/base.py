"""
Base protocols and types for repository collaborators.

The connector core performs no repository I/O itself. It depends on three
collaborators defined here:
- ChangeSource: time-ordered batches of change records for one stream kind
- ObjectStore: full content and metadata for an add event
- FolderSource: root-level folder batches for the security traversal

Invariants:
    - ChangeSource batches are sorted by (modify_time, id) ascending
    - ChangeSource never returns a record at or before the given position
    - Collaborator failures raise RepositoryError (or a subclass)

How to change safely:
    - Protocol changes require updating InMemoryRepository and all plug-ins
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .ids import DatabaseType

if TYPE_CHECKING:
    from ..acl import AccessEntry
    from ..checkpoint.codec import Position

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Change stream a record belongs to."""

    ADD = "add"
    DELETION_EVENT = "deletion_event"
    CUSTOM_DELETE = "custom_delete"

    @property
    def is_delete(self) -> bool:
        return self is not ChangeKind.ADD


@dataclass(frozen=True)
class ChangeRecord:
    """One observed repository object.

    Attributes:
        id: Object id (document id, or deletion event id)
        modify_time: Last modification time; None marks a defective record
        kind: Stream the record was returned for
        is_released_version: Whether the object is the released version
        version_series_id: Version series the object belongs to
    """

    id: str
    modify_time: datetime | None
    kind: ChangeKind = ChangeKind.ADD
    is_released_version: bool = True
    version_series_id: str | None = None

    def __str__(self) -> str:
        return f"ChangeRecord({self.kind.value}, id={self.id}, time={self.modify_time})"


@dataclass
class DocumentContent:
    """Content and metadata fetched for an add event.

    Attributes:
        doc_id: Object id
        version_series_id: Version series id
        properties: Repository metadata, unmapped
        content: Document bytes, or None for metadata-only objects
        mime_type: Content MIME type
    """

    doc_id: str
    version_series_id: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    content: bytes | None = None
    mime_type: str | None = None


@runtime_checkable
class ChangeSource(Protocol):
    """Supplier of time-ordered change batches.

    Example:
        >>> records = source.fetch(ChangeKind.ADD, checkpoint.get(CheckpointSlot.ADD), 500)
    """

    @property
    @abstractmethod
    def database_type(self) -> DatabaseType | None:
        """Collation used to order ids with equal modification times."""
        ...

    @abstractmethod
    def fetch(
        self,
        kind: ChangeKind,
        after: Position | None,
        batch_hint: int,
    ) -> list[ChangeRecord]:
        """Fetch the next batch of records for one stream kind.

        Args:
            kind: Stream to query
            after: Position to resume after; None for the beginning
            batch_hint: Maximum number of records to return

        Returns:
            Records sorted by (modify_time, id) strictly after ``after``

        Raises:
            RepositoryError: If the query fails
        """
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Fetches content for add events."""

    @abstractmethod
    def fetch_document(self, doc_id: str) -> DocumentContent:
        """Fetch full content and metadata for an object.

        Raises:
            DocumentNotFoundError: If the object has been removed
            RepositoryError: For other failures
        """
        ...


@runtime_checkable
class Folder(Protocol):
    """A folder visited by the security traversal."""

    id: str
    name: str
    modify_time: datetime

    @abstractmethod
    def permissions(self) -> list[AccessEntry]:
        """Access entries captured for the folder.

        Raises:
            RepositoryError: If the permissions cannot be read
        """
        ...

    @abstractmethod
    def contained_documents(self) -> Iterable[str]:
        """Ids of documents filed in the folder (paged by the implementation)."""
        ...

    @abstractmethod
    def sub_folders(self) -> Iterable[Folder]:
        """Direct sub-folders (paged by the implementation)."""
        ...


@runtime_checkable
class FolderSource(Protocol):
    """Supplier of root-level folder batches."""

    @abstractmethod
    def find_folders(self, after: Position | None, batch_hint: int) -> list[Folder]:
        """Folders modified after a position, sorted by (modify_time, id).

        Raises:
            RepositoryError: If the query fails
        """
        ...
