"""
Repository collaborator interfaces for the docsync connector.

This module defines what the connector needs from a document repository:
- ChangeSource for add, deletion event and custom delete streams
- ObjectStore for content of add events
- FolderSource for the security folder traversal
- In-memory implementation for tests and local development

Invariants:
    - Change batches are sorted by (modify_time, id) in database collation
    - Sources never return records at or before the requested position
"""

from .base import (
    ChangeKind,
    ChangeRecord,
    ChangeSource,
    DocumentContent,
    Folder,
    FolderSource,
    ObjectStore,
)
from .ids import DatabaseType, id_sort_key, normalize_id
from .memory import InMemoryFolder, InMemoryRepository, create_repository

__all__ = [
    # Protocols and types
    "ChangeKind",
    "ChangeRecord",
    "ChangeSource",
    "DocumentContent",
    "Folder",
    "FolderSource",
    "ObjectStore",
    # Identifiers
    "DatabaseType",
    "id_sort_key",
    "normalize_id",
    # Implementations
    "InMemoryFolder",
    "InMemoryRepository",
    "create_repository",
]
