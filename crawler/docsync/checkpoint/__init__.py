"""
Checkpoint module for the docsync connector.

This module handles resumable traversal state:
- The Checkpoint value with one resume position per change stream
- A stable JSON codec for persisted state
- Stores that persist one blob per traversal kind

Invariants:
    - Checkpoint positions never regress
    - Re-serializing an unmodified checkpoint is byte-identical
    - Malformed persisted state is fatal, never silently reset
"""

from .codec import (
    Checkpoint,
    CheckpointSlot,
    FolderWalk,
    Position,
    format_time,
    parse,
    parse_time,
    serialize,
)
from .store import (
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    S3CheckpointStore,
    create_checkpoint_store,
)

__all__ = [
    "Checkpoint",
    "CheckpointSlot",
    "FolderWalk",
    "Position",
    "format_time",
    "parse",
    "parse_time",
    "serialize",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "S3CheckpointStore",
    "create_checkpoint_store",
]
