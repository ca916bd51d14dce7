"""
Content traversal manager.

The TraversalManager turns a checkpoint into a DocumentList by asking the
change source for the next batch of each stream after that stream's own
position.

Invariants:
    - The checkpoint is parsed before any repository call
    - Each stream is queried after its own slot, never another stream's
    - The custom delete stream is only queried when enabled

How to change safely:
    - Adding a stream means adding a CheckpointSlot and a ChangeKind
    - Keep fetches sequential; sources may hold a single connection
"""

from __future__ import annotations

import logging

from ..checkpoint.codec import Checkpoint, CheckpointSlot
from ..source.base import ChangeKind, ChangeSource
from .document_list import DocumentList

logger = logging.getLogger(__name__)


class TraversalManager:
    """Builds content document lists from a change source.

    Example:
        >>> manager = TraversalManager(repository, batch_hint=500)
        >>> docs = manager.start_traversal()
        >>> for event in docs:
        ...     handle(event)
        >>> docs = manager.resume_traversal(docs.checkpoint())
    """

    def __init__(
        self,
        source: ChangeSource,
        batch_hint: int = 500,
        custom_deletes_enabled: bool = False,
        display_url: str | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            source: Change source for all three streams
            batch_hint: Maximum records fetched per stream
            custom_deletes_enabled: Query the custom delete stream
            display_url: Base display URL for add events
        """
        self.source = source
        self.batch_hint = batch_hint
        self.custom_deletes_enabled = custom_deletes_enabled
        self.display_url = display_url

    def set_batch_hint(self, batch_hint: int) -> None:
        """Set the maximum number of records fetched per stream."""
        if batch_hint < 1:
            raise ValueError(f"batch_hint must be positive, got {batch_hint}")
        self.batch_hint = batch_hint

    def start_traversal(self) -> DocumentList:
        """Start a fresh traversal from the beginning of every stream."""
        logger.info("Starting traversal of content documents")
        return self.get_document_list(None)

    def resume_traversal(self, checkpoint: str) -> DocumentList:
        """Resume after a serialized checkpoint.

        Raises:
            CheckpointFormatError: If the checkpoint is malformed
        """
        logger.info("Resuming traversal of content documents", extra={"checkpoint": checkpoint})
        return self.get_document_list(checkpoint)

    def get_document_list(self, state: str | Checkpoint | None) -> DocumentList:
        """Fetch the next batches and merge them.

        Args:
            state: Serialized checkpoint, parsed Checkpoint, or None

        Raises:
            CheckpointFormatError: If the checkpoint is malformed
            RepositoryError: If a fetch fails
        """
        checkpoint = state if isinstance(state, Checkpoint) else Checkpoint.parse(state)

        added = self.source.fetch(
            ChangeKind.ADD, checkpoint.get(CheckpointSlot.ADD), self.batch_hint
        )
        deletion_events = self.source.fetch(
            ChangeKind.DELETION_EVENT,
            checkpoint.get(CheckpointSlot.DELETION_EVENT),
            self.batch_hint,
        )
        custom_deletes = None
        if self.custom_deletes_enabled:
            custom_deletes = self.source.fetch(
                ChangeKind.CUSTOM_DELETE,
                checkpoint.get(CheckpointSlot.CUSTOM_DELETE),
                self.batch_hint,
            )

        return DocumentList(
            added,
            deletion_events,
            custom_deletes,
            checkpoint=checkpoint,
            database_type=self.source.database_type,
            display_url=self.display_url,
        )
