"""
Traversal runner: the pull/persist/feed driver loop.

The runner drives one traversal (content or security) against one sink
and one checkpoint name:

    1. Load the persisted checkpoint
    2. Build a document list from it
    3. Pull events until end-of-sequence, feeding each to the sink
    4. Persist the checkpoint after every event, skip or per-item failure

Invariants:
    - The checkpoint is persisted only after the sink accepted the event,
      so a crash redelivers at most the in-flight event
    - Skips and per-item failures advance the checkpoint, they are not retried
    - CheckpointFormatError and ChangeSourceContractError stop the runner
    - Collaborator calls run in the default executor, one at a time

How to change safely:
    - Never persist the checkpoint before feed() returns
    - Transient failures restart from the last persisted checkpoint; keep
      them idempotent
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .checkpoint.store import CheckpointStore
from .errors import (
    CheckpointStoreError,
    RepositoryDocumentError,
    RepositoryError,
    SinkError,
    SkippedDocumentError,
)
from .sink.base import DocumentSink
from .source.base import DocumentContent, ObjectStore
from .traverse.documents import AddDocument, DocumentEvent

logger = logging.getLogger(__name__)

# Failures that end the current batch; the next batch resumes from the
# last persisted checkpoint.
TRANSIENT_ERRORS = (RepositoryError, SinkError, CheckpointStoreError)


class PullDocumentList(Protocol):
    def next_document(self) -> DocumentEvent | None: ...

    def checkpoint(self) -> str: ...


class Traverser(Protocol):
    def get_document_list(self, state: str | None) -> PullDocumentList: ...


@dataclass
class BatchResult:
    """Counters for one run_batch() call."""

    emitted: int = 0
    skipped: int = 0
    failed: int = 0
    checkpoint: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.emitted == 0 and self.skipped == 0 and self.failed == 0


class TraversalRunner:
    """Drives one traversal into a sink.

    Example:
        >>> runner = TraversalRunner("content", manager, sink, store, object_store=repo)
        >>> result = await runner.run_batch()
        >>> result.emitted
        3
    """

    def __init__(
        self,
        name: str,
        traverser: Traverser,
        sink: DocumentSink,
        checkpoint_store: CheckpointStore,
        object_store: ObjectStore | None = None,
        poll_interval_seconds: float = 30.0,
    ) -> None:
        """Initialize the runner.

        Args:
            name: Checkpoint name owned by this runner
            traverser: TraversalManager or SecurityFolderTraverser
            sink: Destination for events
            checkpoint_store: Where checkpoints are persisted
            object_store: Content source for add events; None sends add
                events without content
            poll_interval_seconds: Sleep between empty batches
        """
        self.name = name
        self.traverser = traverser
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self.object_store = object_store
        self.poll_interval_seconds = poll_interval_seconds

        self._running = False
        self._stop_event = asyncio.Event()
        self._batches = 0
        self._emitted_count = 0
        self._skipped_count = 0
        self._failed_count = 0
        self._error_count = 0
        self._last_checkpoint: str | None = None

    async def run_batch(self) -> BatchResult:
        """Run one document list to end-of-sequence.

        Returns:
            BatchResult with counters and the last persisted checkpoint

        Raises:
            CheckpointFormatError: If the persisted checkpoint is malformed
            ChangeSourceContractError: If a change source broke ordering
            RepositoryError: If building the list fails
            SinkError: If the sink rejects an event
            CheckpointStoreError: If the checkpoint cannot be loaded or saved
        """
        loop = asyncio.get_running_loop()
        state = await self.checkpoint_store.load(self.name)
        document_list = await loop.run_in_executor(
            None, self.traverser.get_document_list, state
        )

        result = BatchResult(checkpoint=state)
        while True:
            try:
                event = await loop.run_in_executor(None, document_list.next_document)
            except SkippedDocumentError as e:
                result.skipped += 1
                logger.debug(e.message, extra={"runner": self.name, "doc_id": e.doc_id})
                result.checkpoint = await self._save(document_list)
                continue
            except RepositoryDocumentError as e:
                result.failed += 1
                logger.error(
                    "Failed to traverse document",
                    extra={"runner": self.name, "doc_id": e.doc_id, "error": e.message},
                )
                result.checkpoint = await self._save(document_list)
                continue

            if event is None:
                break

            try:
                content = await self._fetch_content(event)
            except RepositoryDocumentError as e:
                result.failed += 1
                logger.error(
                    "Failed to fetch document content",
                    extra={"runner": self.name, "doc_id": e.doc_id, "error": e.message},
                )
                result.checkpoint = await self._save(document_list)
                continue

            await self.sink.feed(event, content)
            result.emitted += 1
            result.checkpoint = await self._save(document_list)

        self._batches += 1
        self._emitted_count += result.emitted
        self._skipped_count += result.skipped
        self._failed_count += result.failed

        if not result.is_empty:
            logger.info(
                "Traversal batch complete",
                extra={
                    "runner": self.name,
                    "emitted": result.emitted,
                    "skipped": result.skipped,
                    "failed": result.failed,
                },
            )
        return result

    async def _fetch_content(self, event: DocumentEvent) -> DocumentContent | None:
        if not isinstance(event, AddDocument) or self.object_store is None:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, event.fetch, self.object_store)

    async def _save(self, document_list: PullDocumentList) -> str:
        state = document_list.checkpoint()
        await self.checkpoint_store.save(self.name, state)
        self._last_checkpoint = state
        return state

    async def start(self) -> None:
        """Run batches until stop() is called.

        Empty batches are followed by a poll interval. Transient failures
        are logged and retried after the poll interval; fatal errors stop
        the loop and propagate.
        """
        if self._running:
            logger.warning("Runner already running", extra={"runner": self.name})
            return

        self._running = True
        self._stop_event.clear()
        logger.info("Starting traversal runner", extra={"runner": self.name})

        try:
            while self._running:
                try:
                    result = await self.run_batch()
                except TRANSIENT_ERRORS as e:
                    self._error_count += 1
                    logger.error(
                        f"Traversal batch failed: {e}",
                        extra={"runner": self.name, "error_code": e.code},
                    )
                    result = BatchResult()

                if result.is_empty and self._running:
                    await self._wait(self.poll_interval_seconds)

        except asyncio.CancelledError:
            logger.info("Runner cancelled", extra={"runner": self.name})
        except Exception as e:
            logger.error(f"Runner error: {e}", exc_info=True, extra={"runner": self.name})
            raise

        finally:
            self._running = False

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def stop(self) -> None:
        """Stop the runner loop after the current batch."""
        self._running = False
        self._stop_event.set()
        logger.info("Stopping traversal runner", extra={"runner": self.name})

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        """Get runner statistics."""
        return {
            "name": self.name,
            "running": self._running,
            "batches": self._batches,
            "emitted_count": self._emitted_count,
            "skipped_count": self._skipped_count,
            "failed_count": self._failed_count,
            "error_count": self._error_count,
            "last_checkpoint": self._last_checkpoint,
        }
