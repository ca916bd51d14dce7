"""
Base protocol for document sinks.

A sink receives document events in traversal order and delivers them to
the search index (directly, or through a durable log).

Invariants:
    - feed() returns only after the event is durably accepted
    - Events for the same index id are delivered in feed order
    - Sink failures raise SinkError and are not retried by the sink

How to change safely:
    - Protocol changes require updating all implementations
    - The runner persists the checkpoint after feed() returns; never
      acknowledge an event before it is accepted
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..errors import SinkError
from ..source.base import DocumentContent
from ..traverse.documents import DocumentEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class DocumentSink(Protocol):
    """Destination for document events.

    Example:
        >>> sink = create_document_sink(config)
        >>> await sink.connect()
        >>> await sink.feed(event, content)
        >>> await sink.close()
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open connections.

        Raises:
            SinkError: If the destination is unreachable
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Flush pending deliveries and close connections."""
        ...

    @abstractmethod
    async def feed(self, event: DocumentEvent, content: DocumentContent | None = None) -> None:
        """Deliver one event.

        Args:
            event: Event to deliver
            content: Fetched content for add events, None otherwise

        Raises:
            SinkError: If delivery fails
        """
        ...


@dataclass
class FedDocument:
    """An event captured by the in-memory sink."""

    event: DocumentEvent
    content: DocumentContent | None = None


class InMemoryDocumentSink:
    """In-memory sink for tests and local development.

    Attributes:
        fed: Everything delivered, in order
        fail_on: Index ids whose delivery raises SinkError (testing)
    """

    def __init__(self) -> None:
        self.fed: list[FedDocument] = []
        self.fail_on: set[str] = set()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def feed(self, event: DocumentEvent, content: DocumentContent | None = None) -> None:
        if not self._connected:
            raise SinkError("Sink is not connected", doc_id=event.index_id)
        if event.index_id in self.fail_on:
            raise SinkError(f"Injected failure for {event.index_id}", doc_id=event.index_id)
        self.fed.append(FedDocument(event=event, content=content))
        logger.debug(
            "Document fed",
            extra={"index_id": event.index_id, "action": event.action.value},
        )

    # Testing helpers

    @property
    def events(self) -> list[DocumentEvent]:
        return [f.event for f in self.fed]

    def index_ids(self) -> list[str]:
        return [f.event.index_id for f in self.fed]

    def clear(self) -> None:
        self.fed.clear()
