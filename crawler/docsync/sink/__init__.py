"""
Document sinks for the docsync connector.

- DocumentSink protocol
- InMemoryDocumentSink for tests and local development
- KafkaDocumentSink publishing events with aiokafka
"""

from __future__ import annotations

from typing import Any

from .base import DocumentSink, FedDocument, InMemoryDocumentSink


def create_document_sink(config: Any) -> DocumentSink:
    """Create the document sink selected by configuration.

    Args:
        config: ConnectorConfig instance

    Returns:
        DocumentSink implementation
    """
    from ..config import SinkBackend

    if config.sink_backend == SinkBackend.MEMORY:
        return InMemoryDocumentSink()
    elif config.sink_backend == SinkBackend.KAFKA:
        from .kafka import KafkaDocumentSink

        return KafkaDocumentSink(config.kafka)
    else:
        raise ValueError(f"Unknown sink backend: {config.sink_backend}")


__all__ = [
    "DocumentSink",
    "FedDocument",
    "InMemoryDocumentSink",
    "create_document_sink",
]
