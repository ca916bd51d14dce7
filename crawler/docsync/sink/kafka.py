"""
Kafka/Redpanda document sink.

Publishes each document event as a JSON message keyed by its index id, so
all events for one document land on one partition in traversal order.

Message value:
    {"event": <event.to_dict()>, "content": {...} | null}

Invariants:
    - A checkpoint is saved only after every in-sync replica has the event
    - Producer retries never publish an event twice (idempotent producer)
    - feed() waits for the broker acknowledgment

How to change safely:
    - Consumers parse the message value; only add fields
    - Keep the key as the index id, partitioning depends on it
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError, KafkaError, KafkaTimeoutError

from ..errors import SinkError
from ..source.base import DocumentContent
from ..traverse.documents import DocumentEvent

logger = logging.getLogger(__name__)


def encode_message(event: DocumentEvent, content: DocumentContent | None = None) -> bytes:
    """Encode an event and its content as the published message value."""
    payload: dict[str, Any] = {"event": event.to_dict(), "content": None}
    if content is not None:
        payload["content"] = {
            "doc_id": content.doc_id,
            "version_series_id": content.version_series_id,
            "mime_type": content.mime_type,
            "properties": content.properties,
            "body": base64.b64encode(content.content).decode("ascii")
            if content.content is not None
            else None,
        }
    return json.dumps(payload, sort_keys=True, default=str).encode("utf-8")


class KafkaDocumentSink:
    """Kafka implementation of the DocumentSink protocol.

    Durability configuration:
        - acks from KafkaConfig, "all" by default
        - enable_idempotence from KafkaConfig, on by default

    Example:
        >>> sink = KafkaDocumentSink(KafkaConfig(brokers="localhost:9092"))
        >>> await sink.connect()
        >>> await sink.feed(event)
    """

    def __init__(self, config: Any) -> None:
        """Initialize the sink.

        Args:
            config: KafkaConfig instance with connection settings
        """
        self.config = config
        self._producer: AIOKafkaProducer | None = None

    @property
    def is_connected(self) -> bool:
        return self._producer is not None

    async def connect(self) -> None:
        """Start the producer.

        Raises:
            SinkError: If connection fails
        """
        if self._producer is not None:
            return

        producer_config: dict[str, Any] = {
            "bootstrap_servers": self.config.brokers,
            "acks": self.config.acks,
            "enable_idempotence": self.config.enable_idempotence,
            "request_timeout_ms": 30000,
            "retry_backoff_ms": 100,
        }
        if self.config.security_protocol != "PLAINTEXT":
            producer_config["security_protocol"] = self.config.security_protocol
        if self.config.sasl_mechanism:
            producer_config["sasl_mechanism"] = self.config.sasl_mechanism
            producer_config["sasl_plain_username"] = self.config.sasl_username
            producer_config["sasl_plain_password"] = self.config.sasl_password
        if self.config.ssl_cafile:
            producer_config["ssl_cafile"] = self.config.ssl_cafile

        producer = AIOKafkaProducer(**producer_config)
        try:
            await producer.start()
        except KafkaError as e:
            raise SinkError(f"Failed to connect to Kafka: {e}") from e
        self._producer = producer

        logger.info(
            "Connected to Kafka",
            extra={
                "brokers": self.config.brokers,
                "topic": self.config.topic,
                "acks": self.config.acks,
                "idempotent": self.config.enable_idempotence,
            },
        )

    async def close(self) -> None:
        """Flush pending writes and stop the producer."""
        if self._producer is None:
            return
        try:
            await self._producer.stop()
        except KafkaError as e:
            logger.warning(f"Error closing producer: {e}")
        self._producer = None
        logger.info("Kafka sink closed")

    async def feed(self, event: DocumentEvent, content: DocumentContent | None = None) -> None:
        """Publish one event and wait for the acknowledgment.

        Raises:
            SinkError: If not connected or the send fails
        """
        if self._producer is None:
            raise SinkError("Not connected to Kafka", doc_id=event.index_id)

        try:
            metadata = await self._producer.send_and_wait(
                self.config.topic,
                value=encode_message(event, content),
                key=event.index_id.encode("utf-8"),
                headers=[("action", event.action.value.encode("utf-8"))],
            )
        except KafkaTimeoutError as e:
            raise SinkError(f"Kafka send timed out: {e}", doc_id=event.index_id) from e
        except KafkaConnectionError as e:
            raise SinkError(f"Kafka connection lost: {e}", doc_id=event.index_id) from e
        except KafkaError as e:
            raise SinkError(f"Kafka send failed: {e}", doc_id=event.index_id) from e

        logger.debug(
            "Document published",
            extra={
                "index_id": event.index_id,
                "partition": metadata.partition,
                "offset": metadata.offset,
            },
        )
