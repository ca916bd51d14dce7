"""
Unit tests for document sinks.

Tests cover:
- In-memory sink delivery and injected failures
- Kafka message encoding
- Kafka sink producer settings and error mapping (fake producer)
"""

import base64
import json
from datetime import datetime, timezone

import pytest
from aiokafka.errors import KafkaTimeoutError

from crawler.docsync.config import ConnectorConfig, KafkaConfig, SinkBackend
from crawler.docsync.errors import SinkError
from crawler.docsync.sink import DocumentSink, InMemoryDocumentSink, create_document_sink
from crawler.docsync.sink import kafka as kafka_sink
from crawler.docsync.source import DocumentContent
from crawler.docsync.traverse import AddDocument, DeleteDocument

WHEN = datetime(2015, 4, 1, 17, 0, tzinfo=timezone.utc)


def add_event(doc_id: str = "{A}") -> AddDocument:
    return AddDocument(doc_id=doc_id, version_series_id=f"vs-{doc_id}", modify_time=WHEN)


class TestInMemoryDocumentSink:
    """Tests for InMemoryDocumentSink."""

    @pytest.mark.asyncio
    async def test_feed_records_in_order(self):
        sink = InMemoryDocumentSink()
        await sink.connect()

        await sink.feed(add_event("{A}"))
        await sink.feed(DeleteDocument(version_series_id="vs-B", modify_time=WHEN))

        assert sink.index_ids() == ["vs-{A}", "vs-B"]

    @pytest.mark.asyncio
    async def test_feed_requires_connect(self):
        with pytest.raises(SinkError):
            await InMemoryDocumentSink().feed(add_event())

    @pytest.mark.asyncio
    async def test_injected_failure(self):
        sink = InMemoryDocumentSink()
        await sink.connect()
        sink.fail_on.add("vs-{A}")

        with pytest.raises(SinkError) as exc_info:
            await sink.feed(add_event("{A}"))
        assert exc_info.value.doc_id == "vs-{A}"
        assert sink.fed == []

    def test_implements_protocol(self):
        assert isinstance(InMemoryDocumentSink(), DocumentSink)


class TestEncodeMessage:
    """Tests for the Kafka message value."""

    def test_event_without_content(self):
        payload = json.loads(kafka_sink.encode_message(add_event()))

        assert payload["content"] is None
        assert payload["event"]["action"] == "add"
        assert payload["event"]["modify_time"] == "2015-04-01T17:00:00.000+0000"

    def test_content_body_is_base64(self):
        content = DocumentContent(doc_id="{A}", content=b"\x00hello", mime_type="text/plain")

        payload = json.loads(kafka_sink.encode_message(add_event(), content))

        assert base64.b64decode(payload["content"]["body"]) == b"\x00hello"
        assert payload["content"]["mime_type"] == "text/plain"


class FakeMetadata:
    partition = 0
    offset = 42


class FakeProducer:
    """Records calls made to AIOKafkaProducer."""

    instances: list = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sent = []
        self.started = False
        self.stopped = False
        self.fail_with = None
        FakeProducer.instances.append(self)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def send_and_wait(self, topic, value=None, key=None, headers=None):
        if self.fail_with:
            raise self.fail_with
        self.sent.append((topic, key, value, headers))
        return FakeMetadata()


class TestKafkaDocumentSink:
    """Tests for KafkaDocumentSink with a fake producer."""

    @pytest.fixture(autouse=True)
    def fake_producer(self, monkeypatch):
        FakeProducer.instances = []
        monkeypatch.setattr(kafka_sink, "AIOKafkaProducer", FakeProducer)

    @pytest.mark.asyncio
    async def test_connect_uses_durable_settings(self):
        sink = kafka_sink.KafkaDocumentSink(KafkaConfig(brokers="broker:9092"))
        await sink.connect()

        producer = FakeProducer.instances[0]
        assert producer.started
        assert producer.kwargs["bootstrap_servers"] == "broker:9092"
        assert producer.kwargs["acks"] == "all"
        assert producer.kwargs["enable_idempotence"] is True
        assert "sasl_mechanism" not in producer.kwargs

    @pytest.mark.asyncio
    async def test_feed_keys_by_index_id(self):
        sink = kafka_sink.KafkaDocumentSink(KafkaConfig(topic="docs"))
        await sink.connect()

        await sink.feed(add_event("{A}"))

        topic, key, value, headers = FakeProducer.instances[0].sent[0]
        assert topic == "docs"
        assert key == b"vs-{A}"
        assert json.loads(value)["event"]["doc_id"] == "{A}"
        assert headers == [("action", b"add")]

    @pytest.mark.asyncio
    async def test_feed_before_connect(self):
        with pytest.raises(SinkError):
            await kafka_sink.KafkaDocumentSink(KafkaConfig()).feed(add_event())

    @pytest.mark.asyncio
    async def test_kafka_errors_become_sink_errors(self):
        sink = kafka_sink.KafkaDocumentSink(KafkaConfig())
        await sink.connect()
        FakeProducer.instances[0].fail_with = KafkaTimeoutError()

        with pytest.raises(SinkError) as exc_info:
            await sink.feed(add_event("{A}"))
        assert exc_info.value.doc_id == "vs-{A}"

    @pytest.mark.asyncio
    async def test_close_stops_producer(self):
        sink = kafka_sink.KafkaDocumentSink(KafkaConfig())
        await sink.connect()
        await sink.close()

        assert FakeProducer.instances[0].stopped
        assert not sink.is_connected


class TestCreateDocumentSink:
    """Tests for sink selection."""

    def test_memory(self):
        config = ConnectorConfig(sink_backend=SinkBackend.MEMORY)
        assert isinstance(create_document_sink(config), InMemoryDocumentSink)

    def test_kafka(self):
        config = ConnectorConfig(sink_backend=SinkBackend.KAFKA)
        assert isinstance(create_document_sink(config), kafka_sink.KafkaDocumentSink)
