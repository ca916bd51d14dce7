"""
Configuration management for the docsync connector.

Every setting is read from the environment; the connector reads no config files.
Each concern (repository, traversal, checkpoint, sink, logging) has a frozen
dataclass, and ConnectorConfig validates them together.

Invariants:
    - The default repository factory is the in-memory repository
    - Production deployments MUST set explicit values for the repository factory
    - Secrets are never logged or exposed in error messages

How to change safely:
    - New settings need a default that keeps existing deployments unchanged
    - Never change a default that alters which documents are discovered
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .errors import ConnectorConfigError
from .source.ids import DatabaseType

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ConnectorConfigError(f"{name} must be an integer, got {raw!r}", setting=name)


class CheckpointBackend(Enum):
    """Supported checkpoint persistence backends."""

    MEMORY = "memory"
    FILE = "file"
    S3 = "s3"


class SinkBackend(Enum):
    """Supported document sinks."""

    MEMORY = "memory"
    KAFKA = "kafka"


@dataclass(frozen=True)
class RepositoryConfig:
    """Repository connection configuration.

    Attributes:
        factory: Repository plug-in as "module:attribute"
        object_store: Object store name within the repository
        display_url: Base URL of the repository web client
        database_type: Database behind the object store (ordering of ids)
        additional_where_clause: Extra condition appended to the add query
        delete_where_clause: Custom delete query condition; enables the
            custom delete stream when set
        validate_display_url: Check the display URL over HTTP at startup
    """

    factory: str = "crawler.docsync.source.memory:create_repository"
    object_store: str = ""
    display_url: str = ""
    database_type: DatabaseType | None = None
    additional_where_clause: str = ""
    delete_where_clause: str = ""
    validate_display_url: bool = False

    @property
    def custom_deletes_enabled(self) -> bool:
        return bool(self.delete_where_clause.strip())

    @classmethod
    def from_env(cls) -> RepositoryConfig:
        """Load configuration from environment variables."""
        db_str = os.getenv("DATABASE_TYPE", "").strip().upper()
        database_type = None
        if db_str:
            try:
                database_type = DatabaseType[db_str]
            except KeyError:
                raise ConnectorConfigError(
                    f"Invalid DATABASE_TYPE '{db_str}'. Must be one of: "
                    + ", ".join(t.name for t in DatabaseType),
                    setting="DATABASE_TYPE",
                )

        return cls(
            factory=os.getenv(
                "REPOSITORY_FACTORY", "crawler.docsync.source.memory:create_repository"
            ),
            object_store=os.getenv("OBJECT_STORE", ""),
            display_url=os.getenv("DISPLAY_URL", ""),
            database_type=database_type,
            additional_where_clause=os.getenv("ADDITIONAL_WHERE_CLAUSE", ""),
            delete_where_clause=os.getenv("DELETE_WHERE_CLAUSE", ""),
            validate_display_url=_env_bool("VALIDATE_DISPLAY_URL", "false"),
        )


@dataclass(frozen=True)
class TraversalConfig:
    """Traversal loop configuration.

    Attributes:
        batch_hint: Records fetched per content stream per batch
        security_batch_hint: Root folders fetched per security batch
        security_enabled: Whether the security folder traversal runs
        poll_interval_seconds: Sleep between batches when nothing changed
    """

    batch_hint: int = 500
    security_batch_hint: int = 100
    security_enabled: bool = True
    poll_interval_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> TraversalConfig:
        """Load configuration from environment variables."""
        raw_interval = os.getenv("POLL_INTERVAL_SECONDS", "30")
        try:
            poll_interval = float(raw_interval)
        except ValueError:
            raise ConnectorConfigError(
                f"POLL_INTERVAL_SECONDS must be a number, got {raw_interval!r}",
                setting="POLL_INTERVAL_SECONDS",
            )
        return cls(
            batch_hint=_env_int("BATCH_HINT", "500"),
            security_batch_hint=_env_int("SECURITY_BATCH_HINT", "100"),
            security_enabled=_env_bool("SECURITY_TRAVERSAL_ENABLED", "true"),
            poll_interval_seconds=poll_interval,
        )


@dataclass(frozen=True)
class CheckpointConfig:
    """Checkpoint persistence configuration.

    Attributes:
        backend: Where checkpoints are stored
        directory: Directory for the file backend
    """

    backend: CheckpointBackend = CheckpointBackend.FILE
    directory: str = "/var/lib/docsync"

    @classmethod
    def from_env(cls) -> CheckpointConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("CHECKPOINT_BACKEND", "file").lower()
        try:
            backend = CheckpointBackend(backend_str)
        except ValueError:
            raise ConnectorConfigError(
                f"Invalid CHECKPOINT_BACKEND '{backend_str}'. Must be one of: memory, file, s3",
                setting="CHECKPOINT_BACKEND",
            )
        return cls(
            backend=backend,
            directory=os.getenv("CHECKPOINT_DIR", "/var/lib/docsync"),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for checkpoint storage.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        checkpoint_prefix: Prefix for checkpoint objects
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "docsync-state"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    checkpoint_prefix: str = "checkpoints"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "docsync-state"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            checkpoint_prefix=os.getenv("S3_CHECKPOINT_PREFIX", "checkpoints"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class KafkaConfig:
    """Kafka/Redpanda sink configuration.

    Attributes:
        brokers: Comma-separated list of broker addresses
        topic: Topic document events are published to
        sasl_mechanism: SASL authentication mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username (if authentication enabled)
        sasl_password: SASL password (if authentication enabled)
        security_protocol: Security protocol (PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL)
        ssl_cafile: Path to CA certificate file
        acks: Producer acknowledgment level ('all' for strongest durability)
        enable_idempotence: Enable idempotent producer
    """

    brokers: str = "localhost:9092"
    topic: str = "docsync-documents"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"
    ssl_cafile: str | None = None
    acks: str = "all"
    enable_idempotence: bool = True

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Load configuration from environment variables."""
        return cls(
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            topic=os.getenv("KAFKA_TOPIC", "docsync-documents"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            ssl_cafile=os.getenv("KAFKA_SSL_CAFILE"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            enable_idempotence=_env_bool("KAFKA_ENABLE_IDEMPOTENCE", "true"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ConnectorConfig:
    """Complete connector configuration.

    Groups the per-concern sections and checks them against each other.

    Attributes:
        repository: Repository connection configuration
        traversal: Traversal loop configuration
        checkpoint: Checkpoint persistence configuration
        s3: S3 configuration (if checkpoint backend is S3)
        sink_backend: Which document sink to use
        kafka: Kafka configuration (if sink_backend is KAFKA)
        observability: Logging configuration
    """

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    traversal: TraversalConfig = field(default_factory=TraversalConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    s3: S3Config = field(default_factory=S3Config)
    sink_backend: SinkBackend = SinkBackend.KAFKA
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ConnectorConfig:
        """Load complete configuration from environment variables.

        Returns:
            ConnectorConfig with all sections populated from environment.

        Raises:
            ConnectorConfigError: If required configuration is missing or invalid.
        """
        sink_str = os.getenv("SINK_BACKEND", "kafka").lower()
        try:
            sink_backend = SinkBackend(sink_str)
        except ValueError:
            raise ConnectorConfigError(
                f"Invalid SINK_BACKEND '{sink_str}'. Must be one of: memory, kafka",
                setting="SINK_BACKEND",
            )

        config = cls(
            repository=RepositoryConfig.from_env(),
            traversal=TraversalConfig.from_env(),
            checkpoint=CheckpointConfig.from_env(),
            s3=S3Config.from_env(),
            sink_backend=sink_backend,
            kafka=KafkaConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConnectorConfigError: If configuration is invalid.
        """
        if ":" not in self.repository.factory:
            raise ConnectorConfigError(
                "REPOSITORY_FACTORY must be of the form 'module:attribute'",
                setting="REPOSITORY_FACTORY",
            )

        if self.traversal.batch_hint < 1:
            raise ConnectorConfigError("BATCH_HINT must be positive", setting="BATCH_HINT")
        if self.traversal.security_batch_hint < 1:
            raise ConnectorConfigError(
                "SECURITY_BATCH_HINT must be positive", setting="SECURITY_BATCH_HINT"
            )
        if self.traversal.poll_interval_seconds < 0:
            raise ConnectorConfigError(
                "POLL_INTERVAL_SECONDS must not be negative", setting="POLL_INTERVAL_SECONDS"
            )

        if self.repository.validate_display_url and not self.repository.display_url:
            raise ConnectorConfigError(
                "DISPLAY_URL is required when VALIDATE_DISPLAY_URL=true", setting="DISPLAY_URL"
            )

        if self.sink_backend == SinkBackend.KAFKA:
            if not self.kafka.brokers:
                raise ConnectorConfigError(
                    "KAFKA_BROKERS is required when SINK_BACKEND=kafka", setting="KAFKA_BROKERS"
                )
            if not self.kafka.topic:
                raise ConnectorConfigError(
                    "KAFKA_TOPIC is required when SINK_BACKEND=kafka", setting="KAFKA_TOPIC"
                )

        if self.checkpoint.backend == CheckpointBackend.S3 and not self.s3.bucket:
            raise ConnectorConfigError(
                "S3_BUCKET is required when CHECKPOINT_BACKEND=s3", setting="S3_BUCKET"
            )

        if self.checkpoint.backend == CheckpointBackend.FILE and not os.path.exists(
            self.checkpoint.directory
        ):
            logger.warning(
                f"Checkpoint directory does not exist: {self.checkpoint.directory}. "
                "It will be created on first write."
            )

        if self.checkpoint.backend == CheckpointBackend.MEMORY:
            logger.warning("Checkpoints are kept in memory; every restart is a fresh crawl")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Connector configuration loaded",
            extra={
                "repository_factory": self.repository.factory,
                "object_store": self.repository.object_store,
                "database_type": self.repository.database_type.name
                if self.repository.database_type
                else None,
                "custom_deletes_enabled": self.repository.custom_deletes_enabled,
                "batch_hint": self.traversal.batch_hint,
                "security_enabled": self.traversal.security_enabled,
                "checkpoint_backend": self.checkpoint.backend.value,
                "sink_backend": self.sink_backend.value,
                "kafka_brokers": self.kafka.brokers
                if self.sink_backend == SinkBackend.KAFKA
                else None,
                "kafka_topic": self.kafka.topic if self.sink_backend == SinkBackend.KAFKA else None,
                "s3_bucket": self.s3.bucket
                if self.checkpoint.backend == CheckpointBackend.S3
                else None,
                "log_level": self.observability.log_level,
            },
        )
