"""
Error types for the docsync connector.

This module defines the exception taxonomy shared by the traversal engine,
the security traverser and the driver loop:
- SkippedDocumentError: a record intentionally excluded from emission
- RepositoryDocumentError: a single record or folder could not be resolved
- CheckpointFormatError / ChangeSourceContractError: fatal for a traversal

Invariants:
    - All errors inherit from ConnectorError
    - Skips are a subclass of per-item failures, never of fatal errors
    - Fatal errors are never retried inside the connector

How to change safely:
    - New per-item failures must subclass RepositoryDocumentError
    - Drivers dispatch on the class, so do not move classes in the hierarchy
"""

from __future__ import annotations

from typing import Any


class ConnectorError(Exception):
    """Base exception for all connector errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CONNECTOR_ERROR"
        self.details = details or {}


class ConnectorConfigError(ConnectorError):
    """Connector configuration is invalid or incomplete."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message, code="CONFIG_ERROR", details={"setting": setting})
        self.setting = setting


class CheckpointFormatError(ConnectorError):
    """Persisted checkpoint state is structurally invalid.

    Fatal: the driver must not start the traversal and must not retry.
    """

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, code="CHECKPOINT_FORMAT", details={"field": field_name})
        self.field_name = field_name


class ChangeSourceContractError(ConnectorError):
    """A change source returned records out of order.

    Raised when:
    - A batch is not non-decreasing by (time, id)
    - A record is older than the stored checkpoint position for its slot
    """

    def __init__(self, message: str, slot: str | None = None, record_id: str | None = None) -> None:
        super().__init__(
            message,
            code="SOURCE_CONTRACT",
            details={"slot": slot, "record_id": record_id},
        )
        self.slot = slot
        self.record_id = record_id


class RepositoryError(ConnectorError):
    """A repository collaborator failed."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code or "REPOSITORY_ERROR", details=details)


class RepositoryDocumentError(RepositoryError):
    """A single document or folder could not be processed.

    Traversal continues with the next item.
    """

    def __init__(self, message: str, doc_id: str | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code or "DOCUMENT_ERROR", details={"doc_id": doc_id})
        self.doc_id = doc_id


class SkippedDocumentError(RepositoryDocumentError):
    """A record was intentionally not emitted.

    Not an error condition: the caller requests the next item immediately.
    """

    def __init__(self, message: str, doc_id: str | None = None) -> None:
        super().__init__(message, doc_id=doc_id, code="SKIPPED")


class DocumentNotFoundError(RepositoryDocumentError):
    """The object behind an add event has since been removed."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"Document not found: {doc_id}", doc_id=doc_id, code="NOT_FOUND")


class UrlValidationError(ConnectorError):
    """The display URL did not answer with a usable HTTP response.

    Attributes:
        status_code: HTTP status code, or 0 when no response was received
    """

    def __init__(self, status_code: int, message: str | None = None) -> None:
        super().__init__(
            message or f"Display URL returned HTTP {status_code}",
            code="URL_VALIDATION",
            details={"status_code": status_code},
        )
        self.status_code = status_code


class CheckpointStoreError(ConnectorError):
    """Reading or writing persisted checkpoint state failed."""

    def __init__(self, message: str, name: str | None = None) -> None:
        super().__init__(message, code="CHECKPOINT_STORE", details={"name": name})
        self.name = name


class SinkError(ConnectorError):
    """Delivering a document event to the index sink failed."""

    def __init__(self, message: str, doc_id: str | None = None) -> None:
        super().__init__(message, code="SINK_ERROR", details={"doc_id": doc_id})
        self.doc_id = doc_id
