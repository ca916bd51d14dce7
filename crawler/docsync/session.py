"""
Repository session: wires a repository plug-in to the traversals.

The session owns everything derived from repository configuration:
- Loading the repository plug-in named by REPOSITORY_FACTORY
- Normalizing the display URL that add events link to
- Validating the display URL over HTTP
- Building the content traversal manager and security folder traverser

Invariants:
    - The display URL always ends with "vsId=" so a version series id
      can be appended
    - A session uses one repository object for every collaborator role

How to change safely:
    - Display URL format is part of indexed data; changing it re-links
      every document on the next full crawl
"""

from __future__ import annotations

import importlib
import logging
from typing import Any
from urllib.parse import quote

import httpx

from .config import ConnectorConfig
from .errors import ConnectorConfigError, UrlValidationError
from .traverse.manager import TraversalManager
from .traverse.security import SecurityFolderTraverser

logger = logging.getLogger(__name__)

GET_CONTENT_PATH = "/getContent"


def build_display_url(base_url: str, object_store: str) -> str:
    """Build the display URL prefix for an object store.

    The result ends with "vsId=" and is completed with a version series id.

    Example:
        >>> build_display_url("http://host/Workplace", "OS1")
        'http://host/Workplace/getContent?objectStoreName=OS1&objectType=document&versionStatus=1&vsId='
    """
    url = base_url
    if url.endswith(GET_CONTENT_PATH + "/"):
        url = url[:-1]
    if not url.endswith(GET_CONTENT_PATH):
        url = url + GET_CONTENT_PATH
    return (
        f"{url}?objectStoreName={quote(object_store, safe='')}"
        "&objectType=document&versionStatus=1&vsId="
    )


def load_repository_factory(target: str) -> Any:
    """Resolve a repository plug-in given as "module:attribute".

    Raises:
        ConnectorConfigError: If the module or attribute cannot be loaded,
            or the attribute is not callable
    """
    module_name, sep, attr_name = target.partition(":")
    if not sep or not module_name or not attr_name:
        raise ConnectorConfigError(
            f"Repository factory must be 'module:attribute', got {target!r}",
            setting="REPOSITORY_FACTORY",
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        logger.warning("Unable to import repository module", extra={"module": module_name})
        raise ConnectorConfigError(
            f"Repository module {module_name!r} not found: {e}", setting="REPOSITORY_FACTORY"
        ) from e

    try:
        factory = getattr(module, attr_name)
    except AttributeError as e:
        raise ConnectorConfigError(
            f"Repository factory {attr_name!r} not found in {module_name!r}",
            setting="REPOSITORY_FACTORY",
        ) from e

    if not callable(factory):
        raise ConnectorConfigError(
            f"Repository factory {target!r} is not callable", setting="REPOSITORY_FACTORY"
        )
    return factory


class DisplayUrlValidator:
    """Checks that the display URL answers over HTTP.

    Example:
        >>> validator = DisplayUrlValidator()
        >>> await validator.validate("http://host/Workplace/getContent")
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    async def validate(self, url: str) -> int:
        """Request the URL and return its status code.

        Raises:
            UrlValidationError: On a non-2xx/3xx status, or status 0 when the
                host cannot be reached
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise UrlValidationError(0, f"Unable to reach {url}: {e}") from e

        if response.status_code >= 400:
            raise UrlValidationError(
                response.status_code, f"Display URL {url} answered {response.status_code}"
            )

        logger.info(
            "Display URL validated", extra={"url": url, "status_code": response.status_code}
        )
        return response.status_code


class RepositorySession:
    """Entry point from configuration to traversals.

    Example:
        >>> session = RepositorySession.from_config(config)
        >>> await session.validate()
        >>> manager = session.get_traversal_manager()
    """

    def __init__(
        self,
        config: ConnectorConfig,
        repository: Any,
        url_validator: DisplayUrlValidator | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Connector configuration
            repository: Object implementing ChangeSource, ObjectStore and
                FolderSource
            url_validator: Validator used when display URL validation is on
        """
        self.config = config
        self.repository = repository
        self.url_validator = url_validator or DisplayUrlValidator()

        base_url = config.repository.display_url
        self.display_url = (
            build_display_url(base_url, config.repository.object_store) if base_url else None
        )

    @classmethod
    def from_config(cls, config: ConnectorConfig) -> RepositorySession:
        """Load the repository plug-in and open a session on it.

        Raises:
            ConnectorConfigError: If the plug-in cannot be loaded
        """
        factory = load_repository_factory(config.repository.factory)
        logger.info(
            "Opening repository",
            extra={
                "factory": config.repository.factory,
                "object_store": config.repository.object_store,
            },
        )
        return cls(config, factory(config.repository))

    async def validate(self) -> None:
        """Validate the display URL if enabled.

        Raises:
            UrlValidationError: If the display URL does not answer
        """
        repository = self.config.repository
        if not repository.validate_display_url or not repository.display_url:
            return
        await self.url_validator.validate(repository.display_url)

    def get_traversal_manager(self) -> TraversalManager:
        return TraversalManager(
            self.repository,
            batch_hint=self.config.traversal.batch_hint,
            custom_deletes_enabled=self.config.repository.custom_deletes_enabled,
            display_url=self.display_url,
        )

    def get_security_folder_traverser(self) -> SecurityFolderTraverser:
        return SecurityFolderTraverser(
            self.repository,
            batch_hint=self.config.traversal.security_batch_hint,
            database_type=self.repository.database_type,
        )

    def get_object_store(self) -> Any:
        return self.repository
