"""
docsync connector - Main entry point.

This module starts the connector with all components:
- Repository session (plug-in loaded from REPOSITORY_FACTORY)
- Content traversal runner (adds, deletion events, custom deletes)
- Security folder traversal runner (folder ACL documents)

Usage:
    python -m crawler.docsync.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The display URL is validated before any traversal starts
    - Content and security runners own disjoint checkpoint names
    - Graceful shutdown lets the in-flight event finish and persist

How to change safely:
    - Add new runners with enable/disable flags and their own checkpoint name
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .checkpoint.store import CheckpointStore, create_checkpoint_store
from .config import ConnectorConfig
from .errors import ConnectorConfigError
from .runner import TraversalRunner
from .session import RepositorySession
from .sink import DocumentSink, create_document_sink

logger = logging.getLogger(__name__)

CONTENT_CHECKPOINT = "content"
SECURITY_CHECKPOINT = "security"


def setup_logging(config: ConnectorConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Connector configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Connector:
    """docsync connector orchestrator.

    Manages the lifecycle of all connector components:
    - Repository session
    - Checkpoint store and document sink connections
    - Background runners (content, security)

    Example:
        >>> connector = Connector()
        >>> await connector.start()
        >>> # Connector is running
        >>> await connector.stop()
    """

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        session: RepositorySession | None = None,
        sink: DocumentSink | None = None,
        checkpoint_store: CheckpointStore | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            config: Optional configuration (loaded from env if not provided)
            session: Repository session (opened from config if not provided)
            sink: Document sink (created from config if not provided)
            checkpoint_store: Checkpoint store (created from config if not provided)
        """
        self.config = config or ConnectorConfig.from_env()
        self.session = session
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.content_runner: TraversalRunner | None = None
        self.security_runner: TraversalRunner | None = None
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the connector and run until shutdown is requested.

        Raises:
            ConnectorError: If startup fails or a runner stops on a fatal error
        """
        if self._running:
            logger.warning("Connector already running")
            return

        logger.info("Starting docsync connector")
        self.config.log_config()

        self._running = True
        try:
            if self.session is None:
                self.session = RepositorySession.from_config(self.config)
            await self.session.validate()

            if self.checkpoint_store is None:
                self.checkpoint_store = create_checkpoint_store(self.config)
            connect = getattr(self.checkpoint_store, "connect", None)
            if connect is not None:
                await connect()

            if self.sink is None:
                self.sink = create_document_sink(self.config)
            await self.sink.connect()
            logger.info("Document sink connected")

            self.content_runner = TraversalRunner(
                CONTENT_CHECKPOINT,
                self.session.get_traversal_manager(),
                self.sink,
                self.checkpoint_store,
                object_store=self.session.get_object_store(),
                poll_interval_seconds=self.config.traversal.poll_interval_seconds,
            )
            self._tasks.append(asyncio.create_task(self.content_runner.start()))

            if self.config.traversal.security_enabled:
                self.security_runner = TraversalRunner(
                    SECURITY_CHECKPOINT,
                    self.session.get_security_folder_traverser(),
                    self.sink,
                    self.checkpoint_store,
                    poll_interval_seconds=self.config.traversal.poll_interval_seconds,
                )
                self._tasks.append(asyncio.create_task(self.security_runner.start()))

            logger.info("docsync connector started successfully")

            # Wait for shutdown signal or a runner stopping on its own
            shutdown = asyncio.create_task(self._shutdown_event.wait())
            done, _ = await asyncio.wait(
                [shutdown, *self._tasks], return_when=asyncio.FIRST_COMPLETED
            )
            shutdown.cancel()
            for task in done:
                if task is not shutdown and not task.cancelled() and task.exception():
                    raise task.exception()

        except Exception as e:
            logger.error(f"Connector failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the connector gracefully."""
        if not self._running:
            return

        logger.info("Stopping docsync connector")

        if self.content_runner:
            await self.content_runner.stop()
        if self.security_runner:
            await self.security_runner.stop()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.sink:
            await self.sink.close()

        close = getattr(self.checkpoint_store, "close", None)
        if close is not None:
            await close()

        self._running = False
        logger.info("docsync connector stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    @property
    def stats(self) -> dict[str, object]:
        return {
            "running": self._running,
            "content": self.content_runner.stats if self.content_runner else None,
            "security": self.security_runner.stats if self.security_runner else None,
        }


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ConnectorConfig.from_env()
    except ConnectorConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    connector = Connector(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        connector.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    exit_code = 0
    try:
        loop.run_until_complete(connector.start())
    except KeyboardInterrupt:
        pass
    except Exception:
        exit_code = 1
    finally:
        loop.run_until_complete(connector.stop())
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
