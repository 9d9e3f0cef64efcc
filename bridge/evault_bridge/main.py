"""
eVault bridge - Main entry point.

This module wires the bridge components for a standalone process:
- Graph connection bootstrap (runs as its own task)
- Flat mapping store
- Meta-envelope map

Usage:
    python -m bridge.evault_bridge.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The bootstrap task runs while the local stores open
    - A failed bootstrap aborts startup and closes whatever was opened
    - Components are released on shutdown even after a failed start
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .config import BridgeConfig
from .errors import BridgeError, GraphUnavailableError
from .graph import ConnectionBootstrapper, GraphDriver, GraphHandle
from .graph.bootstrap import SleepFn
from .mapping import MappingStore, MetaEnvelopeMap

logger = logging.getLogger(__name__)


def setup_logging(config: BridgeConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Bridge configuration
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
    logging.getLogger("neo4j").setLevel(logging.WARNING)


class Bridge:
    """eVault bridge orchestrator.

    Owns the graph handle and both mapping stores for the process lifetime
    and hands them to the adapter layer.

    Attributes:
        config: Bridge configuration
        bootstrapper: Graph connection bootstrapper (created in start())
        graph: Live graph handle
        mapping_store: Flat local/global id store
        meta_envelope_map: Hierarchical meta-envelope map

    Example:
        >>> bridge = Bridge()
        >>> await bridge.start()
        >>> await bridge.mapping_store.get_global_id("post-1")
        >>> await bridge.stop()
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        graph_driver: GraphDriver | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        """Initialize the bridge.

        Args:
            config: Optional configuration (loaded from env if not provided)
            graph_driver: Graph driver override (defaults to Neo4j)
            sleep: Delay coroutine for the bootstrap loop (tests)
        """
        self.config = config or BridgeConfig.from_env()
        self._graph_driver = graph_driver
        self._sleep = sleep
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.bootstrapper: ConnectionBootstrapper | None = None
        self.graph: GraphHandle | None = None
        self.mapping_store: MappingStore | None = None
        self.meta_envelope_map: MetaEnvelopeMap | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Bootstrap the graph connection and open the local stores.

        Raises:
            GraphUnavailableError: If the graph backend never became live
            StorageError: If a local store could not be opened
        """
        if self._running:
            logger.warning("Bridge already running")
            return

        logger.info("Starting eVault bridge")
        self.config.log_config()

        self.bootstrapper = ConnectionBootstrapper.from_config(
            self.config.graph,
            driver=self._graph_driver,
            sleep=self._sleep,
        )
        bootstrap_task = self.bootstrapper.start()

        try:
            storage = self.config.storage
            self.mapping_store = MappingStore(
                storage.mapping_db_path,
                wal_mode=storage.wal_mode,
                busy_timeout_ms=storage.busy_timeout_ms,
                cache_size_pages=storage.cache_size_pages,
            )
            await self.mapping_store.open()

            self.meta_envelope_map = MetaEnvelopeMap(
                storage.meta_envelope_db_path,
                wal_mode=storage.wal_mode,
                busy_timeout_ms=storage.busy_timeout_ms,
                cache_size_pages=storage.cache_size_pages,
            )
            await self.meta_envelope_map.open()

            self.graph = await bootstrap_task

        except Exception as e:
            logger.error(f"Bridge startup failed: {e}", exc_info=True)
            if not bootstrap_task.done():
                bootstrap_task.cancel()
                await asyncio.gather(bootstrap_task, return_exceptions=True)
            await self._close_components()
            raise

        self._running = True
        logger.info("eVault bridge started successfully")

    async def run(self) -> None:
        """Start, then wait for a shutdown request."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the bridge gracefully."""
        if not self._running:
            return

        logger.info("Stopping eVault bridge")
        await self._close_components()
        self._running = False
        logger.info("eVault bridge stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    async def _close_components(self) -> None:
        if self.meta_envelope_map:
            await self.meta_envelope_map.close()

        if self.mapping_store:
            await self.mapping_store.close()

        if self.graph:
            try:
                await self.graph.close()
            except Exception as e:
                logger.warning(f"Error closing graph connection: {e}")
            self.graph = None


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = BridgeConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create bridge
    bridge = Bridge(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        bridge.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    exit_code = 0
    try:
        loop.run_until_complete(bridge.run())
    except GraphUnavailableError as e:
        logger.critical(f"Aborting startup: {e}", extra={"attempts": e.attempts})
        exit_code = 1
    except BridgeError as e:
        logger.critical(f"Aborting startup: {e}", extra={"code": e.code})
        exit_code = 1
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(bridge.stop())
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
