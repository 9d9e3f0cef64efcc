"""
Neo4j graph driver for the eVault bridge.

Wraps neo4j.AsyncGraphDatabase so the bootstrapper can open a driver and
probe it with a server-info round-trip.

Invariants:
    - A handle owns exactly one AsyncDriver
    - verify_live() never runs a user query
    - Rejected URIs and credentials raise GraphConfigurationError, every
      other driver failure GraphConnectionError
"""

from __future__ import annotations

import logging
from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import AuthError, ConfigurationError, DriverError, Neo4jError

from ..errors import GraphConfigurationError, GraphConnectionError
from .base import Credentials

logger = logging.getLogger(__name__)


class Neo4jHandle:
    """Live Neo4j connection.

    Attributes:
        driver: The underlying neo4j AsyncDriver, for the adapter layer's queries
        uri: URI this handle was opened against
    """

    def __init__(self, driver: AsyncDriver, uri: str) -> None:
        self._driver = driver
        self.uri = uri

    @property
    def driver(self) -> AsyncDriver:
        return self._driver

    async def verify_live(self) -> None:
        """Fetch server info as a liveness probe.

        Raises:
            GraphConfigurationError: If the server rejected the credentials
            GraphConnectionError: If the server cannot be reached
        """
        try:
            info = await self._driver.get_server_info()
        except AuthError as e:
            raise GraphConfigurationError(
                f"Neo4j rejected the credentials: {e}", uri=self.uri
            ) from e
        except (DriverError, Neo4jError, OSError) as e:
            raise GraphConnectionError(f"Neo4j liveness check failed: {e}", uri=self.uri) from e

        logger.debug(
            "Neo4j server reachable",
            extra={"uri": self.uri, "agent": info.agent, "address": str(info.address)},
        )

    async def close(self) -> None:
        await self._driver.close()


class Neo4jGraphDriver:
    """Opens Neo4jHandle instances.

    Example:
        >>> driver = Neo4jGraphDriver(connection_timeout_s=10)
        >>> handle = await driver.open("bolt://neo4j:7687", Credentials("neo4j", "secret"))
        >>> await handle.verify_live()
    """

    def __init__(
        self,
        connection_timeout_s: float = 30.0,
        encrypted: bool | None = None,
    ) -> None:
        """Initialize the driver factory.

        Args:
            connection_timeout_s: Socket connection timeout per attempt
            encrypted: Force TLS on/off for bolt:// and neo4j:// schemes.
                Leave as None for +s/+ssc schemes, which configure TLS themselves.
        """
        self.connection_timeout_s = connection_timeout_s
        self.encrypted = encrypted

    async def open(self, uri: str, credentials: Credentials) -> Neo4jHandle:
        options: dict[str, Any] = {"connection_timeout": self.connection_timeout_s}
        if self.encrypted is not None:
            options["encrypted"] = self.encrypted

        try:
            driver = AsyncGraphDatabase.driver(uri, auth=credentials.as_auth(), **options)
        except (ConfigurationError, ValueError) as e:
            raise GraphConfigurationError(f"Invalid Neo4j configuration: {e}", uri=uri) from e
        except DriverError as e:
            raise GraphConnectionError(f"Failed to create Neo4j driver: {e}", uri=uri) from e

        return Neo4jHandle(driver, uri)
