"""
Connection bootstrap for the graph backend.

The graph service and the bridge may start concurrently under container
orchestration, so the first connection is acquired with bounded retries and
a fixed delay between attempts.

State machine:
    IDLE --connect()--> ATTEMPTING --liveness ok--> SUCCEEDED
                            |
                            +--attempts exhausted / deadline / bad config--> EXHAUSTED_FAILED

Invariants:
    - connect() runs at most once per bootstrapper
    - One log line per attempt, success or failure
    - No delay after the final attempt
    - A handle that failed its liveness check is closed before the next attempt
    - GraphConfigurationError (bad URI, rejected credentials) ends the
      bootstrap on the attempt that raised it
    - The returned handle is never re-validated by this module

How to change safely:
    - Keep the delay fixed: the failure mode is "dependency still starting"
    - Tests inject sleep; never call asyncio.sleep directly in the loop
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ..config import GraphConfig
from ..errors import BootstrapTimeoutError, GraphConfigurationError, GraphUnavailableError
from .base import Credentials, GraphDriver, GraphHandle
from .neo4j_driver import Neo4jGraphDriver

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class BootstrapState(Enum):
    """Bootstrap lifecycle states."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED_FAILED = "exhausted_failed"


@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of a single connection attempt."""

    number: int
    succeeded: bool
    error: Optional[str] = None


class ConnectionBootstrapper:
    """Acquires a live graph handle, tolerating a backend that is still starting.

    Attributes:
        driver: Graph driver used to open connections
        uri: Graph backend URI
        max_retries: Maximum number of attempts
        delay_ms: Fixed delay between attempts
        timeout_s: Overall deadline for the whole bootstrap, or None

    Example:
        >>> bootstrapper = ConnectionBootstrapper.from_config(GraphConfig.from_env())
        >>> task = bootstrapper.start()      # runs alongside other startup work
        >>> handle = await task              # GraphUnavailableError aborts startup
    """

    def __init__(
        self,
        driver: GraphDriver,
        uri: str,
        credentials: Credentials,
        max_retries: int = 30,
        delay_ms: int = 5000,
        timeout_s: Optional[float] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        """Initialize the bootstrapper.

        Args:
            driver: Graph driver used to open connections
            uri: Graph backend URI
            credentials: User/password for the backend
            max_retries: Maximum number of attempts (at least 1)
            delay_ms: Fixed delay between attempts in milliseconds
            timeout_s: Overall deadline in seconds, independent of
                max_retries * delay_ms
            sleep: Coroutine used to wait between attempts (default asyncio.sleep)

        Raises:
            ValueError: If max_retries < 1 or delay_ms < 0
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        if delay_ms < 0:
            raise ValueError(f"delay_ms must not be negative, got {delay_ms}")

        self.driver = driver
        self.uri = uri
        self.credentials = credentials
        self.max_retries = max_retries
        self.delay_ms = delay_ms
        self.timeout_s = timeout_s
        self._sleep = sleep or asyncio.sleep
        self._state = BootstrapState.IDLE
        self._attempts: List[AttemptRecord] = []
        self._handle: Optional[GraphHandle] = None

    @classmethod
    def from_config(
        cls,
        config: GraphConfig,
        driver: Optional[GraphDriver] = None,
        sleep: Optional[SleepFn] = None,
    ) -> ConnectionBootstrapper:
        """Build a bootstrapper from GraphConfig, defaulting to the Neo4j driver."""
        if driver is None:
            driver = Neo4jGraphDriver(connection_timeout_s=config.connection_timeout_s)

        return cls(
            driver=driver,
            uri=config.uri,
            credentials=Credentials(config.user, config.password),
            max_retries=config.max_retries,
            delay_ms=config.retry_delay_ms,
            timeout_s=config.bootstrap_timeout_s,
            sleep=sleep,
        )

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def attempts(self) -> List[AttemptRecord]:
        return list(self._attempts)

    @property
    def handle(self) -> Optional[GraphHandle]:
        """The live handle once SUCCEEDED, otherwise None."""
        return self._handle

    def start(self) -> "asyncio.Task[GraphHandle]":
        """Run connect() as an isolated task.

        Must be called from a running event loop. Awaiting the task re-raises
        GraphUnavailableError if the bootstrap fails.
        """
        return asyncio.create_task(self.connect(), name="graph-bootstrap")

    async def connect(self) -> GraphHandle:
        """Attempt to connect until a liveness check passes.

        Returns:
            Live graph handle

        Raises:
            GraphUnavailableError: If every attempt failed, or one failed with
                GraphConfigurationError
            BootstrapTimeoutError: If the overall deadline passed first
            RuntimeError: If this bootstrapper already ran
        """
        if self._state is not BootstrapState.IDLE:
            raise RuntimeError(f"Bootstrap already {self._state.value}")

        self._state = BootstrapState.ATTEMPTING

        if self.timeout_s is None:
            return await self._attempt_loop()

        try:
            return await asyncio.wait_for(self._attempt_loop(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            self._state = BootstrapState.EXHAUSTED_FAILED
            raise BootstrapTimeoutError(
                f"Graph backend unavailable: bootstrap exceeded {self.timeout_s}s "
                f"after {len(self._attempts)} attempts",
                uri=self.uri,
                attempts=len(self._attempts),
                timeout_s=self.timeout_s,
            ) from e

    async def _attempt_loop(self) -> GraphHandle:
        for number in range(1, self.max_retries + 1):
            handle: Optional[GraphHandle] = None
            try:
                handle = await self.driver.open(self.uri, self.credentials)
                await handle.verify_live()
            except asyncio.CancelledError:
                if handle is not None:
                    await self._discard(handle)
                raise
            except GraphConfigurationError as e:
                if handle is not None:
                    await self._discard(handle)
                self._attempts.append(AttemptRecord(number=number, succeeded=False, error=str(e)))
                self._state = BootstrapState.EXHAUSTED_FAILED
                logger.error(
                    f"Graph connection attempt {number} failed: {e}. Not retrying.",
                    extra={"uri": self.uri, "attempt": number, "max_retries": self.max_retries},
                )
                raise GraphUnavailableError(
                    f"Graph backend unavailable: {e}",
                    uri=self.uri,
                    attempts=number,
                ) from e
            except Exception as e:
                if handle is not None:
                    await self._discard(handle)
                self._record_failure(number, e)
                if number < self.max_retries:
                    await self._sleep(self.delay_ms / 1000.0)
                continue

            self._attempts.append(AttemptRecord(number=number, succeeded=True))
            self._handle = handle
            self._state = BootstrapState.SUCCEEDED
            logger.info(
                f"Connected to graph backend on attempt {number}",
                extra={"uri": self.uri, "attempt": number},
            )
            return handle

        self._state = BootstrapState.EXHAUSTED_FAILED
        raise GraphUnavailableError(
            f"Graph backend unavailable after {self.max_retries} attempts",
            uri=self.uri,
            attempts=self.max_retries,
        )

    def _record_failure(self, number: int, error: Exception) -> None:
        self._attempts.append(AttemptRecord(number=number, succeeded=False, error=str(error)))
        extra = {"uri": self.uri, "attempt": number, "max_retries": self.max_retries}

        if number < self.max_retries:
            logger.warning(
                f"Graph connection attempt {number} failed: {error}. "
                f"Retrying in {self.delay_ms}ms...",
                extra=extra,
            )
        else:
            logger.error(
                f"Graph connection attempt {number} failed: {error}. Giving up.",
                extra=extra,
            )

    async def _discard(self, handle: GraphHandle) -> None:
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Error closing failed graph handle: {e}")
