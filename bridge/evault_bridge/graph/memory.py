"""
In-memory graph driver for testing.

This module provides a scriptable stand-in for the Neo4j driver for:
- Unit tests of the bootstrap retry loop
- Integration tests of bridge startup
- Local development without a graph backend

Invariants:
    - No network I/O
    - Failure behaviour is fully determined by constructor arguments

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the GraphDriver protocol
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import GraphConfigurationError, GraphConnectionError
from .base import Credentials

logger = logging.getLogger(__name__)


class InMemoryGraphHandle:
    """Handle returned by InMemoryGraphDriver.

    Attributes:
        uri: URI the handle was opened against
        live: Whether verify_live() succeeds
        authorized: Whether the credentials were accepted
        closed: Whether close() has been called
    """

    def __init__(self, uri: str, live: bool, authorized: bool = True) -> None:
        self.uri = uri
        self.live = live
        self.authorized = authorized
        self.closed = False

    @property
    def driver(self) -> "InMemoryGraphHandle":
        return self

    async def verify_live(self) -> None:
        if self.closed:
            raise GraphConnectionError("Handle is closed", uri=self.uri)
        if not self.authorized:
            raise GraphConfigurationError("Authentication failed", uri=self.uri)
        if not self.live:
            raise GraphConnectionError("Connection refused", uri=self.uri)

    async def close(self) -> None:
        self.closed = True


class InMemoryGraphDriver:
    """Graph driver whose first N liveness checks fail.

    Example:
        >>> driver = InMemoryGraphDriver(fail_first=4)
        >>> # attempts 1-4 fail verify_live(), attempt 5 succeeds
        >>> never = InMemoryGraphDriver(fail_first=None)
        >>> # every attempt fails
        >>> locked = InMemoryGraphDriver(password="secret")
        >>> # any other password is rejected
    """

    def __init__(
        self,
        fail_first: Optional[int] = 0,
        fail_on_open: bool = False,
        password: Optional[str] = None,
    ) -> None:
        """Initialize the driver.

        Args:
            fail_first: Number of leading attempts whose liveness check fails,
                or None to fail forever
            fail_on_open: Fail the handshake itself instead of the liveness check
            password: Password the backend accepts, or None to accept any
        """
        self.fail_first = fail_first
        self.fail_on_open = fail_on_open
        self.password = password
        self.handles: List[InMemoryGraphHandle] = []
        self.credentials: List[Credentials] = []

    @property
    def open_count(self) -> int:
        return len(self.credentials)

    def _should_fail(self, attempt: int) -> bool:
        return self.fail_first is None or attempt <= self.fail_first

    async def open(self, uri: str, credentials: Credentials) -> InMemoryGraphHandle:
        self.credentials.append(credentials)
        attempt = len(self.credentials)

        if self.fail_on_open and self._should_fail(attempt):
            raise GraphConnectionError(f"Handshake failed on attempt {attempt}", uri=uri)

        handle = InMemoryGraphHandle(
            uri,
            live=not self._should_fail(attempt),
            authorized=self.password is None or credentials.password == self.password,
        )
        self.handles.append(handle)
        logger.debug("InMemoryGraphDriver opened handle", extra={"attempt": attempt})
        return handle
