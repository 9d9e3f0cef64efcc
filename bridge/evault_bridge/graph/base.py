"""
Base protocol and types for the graph backend connection.

The bridge does not speak the graph query protocol itself. It only needs to
open a connection and confirm the backend answers, then hands the handle to
the adapter layer.

Invariants:
    - open() performs the handshake only; liveness is checked separately
    - verify_live() is a lightweight server round-trip
    - Credentials never render their password

How to change safely:
    - New backends must implement GraphDriver and GraphHandle
    - Keep verify_live() cheap: it runs once per bootstrap attempt
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Credentials:
    """Basic-auth credentials for the graph backend."""

    user: str
    password: str = field(repr=False)

    def as_auth(self) -> tuple[str, str]:
        return (self.user, self.password)


@runtime_checkable
class GraphHandle(Protocol):
    """A connection to the graph backend, shared with the adapter layer."""

    @property
    def driver(self) -> Any:
        """Underlying driver object used for queries."""
        ...

    async def verify_live(self) -> None:
        """Round-trip to the server.

        Raises:
            Exception: Any failure means the backend is not usable yet
        """
        ...

    async def close(self) -> None:
        """Release the connection."""
        ...


@runtime_checkable
class GraphDriver(Protocol):
    """Factory for graph handles."""

    async def open(self, uri: str, credentials: Credentials) -> GraphHandle:
        """Open a connection to the backend at uri.

        Raises:
            Exception: If the handshake fails
        """
        ...
