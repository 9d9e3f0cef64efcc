"""
Error types for the eVault bridge.

This module defines all exception types raised by the bridge:
- BridgeError: Base exception
- ValidationError: Empty or malformed identifiers, missing fields
- ReferentialIntegrityError: Parent meta-envelope does not exist
- MappingConflictError: Identifier already mapped elsewhere
- StorageError: Local SQLite/filesystem failures
- StoreClosedError: Store used before open() or after close()
- GraphConnectionError: A single graph connection attempt failed
- GraphConfigurationError: Graph URI or credentials rejected (not retried)
- GraphUnavailableError: Graph backend never became reachable (fatal)
- BootstrapTimeoutError: Bootstrap exceeded its overall deadline (fatal)

Invariants:
    - All errors inherit from BridgeError
    - Errors carry a code and the offending identifier in details
    - Lookup misses are never errors (they return None)
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base exception for all bridge errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "BRIDGE_ERROR"
        self.details = details or {}


class ValidationError(BridgeError):
    """Input rejected before any I/O was attempted.

    Raised when:
    - An identifier is empty or not a string
    - A required field is missing
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "value": value},
        )
        self.field_name = field_name
        self.value = value


class ReferentialIntegrityError(BridgeError):
    """A referenced parent meta-envelope does not exist."""

    def __init__(self, message: str, parent_meta_envelope_id: str) -> None:
        super().__init__(
            message,
            code="REFERENTIAL_INTEGRITY",
            details={"parent_meta_envelope_id": parent_meta_envelope_id},
        )
        self.parent_meta_envelope_id = parent_meta_envelope_id


class MappingConflictError(BridgeError):
    """Creating a record would break the one-to-one identifier mapping."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="MAPPING_CONFLICT", details=details)


class StorageError(BridgeError):
    """Local storage failed (disk full, permissions, corrupt file).

    Never retried internally; the original exception is chained.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="STORAGE_ERROR", details={"path": path})
        self.path = path


class StoreClosedError(BridgeError):
    """Store used before open() or after close()."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="STORE_CLOSED", details={"path": path})
        self.path = path


class GraphConnectionError(BridgeError):
    """A single attempt to reach the graph backend failed.

    Transient: the bootstrapper retries these.
    """

    def __init__(self, message: str, uri: Optional[str] = None) -> None:
        super().__init__(message, code="GRAPH_CONNECTION_ERROR", details={"uri": uri})
        self.uri = uri


class GraphConfigurationError(BridgeError):
    """The graph backend rejected the URI or the credentials.

    Never retried: the bootstrapper gives up on the first one.
    """

    def __init__(self, message: str, uri: Optional[str] = None) -> None:
        super().__init__(message, code="GRAPH_CONFIGURATION_ERROR", details={"uri": uri})
        self.uri = uri


class GraphUnavailableError(BridgeError):
    """Graph backend unavailable after all bootstrap attempts.

    Startup-time fatal condition. Callers should abort rather than retry.
    """

    def __init__(
        self,
        message: str,
        uri: Optional[str] = None,
        attempts: int = 0,
        code: str = "GRAPH_UNAVAILABLE",
    ) -> None:
        super().__init__(message, code=code, details={"uri": uri, "attempts": attempts})
        self.uri = uri
        self.attempts = attempts


class BootstrapTimeoutError(GraphUnavailableError):
    """Bootstrap exceeded its overall deadline before a liveness check passed."""

    def __init__(
        self,
        message: str,
        uri: Optional[str] = None,
        attempts: int = 0,
        timeout_s: Optional[float] = None,
    ) -> None:
        super().__init__(message, uri=uri, attempts=attempts, code="BOOTSTRAP_TIMEOUT")
        self.timeout_s = timeout_s
        self.details["timeout_s"] = timeout_s
