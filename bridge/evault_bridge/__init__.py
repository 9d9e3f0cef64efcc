"""
eVault bridge - identifier mapping and graph connection bootstrap.

Each platform keeps its entities (posts, messages, votes, users) in its own
relational store. The eVault represents the same entities as meta-envelopes
in a graph database. This package keeps the two identifier spaces in step:

- graph: acquires a live Neo4j handle with bounded, fixed-delay retries
- mapping: durable local id <-> meta-envelope id lookups, flat and hierarchical

Query translation and the adapter itself live outside this package; it is
consumed as a library.

Invariants:
    - Only graph connection acquisition is retried
    - Mapping writes are local and synchronous
    - Lookup misses return None, never raise
"""

from .config import BridgeConfig, GraphConfig, ObservabilityConfig, StorageConfig
from .errors import (
    BootstrapTimeoutError,
    BridgeError,
    GraphConfigurationError,
    GraphConnectionError,
    GraphUnavailableError,
    MappingConflictError,
    ReferentialIntegrityError,
    StorageError,
    StoreClosedError,
    ValidationError,
)
from .graph import BootstrapState, ConnectionBootstrapper, Credentials
from .mapping import MappingEntry, MappingStore, MetaEnvelopeMap, MetaEnvelopeRecord

__version__ = "0.1.0"

__all__ = [
    # Config
    "BridgeConfig",
    "GraphConfig",
    "StorageConfig",
    "ObservabilityConfig",
    # Graph
    "ConnectionBootstrapper",
    "BootstrapState",
    "Credentials",
    # Mapping
    "MappingStore",
    "MappingEntry",
    "MetaEnvelopeMap",
    "MetaEnvelopeRecord",
    # Errors
    "BridgeError",
    "ValidationError",
    "ReferentialIntegrityError",
    "MappingConflictError",
    "StorageError",
    "StoreClosedError",
    "GraphConfigurationError",
    "GraphConnectionError",
    "GraphUnavailableError",
    "BootstrapTimeoutError",
]
