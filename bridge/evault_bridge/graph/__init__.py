"""
Graph backend connection for the eVault bridge.

This module provides:
- GraphDriver / GraphHandle protocols
- Neo4jGraphDriver (production)
- InMemoryGraphDriver (testing)
- ConnectionBootstrapper: bounded, fixed-delay retry until the backend is live

Only connection acquisition is retried. Queries against the handle belong
to the adapter layer.
"""

from .base import Credentials, GraphDriver, GraphHandle
from .bootstrap import AttemptRecord, BootstrapState, ConnectionBootstrapper
from .memory import InMemoryGraphDriver, InMemoryGraphHandle
from .neo4j_driver import Neo4jGraphDriver, Neo4jHandle

__all__ = [
    # Protocol and types
    "GraphDriver",
    "GraphHandle",
    "Credentials",
    # Bootstrap
    "ConnectionBootstrapper",
    "BootstrapState",
    "AttemptRecord",
    # Implementations
    "Neo4jGraphDriver",
    "Neo4jHandle",
    "InMemoryGraphDriver",
    "InMemoryGraphHandle",
]
