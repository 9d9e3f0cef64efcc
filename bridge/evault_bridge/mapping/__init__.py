"""
Local identifier mapping stores.

This module provides:
- MappingStore: flat local id <-> global id bijection
- MetaEnvelopeMap: typed records with optional parent meta-envelope

Both are SQLite-backed, opened and closed explicitly, and usable as async
context managers.
"""

from .mapping_store import MappingEntry, MappingStore
from .meta_envelope_map import MetaEnvelopeMap, MetaEnvelopeRecord
from .sqlite import SqliteStore

__all__ = [
    "MappingStore",
    "MappingEntry",
    "MetaEnvelopeMap",
    "MetaEnvelopeRecord",
    "SqliteStore",
]
