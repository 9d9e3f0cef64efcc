"""
CLI tools for eVault bridge administration.

This module provides command-line tools for:
- mappings: Inspect, reconcile and export the local mapping stores

Invariants:
    - Tools work offline (no graph backend required)
    - Tools never modify a store
"""

from .mapping_cli import MappingCLI

__all__ = ["MappingCLI"]
