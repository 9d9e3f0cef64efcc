"""
eVault bridge test suite.

This package contains:
- unit/: Unit tests (SQLite in temp dirs, in-memory graph driver)
- integration/: Bridge startup/shutdown with on-disk stores
"""
