"""
Local/global identifier mapping store.

Records which meta-envelope (global id) in the eVault corresponds to which
entity in a platform's relational store (local id).

Invariants:
    - local_id <-> global_id is a bijection at all times
    - store() of an identical pair is a no-op
    - store() with a new global_id for an existing local_id replaces it
    - store() with a global_id already held by another local_id moves it
    - Lookup misses return None; deleting a missing key is a no-op

How to change safely:
    - Keep both UNIQUE constraints; lookups in both directions rely on them
    - Keep store() in a single BEGIN IMMEDIATE transaction

Table schema:
    id_mappings:
        - local_id TEXT PRIMARY KEY
        - global_id TEXT UNIQUE
        - created_at INTEGER (Unix ms)
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from .sqlite import SqliteStore, now_ms, require_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingEntry:
    """A local id paired with its global (meta-envelope) id.

    Attributes:
        local_id: Identifier in the platform's relational store
        global_id: Identifier of the meta-envelope in the eVault
        created_at: When the pair was stored (Unix ms)
    """

    local_id: str
    global_id: str
    created_at: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "local_id": self.local_id,
            "global_id": self.global_id,
            "created_at": self.created_at,
        }


class MappingStore(SqliteStore):
    """Durable bidirectional lookup between local and global identifiers.

    Example:
        >>> async with MappingStore("/var/lib/evault-bridge/mappings.db") as store:
        ...     await store.store("post-42", "f2b1c0de-...")
        ...     await store.get_global_id("post-42")
        'f2b1c0de-...'
    """

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS id_mappings (
                local_id TEXT NOT NULL PRIMARY KEY,
                global_id TEXT NOT NULL UNIQUE,
                created_at INTEGER NOT NULL
            );
        """)

    async def store(self, local_id: str, global_id: str) -> None:
        """Store a mapping between a local and a global id.

        Args:
            local_id: Identifier in the local store
            global_id: Identifier of the meta-envelope

        Raises:
            ValidationError: If either id is empty
            StorageError: On storage failure
        """
        require_id(local_id, "local_id")
        require_id(global_id, "global_id")

        with self._transaction() as conn:
            cursor = conn.execute(
                "SELECT local_id, global_id FROM id_mappings WHERE local_id = ? OR global_id = ?",
                (local_id, global_id),
            )
            existing = cursor.fetchall()

            if any(r["local_id"] == local_id and r["global_id"] == global_id for r in existing):
                return

            if existing:
                conn.execute(
                    "DELETE FROM id_mappings WHERE local_id = ? OR global_id = ?",
                    (local_id, global_id),
                )

            conn.execute(
                "INSERT INTO id_mappings (local_id, global_id, created_at) VALUES (?, ?, ?)",
                (local_id, global_id, now_ms()),
            )

        if existing:
            logger.info(
                "Replaced mapping",
                extra={
                    "local_id": local_id,
                    "global_id": global_id,
                    "replaced": [(r["local_id"], r["global_id"]) for r in existing],
                },
            )
        else:
            logger.debug("Stored mapping", extra={"local_id": local_id, "global_id": global_id})

    async def get_global_id(self, local_id: str) -> str | None:
        """Get the global id for a local id, or None if not yet published."""
        require_id(local_id, "local_id")
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT global_id FROM id_mappings WHERE local_id = ?",
                (local_id,),
            ).fetchone()
        return row["global_id"] if row else None

    async def get_local_id(self, global_id: str) -> str | None:
        """Get the local id for a global id, or None if unknown."""
        require_id(global_id, "global_id")
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT local_id FROM id_mappings WHERE global_id = ?",
                (global_id,),
            ).fetchone()
        return row["local_id"] if row else None

    async def delete_mapping(self, local_id: str) -> bool:
        """Delete the mapping for a local id.

        Returns:
            True if a mapping was removed, False if there was none
        """
        require_id(local_id, "local_id")
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM id_mappings WHERE local_id = ?", (local_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug("Deleted mapping", extra={"local_id": local_id})
        return deleted

    async def get_all_mappings(self) -> list[MappingEntry]:
        """Return every mapping.

        Unbounded; meant for reconciliation and audit, not request paths.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT local_id, global_id, created_at FROM id_mappings ORDER BY created_at, rowid"
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    async def count(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM id_mappings").fetchone()[0]


def _row_to_entry(row: sqlite3.Row) -> MappingEntry:
    return MappingEntry(
        local_id=row["local_id"],
        global_id=row["global_id"],
        created_at=row["created_at"],
    )
