"""
Meta-envelope map: typed, hierarchical local/global identifier records.

A composite entity (a post with its comments, a poll with its votes) is
stored in the eVault as a meta-envelope that may decompose into nested
sub-envelopes. Each record here maps one local entity to its meta-envelope
and optionally points at the enclosing meta-envelope.

Invariants:
    - meta_envelope_id is unique
    - (internal_id, entity_type) is unique
    - A parent reference resolves to an existing record at create time;
      the check and the insert share one transaction
    - Records form a forest: create() rejects a parent whose ancestor
      chain (dangling links included) already points at the new
      meta_envelope_id, so delete + create cannot close a cycle
    - delete() never cascades; orphaned children keep their dangling
      parent reference and are reported by find_orphans()

How to change safely:
    - Keep the parent lookup inside the create() transaction
    - Re-publishing is delete + create, not update

Table schema:
    meta_envelope_maps:
        - id TEXT PRIMARY KEY (UUID)
        - meta_envelope_id TEXT UNIQUE
        - internal_id TEXT
        - entity_type TEXT
        - parent_meta_envelope_id TEXT NULL
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - UNIQUE (internal_id, entity_type)
        - INDEX on parent_meta_envelope_id
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from ..errors import MappingConflictError, ReferentialIntegrityError
from .sqlite import SqliteStore, now_ms, require_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetaEnvelopeRecord:
    """A local entity mapped to its meta-envelope.

    Attributes:
        id: Record identifier (UUID), owned by the store
        meta_envelope_id: Global id of the meta-envelope
        internal_id: Local id of the entity
        entity_type: Kind of entity ("post", "comment", "message", ...)
        parent_meta_envelope_id: Enclosing meta-envelope, None for roots
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
    """

    id: str
    meta_envelope_id: str
    internal_id: str
    entity_type: str
    parent_meta_envelope_id: str | None
    created_at: int
    updated_at: int

    @property
    def is_root(self) -> bool:
        return self.parent_meta_envelope_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "meta_envelope_id": self.meta_envelope_id,
            "internal_id": self.internal_id,
            "entity_type": self.entity_type,
            "parent_meta_envelope_id": self.parent_meta_envelope_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


_COLUMNS = (
    "id, meta_envelope_id, internal_id, entity_type, "
    "parent_meta_envelope_id, created_at, updated_at"
)


class MetaEnvelopeMap(SqliteStore):
    """Typed meta-envelope records with optional parent links.

    Example:
        >>> async with MetaEnvelopeMap("/var/lib/evault-bridge/meta_envelope_maps.db") as mem:
        ...     post = await mem.create("me-post", "post-1", "post")
        ...     await mem.create("me-c1", "comment-1", "comment",
        ...                      parent_meta_envelope_id=post.meta_envelope_id)
        ...     [c.internal_id for c in await mem.find_children("me-post")]
        ['comment-1']
    """

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS meta_envelope_maps (
                id TEXT NOT NULL PRIMARY KEY,
                meta_envelope_id TEXT NOT NULL UNIQUE,
                internal_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                parent_meta_envelope_id TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (internal_id, entity_type)
            );

            CREATE INDEX IF NOT EXISTS idx_meta_envelope_maps_internal
                ON meta_envelope_maps(internal_id);
            CREATE INDEX IF NOT EXISTS idx_meta_envelope_maps_parent
                ON meta_envelope_maps(parent_meta_envelope_id);
        """)

    async def create(
        self,
        meta_envelope_id: str,
        internal_id: str,
        entity_type: str,
        parent_meta_envelope_id: str | None = None,
    ) -> MetaEnvelopeRecord:
        """Create a new record.

        Args:
            meta_envelope_id: Global id of the meta-envelope
            internal_id: Local id of the entity
            entity_type: Kind of entity
            parent_meta_envelope_id: Optional enclosing meta-envelope

        Returns:
            The created record

        Raises:
            ValidationError: If a required id is empty, or the parent id is
                given but empty
            ReferentialIntegrityError: If the parent does not exist, or
                descends from meta_envelope_id
            MappingConflictError: If meta_envelope_id, or internal_id for this
                entity_type, is already mapped
            StorageError: On storage failure
        """
        require_id(meta_envelope_id, "meta_envelope_id")
        require_id(internal_id, "internal_id")
        require_id(entity_type, "entity_type")
        if parent_meta_envelope_id is not None:
            require_id(parent_meta_envelope_id, "parent_meta_envelope_id")

        now = now_ms()
        record = MetaEnvelopeRecord(
            id=str(uuid.uuid4()),
            meta_envelope_id=meta_envelope_id,
            internal_id=internal_id,
            entity_type=entity_type,
            parent_meta_envelope_id=parent_meta_envelope_id,
            created_at=now,
            updated_at=now,
        )

        with self._transaction() as conn:
            if parent_meta_envelope_id is not None:
                parent = self._lookup(conn, "meta_envelope_id", parent_meta_envelope_id)
                if parent is None:
                    raise ReferentialIntegrityError(
                        f"Parent meta-envelope not found: {parent_meta_envelope_id}",
                        parent_meta_envelope_id=parent_meta_envelope_id,
                    )

            clash = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM meta_envelope_maps
                WHERE meta_envelope_id = ? OR (internal_id = ? AND entity_type = ?)
                """,
                (meta_envelope_id, internal_id, entity_type),
            ).fetchone()
            if clash is not None:
                raise MappingConflictError(
                    f"Meta-envelope {meta_envelope_id} or {entity_type} {internal_id} "
                    f"is already mapped (record {clash['id']})",
                    meta_envelope_id=meta_envelope_id,
                    internal_id=internal_id,
                    entity_type=entity_type,
                    existing_id=clash["id"],
                )

            if parent_meta_envelope_id is not None and self._has_ancestor(
                conn, parent_meta_envelope_id, meta_envelope_id
            ):
                raise ReferentialIntegrityError(
                    f"Parent meta-envelope {parent_meta_envelope_id} descends from "
                    f"{meta_envelope_id}; linking them would create a cycle",
                    parent_meta_envelope_id=parent_meta_envelope_id,
                )

            conn.execute(
                f"INSERT INTO meta_envelope_maps ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.meta_envelope_id,
                    record.internal_id,
                    record.entity_type,
                    record.parent_meta_envelope_id,
                    record.created_at,
                    record.updated_at,
                ),
            )

        logger.debug(
            "Created meta-envelope record",
            extra={
                "record_id": record.id,
                "meta_envelope_id": meta_envelope_id,
                "entity_type": entity_type,
                "parent_meta_envelope_id": parent_meta_envelope_id,
            },
        )
        return record

    async def get(self, record_id: str) -> MetaEnvelopeRecord | None:
        """Get a record by its record id."""
        require_id(record_id, "id")
        with self._get_connection() as conn:
            return self._lookup(conn, "id", record_id)

    async def find_by_internal_id(
        self,
        internal_id: str,
        entity_type: str | None = None,
    ) -> MetaEnvelopeRecord | None:
        """Find the record for a local entity.

        Without entity_type the oldest record with this internal_id is
        returned; pass entity_type when local ids are reused across kinds.
        """
        require_id(internal_id, "internal_id")
        with self._get_connection() as conn:
            if entity_type is None:
                row = conn.execute(
                    f"""
                    SELECT {_COLUMNS} FROM meta_envelope_maps
                    WHERE internal_id = ?
                    ORDER BY created_at, rowid
                    LIMIT 1
                    """,
                    (internal_id,),
                ).fetchone()
            else:
                require_id(entity_type, "entity_type")
                row = conn.execute(
                    f"""
                    SELECT {_COLUMNS} FROM meta_envelope_maps
                    WHERE internal_id = ? AND entity_type = ?
                    """,
                    (internal_id, entity_type),
                ).fetchone()
        return _row_to_record(row) if row else None

    async def find_by_meta_envelope_id(self, meta_envelope_id: str) -> MetaEnvelopeRecord | None:
        """Find the record for a meta-envelope."""
        require_id(meta_envelope_id, "meta_envelope_id")
        with self._get_connection() as conn:
            return self._lookup(conn, "meta_envelope_id", meta_envelope_id)

    async def find_children(self, parent_meta_envelope_id: str) -> list[MetaEnvelopeRecord]:
        """Direct children of a meta-envelope. Does not recurse."""
        require_id(parent_meta_envelope_id, "parent_meta_envelope_id")
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM meta_envelope_maps
                WHERE parent_meta_envelope_id = ?
                ORDER BY created_at, rowid
                """,
                (parent_meta_envelope_id,),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    async def delete(self, record_id: str) -> bool:
        """Delete a single record. Children are left in place.

        Returns:
            True if deleted, False if not found
        """
        require_id(record_id, "id")
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM meta_envelope_maps WHERE id = ?", (record_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug("Deleted meta-envelope record", extra={"record_id": record_id})
        return deleted

    async def find_orphans(self) -> list[MetaEnvelopeRecord]:
        """Records whose parent reference no longer resolves."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT c.*
                FROM meta_envelope_maps c
                LEFT JOIN meta_envelope_maps p
                    ON p.meta_envelope_id = c.parent_meta_envelope_id
                WHERE c.parent_meta_envelope_id IS NOT NULL AND p.id IS NULL
                ORDER BY c.created_at, c.rowid
                """
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    async def get_all(self) -> list[MetaEnvelopeRecord]:
        """Return every record. Unbounded; for audit only."""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM meta_envelope_maps ORDER BY created_at, rowid"
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def _lookup(
        self,
        conn: sqlite3.Connection,
        column: str,
        value: str,
    ) -> MetaEnvelopeRecord | None:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM meta_envelope_maps WHERE {column} = ?",
            (value,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def _has_ancestor(
        self,
        conn: sqlite3.Connection,
        start_meta_envelope_id: str,
        ancestor_meta_envelope_id: str,
    ) -> bool:
        """Whether the parent chain above start references ancestor.

        Follows parent_meta_envelope_id links, including a dangling link left
        by a deleted parent. UNION stops the walk on any pre-existing loop.
        """
        row = conn.execute(
            """
            WITH RECURSIVE chain(meta_envelope_id, parent_meta_envelope_id) AS (
                SELECT meta_envelope_id, parent_meta_envelope_id
                FROM meta_envelope_maps WHERE meta_envelope_id = ?
                UNION
                SELECT m.meta_envelope_id, m.parent_meta_envelope_id
                FROM meta_envelope_maps m
                JOIN chain c ON m.meta_envelope_id = c.parent_meta_envelope_id
            )
            SELECT 1 FROM chain WHERE parent_meta_envelope_id = ? LIMIT 1
            """,
            (start_meta_envelope_id, ancestor_meta_envelope_id),
        ).fetchone()
        return row is not None


def _row_to_record(row: sqlite3.Row) -> MetaEnvelopeRecord:
    return MetaEnvelopeRecord(
        id=row["id"],
        meta_envelope_id=row["meta_envelope_id"],
        internal_id=row["internal_id"],
        entity_type=row["entity_type"],
        parent_meta_envelope_id=row["parent_meta_envelope_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
