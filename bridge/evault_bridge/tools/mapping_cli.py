"""
Mapping CLI tool for the eVault bridge.

This tool inspects the local mapping stores for reconciliation and audit:
- list: Print flat local/global mappings
- lookup: Resolve a local id or a global id
- tree: Walk a meta-envelope's descendants level by level
- orphans: Report meta-envelope records whose parent is gone
- export: Dump both stores as YAML

Usage:
    evault-bridge-mappings list --format json
    evault-bridge-mappings lookup --local post-42
    evault-bridge-mappings tree 0b5e...c1
    evault-bridge-mappings orphans
    evault-bridge-mappings export --output mappings.yaml

Invariants:
    - Read-only: never mutates a store, and never creates a missing one
      (exit 2 when either database is absent)
    - orphans exits non-zero when any orphan exists
    - lookup exits non-zero on a miss

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts parsing it
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from ..config import StorageConfig
from ..errors import BridgeError
from ..mapping import MappingStore, MetaEnvelopeMap, MetaEnvelopeRecord

logger = logging.getLogger(__name__)


class MappingCLI:
    """CLI operations over opened mapping stores.

    Example:
        >>> cli = MappingCLI(mapping_store, meta_envelope_map)
        >>> print(await cli.list_mappings(fmt="json"))
        >>> levels = await cli.tree("me-post-1")
    """

    def __init__(self, mapping_store: MappingStore, meta_envelope_map: MetaEnvelopeMap) -> None:
        self.mapping_store = mapping_store
        self.meta_envelope_map = meta_envelope_map

    async def list_mappings(self, fmt: str = "text") -> str:
        """Render all flat mappings."""
        entries = await self.mapping_store.get_all_mappings()

        if fmt == "json":
            return json.dumps([e.to_dict() for e in entries], indent=2)

        if not entries:
            return "No mappings"
        return "\n".join(f"{e.local_id}\t{e.global_id}" for e in entries)

    async def lookup(
        self,
        local_id: str | None = None,
        global_id: str | None = None,
    ) -> str | None:
        """Resolve one direction of the mapping.

        Returns:
            The counterpart id, or None on a miss
        """
        if local_id is not None:
            return await self.mapping_store.get_global_id(local_id)
        if global_id is not None:
            return await self.mapping_store.get_local_id(global_id)
        raise ValueError("Either local_id or global_id is required")

    async def tree(self, meta_envelope_id: str) -> list[list[MetaEnvelopeRecord]]:
        """Descendants of a meta-envelope, grouped by depth.

        Returns:
            levels[0] holds the direct children, levels[1] grandchildren, ...
        """
        levels: list[list[MetaEnvelopeRecord]] = []
        frontier = [meta_envelope_id]
        seen = {meta_envelope_id}

        while frontier:
            level: list[MetaEnvelopeRecord] = []
            for parent_id in frontier:
                for child in await self.meta_envelope_map.find_children(parent_id):
                    if child.meta_envelope_id not in seen:
                        seen.add(child.meta_envelope_id)
                        level.append(child)
            if not level:
                break
            levels.append(level)
            frontier = [r.meta_envelope_id for r in level]

        return levels

    async def orphans(self) -> list[MetaEnvelopeRecord]:
        return await self.meta_envelope_map.find_orphans()

    async def export(self) -> str:
        """Dump both stores as YAML."""
        data: dict[str, Any] = {
            "version": 1,
            "mappings": [e.to_dict() for e in await self.mapping_store.get_all_mappings()],
            "meta_envelopes": [r.to_dict() for r in await self.meta_envelope_map.get_all()],
        }
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def _format_record(record: MetaEnvelopeRecord) -> str:
    parent = record.parent_meta_envelope_id or "-"
    return f"{record.meta_envelope_id}\t{record.entity_type}\t{record.internal_id}\tparent={parent}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="evault-bridge-mappings",
        description="Inspect eVault bridge mapping stores",
    )
    parser.add_argument(
        "--data-dir",
        help="Directory holding the mapping databases (default: MAPPING_DB_PATH)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List flat mappings")
    list_parser.add_argument("--format", choices=["text", "json"], default="text")

    lookup_parser = subparsers.add_parser("lookup", help="Resolve a local or global id")
    group = lookup_parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--local", dest="local_id", help="Local id to resolve")
    group.add_argument("--global", dest="global_id", help="Global id to resolve")

    tree_parser = subparsers.add_parser("tree", help="Show descendants of a meta-envelope")
    tree_parser.add_argument("meta_envelope_id")

    subparsers.add_parser("orphans", help="List records with a missing parent")

    export_parser = subparsers.add_parser("export", help="Export both stores as YAML")
    export_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    return parser


async def run(args: argparse.Namespace, storage: StorageConfig) -> int:
    """Execute a parsed command. Returns the process exit code.

    Raises:
        StorageError: If either database does not exist under storage.data_dir
    """
    mapping_store = MappingStore(
        storage.mapping_db_path,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
        cache_size_pages=storage.cache_size_pages,
    )
    meta_envelope_map = MetaEnvelopeMap(
        storage.meta_envelope_db_path,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
        cache_size_pages=storage.cache_size_pages,
    )

    await mapping_store.open(create=False)
    try:
        await meta_envelope_map.open(create=False)
        try:
            return await _dispatch(args, MappingCLI(mapping_store, meta_envelope_map))
        finally:
            await meta_envelope_map.close()
    finally:
        await mapping_store.close()


async def _dispatch(args: argparse.Namespace, cli: MappingCLI) -> int:
    if args.command == "list":
        print(await cli.list_mappings(fmt=args.format))
        return 0

    if args.command == "lookup":
        result = await cli.lookup(local_id=args.local_id, global_id=args.global_id)
        if result is None:
            print("Not mapped", file=sys.stderr)
            return 1
        print(result)
        return 0

    if args.command == "tree":
        levels = await cli.tree(args.meta_envelope_id)
        if not levels:
            print(f"{args.meta_envelope_id} has no children")
            return 0
        print(args.meta_envelope_id)
        for depth, level in enumerate(levels, start=1):
            for record in level:
                print(f"{'  ' * depth}{_format_record(record)}")
        return 0

    if args.command == "orphans":
        orphans = await cli.orphans()
        if not orphans:
            print("No orphaned records")
            return 0
        print(f"Found {len(orphans)} orphaned record(s):")
        for record in orphans:
            print(f"  - {_format_record(record)}")
        return 1

    if args.command == "export":
        output = await cli.export()
        if args.output:
            Path(args.output).write_text(output)
            print(f"Mappings exported to {args.output}", file=sys.stderr)
        else:
            print(output, end="")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    storage = StorageConfig.from_env()
    if args.data_dir:
        storage = replace(storage, data_dir=args.data_dir)

    try:
        exit_code = asyncio.run(run(args, storage))
    except BridgeError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        exit_code = 2

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
