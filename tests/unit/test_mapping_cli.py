"""
Unit tests for the mapping CLI.

Tests cover:
- MappingCLI operations over real stores
- Command dispatch and exit codes through main()
"""

import asyncio
import json
import os
import tempfile

import pytest
import yaml

from bridge.evault_bridge.config import StorageConfig
from bridge.evault_bridge.mapping import MappingStore, MetaEnvelopeMap
from bridge.evault_bridge.tools import mapping_cli
from bridge.evault_bridge.tools.mapping_cli import MappingCLI, build_parser, main


async def _seed(data_dir):
    async with MappingStore(os.path.join(data_dir, "mappings.db"), wal_mode=False) as store:
        await store.store("post-1", "me-post-1")
        await store.store("user-1", "me-user-1")

    async with MetaEnvelopeMap(os.path.join(data_dir, "meta_envelope_maps.db"), wal_mode=False) as mem:
        await mem.create("root", "post-1", "post")
        await mem.create("c1", "comment-1", "comment", parent_meta_envelope_id="root")
        await mem.create("c2", "comment-2", "comment", parent_meta_envelope_id="root")
        await mem.create("r1", "reply-1", "reply", parent_meta_envelope_id="c1")
        doomed = await mem.create("doomed", "post-2", "post")
        await mem.create("lost", "comment-3", "comment", parent_meta_envelope_id="doomed")
        await mem.delete(doomed.id)


class TestMappingCLI:
    """Tests for MappingCLI."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def stores(self, data_dir):
        return (
            MappingStore(os.path.join(data_dir, "mappings.db"), wal_mode=False),
            MetaEnvelopeMap(os.path.join(data_dir, "meta_envelope_maps.db"), wal_mode=False),
        )

    @pytest.mark.asyncio
    async def test_list_json(self, data_dir, stores):
        await _seed(data_dir)
        async with stores[0], stores[1]:
            output = await MappingCLI(*stores).list_mappings(fmt="json")

        rows = json.loads(output)
        assert {(r["local_id"], r["global_id"]) for r in rows} == {
            ("post-1", "me-post-1"),
            ("user-1", "me-user-1"),
        }

    @pytest.mark.asyncio
    async def test_list_text_empty(self, stores):
        async with stores[0], stores[1]:
            assert await MappingCLI(*stores).list_mappings() == "No mappings"

    @pytest.mark.asyncio
    async def test_lookup_both_directions(self, data_dir, stores):
        await _seed(data_dir)
        async with stores[0], stores[1]:
            cli = MappingCLI(*stores)
            assert await cli.lookup(local_id="post-1") == "me-post-1"
            assert await cli.lookup(global_id="me-user-1") == "user-1"
            assert await cli.lookup(local_id="nope") is None

    @pytest.mark.asyncio
    async def test_tree_walks_levels(self, data_dir, stores):
        await _seed(data_dir)
        async with stores[0], stores[1]:
            levels = await MappingCLI(*stores).tree("root")

        assert [sorted(r.meta_envelope_id for r in level) for level in levels] == [
            ["c1", "c2"],
            ["r1"],
        ]

    @pytest.mark.asyncio
    async def test_orphans(self, data_dir, stores):
        await _seed(data_dir)
        async with stores[0], stores[1]:
            orphans = await MappingCLI(*stores).orphans()

        assert [o.meta_envelope_id for o in orphans] == ["lost"]

    @pytest.mark.asyncio
    async def test_export_yaml(self, data_dir, stores):
        await _seed(data_dir)
        async with stores[0], stores[1]:
            output = await MappingCLI(*stores).export()

        data = yaml.safe_load(output)
        assert data["version"] == 1
        assert len(data["mappings"]) == 2
        assert len(data["meta_envelopes"]) == 5


class TestMappingCLIMain:
    """Tests for the command-line entry point."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def seeded(self, data_dir):
        asyncio.run(_seed(data_dir))
        return data_dir

    def run_main(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
        return exc_info.value.code

    def test_lookup_hit(self, seeded, capsys):
        code = self.run_main(["--data-dir", seeded, "lookup", "--local", "post-1"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "me-post-1"

    def test_lookup_miss(self, seeded):
        assert self.run_main(["--data-dir", seeded, "lookup", "--global", "me-nope"]) == 1

    def test_orphans_exit_code(self, seeded, capsys):
        code = self.run_main(["--data-dir", seeded, "orphans"])

        assert code == 1
        assert "lost" in capsys.readouterr().out

    def test_tree_output(self, seeded, capsys):
        code = self.run_main(["--data-dir", seeded, "tree", "root"])

        out = capsys.readouterr().out
        assert code == 0
        assert out.splitlines()[0] == "root"
        assert "    r1\treply\treply-1\tparent=c1" in out

    def test_export_to_file(self, seeded):
        path = os.path.join(seeded, "export.yaml")

        code = self.run_main(["--data-dir", seeded, "export", "--output", path])

        assert code == 0
        with open(path) as f:
            assert len(yaml.safe_load(f)["mappings"]) == 2

    def test_validation_error_exit_code(self, seeded, capsys):
        code = self.run_main(["--data-dir", seeded, "lookup", "--local", ""])

        assert code == 2
        assert "VALIDATION_ERROR" in capsys.readouterr().err

    def test_missing_data_dir_is_not_created(self, data_dir, capsys):
        """A mistyped --data-dir fails instead of reporting empty stores."""
        missing = os.path.join(data_dir, "typo")

        code = self.run_main(["--data-dir", missing, "list"])

        assert code == 2
        assert "STORAGE_ERROR" in capsys.readouterr().err
        assert not os.path.exists(missing)

    def test_missing_meta_envelope_db_is_not_created(self, data_dir, capsys):
        asyncio.run(MappingStore(os.path.join(data_dir, "mappings.db"), wal_mode=False).open())

        code = self.run_main(["--data-dir", data_dir, "orphans"])

        assert code == 2
        assert "meta_envelope_maps.db" in capsys.readouterr().err
        assert not os.path.exists(os.path.join(data_dir, "meta_envelope_maps.db"))

    def test_storage_tuning_reaches_both_stores(self, seeded, monkeypatch):
        opened = []

        class RecordingMappingStore(MappingStore):
            async def open(self, create=True):
                opened.append(self)
                await super().open(create=create)

        class RecordingMetaEnvelopeMap(MetaEnvelopeMap):
            async def open(self, create=True):
                opened.append(self)
                await super().open(create=create)

        monkeypatch.setattr(mapping_cli, "MappingStore", RecordingMappingStore)
        monkeypatch.setattr(mapping_cli, "MetaEnvelopeMap", RecordingMetaEnvelopeMap)
        storage = StorageConfig(data_dir=seeded, wal_mode=False, busy_timeout_ms=1234, cache_size_pages=-2048)

        code = asyncio.run(mapping_cli.run(build_parser().parse_args(["list"]), storage))

        assert code == 0
        assert len(opened) == 2
        assert all(s.cache_size_pages == -2048 for s in opened)
        assert all(s.busy_timeout_ms == 1234 for s in opened)
        assert all(not s.is_open for s in opened)
