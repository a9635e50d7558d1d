"""Tests for the volume reconciliation store."""

import logging
import threading

import pytest

from driver.errors import ReconciliationError
from driver.volume_store import VolumeStore
from tests.fakes import OTHER_HOST_UUID

CONFIG = {"name": "vol1", "size": "1073741824", "sizeGB": "1"}


class TestLocalCache:
    def test_creates_cache_dir(self, store, root_dir) -> None:
        """The localcache directory exists after construction."""
        assert (root_dir / "localcache").is_dir()

    def test_create_is_idempotent(self, store, root_dir) -> None:
        """Recording a volume twice leaves one marker."""
        store.create("vol1")
        store.create("vol1")
        assert [p.name for p in (root_dir / "localcache").iterdir()] == ["vol1"]
        assert store.contains("vol1")

    def test_delete_is_idempotent(self, store) -> None:
        """Forgetting an unknown volume is fine."""
        store.delete("vol1")
        store.create("vol1")
        store.delete("vol1")
        store.delete("vol1")
        assert not store.contains("vol1")

    @pytest.mark.parametrize("name", ["", ".", "..", "a/b"])
    def test_rejects_path_like_names(self, store, name: str) -> None:
        """Names that would escape the cache directory are refused."""
        with pytest.raises(ValueError):
            store.create(name)

    def test_unwritable_root(self, metadata, tmp_path) -> None:
        """A root that cannot hold the cache fails construction."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(ReconciliationError, match="localcache"):
            VolumeStore(metadata, str(blocker))


class TestGet:
    def test_absent(self, store) -> None:
        """Neither source knows the volume."""
        lookup = store.get("vol1")
        assert lookup.volume is None
        assert lookup.moved is False

    def test_present_in_both(self, store, metadata) -> None:
        """Topology and cache agree."""
        metadata.add_volume("vol1", CONFIG)
        store.create("vol1")

        lookup = store.get("vol1")
        assert lookup.volume.name == "vol1"
        assert lookup.volume.mountpoint == ""
        assert lookup.moved is False
        assert lookup.config.size_gb == "1"

    def test_topology_only_heals_cache(self, store, metadata) -> None:
        """A volume scheduled here but unknown locally gets a cache record."""
        metadata.add_volume("vol1", CONFIG)
        assert not store.contains("vol1")

        lookup = store.get("vol1")

        assert lookup.volume is not None
        assert lookup.moved is False
        assert store.contains("vol1")

    def test_cache_only_is_moved(self, store) -> None:
        """A volume known locally but scheduled elsewhere has moved."""
        store.create("vol1")

        lookup = store.get("vol1")

        assert lookup.moved is True
        assert lookup.volume.mountpoint == "moved"

    def test_controller_on_other_host_is_not_here(self, store, metadata) -> None:
        """Only controllers on this host count as topology presence."""
        metadata.add_volume("vol1", CONFIG, host_uuid=OTHER_HOST_UUID)
        assert store.get("vol1").volume is None

    def test_mountpoint_from_mounts_dir(self, store, metadata, root_dir) -> None:
        """An existing mount directory is reported as the mountpoint."""
        metadata.add_volume("vol1", CONFIG)
        (root_dir / "mounts" / "vol1").mkdir(parents=True)
        assert store.get("vol1").volume.mountpoint == str(root_dir / "mounts" / "vol1")

    def test_mountpoint_from_fake_mounts_dir(self, store, metadata, root_dir) -> None:
        """Fake mounts are reported too."""
        metadata.add_volume("vol1", CONFIG)
        (root_dir / "fake-mounts" / "vol1").mkdir(parents=True)
        assert store.get("vol1").volume.mountpoint == str(root_dir / "fake-mounts" / "vol1")

    def test_host_uuid_resolved_once(self, store, metadata) -> None:
        """The host identity is looked up on first use only."""
        store.get("vol1")
        store.get("vol2")
        store.list()
        assert metadata.container_calls == 1

    def test_metadata_failure(self, store, metadata) -> None:
        """Topology errors surface as ReconciliationError."""
        from driver.errors import MetadataError

        def broken():
            raise MetadataError("connection refused")

        metadata.get_stacks = broken
        with pytest.raises(ReconciliationError, match="connection refused"):
            store.get("vol1")


class TestTopologyFiltering:
    def test_skips_non_volume_stacks(self, store, metadata) -> None:
        """Stacks without the volume prefix are ignored."""
        metadata.add_volume("vol1", CONFIG)
        metadata.stacks[0]["name"] = "healthcheck"
        assert store.get("vol1").volume is None

    @pytest.mark.parametrize("bad_config", [None, "not-a-map", {}])
    def test_skips_bad_config(self, store, metadata, bad_config, caplog) -> None:
        """Controllers without a usable config are skipped with a warning."""
        metadata.add_volume("vol1", bad_config)
        with caplog.at_level(logging.WARNING):
            assert store.get("vol1").volume is None
        assert "Won't list as a volume" in caplog.text

    def test_undecodable_config(self, store, metadata, caplog) -> None:
        """A config that does not validate is skipped with an error."""
        metadata.add_volume("vol1", {"dontFormat": "maybe"})
        with caplog.at_level(logging.ERROR):
            assert store.get("vol1").volume is None
        assert "Error decoding volume config" in caplog.text


class TestList:
    def test_union_with_moved(self, store, metadata) -> None:
        """Topology volumes are listed normally, cache-only ones as moved."""
        metadata.add_volume("vol1", CONFIG)
        store.create("vol1")
        store.create("vol2")

        volumes = {v.name: v.mountpoint for v in store.list()}

        assert volumes == {"vol1": "", "vol2": "moved"}

    def test_each_volume_once(self, store, metadata) -> None:
        """A volume in both sources appears once."""
        metadata.add_volume("vol1", CONFIG)
        store.create("vol1")
        assert [v.name for v in store.list()] == ["vol1"]

    def test_list_does_not_heal(self, store, metadata) -> None:
        """Listing reports topology volumes without touching the cache."""
        metadata.add_volume("vol1", CONFIG)
        store.list()
        assert not store.contains("vol1")


class TestConcurrency:
    def test_parallel_gets_and_creates(self, store, metadata) -> None:
        """Concurrent lookups and cache writes do not fail."""
        metadata.add_volume("vol1", CONFIG)
        errors = []

        def worker(i: int):
            try:
                for _ in range(20):
                    store.create(f"v{i}")
                    assert store.get("vol1").volume is not None
                    store.delete(f"v{i}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
