"""Shared fixtures: temp state root, fakes, and a fully wired daemon."""

from pathlib import Path

import pytest

from driver.daemon import StorageDaemon
from driver.models import VolumeConfig
from driver.mounts import MountManager
from driver.stack import Stack
from driver.volume_store import VolumeStore
from tests.fakes import DRIVER_CONTAINER, DRIVER_NAME, IMAGE, FakeMetadata, FakeRancher, FakeRunner


@pytest.fixture
def root_dir(tmp_path: Path) -> Path:
    root = tmp_path / "root"
    root.mkdir()
    return root


@pytest.fixture
def dev_dir(tmp_path: Path) -> Path:
    dev = tmp_path / "dev"
    dev.mkdir()
    return dev


@pytest.fixture
def metadata() -> FakeMetadata:
    return FakeMetadata()


@pytest.fixture
def rancher(metadata: FakeMetadata) -> FakeRancher:
    return FakeRancher(metadata)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def store(metadata: FakeMetadata, root_dir: Path) -> VolumeStore:
    return VolumeStore(metadata, str(root_dir))


@pytest.fixture
def mounts(root_dir: Path, dev_dir: Path, runner: FakeRunner) -> MountManager:
    return MountManager(str(root_dir), str(dev_dir), runner=runner, wait_timeout=0.2, wait_interval=0.01)


def make_stack(rancher, volume_name: str, config: VolumeConfig = None, retry_max: int = 3) -> Stack:
    return Stack(
        volume_name,
        DRIVER_NAME,
        DRIVER_CONTAINER,
        IMAGE,
        config or VolumeConfig(),
        rancher,
        retry_interval=0,
        retry_max=retry_max,
        wait_interval=0,
    )


@pytest.fixture
def daemon(rancher, metadata, root_dir, dev_dir, store, mounts) -> StorageDaemon:
    return StorageDaemon(
        driver_container_name=DRIVER_CONTAINER,
        driver_name=DRIVER_NAME,
        volume_stack_image=IMAGE,
        client=rancher,
        metadata=metadata,
        root_dir=str(root_dir),
        dev_dir=str(dev_dir),
        store=store,
        mounts=mounts,
        stack_factory=lambda name, config: make_stack(rancher, name, config),
    )
