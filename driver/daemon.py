"""
Storage Daemon

Facade consumed by the plugin adapters. Composes the reconciliation store,
the stack orchestrator and the device/mount manager into the volume
lifecycle: create, get, list, delete, mount, unmount.

Calls for the same volume name that mutate state (create, delete, mount,
unmount) are serialized by a per-name lock. Calls for different volumes and
read-only calls (get, list) run concurrently.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from driver.config import DEV_DIR, ROOT_DIR
from driver.errors import DriverError, VolumeCreateError, VolumeMovedError, VolumeNotFoundError
from driver.models import Volume, VolumeConfig
from driver.mounts import MountManager
from driver.stack import Stack
from driver.volume_store import VolumeStore

logger = logging.getLogger(__name__)

StackFactory = Callable[[str, VolumeConfig], Stack]


class _NameLocks:
    """One mutex per volume name, dropped when nobody holds or waits on it"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(name, threading.Lock())
            self._users[name] = self._users.get(name, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[name] -= 1
                if self._users[name] == 0:
                    del self._users[name]
                    del self._locks[name]


class StorageDaemon:
    """
    Volume lifecycle facade.
    """

    def __init__(
        self,
        driver_container_name: str,
        driver_name: str,
        volume_stack_image: str,
        client,
        metadata,
        root_dir: str = ROOT_DIR,
        dev_dir: str = DEV_DIR,
        store: Optional[VolumeStore] = None,
        mounts: Optional[MountManager] = None,
        stack_factory: Optional[StackFactory] = None,
    ):
        """
        Initialize storage daemon.

        Args:
            driver_container_name: This driver's container; controllers are pinned next to it
            driver_name: Driver name, part of every stack's external id
            volume_stack_image: Image for the volume stack services
            client: RancherClient for the orchestration backend
            metadata: MetadataClient for the topology service
            root_dir: Durable root directory (local cache + mounts)
            dev_dir: Directory where volume block devices appear
            store: Optional pre-built VolumeStore
            mounts: Optional pre-built MountManager
            stack_factory: Optional Stack builder (tests shorten poll intervals)
        """
        self.driver_container_name = driver_container_name
        self.driver_name = driver_name
        self.volume_stack_image = volume_stack_image
        self.client = client
        self.metadata = metadata
        self.root_dir = root_dir
        self.store = store or VolumeStore(metadata, root_dir)
        self.mounts = mounts or MountManager(root_dir, dev_dir)
        self._stack_factory = stack_factory or self._default_stack
        self._locks = _NameLocks()

        logger.info(f"Storage daemon initialized: driver={driver_name} container={driver_container_name} root={root_dir}")

    def _default_stack(self, volume_name: str, config: VolumeConfig) -> Stack:
        return Stack(
            volume_name,
            self.driver_name,
            self.driver_container_name,
            self.volume_stack_image,
            config,
            self.client,
        )

    def new_stack(self, volume_name: str, config: Optional[VolumeConfig] = None) -> Stack:
        return self._stack_factory(volume_name, config or VolumeConfig())

    # ========================================================================
    # QUERIES
    # ========================================================================

    def list(self) -> List[Volume]:
        logger.info("Listing volumes")
        return self.store.list()

    def get(self, name: str) -> Optional[Volume]:
        """Return the volume (mountpoint "moved" if another host owns it) or None"""
        logger.info(f"Getting volume {name}")
        return self.store.get(name).volume

    # ========================================================================
    # CREATE / DELETE
    # ========================================================================

    def create(self, volume: Volume) -> Volume:
        """
        Create the volume and its backing stack.

        A new stack's device is awaited and formatted (unless dont-format),
        then the controller is pinned next to this driver. If this call
        created the stack, a failure removes the stack and the local record.
        A stack that already existed is left alone. Either way the failure is
        raised as VolumeCreateError.
        """
        logger.info(f"Creating volume {volume.name} with options {volume.opts}")

        with self._locks.hold(volume.name):
            self.store.create(volume.name)

            try:
                config = VolumeConfig.from_options(volume.name, volume.opts)
            except ValueError as e:
                self._forget(volume.name)
                raise VolumeCreateError(str(e)) from e

            stack = self.new_stack(volume.name, config)
            is_new = False
            try:
                # find() first only to learn whether this is a brand-new stack
                is_new = stack.find() is None
                self._do_create(volume, stack, config, is_new)
            except Exception as e:
                logger.error(f"Error creating stack for volume {volume.name}: {e}")
                if is_new:
                    self._cleanup_stack(stack)
                    self._forget(volume.name)
                raise VolumeCreateError(f"Error creating stack for volume {volume.name}: {e}") from e

        return volume

    def _do_create(self, volume: Volume, stack: Stack, config: VolumeConfig, is_new: bool) -> None:
        # create() also ensures an existing stack is active
        stack.create()

        if is_new:
            device = self.mounts.device_path(volume.name)
            self.mounts.wait_for_device(device)

            if config.dont_format:
                logger.info(f"Skipping formatting for volume {volume.name}")
            else:
                self.mounts.format_device(device)

        stack.move_controller()

    def _cleanup_stack(self, stack: Stack) -> None:
        if stack.removed:
            return
        try:
            stack.delete()
        except Exception as e:
            logger.error(f"Failed to clean up stack {stack.name}: {e}")

    def _forget(self, name: str) -> None:
        try:
            self.store.delete(name)
        except DriverError as e:
            logger.error(f"Failed to remove local cache record for {name}: {e}")

    def delete(self, name: str, remove_stack: bool = False) -> None:
        """
        Forget the volume locally, optionally tearing down its stack first.

        Safe for volumes that were never fully created.
        """
        logger.info(f"Deleting volume {name} (remove_stack={remove_stack})")

        with self._locks.hold(name):
            if remove_stack:
                self.new_stack(name).delete()
            self.store.delete(name)

    # ========================================================================
    # MOUNT / UNMOUNT
    # ========================================================================

    def mount(self, name: str) -> Volume:
        """
        Mount a volume that lives on this host.

        Raises:
            VolumeNotFoundError: Unknown volume
            VolumeMovedError: Volume now lives on another host
        """
        logger.info(f"Mounting volume {name}")

        with self._locks.hold(name):
            lookup = self.store.get(name)
            if lookup.volume is None:
                raise VolumeNotFoundError(f"No such volume: {name}")
            if lookup.moved:
                raise VolumeMovedError(f"Volume {name} no longer resides on this host and cannot be mounted")

            self.new_stack(name, lookup.config).create()
            self.mounts.wait_for_device(self.mounts.device_path(name))

            mount_point = self.mounts.mount(name, lookup.config)

        return lookup.volume.model_copy(update={"mountpoint": mount_point})

    def unmount(self, name: str) -> None:
        """Unmount a volume; nonexistent or moved volumes are a successful no-op"""
        logger.info(f"Unmounting volume {name}")

        with self._locks.hold(name):
            lookup = self.store.get(name)
            if lookup.volume is None or lookup.moved:
                logger.info(f"Umount called on a nonexistent or moved volume {name}. No-op.")
                return

            self.mounts.unmount(name, lookup.config)

    def wait_for_device(self, name: str) -> str:
        """Block until the volume's device appears and return its path"""
        device = self.mounts.device_path(name)
        self.mounts.wait_for_device(device)
        return device
