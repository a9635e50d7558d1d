"""
Device & Mount Manager

Waits for a volume's block device to appear and mounts/unmounts it.
Mount and unmount are idempotent. A volume created with dont-format gets a
plain directory instead of a real mount (a "fake mount") and never touches
the host mount utilities.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Sequence

from driver.config import FAKE_MOUNTS_DIR, MOUNTS_DIR, WAIT_INTERVAL_SECONDS, WAIT_TIMEOUT_SECONDS
from driver.models import VolumeConfig
from shared.backoff import backoff
from shared.command import execute

logger = logging.getLogger(__name__)

MOUNT_BIN = "mount"
UMOUNT_BIN = "umount"
MKFS_BIN = "mkfs.ext4"

Runner = Callable[[str, Sequence[str]], str]


class MountManager:
    def __init__(
        self,
        root_dir: str,
        dev_dir: str,
        runner: Runner = execute,
        wait_timeout: float = WAIT_TIMEOUT_SECONDS,
        wait_interval: float = WAIT_INTERVAL_SECONDS,
    ):
        self.root = Path(root_dir)
        self.dev_dir = Path(dev_dir)
        self.runner = runner
        self.wait_timeout = wait_timeout
        self.wait_interval = wait_interval

    def device_path(self, volume_name: str) -> str:
        return str(self.dev_dir / volume_name)

    def mount_point(self, volume_name: str) -> str:
        return str(self.root / MOUNTS_DIR / volume_name)

    def fake_mount_point(self, volume_name: str) -> str:
        return str(self.root / FAKE_MOUNTS_DIR / volume_name)

    def wait_for_device(self, device: str) -> None:
        """
        Block until the device node exists.

        Raises:
            WaitTimeoutError: The device did not appear in time
        """
        logger.info(f"Waiting for device {device}")
        backoff(
            self.wait_timeout,
            f"Failed to find {device}",
            lambda: os.path.exists(device),
            interval=self.wait_interval,
        )

    def format_device(self, device: str) -> None:
        logger.info(f"Formatting {device}")
        self.runner(MKFS_BIN, ["-F", device])

    def is_mounted(self, mount_point: str) -> bool:
        """Check the live mount table for mount_point"""
        output = self.runner(MOUNT_BIN, [])
        for line in output.splitlines():
            # "<device> on <mount point> type <fs> (<options>)"
            if f" on {mount_point} " in line:
                return True
        return False

    def mount(self, volume_name: str, config: VolumeConfig) -> str:
        """
        Mount the volume's device and return the mount point.

        Repeated calls on a mounted volume are no-ops.
        """
        if config.dont_format:
            mount_point = self.fake_mount_point(volume_name)
            logger.info(f"Creating fake mount directory for {volume_name} because dont-format option was specified")
            os.makedirs(mount_point, mode=0o744, exist_ok=True)
            return mount_point

        mount_point = self.mount_point(volume_name)
        os.makedirs(mount_point, mode=0o744, exist_ok=True)

        if self.is_mounted(mount_point):
            logger.info(f"Volume {volume_name} already mounted at {mount_point}")
            return mount_point

        device = self.device_path(volume_name)
        logger.info(f"Mounting volume {volume_name} ({device}) to {mount_point}")
        self.runner(MOUNT_BIN, [device, mount_point])
        return mount_point

    def unmount(self, volume_name: str, config: VolumeConfig) -> None:
        """
        Unmount the volume and remove its mount point directory.

        Directory removal failures are logged, not raised.
        """
        if config.dont_format:
            mount_point = self.fake_mount_point(volume_name)
            logger.info(f"Removing fake mount dir for {volume_name} because dont-format option was specified")
            self._remove_dir(mount_point)
            return

        mount_point = self.mount_point(volume_name)
        if not os.path.isdir(mount_point):
            logger.info(f"Umount called on unmounted volume {volume_name}")
            return

        if self.is_mounted(mount_point):
            self.runner(UMOUNT_BIN, [mount_point])
        else:
            logger.info(f"Volume {volume_name} not in mount table; removing stale mount point")

        self._remove_dir(mount_point)

    @staticmethod
    def _remove_dir(path: str) -> None:
        try:
            os.rmdir(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Cannot cleanup mount point directory {path} due to {e}")
