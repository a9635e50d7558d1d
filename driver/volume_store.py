"""
Volume Reconciliation Store

Answers "does volume V live on this host, and has it moved?" by merging two
sources of truth:
- the topology snapshot: controller services scheduled on this host, pulled
  fresh from the metadata service on every query
- the local cache: one empty marker file per volume under <root>/localcache,
  this host's private ledger

Both reads of a query happen under the shared side of one RWLock so they are
taken at a consistent instant; cache mutations take the exclusive side.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Set

from pydantic import ValidationError

from driver.config import FAKE_MOUNTS_DIR, LOCAL_CACHE_DIR, MOUNTS_DIR, VOLUME_STACK_PREFIX
from driver.errors import DriverError, ReconciliationError
from driver.models import MOVED_MOUNTPOINT, Presence, Volume, VolumeConfig, VolumeLookup, reconcile
from shared.rwlock import RWLock

logger = logging.getLogger(__name__)

CONTROLLER_SERVICE = "controller"


class VolumeStore:
    """
    Merges topology snapshot and local cache into per-volume verdicts.
    """

    def __init__(self, metadata, root_dir: str):
        """
        Initialize volume store.

        Args:
            metadata: MetadataClient (or a fake with the same methods)
            root_dir: Durable root holding the localcache and mounts subtrees
        """
        self.metadata = metadata
        self.root_dir = Path(root_dir)
        self.cache_dir = self.root_dir / LOCAL_CACHE_DIR
        self._lock = RWLock()
        self._host_uuid: Optional[str] = None

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ReconciliationError(f"Couldn't create localcache dir. Error: {e}") from e

    # ========================================================================
    # LOCAL CACHE MUTATION
    # ========================================================================

    def create(self, name: str) -> None:
        """Record that this host knows the volume (idempotent)"""
        with self._lock.write():
            self._write_marker(name)

    def delete(self, name: str) -> None:
        """Forget the volume locally (idempotent)"""
        with self._lock.write():
            path = self._marker_path(name)
            try:
                path.unlink()
            except FileNotFoundError:
                logger.debug(f"No local cache record for {name}")
            except OSError as e:
                raise ReconciliationError(f"Couldn't remove local cache record for {name}. Error: {e}") from e

    def contains(self, name: str) -> bool:
        with self._lock.read():
            return self._marker_path(name).is_file()

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get(self, name: str) -> VolumeLookup:
        """
        Look up one volume.

        Returns:
            VolumeLookup(volume, config, moved); volume is None when absent

        Raises:
            ReconciliationError: Topology or local cache could not be read
        """
        self._ensure_host_uuid()

        with self._lock.read():
            in_topology = self._volumes_from_topology()
            in_cache = self._volumes_in_local_cache()

        config = in_topology.get(name)
        cached = name in in_cache
        presence = reconcile(config is not None, cached)

        if presence is Presence.ABSENT:
            return VolumeLookup(None, VolumeConfig(), False)

        if presence is Presence.PRESENT and not cached:
            # Topology places it here but this host has no record yet
            logger.info(f"Volume {name} found in topology only; adding local cache record")
            self.create(name)

        moved = presence is Presence.MOVED
        return VolumeLookup(self._construct_volume(name, moved), config or VolumeConfig(), moved)

    def list(self) -> List[Volume]:
        """
        All volumes known to this host.

        Topology volumes are reported normally; volumes only in the local cache
        are reported as moved.
        """
        self._ensure_host_uuid()

        with self._lock.read():
            in_topology = self._volumes_from_topology()
            in_cache = self._volumes_in_local_cache()

        volumes = [self._construct_volume(name, False) for name in sorted(in_topology)]
        for name in sorted(in_cache - set(in_topology)):
            volumes.append(self._construct_volume(name, True))
        return volumes

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _marker_path(self, name: str) -> Path:
        if not name or "/" in name or name in (".", ".."):
            raise ValueError(f"Invalid volume name: {name!r}")
        return self.cache_dir / name

    def _write_marker(self, name: str) -> None:
        path = self._marker_path(name)
        try:
            path.touch(mode=0o644, exist_ok=True)
        except OSError as e:
            raise ReconciliationError(f"Couldn't write local cache record for {name}. Error: {e}") from e

    def _ensure_host_uuid(self) -> str:
        if self._host_uuid:
            return self._host_uuid

        with self._lock.write():
            if not self._host_uuid:
                try:
                    container = self.metadata.get_self_container()
                except DriverError as e:
                    raise ReconciliationError(f"Couldn't resolve this host from metadata. Error: {e}") from e
                host_uuid = str(container.get("host_uuid") or "")
                if not host_uuid:
                    raise ReconciliationError("Metadata self container has no host_uuid")
                self._host_uuid = host_uuid
                logger.info(f"Resolved host uuid {host_uuid}")
        return self._host_uuid

    def _volumes_in_local_cache(self) -> Set[str]:
        try:
            return {entry.name for entry in os.scandir(self.cache_dir) if entry.is_file()}
        except OSError as e:
            raise ReconciliationError(f"Couldn't obtain list of volumes from local cache. Error: {e}") from e

    def _volumes_from_topology(self) -> Dict[str, VolumeConfig]:
        try:
            stacks = self.metadata.get_stacks()
        except DriverError as e:
            raise ReconciliationError(f"Couldn't obtain list of volumes from metadata. Error: {e}") from e

        volumes: Dict[str, VolumeConfig] = {}
        for stack in stacks:
            if not str(stack.get("name") or "").startswith(VOLUME_STACK_PREFIX):
                continue
            for service in stack.get("services") or []:
                if service.get("name") != CONTROLLER_SERVICE:
                    continue
                if not any(c.get("host_uuid") == self._host_uuid for c in service.get("containers") or []):
                    continue
                entry = self._config_from_service(service)
                if entry:
                    volumes[entry[0]] = entry[1]
        return volumes

    @staticmethod
    def _config_from_service(service: dict):
        volume_md = (service.get("metadata") or {}).get("volume")
        if not isinstance(volume_md, dict):
            return None
        name = volume_md.get("volume_name")
        if not isinstance(name, str) or not name:
            return None

        raw = volume_md.get("volume_config")
        if raw is None:
            logger.warning(f"Volume {name} doesn't have config. Won't list as a volume.")
            return None
        if not isinstance(raw, dict):
            logger.warning(f"Volume {name}'s config isn't a map. Won't list as a volume.")
            return None
        if not raw:
            logger.warning(f"Volume {name}'s config is empty. Won't list as a volume.")
            return None

        try:
            return name, VolumeConfig.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Error decoding volume config for {name}: {e}. Won't list as a volume")
            return None

    def _construct_volume(self, name: str, moved: bool) -> Volume:
        if moved:
            return Volume(name=name, mountpoint=MOVED_MOUNTPOINT)

        mountpoint = ""
        for subtree in (MOUNTS_DIR, FAKE_MOUNTS_DIR):
            candidate = self.root_dir / subtree / name
            if candidate.is_dir():
                mountpoint = str(candidate)
                break
        return Volume(name=name, mountpoint=mountpoint)
