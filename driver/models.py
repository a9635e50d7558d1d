from __future__ import annotations

import enum
from typing import Dict, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

from driver.config import (
    DEFAULT_VOLUME_SIZE,
    OPT_DONT_FORMAT,
    OPT_READ_IOPS,
    OPT_REPLICA_BASE_IMAGE,
    OPT_SIZE,
    OPT_WRITE_IOPS,
)
from shared.size import convert_size

MOVED_MOUNTPOINT = "moved"

_TRUE_STRINGS = {"1", "t", "true", "yes", "y", "on"}

# ============================================================================
# ENUM DEFINITIONS
# ============================================================================

class Presence(str, enum.Enum):
    """Where a volume lives relative to this host"""
    ABSENT = "absent"
    PRESENT = "present"
    MOVED = "moved"


class ServiceState(str, enum.Enum):
    """Orchestration backend service/environment state"""
    ACTIVE = "active"
    ACTIVATING = "activating"
    INACTIVE = "inactive"
    UPGRADING = "upgrading"
    UPGRADED = "upgraded"
    FINISHING_UPGRADE = "finishing-upgrade"
    REMOVING = "removing"
    REMOVED = "removed"


def reconcile(in_topology: bool, in_cache: bool) -> Presence:
    """
    Decide a volume's presence from the two sources of truth.

    | in topology | in local cache | result  |
    |-------------|----------------|---------|
    | no          | no             | ABSENT  |
    | yes         | no             | PRESENT |
    | no          | yes            | MOVED   |
    | yes         | yes            | PRESENT |

    PRESENT without a cache entry means the cache needs healing; callers
    compare in_cache themselves.
    """
    if in_topology:
        return Presence.PRESENT
    if in_cache:
        return Presence.MOVED
    return Presence.ABSENT


# ============================================================================
# VOLUME MODELS
# ============================================================================

class Volume(BaseModel):
    """A named volume as reported to the plugin adapters"""
    name: str
    mountpoint: str = ""
    opts: Dict[str, str] = Field(default_factory=dict)


class VolumeConfig(BaseModel):
    """
    Immutable per-volume settings chosen at creation time.

    Serialized into the controller service metadata so the topology service
    can hand it back on later lookups.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, coerce_numbers_to_str=True)

    name: str = ""
    size: str = ""
    size_gb: str = Field(default="", alias="sizeGB")
    replica_base_image: str = Field(default="", alias="replicaBaseImage")
    read_iops: str = Field(default="", alias="readIOPS")
    write_iops: str = Field(default="", alias="writeIOPS")
    dont_format: bool = Field(default=False, alias="dontFormat")

    def to_json(self) -> str:
        """Compact JSON form, empty fields omitted"""
        return self.model_dump_json(by_alias=True, exclude_defaults=True)

    @classmethod
    def from_options(cls, name: str, opts: Optional[Dict[str, str]]) -> "VolumeConfig":
        """
        Build a config from the plugin's opaque option map.

        Raises:
            ValueError: The size option cannot be parsed
        """
        opts = opts or {}
        size_str = str(opts.get(OPT_SIZE) or DEFAULT_VOLUME_SIZE)
        try:
            size, size_gb = convert_size(size_str)
        except ValueError as e:
            raise ValueError(f"Can't parse size {size_str}. Error: {e}") from e

        return cls(
            name=name,
            size=size,
            size_gb=size_gb,
            replica_base_image=str(opts.get(OPT_REPLICA_BASE_IMAGE) or ""),
            read_iops=str(opts.get(OPT_READ_IOPS) or ""),
            write_iops=str(opts.get(OPT_WRITE_IOPS) or ""),
            dont_format=parse_bool(opts.get(OPT_DONT_FORMAT)),
        )


class VolumeLookup(NamedTuple):
    """Result of a reconciliation store lookup; volume is None when absent"""
    volume: Optional[Volume]
    config: VolumeConfig
    moved: bool


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_STRINGS
