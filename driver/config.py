import os


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _str_env(name: str, default: str) -> str:
    return str(os.getenv(name, default)).strip()


ROOT_DIR = _str_env("LONGHORN_ROOT", "/var/lib/rancher/longhorn")
DEV_DIR = _str_env("LONGHORN_DEV_DIR", "/dev/longhorn")
METADATA_URL = _str_env("LONGHORN_METADATA_URL", "http://rancher-metadata/2015-12-19")
CATTLE_URL = _str_env("CATTLE_URL", "")
CATTLE_ACCESS_KEY = _str_env("CATTLE_ACCESS_KEY", "")
CATTLE_SECRET_KEY = _str_env("CATTLE_SECRET_KEY", "")
DRIVER_PORT = _int_env("LONGHORN_DRIVER_PORT", 80)
COMMAND_TIMEOUT = _int_env("LONGHORN_COMMAND_TIMEOUT", 60)
HTTP_TIMEOUT = _int_env("LONGHORN_HTTP_TIMEOUT", 10)

MOUNTS_DIR = "mounts"
FAKE_MOUNTS_DIR = "fake-mounts"
LOCAL_CACHE_DIR = "localcache"

VOLUME_STACK_PREFIX = "volume-"
DEFAULT_VOLUME_SIZE = "0b"

OPT_SIZE = "size"
OPT_REPLICA_BASE_IMAGE = "base-image"
OPT_DONT_FORMAT = "dont-format"
OPT_READ_IOPS = "read-iops"
OPT_WRITE_IOPS = "write-iops"

# Ceiling for device appearance and stack/service transitions
WAIT_TIMEOUT_SECONDS = 5 * 60
WAIT_INTERVAL_SECONDS = 1

# Service convergence after stack creation
SERVICE_RETRY_INTERVAL_SECONDS = 2
SERVICE_RETRY_MAX = 200


def plugin_socket_path(driver_name: str) -> str:
    """Unix socket the volume plugin listens on, as seen inside the container"""
    return f"/host/var/run/{driver_name}.sock"


def plugin_socket_path_on_host(driver_name: str) -> str:
    return f"/var/run/{driver_name}.sock"


def plugin_spec_path(driver_name: str) -> str:
    return f"/etc/docker/plugins/{driver_name}.spec"
