"""
Longhorn Driver Launcher Script

Launch the volume driver daemon on a host.

This script:
1. Resolves driver name, container and image from the metadata service
2. Connects to the orchestration API
3. Bind-mounts the host's /dev so volume devices are visible
4. Registers the Docker plugin spec file
5. Starts the volume plugin listener and the delete API

Usage:
    python scripts/run_driver_service.py --cattle-url http://rancher:8080/v1/projects/1a5

Environment Variables:
    CATTLE_URL: Orchestration API URL
    CATTLE_ACCESS_KEY: Orchestration API access key
    CATTLE_SECRET_KEY: Orchestration API secret key
    LONGHORN_METADATA_URL: Metadata service URL (default: http://rancher-metadata/2015-12-19)
    LONGHORN_ROOT: Durable state root (default: /var/lib/rancher/longhorn)
    LONGHORN_COMMAND_TIMEOUT: Host command timeout in seconds (default: 60)
"""

import sys
import logging
import argparse
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from driver import config
from driver.daemon import StorageDaemon
from driver.errors import DriverError
from driver.metadata_client import MetadataClient, get_metadata_config
from driver.rancher_client import RancherClient
from driver.service import DriverService
from shared.command import CommandError, execute, set_default_timeout
from shared.logging_config import setup_logging

logger = logging.getLogger(__name__)


def write_plugin_spec(driver_name: str) -> str:
    """Tell Docker where the plugin socket lives"""
    spec_path = Path(config.plugin_spec_path(driver_name))
    spec_path.parent.mkdir(parents=True, exist_ok=True)
    spec_path.write_text(f"unix://{config.plugin_socket_path_on_host(driver_name)}")
    return str(spec_path)


def main():
    parser = argparse.ArgumentParser(description="Docker volume plugin for Rancher Longhorn")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging level")
    parser.add_argument("--cattle-url", default=config.CATTLE_URL, help="Orchestration API URL")
    parser.add_argument("--cattle-access-key", default=config.CATTLE_ACCESS_KEY, help="Orchestration API access key")
    parser.add_argument("--cattle-secret-key", default=config.CATTLE_SECRET_KEY, help="Orchestration API secret key")
    parser.add_argument("--metadata-url", default=config.METADATA_URL, help="Metadata service URL")
    parser.add_argument("--root", default=config.ROOT_DIR, help="Durable state root directory")
    parser.add_argument("--dev-dir", default=config.DEV_DIR, help="Directory where volume devices appear")
    parser.add_argument("--port", type=int, default=config.DRIVER_PORT, help="Delete API port")
    parser.add_argument("--command-timeout", type=int, default=config.COMMAND_TIMEOUT, help="Host command timeout (seconds)")
    parser.add_argument("--no-rbind-dev", action="store_true", help="Skip bind-mounting /host/dev onto /dev")
    parser.add_argument("--log-file", default=None, help="Optional log file")

    args = parser.parse_args()

    setup_logging("driver", level=logging.DEBUG if args.debug else logging.INFO, log_file=args.log_file)
    set_default_timeout(args.command_timeout)

    logger.info("Launching plugin")

    try:
        client = RancherClient(args.cattle_url, args.cattle_access_key, args.cattle_secret_key)
        md = get_metadata_config(args.metadata_url)
    except DriverError as e:
        logger.critical(f"Failed to start: {e}")
        sys.exit(1)

    if not args.no_rbind_dev:
        try:
            execute("mount", ["--rbind", "/host/dev", "/dev"])
        except CommandError as e:
            logger.critical(f"Couldn't mount /dev: {e}")
            sys.exit(1)

    try:
        spec_path = write_plugin_spec(md.driver_name)
        logger.info(f"Wrote plugin spec {spec_path}")
    except OSError as e:
        logger.critical(f"Unable to write spec file: {e}")
        sys.exit(1)

    try:
        daemon = StorageDaemon(
            driver_container_name=md.container_name,
            driver_name=md.driver_name,
            volume_stack_image=md.image,
            client=client,
            metadata=MetadataClient(args.metadata_url),
            root_dir=args.root,
            dev_dir=args.dev_dir,
        )
    except DriverError as e:
        logger.critical(f"Error creating storage daemon: {e}")
        sys.exit(1)

    service = DriverService(
        daemon,
        port=args.port,
        socket_path=config.plugin_socket_path(md.driver_name)
    )

    service.start()
    logger.info("Driver service running. Press Ctrl+C to stop.")
    service.wait()

    logger.info("Driver service stopped")


if __name__ == "__main__":
    main()
