"""
Metadata Client

Read-only client for the host-local topology/metadata service.
Every call is a fresh HTTP round trip; nothing is cached here.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from driver.config import HTTP_TIMEOUT
from driver.errors import ConfigurationError, MetadataError
from shared.backoff import WaitTimeoutError, poll_until

logger = logging.getLogger(__name__)


@dataclass
class MetadataConfig:
    """Identity of this driver instance as resolved from metadata"""
    driver_name: str
    container_name: str
    image: str


class MetadataClient:
    """
    Client for the topology/metadata service.

    Usage:
        client = MetadataClient("http://rancher-metadata/2015-12-19")

        stacks = client.get_stacks()
        host_uuid = client.get_self_container()["host_uuid"]
    """

    def __init__(self, url: str, timeout: int = HTTP_TIMEOUT, session: Optional[requests.Session] = None):
        """
        Initialize metadata client.

        Args:
            url: Metadata base URL including API version
            timeout: Request timeout in seconds
            session: Optional requests session (tests inject a mock)
        """
        if not str(url or "").strip():
            raise ConfigurationError("metadata url is empty")
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._last_error: Optional[MetadataError] = None

    def _get(self, path: str) -> Any:
        url = f"{self.url}/{path.lstrip('/')}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"Metadata request {url} failed: {e}")
            raise MetadataError(f"Metadata request {url} failed: {e}") from e
        except ValueError as e:
            raise MetadataError(f"Metadata response from {url} is not JSON: {e}") from e

    def get_stacks(self) -> List[Dict[str, Any]]:
        """All stacks in the environment, each with its services and containers"""
        return self._get("stacks") or []

    def get_self_container(self) -> Dict[str, Any]:
        """The container this process runs in (carries host_uuid)"""
        return self._get("self/container") or {}

    def get_self_stack(self) -> Dict[str, Any]:
        return self._get("self/stack") or {}

    def get_self_service(self) -> Dict[str, Any]:
        return self._get("self/service") or {}

    def _ready(self) -> bool:
        try:
            self._get("version")
        except MetadataError as e:
            self._last_error = e
            logger.info(f"Waiting for metadata service at {self.url}...")
            return False
        return True

    def wait_until_ready(
        self,
        timeout: float = 60,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Block until the metadata service answers.

        Raises:
            ConfigurationError: The service stayed unreachable for `timeout` seconds
        """
        self._last_error = None
        try:
            poll_until(
                self._ready,
                f"Metadata service {self.url} unreachable",
                timeout=timeout,
                interval=interval,
                sleep=sleep,
                clock=clock,
            )
        except WaitTimeoutError as e:
            raise ConfigurationError(f"{e}: {self._last_error}") from e


def _image_from_service(service: Dict[str, Any]) -> str:
    launch_config = service.get("launch_config") or {}
    image = str(launch_config.get("imageUuid") or launch_config.get("image") or "")
    if image.startswith("docker:"):
        image = image[len("docker:"):]
    return image


def get_metadata_config(url: str, timeout: int = 60) -> MetadataConfig:
    """
    Resolve driver name, container name and volume image from metadata.

    Called once at startup; any failure is fatal for the launcher.

    Raises:
        ConfigurationError: Metadata unreachable or incomplete
    """
    client = MetadataClient(url)
    client.wait_until_ready(timeout=timeout)

    try:
        stack = client.get_self_stack()
        container = client.get_self_container()
        service = client.get_self_service()
    except MetadataError as e:
        raise ConfigurationError(f"Unable to get metadata: {e}") from e

    config = MetadataConfig(
        driver_name=str(stack.get("name") or ""),
        container_name=str(container.get("uuid") or ""),
        image=_image_from_service(service),
    )
    if not config.driver_name or not config.container_name:
        raise ConfigurationError(f"Incomplete metadata: {config}")

    logger.info(f"Metadata config: driver={config.driver_name} container={config.container_name} image={config.image}")
    return config
