"""
Waits on orchestration resources.

The backend flips a resource's `transitioning` flag to "yes" while it works
on it. Waiting means reloading the resource until the flag clears.
"""

import logging
from typing import Any, Dict, Iterable

from driver.config import WAIT_INTERVAL_SECONDS, WAIT_TIMEOUT_SECONDS
from shared.backoff import backoff

logger = logging.getLogger(__name__)

Resource = Dict[str, Any]


def is_transitioning(resource: Resource) -> bool:
    return str(resource.get("transitioning") or "") == "yes"


def services_converged(services: Iterable[Resource], expected_count: int, target_state: str) -> bool:
    """True when exactly expected_count services exist and all are in target_state"""
    services = list(services)
    if len(services) != expected_count:
        return False
    return all(service.get("state") == target_state for service in services)


def wait_for(
    client,
    resource: Resource,
    timeout: float = WAIT_TIMEOUT_SECONDS,
    interval: float = WAIT_INTERVAL_SECONDS,
) -> Resource:
    """
    Reload resource until it stops transitioning.

    Returns:
        The last reloaded copy of the resource

    Raises:
        WaitTimeoutError: Still transitioning after timeout seconds
    """
    latest = {"resource": resource}

    def settled() -> bool:
        latest["resource"] = client.reload(latest["resource"])
        return not is_transitioning(latest["resource"])

    backoff(
        timeout,
        f"Failed waiting for {resource.get('type')}:{resource.get('id')}",
        settled,
        interval=interval,
    )
    return latest["resource"]


def wait_environment(client, environment: Resource, interval: float = WAIT_INTERVAL_SECONDS) -> Resource:
    logger.debug(f"Waiting for environment {environment.get('name')} to settle")
    return wait_for(client, environment, interval=interval)


def wait_service(client, service: Resource, interval: float = WAIT_INTERVAL_SECONDS) -> Resource:
    logger.debug(f"Waiting for service {service.get('name')} to settle")
    return wait_for(client, service, interval=interval)
