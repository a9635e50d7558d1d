"""
Stack Lifecycle Orchestrator

A volume is backed by a stack of services (replicas, controller, sidekick
agents) owned by the orchestration backend. This module creates, locates,
relocates and deletes that stack. Nothing about a stack is cached between
calls: every operation starts from a fresh lookup.

Observed lifecycle:
    absent -> creating -> services converging -> active <-> upgrading -> active
    services converging --(timeout)--> deleted
"""

import copy
import logging
from typing import Any, Dict, Optional

from driver.config import (
    SERVICE_RETRY_INTERVAL_SECONDS,
    SERVICE_RETRY_MAX,
    VOLUME_STACK_PREFIX,
    WAIT_INTERVAL_SECONDS,
)
from driver.errors import OrchestrationError, StackConsistencyError
from driver.models import ServiceState, VolumeConfig
from driver.template import render_compose
from driver.wait import services_converged, wait_environment, wait_service
from shared.backoff import WaitTimeoutError, poll_until

logger = logging.getLogger(__name__)

AFFINITY_LABEL = "io.rancher.scheduler.affinity:container"
CONTROLLER_SERVICE = "controller"

ENV_IMAGE = "IMAGE"
ENV_VOLUME_NAME = "VOLUME_NAME"
ENV_VOLUME_SIZE = "VOLUME_SIZE"
ENV_DRIVER_CONTAINER = "DRIVER_CONTAINER"

Resource = Dict[str, Any]


def stack_name(volume_name: str) -> str:
    return VOLUME_STACK_PREFIX + volume_name.replace("_", "-")


def stack_external_id(driver_name: str, volume_name: str) -> str:
    return f"system://{driver_name}?name={volume_name}"


class Stack:
    """
    The orchestration-side resource group backing one volume.
    """

    def __init__(
        self,
        volume_name: str,
        driver_name: str,
        driver_container_name: str,
        image: str,
        config: VolumeConfig,
        client,
        retry_interval: float = SERVICE_RETRY_INTERVAL_SECONDS,
        retry_max: int = SERVICE_RETRY_MAX,
        wait_interval: float = WAIT_INTERVAL_SECONDS,
    ):
        """
        Initialize stack handle.

        Args:
            volume_name: Volume this stack backs
            driver_name: Owning driver; part of the external id
            driver_container_name: Container the controller must run next to
            image: Longhorn image for the services
            config: Volume settings rendered into the template
            client: RancherClient (or a fake with the same methods)
            retry_interval: Seconds between service convergence checks
            retry_max: Maximum service convergence checks
            wait_interval: Seconds between transition polls
        """
        self.volume_name = volume_name
        self.name = stack_name(volume_name)
        self.external_id = stack_external_id(driver_name, volume_name)
        self.driver_container_name = driver_container_name
        self.config = config
        self.client = client
        self.retry_interval = retry_interval
        self.retry_max = retry_max
        self.wait_interval = wait_interval
        # Set once delete() has seen the stack gone
        self.removed = False
        self.environment = {
            ENV_IMAGE: image,
            ENV_VOLUME_NAME: volume_name,
            ENV_VOLUME_SIZE: config.size,
            ENV_DRIVER_CONTAINER: driver_container_name,
        }

    # ========================================================================
    # LOOKUP
    # ========================================================================

    def find(self) -> Optional[Resource]:
        """
        Look up the stack by name and external id.

        Raises:
            StackConsistencyError: More than one live stack matches
        """
        environments = self.client.list_environments({
            "name": self.name,
            "externalId": self.external_id,
            "removed_null": None,
        })
        if not environments:
            return None
        if len(environments) > 1:
            raise StackConsistencyError(f"More than one stack found for {self.name}")
        return environments[0]

    # ========================================================================
    # CREATE / DELETE
    # ========================================================================

    def create(self) -> Resource:
        """
        Create the stack if missing, then wait until all of its services are active.

        Safe on an existing stack: it is reused and only waited on.

        Raises:
            WaitTimeoutError: Services never converged. A stack created by this
                call is deleted first; a pre-existing stack is left in place.
        """
        environment = self.find()
        created = environment is None

        if created:
            logger.info(f"Creating stack {self.name} for volume {self.volume_name}")
            environment = self.client.create_environment({
                "name": self.name,
                "externalId": self.external_id,
                "environment": self.environment,
                "dockerCompose": render_compose(self.config),
                "startOnCreate": True,
            })
            self.removed = False
        else:
            logger.info(f"Stack {self.name} already exists; ensuring it is active")

        environment = wait_environment(self.client, environment, interval=self.wait_interval)

        try:
            self._wait_for_services(environment, ServiceState.ACTIVE.value)
        except WaitTimeoutError:
            if not created:
                logger.error(f"Services of existing stack {self.name} are not all active")
                raise
            logger.error(f"Services of {self.name} never became active. Cleaning up {self.name}")
            try:
                self.delete()
            except Exception as e:
                logger.error(f"Failed to clean up stack {self.name}: {e}")
            raise

        return environment

    def delete(self) -> None:
        """Delete the stack and wait for the removal to settle; no-op if absent"""
        environment = self.find()
        if environment is None:
            logger.info(f"Stack {self.name} not found; nothing to delete")
            self.removed = True
            return

        logger.info(f"Deleting stack {self.name}")
        environment = self.client.delete_environment(environment) or environment
        wait_environment(self.client, environment, interval=self.wait_interval)
        self.removed = True

    def _wait_for_services(self, environment: Resource, target_state: str) -> None:
        target_count = len(self.client.get_link(environment, "services"))

        def converged() -> bool:
            services = self.client.get_link(environment, "services")
            logger.debug(f"Waiting for {target_count} services in {self.name} to turn {target_state}")
            return services_converged(services, target_count, target_state)

        poll_until(
            converged,
            f"Failed to wait for {target_count} services in {self.name} to turn {target_state} state",
            max_attempts=self.retry_max,
            interval=self.retry_interval,
        )
        logger.debug(f"Services changed state to {target_state} in {self.name}")

    # ========================================================================
    # CONTROLLER RELOCATION
    # ========================================================================

    def move_controller(self) -> None:
        """
        Pin the controller service next to this driver's container.

        Finishes any pending upgrade first. If the controller's affinity label
        already names this container nothing is issued; otherwise exactly one
        in-place upgrade rewrites the label and its completion is confirmed.
        """
        environment = self.find()
        if environment is None:
            raise OrchestrationError(f"Stack {self.name} not found; cannot move controller")

        controller = self._confirm_controller_upgrade(environment)

        launch_config = copy.deepcopy(controller.get("launchConfig") or {})
        labels = launch_config.setdefault("labels", {})
        if labels.get(AFFINITY_LABEL) == self.driver_container_name:
            logger.debug(f"Controller of {self.name} already next to {self.driver_container_name}")
            return

        labels[AFFINITY_LABEL] = self.driver_container_name
        logger.info(f"Moving controller of {self.name} next to container {self.driver_container_name}")
        self.client.upgrade_service(controller, launch_config)
        self._confirm_controller_upgrade(environment)

    def _confirm_controller_upgrade(self, environment: Resource) -> Resource:
        services = self.client.list_services({
            "environmentId": environment.get("id"),
            "name": CONTROLLER_SERVICE,
        })
        if len(services) != 1:
            raise StackConsistencyError(
                f"Expected one controller service in {self.name}, found {len(services)}"
            )

        controller = wait_service(self.client, services[0], interval=self.wait_interval)
        if controller.get("state") == ServiceState.UPGRADED.value:
            logger.info(f"Finishing upgrade of controller in {self.name}")
            controller = self.client.finish_upgrade_service(controller) or controller
            controller = wait_service(self.client, controller, interval=self.wait_interval)
        return controller

    def wait_active(self, service: Resource) -> Resource:
        """
        Wait for a service to settle, finishing a pending upgrade.

        Raises:
            OrchestrationError: The service settled in a state other than active
        """
        service = wait_service(self.client, service, interval=self.wait_interval)
        if service.get("state") != ServiceState.UPGRADED.value:
            return service

        service = self.client.finish_upgrade_service(service) or service
        service = wait_service(self.client, service, interval=self.wait_interval)
        if service.get("state") != ServiceState.ACTIVE.value:
            raise OrchestrationError(f"Service {service.get('id')} is not active, got {service.get('state')}")
        return service
