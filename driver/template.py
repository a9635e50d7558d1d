"""
Volume stack template.

The services backing one volume, rendered per VolumeConfig. `$NAME`
placeholders are substituted by the orchestration backend from the stack's
environment map; `{{ }}` / `{% %}` are rendered here.
"""

from typing import Final

from jinja2 import Environment, StrictUndefined

from driver.models import VolumeConfig

_JINJA_ENV: Final[Environment] = Environment(
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)

COMPOSE_TEMPLATE: Final[str] = """
replica:
    scale: 2
    image: {{ config.replica_base_image if config.replica_base_image else "$IMAGE" }}
    entrypoint:
    {% if config.replica_base_image %}
    - /cmd/launch-replica-with-vm-backing-file
    {% else %}
    - longhorn
    {% endif %}
    command:
    {% if not config.replica_base_image %}
    - replica
    {% endif %}
    - --listen
    - 0.0.0.0:9502
    - --sync-agent=false
    - /volume/$VOLUME_NAME
    volumes:
    - /volume/$VOLUME_NAME
    {% if config.replica_base_image %}
    volumes_from:
    - replica-binary
    {% endif %}
    labels:
        io.rancher.sidekicks: replica-healthcheck, sync-agent{{ ", replica-binary" if config.replica_base_image else "" }}
        io.rancher.container.hostname_override: container_name
        io.rancher.scheduler.affinity:container_label_ne: io.rancher.stack_service.name=$${stack_name}/$${service_name}
        io.rancher.scheduler.affinity:container_soft: $DRIVER_CONTAINER
        io.rancher.scheduler.disksize.{{ config.name }}: {{ config.size_gb }}
    metadata:
        volume:
            volume_name: $VOLUME_NAME
            volume_size: $VOLUME_SIZE
    health_check:
        healthy_threshold: 1
        unhealthy_threshold: 4
        interval: 5000
        port: 8199
        request_line: GET /replica/status HTTP/1.0
        response_timeout: 50000
        initializing_timeout: 10000
        reinitializing_timeout: 20000
        strategy: recreateOnQuorum
        recreate_on_quorum_strategy_config:
            quorum: 1
{% if config.replica_base_image %}

replica-binary:
    image: $IMAGE
    net: none
    command: copy-binary
    volumes:
    - /cmd
    labels:
        io.rancher.container.start_once: true
{% endif %}

sync-agent:
    image: $IMAGE
    net: container:replica
    working_dir: /volume/$VOLUME_NAME
    volumes_from:
    - replica
    command:
    - longhorn
    - sync-agent
    - --listen
    - 0.0.0.0:9504

replica-healthcheck:
    image: $IMAGE
    net: container:replica
    metadata:
        volume:
            volume_name: $VOLUME_NAME
            volume_size: $VOLUME_SIZE
    command:
    - longhorn-agent
    - --replica

controller:
    image: $IMAGE
    command:
    - launch
    - controller
    - --listen
    - 0.0.0.0:9501
    - --frontend
    - tcmu
    - $VOLUME_NAME
    privileged: true
    volumes:
    - /dev:/host/dev
    - /lib/modules:/lib/modules:ro
    labels:
        io.rancher.sidekicks: controller-agent
        io.rancher.container.hostname_override: container_name
        io.rancher.scheduler.affinity:container: $DRIVER_CONTAINER
    metadata:
        volume:
            volume_name: $VOLUME_NAME
            volume_config: {{ config.to_json() }}
    health_check:
        healthy_threshold: 1
        unhealthy_threshold: 2
        interval: 5000
        port: 8199
        request_line: GET /controller/status HTTP/1.0
        response_timeout: 5000
        strategy: none

controller-agent:
    image: $IMAGE
    net: container:controller
    metadata:
        volume:
            volume_name: $VOLUME_NAME
    command:
    - longhorn-agent
    - --controller
"""

_COMPOSE: Final = _JINJA_ENV.from_string(COMPOSE_TEMPLATE)


def render_compose(config: VolumeConfig) -> str:
    """Render the stack's service definitions for one volume"""
    return _COMPOSE.render(config=config)
