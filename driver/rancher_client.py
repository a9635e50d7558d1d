"""
Orchestration Client

Thin client for the orchestration backend API. Stacks are "environment"
resources, their members are "service" resources. Resources are handled as
the backend's JSON dicts; follow-up calls go through the resource's own
`links` and `actions` URLs.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from driver.config import HTTP_TIMEOUT
from driver.errors import ConfigurationError, OrchestrationError

logger = logging.getLogger(__name__)

Resource = Dict[str, Any]


class RancherClient:
    """Resource CRUD, filtered listing and actions against the orchestration API"""

    def __init__(
        self,
        url: str,
        access_key: str = "",
        secret_key: str = "",
        timeout: int = HTTP_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize orchestration client.

        Args:
            url: API base URL (e.g., 'http://rancher:8080/v1/projects/1a5')
            access_key: API access key
            secret_key: API secret key
            timeout: Request timeout in seconds
            session: Optional requests session (tests inject a mock)
        """
        if not str(url or "").strip():
            raise ConfigurationError("cattle url is empty")
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if access_key or secret_key:
            self.session.auth = (access_key, secret_key)
        self.session.headers.update({"Accept": "application/json"})

    def _request(self, method: str, url: str, **kwargs) -> Any:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as e:
            body = e.response.text if e.response is not None else ""
            raise OrchestrationError(f"{method} {url} failed: {e} {body}".strip()) from e
        except requests.RequestException as e:
            raise OrchestrationError(f"{method} {url} failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise OrchestrationError(f"{method} {url} returned invalid JSON: {e}") from e

    def _list(self, collection: str, filters: Dict[str, Any]) -> List[Resource]:
        params = {key: ("" if value is None else value) for key, value in filters.items()}
        body = self._request("GET", f"{self.url}/{collection}", params=params)
        return list(body.get("data") or [])

    @staticmethod
    def _link(resource: Resource, name: str) -> str:
        url = (resource.get("links") or {}).get(name)
        if not url:
            raise OrchestrationError(f"{resource.get('type')}:{resource.get('id')} has no link '{name}'")
        return url

    @staticmethod
    def _action(resource: Resource, name: str) -> str:
        url = (resource.get("actions") or {}).get(name)
        if not url:
            raise OrchestrationError(
                f"{resource.get('type')}:{resource.get('id')} cannot {name} in state {resource.get('state')}"
            )
        return url

    # ========================================================================
    # ENVIRONMENTS (STACKS)
    # ========================================================================

    def list_environments(self, filters: Dict[str, Any]) -> List[Resource]:
        return self._list("environments", filters)

    def create_environment(self, body: Dict[str, Any]) -> Resource:
        logger.debug(f"Creating environment {body.get('name')}")
        return self._request("POST", f"{self.url}/environments", json=body)

    def delete_environment(self, environment: Resource) -> Resource:
        logger.debug(f"Deleting environment {environment.get('name')}")
        return self._request("DELETE", self._link(environment, "self"))

    # ========================================================================
    # SERVICES
    # ========================================================================

    def list_services(self, filters: Dict[str, Any]) -> List[Resource]:
        return self._list("services", filters)

    def upgrade_service(self, service: Resource, launch_config: Dict[str, Any]) -> Resource:
        body = {"inServiceStrategy": {"launchConfig": launch_config}}
        return self._request("POST", self._action(service, "upgrade"), json=body)

    def finish_upgrade_service(self, service: Resource) -> Resource:
        return self._request("POST", self._action(service, "finishupgrade"))

    # ========================================================================
    # GENERIC
    # ========================================================================

    def reload(self, resource: Resource) -> Resource:
        """Fetch the current state of a resource through its self link"""
        return self._request("GET", self._link(resource, "self"))

    def get_link(self, resource: Resource, name: str) -> List[Resource]:
        """Fetch a linked collection (e.g., an environment's services)"""
        body = self._request("GET", self._link(resource, name))
        return list(body.get("data") or [])
