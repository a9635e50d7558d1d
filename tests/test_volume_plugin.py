"""Tests for the Docker volume plugin API and the delete API."""

import json

import pytest
from fastapi.testclient import TestClient

from driver import volume_plugin
from driver.service import DriverService

DOCKER_CONTENT_TYPE = "application/vnd.docker.plugins.v1.2+json"


@pytest.fixture
def service(daemon) -> DriverService:
    return DriverService(daemon, port=0)


@pytest.fixture
def plugin(service) -> TestClient:
    return TestClient(service.plugin_app)


@pytest.fixture
def api(service) -> TestClient:
    return TestClient(service.api_app)


def call(client: TestClient, endpoint: str, body=None) -> dict:
    response = client.post(
        f"/VolumeDriver.{endpoint}",
        content=json.dumps(body or {}),
        headers={"Content-Type": DOCKER_CONTENT_TYPE},
    )
    assert response.status_code == 200
    return response.json()


class TestHandshake:
    def test_activate(self, plugin) -> None:
        """The plugin implements the volume driver protocol."""
        response = plugin.post("/Plugin.Activate")
        assert response.status_code == 200
        assert response.json() == {"Implements": ["VolumeDriver"]}

    def test_capabilities(self, plugin) -> None:
        """Volumes are visible cluster-wide."""
        assert call(plugin, "Capabilities") == {"Capabilities": {"Scope": "global"}}


class TestVolumeCalls:
    def test_lifecycle(self, plugin, rancher, root_dir, dev_dir) -> None:
        """Create, mount, path, get, list, unmount and remove over HTTP."""
        (dev_dir / "vol1").touch()
        mount_point = str(root_dir / "mounts" / "vol1")

        assert call(plugin, "Create", {"Name": "vol1", "Opts": {"size": "1g"}}) == {"Err": ""}
        assert call(plugin, "Mount", {"Name": "vol1", "ID": "abc"}) == {"Mountpoint": mount_point, "Err": ""}
        assert call(plugin, "Path", {"Name": "vol1"}) == {"Mountpoint": mount_point, "Err": ""}
        assert call(plugin, "Get", {"Name": "vol1"}) == {
            "Volume": {"Name": "vol1", "Mountpoint": mount_point},
            "Err": "",
        }
        assert call(plugin, "List") == {
            "Volumes": [{"Name": "vol1", "Mountpoint": mount_point}],
            "Err": "",
        }
        assert call(plugin, "Unmount", {"Name": "vol1", "ID": "abc"}) == {"Err": ""}
        assert call(plugin, "Remove", {"Name": "vol1"}) == {"Err": ""}

        # Remove only forgets locally
        assert rancher.deleted == []

    def test_create_error_in_body(self, plugin) -> None:
        """Failures are reported in Err with HTTP 200."""
        body = call(plugin, "Create", {"Name": "vol1", "Opts": {"size": "huge"}})
        assert "Can't parse size huge" in body["Err"]

    def test_create_without_opts(self, plugin, dev_dir) -> None:
        """Opts may be omitted."""
        (dev_dir / "vol1").touch()
        assert call(plugin, "Create", {"Name": "vol1"}) == {"Err": ""}

    def test_get_missing(self, plugin) -> None:
        """Unknown volumes are an error."""
        assert call(plugin, "Get", {"Name": "ghost"}) == {"Err": "No such volume"}

    def test_path_missing(self, plugin) -> None:
        """Unknown volumes have no path."""
        assert call(plugin, "Path", {"Name": "ghost"}) == {"Err": "No such volume ghost"}

    def test_mount_missing(self, plugin) -> None:
        """Mounting an unknown volume fails."""
        assert "No such volume" in call(plugin, "Mount", {"Name": "ghost"})["Err"]

    def test_moved_volume(self, plugin, daemon, metadata, dev_dir) -> None:
        """A moved volume has an empty path and cannot be mounted."""
        (dev_dir / "vol1").touch()
        call(plugin, "Create", {"Name": "vol1", "Opts": {"size": "1g"}})
        metadata.stacks = []

        assert call(plugin, "Path", {"Name": "vol1"}) == {"Mountpoint": "", "Err": ""}
        assert call(plugin, "Get", {"Name": "vol1"})["Volume"]["Mountpoint"] == "moved"
        assert "no longer resides on this host" in call(plugin, "Mount", {"Name": "vol1"})["Err"]
        assert call(plugin, "Unmount", {"Name": "vol1"}) == {"Err": ""}

    def test_daemon_not_set(self) -> None:
        """Calls before the daemon is injected fail loudly."""
        volume_plugin.set_daemon(None)
        try:
            from fastapi import FastAPI

            app = FastAPI()
            app.include_router(volume_plugin.router)
            response = TestClient(app).post("/VolumeDriver.List")
            assert response.status_code == 500
        finally:
            volume_plugin.set_daemon(None)


class TestDeleteApi:
    def test_delete_removes_stack(self, api, plugin, rancher, store, dev_dir) -> None:
        """The delete API tears down the stack and the cache record."""
        (dev_dir / "vol1").touch()
        call(plugin, "Create", {"Name": "vol1", "Opts": {"size": "1g"}})

        response = api.delete("/v1/volumes/vol1")

        assert response.status_code == 200
        assert response.text == ""
        assert rancher.deleted == ["volume-vol1"]
        assert not store.contains("vol1")

    def test_delete_unknown(self, api) -> None:
        """Deleting an unknown volume succeeds."""
        assert api.delete("/v1/volumes/ghost").status_code == 200

    def test_delete_error(self, api, rancher) -> None:
        """Backend failures come back as HTTP 500 with the error text."""
        from driver.errors import OrchestrationError

        def broken(filters):
            raise OrchestrationError("backend unavailable")

        rancher.list_environments = broken

        response = api.delete("/v1/volumes/vol1")

        assert response.status_code == 500
        assert "backend unavailable" in response.text

    def test_root(self, api) -> None:
        """The API root reports the driver."""
        body = api.get("/").json()
        assert body["service"] == "longhorn_driver"
        assert body["driver_name"] == "longhorn"
