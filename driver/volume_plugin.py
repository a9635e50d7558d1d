"""
Docker Volume Plugin API

FastAPI router implementing the Docker volume-plugin protocol on top of the
storage daemon. Docker expects HTTP 200 for every call; failures are
reported in the "Err" field of the response body.

Endpoints:
- POST /Plugin.Activate
- POST /VolumeDriver.Create | Remove | Mount | Unmount | Path | Get | List | Capabilities
"""

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Dict, Optional
import logging

from driver.models import MOVED_MOUNTPOINT, Volume

logger = logging.getLogger(__name__)

router = APIRouter(tags=["volumeplugin"])


# Will be injected by service.py
_daemon = None

def set_daemon(daemon):
    """Set storage daemon (called by service.py)"""
    global _daemon
    _daemon = daemon


def get_daemon():
    """Dependency for the storage daemon"""
    if _daemon is None:
        raise HTTPException(status_code=500, detail="Storage daemon not initialized")
    return _daemon


class VolumeRequest(BaseModel):
    """Request body shared by all volume calls"""
    name: str = Field(default="", alias="Name")
    opts: Optional[Dict[str, str]] = Field(default=None, alias="Opts")
    id: str = Field(default="", alias="ID")


def _error(err: Exception) -> dict:
    logger.error(f"Error response: {err}")
    return {"Err": str(err)}


def _transform(volume: Volume) -> dict:
    return {"Name": volume.name, "Mountpoint": volume.mountpoint}


@router.post("/Plugin.Activate")
def activate():
    return {"Implements": ["VolumeDriver"]}


@router.post("/VolumeDriver.Capabilities")
def capabilities():
    return {"Capabilities": {"Scope": "global"}}


@router.post("/VolumeDriver.Create")
def create(request: VolumeRequest, daemon=Depends(get_daemon)):
    logger.info(f"Docker create request: {request.name} {request.opts}")
    try:
        daemon.create(Volume(name=request.name, opts=request.opts or {}))
    except Exception as e:
        return _error(e)
    return {"Err": ""}


@router.post("/VolumeDriver.Remove")
def remove(request: VolumeRequest, daemon=Depends(get_daemon)):
    """Forget the volume locally; stack teardown arrives via the delete API"""
    logger.info(f"Docker remove request: {request.name}")
    try:
        daemon.delete(request.name, remove_stack=False)
    except Exception as e:
        return _error(e)
    return {"Err": ""}


@router.post("/VolumeDriver.Mount")
def mount(request: VolumeRequest, daemon=Depends(get_daemon)):
    logger.info(f"Docker mount request: {request.name}")
    try:
        volume = daemon.mount(request.name)
    except Exception as e:
        return _error(e)
    return {"Mountpoint": volume.mountpoint, "Err": ""}


@router.post("/VolumeDriver.Unmount")
def unmount(request: VolumeRequest, daemon=Depends(get_daemon)):
    logger.info(f"Docker unmount request: {request.name}")
    try:
        daemon.unmount(request.name)
    except Exception as e:
        return _error(e)
    return {"Err": ""}


@router.post("/VolumeDriver.Path")
def path(request: VolumeRequest, daemon=Depends(get_daemon)):
    logger.info(f"Docker path request: {request.name}")
    try:
        volume = daemon.get(request.name)
    except Exception as e:
        return _error(e)

    if volume is None:
        return _error(ValueError(f"No such volume {request.name}"))

    mountpoint = "" if volume.mountpoint == MOVED_MOUNTPOINT else volume.mountpoint
    return {"Mountpoint": mountpoint, "Err": ""}


@router.post("/VolumeDriver.Get")
def get(request: VolumeRequest, daemon=Depends(get_daemon)):
    logger.info(f"Docker get request: {request.name}")
    try:
        volume = daemon.get(request.name)
    except Exception as e:
        return _error(e)

    if volume is None:
        return _error(ValueError("No such volume"))
    return {"Volume": _transform(volume), "Err": ""}


@router.post("/VolumeDriver.List")
def list_volumes(daemon=Depends(get_daemon)):
    logger.info("Docker list request")
    try:
        volumes = daemon.list()
    except Exception as e:
        return _error(e)
    return {"Volumes": [_transform(v) for v in volumes], "Err": ""}
