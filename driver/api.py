"""
Driver Delete API

FastAPI router for the driver's TCP listener.
The cluster event listener calls it when a volume is removed cluster-wide.

Endpoints:
- DELETE /v1/volumes/{name}: tear down the volume's stack and local record
"""

from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import PlainTextResponse
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["volumes"])


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


@router.delete("/volumes/{name}", response_class=PlainTextResponse)
def delete_volume(name: str, daemon=Depends(get_daemon)):
    """Remove the volume's stack and forget it locally"""
    try:
        daemon.delete(name, remove_stack=True)
    except Exception as e:
        logger.error(f"Error deleting volume {name}: {e}")
        return PlainTextResponse(str(e), status_code=500)

    logger.info(f"Deleted volume {name} via API")
    return PlainTextResponse("", status_code=200)
