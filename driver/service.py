"""
Driver Service Launcher

Multi-threaded driver service that runs:
1. Volume plugin API (unix socket) - Docker volume-plugin protocol
2. Delete API (TCP port 80) - stack teardown webhook for the event listener

Usage:
    from driver.service import DriverService

    service = DriverService(daemon, socket_path="/host/var/run/longhorn.sock")

    service.start()
    # ... service runs in background threads ...
    service.stop()
"""

import os
import threading
import time
import logging
from typing import List, Optional
from datetime import datetime
from fastapi import FastAPI
import uvicorn

from driver import api, volume_plugin
from driver.config import DRIVER_PORT

logger = logging.getLogger(__name__)


class DriverService:
    """
    Runs the driver's HTTP listeners and manages their lifecycles.
    """

    def __init__(
        self,
        daemon,
        listen_address: str = "0.0.0.0",
        port: int = DRIVER_PORT,
        socket_path: Optional[str] = None
    ):
        """
        Initialize driver service.

        Args:
            daemon: StorageDaemon serving both listeners
            listen_address: Address for the delete API
            port: Delete API port (default 80)
            socket_path: Unix socket for the volume plugin API (None disables it)
        """
        self.daemon = daemon
        self.listen_address = listen_address
        self.port = port
        self.socket_path = socket_path

        # Inject daemon into API modules
        api.set_daemon(daemon)
        volume_plugin.set_daemon(daemon)

        self.api_app = self._create_api_app()
        self.plugin_app = self._create_plugin_app()

        self.running = False
        self.start_time = datetime.utcnow()
        self._servers: List[uvicorn.Server] = []
        self._threads: List[threading.Thread] = []

        logger.info(f"Driver service initialized: api={listen_address}:{port} plugin={socket_path}")

    def _create_api_app(self) -> FastAPI:
        """Create delete API FastAPI app"""
        app = FastAPI(title="Longhorn Driver API", version="0.1.0")
        app.include_router(api.router)

        @app.get("/")
        def root():
            return {
                "service": "longhorn_driver",
                "driver_name": self.daemon.driver_name,
                "uptime_seconds": (datetime.utcnow() - self.start_time).total_seconds(),
                "timestamp": datetime.utcnow().isoformat()
            }

        return app

    def _create_plugin_app(self) -> FastAPI:
        """Create volume plugin FastAPI app"""
        app = FastAPI(title="Longhorn Volume Plugin", version="0.1.0")
        app.include_router(volume_plugin.router)
        return app

    def start(self):
        """Start all listeners"""
        if self.running:
            logger.warning("Driver service already running")
            return

        self.running = True
        self.start_time = datetime.utcnow()

        logger.info("Starting driver service listeners...")

        api_config = uvicorn.Config(
            self.api_app,
            host=self.listen_address,
            port=self.port,
            log_level="info",
            access_log=False
        )
        self._launch("api", api_config)

        if self.socket_path:
            if os.path.exists(self.socket_path):
                os.remove(self.socket_path)
            plugin_config = uvicorn.Config(
                self.plugin_app,
                uds=self.socket_path,
                log_level="info",
                access_log=False
            )
            self._launch("volumeplugin", plugin_config)

        logger.info(f"Driver service started: api={self.port}, plugin={self.socket_path}")

    def _launch(self, name: str, config: uvicorn.Config):
        server = uvicorn.Server(config)
        thread = threading.Thread(target=self._serve, args=(name, server), daemon=True)
        self._servers.append(server)
        self._threads.append(thread)
        thread.start()

    def _serve(self, name: str, server: uvicorn.Server):
        """Run one listener (runs in background thread)"""
        try:
            server.run()
        except Exception as e:
            logger.error(f"{name} listener error: {e}", exc_info=True)
        finally:
            if self.running:
                logger.error(f"{name} listener exited; stopping driver service")
                self.running = False

    def stop(self):
        """Stop all listeners"""
        if not self.running and not self._threads:
            return

        logger.info("Stopping driver service...")
        self.running = False

        for server in self._servers:
            server.should_exit = True

        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=5)

        self._servers.clear()
        self._threads.clear()
        logger.info("Driver service stopped")

    def wait(self):
        """Block until service stops (for main process)"""
        try:
            while self.running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            self.stop()
