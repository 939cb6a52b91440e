import logging
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str


class StateResponse(BaseModel):
    vip: str
    interface: str
    nodename: str
    desired: bool
    actual: bool


def create_status_app(ip_manager, vip_config) -> FastAPI:
    app = FastAPI(
        title=f"vip-manager {vip_config.nodename}",
        description="Read-only view of the virtual IP state on this node",
    )

    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(status="ok")

    @app.get("/state", response_model=StateResponse)
    def state():
        return StateResponse(
            vip=vip_config.cidr,
            interface=vip_config.interface,
            nodename=vip_config.nodename,
            desired=ip_manager.get_state(),
            actual=ip_manager.ip_commands.query_address(),
        )

    return app


class StatusServer:
    """Runs the status app with uvicorn in a background thread."""

    def __init__(self, app: FastAPI, host: str, port: int, log_level: str = 'warning'):
        self.host = host
        self.port = port
        self.server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=log_level))
        self.thread: Optional[threading.Thread] = None

    def start(self):
        logger.info(f"Starting status API on {self.host}:{self.port}")
        self.thread = threading.Thread(target=self.server.run, name='status-api', daemon=True)
        self.thread.start()

    def stop(self, timeout: float = 5):
        self.server.should_exit = True
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning("Status API thread did not stop gracefully.")
