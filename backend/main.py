"""
distrib: FastAPI application entry point.

Builds the content store and update broker, answers UDP discovery
requests for the lifetime of the server and serves the HTTP API.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from api.events import UpdateBroker
from api.routes import router
from config import (
    APP_NAME,
    DEFAULT_DATA_DIR,
    DEFAULT_DISCOVERY_PORT,
    DEFAULT_HTTP_PORT,
    DEVICE_NAME,
    NOTIFY_TIMEOUT,
    VERSION,
)
from discovery.errors import TransportError
from discovery.service import DiscoveryResponder
from store.service import ContentStore

logger = logging.getLogger(__name__)


def create_app(
    data_dir: str | Path = DEFAULT_DATA_DIR,
    device_name: str = DEVICE_NAME,
    http_port: int = DEFAULT_HTTP_PORT,
    discovery_port: int = DEFAULT_DISCOVERY_PORT,
    notify: bool = True,
) -> FastAPI:
    """
    Build the application and its services.

    The store and broker live on ``app.state`` for the request handlers;
    the discovery responder runs as a background task between startup
    and shutdown.
    """
    store = ContentStore(data_dir)
    broker = UpdateBroker()
    responder = DiscoveryResponder(discovery_port, device_name, http_port)
    notify_tasks: set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop the discovery responder."""
        logger.info(f"Starting {APP_NAME} services...")

        try:
            await responder.start()
        except TransportError as e:
            logger.error(f"Discovery listener failed: {e}")
            raise

        discovery_task = asyncio.create_task(responder.serve())
        logger.info(f"{APP_NAME} serving on :{http_port} as {responder.name!r}")
        logger.info(f"Web UI: http://localhost:{http_port}/files")

        try:
            yield
        finally:
            logger.info(f"Shutting down {APP_NAME} services...")
            discovery_task.cancel()
            try:
                await discovery_task
            except asyncio.CancelledError:
                pass
            if notify_tasks:
                await asyncio.wait(set(notify_tasks), timeout=NOTIFY_TIMEOUT)

    app = FastAPI(
        title=APP_NAME,
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.broker = broker
    app.state.responder = responder
    app.state.device_name = responder.name
    app.state.notify = notify
    app.state.notify_tasks = notify_tasks
    app.include_router(router)
    return app


if __name__ == "__main__":
    from cli import main

    sys.exit(main())
