"""RouterWatch service - FastAPI application hosting the polling engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from .config import get_config, settings
from .discovery import DiscoveryEngine
from .polling import ConnectionManager, LibrouterosClient, MetricsCollector
from .polling.scheduler import PollingScheduler
from .storage import create_storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = get_config()

    # Startup
    backend = "memory" if settings.dev_mode else settings.storage_backend
    storage = create_storage(backend, settings.redis_url, config.retention)
    await storage.connect()

    client = LibrouterosClient(config.connection.tls_ports, config.connection.verify_tls)
    connections = ConnectionManager(client, config.connection)
    collector = MetricsCollector(storage, connections, config.connection)
    discovery = DiscoveryEngine(storage, connections, config.discovery)
    scheduler = PollingScheduler(storage, collector, discovery, config)
    scheduler.start()

    app.state.storage = storage
    app.state.connections = connections
    app.state.scheduler = scheduler

    yield

    # Shutdown
    await scheduler.stop()
    await connections.close_all()
    await storage.disconnect()


app = FastAPI(
    title="RouterWatch",
    description="RouterOS fleet monitoring service",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    devices = await request.app.state.storage.list_devices()
    return {
        "status": "healthy",
        "service": "routerwatch",
        "devices": len(devices),
        "online": sum(1 for d in devices if d.is_online),
        "sessions": request.app.state.connections.session_count,
        "scheduler_running": request.app.state.scheduler.running,
    }
