# citydash/main.py
"""
NGSI-LD sync service application factory.

Wires the local store, the broker client factory and the two sync engines
(discovery/import and reconciliation) into a FastAPI application. Run with::

    uvicorn citydash.main:create_app --factory
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from citydash.api.entities import router as entities_router
from citydash.api.health import router as health_router
from citydash.api.proxy import router as proxy_router
from citydash.api.query import router as query_router
from citydash.api.sources import router as sources_router
from citydash.core.config import settings
from citydash.core.db import create_engine
from citydash.core.loader import seed_sources
from citydash.core.logging import configure_logging
from citydash.core.store import SqlStore
from citydash.core.sync import BrokerClientFactory, DiscoveryService, SyncReconciler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, seed configured sources, dispose the engine on exit."""
    store: SqlStore = app.state.store

    await store.init()

    try:
        await seed_sources(store, settings.sources_config_paths)
    except Exception:
        logger.exception("Failed to seed sources")
        raise

    yield

    await store.close()


def create_app(
    *,
    store: SqlStore | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build and wire the sync service FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Creating citydash application (env=%s)", settings.app_env)

    store = store or SqlStore(create_engine())
    clients = BrokerClientFactory(transport=http_transport)
    discovery = DiscoveryService(store, clients=clients)
    reconciler = SyncReconciler(store, clients=clients)

    # Local mutations without skip_sync are pushed to the broker
    store.add_listener(reconciler)

    app = FastAPI(
        title="citydash NGSI-LD sync",
        version="0.1.0",
        description="Synchronizes dashboard entities with NGSI-LD context brokers",
        servers=[{"url": settings.base_url}],
        lifespan=lifespan,
    )

    app.state.store = store
    app.state.clients = clients
    app.state.discovery = discovery
    app.state.reconciler = reconciler

    app.include_router(health_router)
    app.include_router(sources_router)
    app.include_router(entities_router)
    app.include_router(query_router)
    app.include_router(proxy_router)

    logger.info("citydash application ready")
    return app
