"""setlist-import FastAPI application entry point.

Wires providers, the batch optimizer, the progress bus, the phase services
and the orchestrator together, then exposes them through the API routes
and the progress WebSocket.  Loads configuration from ``.env`` and
``config/config.yaml`` and configures structured logging at import time.

:func:`build_components` is shared with the CLI, which runs imports
without the web server.
"""

from __future__ import annotations

import random
import sys
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

from setlist_import import __version__
from setlist_import.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from setlist_import.api.routes import router as api_router
from setlist_import.api.websocket import websocket_progress
from setlist_import.config.loader import build_provider_configs, load_config
from setlist_import.config.settings import Settings
from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer
from setlist_import.pipeline.circuit_breaker import CircuitBreakerRegistry
from setlist_import.pipeline.orchestrator import ArtistImportOrchestrator
from setlist_import.pipeline.progress_bus import ProgressBus
from setlist_import.providers.cache.memory_cache import MemoryCacheProvider
from setlist_import.providers.metadata.spotify_provider import (
    SpotifyProvider,
    register_spotify_executors,
)
from setlist_import.providers.store.sqlite_store import SQLiteCanonicalStore
from setlist_import.providers.ticketing.ticketmaster_provider import TicketmasterProvider
from setlist_import.services.catalog_ingest import CatalogIngestService
from setlist_import.services.setlist_preseeder import SetlistPreseeder
from setlist_import.services.shows_ingest import ShowsIngestService
from setlist_import.services.wrap_up import WrapUpService
from setlist_import.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings.config_path, settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
    stream=sys.stderr if settings.log_stream == "stderr" else sys.stdout,
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_components(app_settings: Settings, app_config: dict[str, Any]) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components; the web app stores them on
    ``app.state``.  Nothing here performs I/O: the caller must still
    ``await components["store"].initialize()``.
    """
    import_cfg: dict[str, Any] = app_config.get("import") or {}
    concurrency: dict[str, Any] = import_cfg.get("concurrency") or {}
    preseed_cfg: dict[str, Any] = app_config.get("preseed") or {}

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=app_settings.http_timeout_seconds)
    store = SQLiteCanonicalStore(app_settings.database_path)
    cache = MemoryCacheProvider(
        max_size=app_settings.cache_max_size, ttl=app_settings.cache_ttl_seconds
    )

    # -- Batching, rate limiting, circuit breaking --
    provider_configs = build_provider_configs(app_config)
    breakers = CircuitBreakerRegistry(
        {name: cfg.circuit_breaker for name, cfg in provider_configs.items()}
    )
    optimizer = BatchAPIOptimizer(provider_configs, breakers=breakers, cache=cache)

    # -- Upstream providers --
    ticketing = TicketmasterProvider(
        http_client=http_client,
        api_key=app_settings.ticketmaster_api_key,
        retry_policy=provider_configs["ticketmaster"].retry_policy.to_policy(),
        breaker=breakers.get("ticketmaster"),
    )
    metadata = SpotifyProvider(
        http_client=http_client,
        client_id=app_settings.spotify_client_id,
        client_secret=app_settings.spotify_client_secret,
        retry_policy=provider_configs["spotify"].retry_policy.to_policy(),
        breaker=breakers.get("spotify"),
    )
    register_spotify_executors(optimizer, metadata)

    # -- Progress --
    progress_bus = ProgressBus(
        store, queue_size=(app_config.get("progress") or {}).get("queue_size", 100)
    )

    # -- Phase services --
    shows_service = ShowsIngestService(
        ticketing, store, venue_concurrency=concurrency.get("venues", 5)
    )
    catalog_service = CatalogIngestService(
        metadata,
        store,
        optimizer,
        liveness_threshold=import_cfg.get("liveness_threshold", 0.8),
        album_concurrency=concurrency.get("albums", 10),
    )
    preseeder = SetlistPreseeder(
        store,
        songs_per_setlist=preseed_cfg.get("songs_per_setlist", 5),
        pool_size=preseed_cfg.get("pool_size", 25),
        catalog_limit=preseed_cfg.get("catalog_limit", 100),
        weight_by_popularity=preseed_cfg.get("weight_by_popularity", False),
        exclude_live=preseed_cfg.get("exclude_live", True),
        setlist_name=preseed_cfg.get("setlist_name", "Predicted Setlist"),
        rng=random.Random(),
    )
    wrap_up = WrapUpService(
        cache, store, recompute_trending=import_cfg.get("recompute_trending", True)
    )

    orchestrator = ArtistImportOrchestrator(
        ticketing=ticketing,
        metadata=metadata,
        store=store,
        progress=progress_bus,
        shows_service=shows_service,
        catalog_service=catalog_service,
        preseeder=preseeder,
        wrap_up=wrap_up,
        identity_timeout_ms=import_cfg.get("identity_timeout_ms", 200),
        batch_group_size=import_cfg.get("batch_group_size", 3),
    )

    provider_registry = {
        "ticketmaster": bool(app_settings.ticketmaster_api_key),
        "spotify": bool(app_settings.spotify_client_id and app_settings.spotify_client_secret),
        "store": True,
    }

    return {
        "http_client": http_client,
        "store": store,
        "cache": cache,
        "optimizer": optimizer,
        "breakers": breakers,
        "ticketing": ticketing,
        "metadata": metadata,
        "progress_bus": progress_bus,
        "orchestrator": orchestrator,
        "provider_registry": provider_registry,
    }


async def shutdown_components(components: dict[str, Any]) -> None:
    """Release everything :func:`build_components` opened."""
    await components["optimizer"].aclose()
    await components["progress_bus"].aclose()
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    await components["store"].close()


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build components and open the store on startup, release them on shutdown."""
    components = build_components(settings, config)
    for key, value in components.items():
        setattr(application.state, key, value)

    await components["store"].initialize()

    missing = settings.get_missing_credentials()
    if missing:
        _logger.warning("credentials_missing", missing=missing)

    _logger.info(
        "app_startup",
        version=__version__,
        environment=settings.app_env,
        database=settings.database_path,
        providers=components["provider_registry"],
    )

    yield

    await shutdown_components(components)
    _logger.info("app_shutdown", message="Components closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="setlist-import API",
        version=__version__,
        description=(
            "Import an artist's upcoming shows, venues and studio catalog from "
            "ticketing and music-metadata providers into the canonical store, "
            "with live progress over WebSocket."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    # -- WebSocket --
    @application.websocket("/ws/imports/{job_id}")
    async def ws_progress(websocket: WebSocket, job_id: str) -> None:
        await websocket_progress(websocket, job_id)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "setlist_import.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
