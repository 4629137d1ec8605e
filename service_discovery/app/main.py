"""Discovery service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from libs.common.background import SideEffectRunner
from libs.common.config import DiscoveryConfig
from libs.common.logging import configure_logging
from libs.directory_store.factory import StoreBundle, create_stores_from_config
from .api.routes import router as api_router
from .conversation.discovery_service import DiscoveryService
from .conversation.session_manager import SessionManager
from .errors import VALIDATION_ERROR
from .handlers.directory_handlers import DirectoryHandlers
from .hybrid.search_resolver import HybridSearchResolver
from .models import DiscoveryResponse
from .ranking.formatter import ResultFormatter
from .retrievers.embedding_client import EmbeddingClient
from .retrievers.query_cache import create_query_cache
from .runtime.metrics import MetricsCollector, create_metrics_collector

logger = structlog.get_logger("discovery_service")


def build_discovery_service(
    config: DiscoveryConfig,
    stores: StoreBundle,
    side_effects: SideEffectRunner,
    metrics: Optional[MetricsCollector] = None,
    embedding_client: Optional[EmbeddingClient] = None
) -> DiscoveryService:
    """Wire the discovery service from configuration and stores."""
    formatter = ResultFormatter(
        card_base_url=config.discovery_card_base_url,
        vcard_base_url=config.discovery_vcard_base_url,
        default_country_code=config.discovery_default_country_code,
    )
    cache = create_query_cache(stores.cache, ttl_seconds=config.discovery_query_cache_ttl, metrics=metrics)

    resolver = HybridSearchResolver(
        directory=stores.directory,
        cache=cache,
        formatter=formatter,
        side_effects=side_effects,
        similarity_threshold=config.discovery_search_threshold,
        high_confidence_similarity=config.discovery_high_confidence_similarity,
        default_limit=config.discovery_search_limit,
        max_limit=config.discovery_max_limit,
        fallback_scan_limit=config.discovery_fallback_scan_limit,
        missing_embedding_policy=config.discovery_missing_embedding_policy,
        embedding_client=embedding_client,
        metrics=metrics,
    )

    sessions = SessionManager(
        store=stores.sessions,
        directory=stores.directory,
        side_effects=side_effects,
        ttl_seconds=config.discovery_session_ttl,
        country_code=config.discovery_default_country_code,
        metrics=metrics,
    )

    handlers = DirectoryHandlers(
        directory=stores.directory,
        resolver=resolver,
        formatter=formatter,
        default_limit=config.discovery_search_limit,
        max_limit=config.discovery_max_limit,
    )

    return DiscoveryService(
        directory=stores.directory,
        sessions=sessions,
        handlers=handlers,
        default_group_name=config.discovery_default_group_name,
        metrics=metrics,
    )


def create_embedding_client(config: DiscoveryConfig) -> Optional[EmbeddingClient]:
    """Embedding client for requests without a precomputed vector, if configured."""
    if not config.discovery_embedding_service_url:
        return None
    return EmbeddingClient(
        base_url=config.discovery_embedding_service_url,
        http_client=httpx.AsyncClient(timeout=config.discovery_embedding_timeout),
        retry_attempts=config.discovery_embedding_retry_attempts,
        retry_base_delay=config.discovery_embedding_retry_base_delay,
        retry_max_delay=config.discovery_embedding_retry_max_delay,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config = DiscoveryConfig()
    configure_logging("discovery-service", config.discovery_log_level, config.discovery_log_format)

    logger.info("Starting discovery service", env=config.discovery_env)

    app.state.metrics_collector = create_metrics_collector("discovery-service")
    app.state.side_effects = SideEffectRunner("discovery")
    app.state.stores = create_stores_from_config(config)
    app.state.embedding_client = create_embedding_client(config)
    if app.state.embedding_client is None:
        logger.info("Embedding service disabled", policy=config.discovery_missing_embedding_policy)

    app.state.discovery_service = build_discovery_service(
        config,
        app.state.stores,
        app.state.side_effects,
        metrics=app.state.metrics_collector,
        embedding_client=app.state.embedding_client,
    )

    logger.info("Discovery service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down discovery service")
    await app.state.side_effects.drain()
    if app.state.embedding_client is not None:
        await app.state.embedding_client.close()
    await app.state.stores.close()
    logger.info("Discovery service shutdown complete")


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return malformed bodies in the uniform response envelope."""
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        detail = f"Invalid request: {location}: {errors[0].get('msg')}" if location else f"Invalid request: {errors[0].get('msg')}"

    logger.info("Rejected malformed request", path=request.url.path, error=detail)
    envelope = DiscoveryResponse(
        success=False,
        intent="unknown",
        response_type="error",
        detail_level="none",
        message=detail,
        error=VALIDATION_ERROR,
    )
    return JSONResponse(status_code=400, content=envelope.to_payload())


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create the FastAPI application.

    ``use_lifespan=False`` leaves ``app.state`` to the caller (tests).
    """
    app = FastAPI(
        title="Discovery Service",
        description="Conversational business directory discovery",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "detail": str(e)}
            )

        duration = time.time() - start_time

        # Record metrics
        if hasattr(request.app.state, "metrics_collector"):
            request.app.state.metrics_collector.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=status_code,
                duration=duration
            )

        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        try:
            stores = getattr(request.app.state, "stores", None)
            healthy = await stores.directory.health_check() if stores is not None else False

            if healthy:
                return {"status": "healthy", "service": "discovery-service"}
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": "discovery-service"}
            )
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": "discovery-service", "error": str(e)}
            )

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        if hasattr(request.app.state, "metrics_collector"):
            metrics_data = request.app.state.metrics_collector.get_metrics()
            return Response(content=metrics_data, media_type="text/plain")
        return Response(content="# No metrics available\n", media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "discovery-service",
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "discover": "/api/v1/discover"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "service_discovery.app.main:app",
        host="0.0.0.0",
        port=DiscoveryConfig().discovery_port,
        log_level="info"
    )
