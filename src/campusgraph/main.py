"""FastAPI application entry point for campusgraph.

Catalog resolution, relationship graph, recommendation and integrity API.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import get_catalog_engine, register_exception_handlers
from .api.integrity import router as integrity_router
from .api.middleware import setup_middleware
from .api.recommendations import router as recommendations_router
from .api.relationships import router as relationships_router
from .api.resolution import router as resolution_router
from .config import get_settings
from .db import close_all_connections
from .logging import get_logger, setup_logging
from .services import CatalogEngine

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting campusgraph API",
        extra={
            "environment": settings.environment,
            "store_backend": settings.store_backend,
        },
    )
    if getattr(app.state, "engine", None) is None:
        app.state.engine = CatalogEngine.build(settings)

    yield

    logger.info("Shutting down campusgraph API")
    await app.state.engine.close()
    await close_all_connections()


def create_app(engine: CatalogEngine | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Pre-built catalog engine (tests pass one over an
            in-memory store); built from settings on startup otherwise
    """
    settings = get_settings()

    app = FastAPI(
        title="campusgraph API",
        description="Entity resolution and relationship graph over the college catalog",
        version="1.0.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_middleware(app)
    register_exception_handlers(app)

    # =========================
    # Health Check Endpoints
    # =========================

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "service": "campusgraph-api"}

    @app.get("/health/ready", tags=["Health"])
    async def readiness_check(engine=Depends(get_catalog_engine)):
        """Readiness check that verifies store connectivity."""
        try:
            await engine.store.ping()
            store_status = "healthy"
        except Exception as e:
            store_status = f"unhealthy: {e}"

        healthy = store_status == "healthy"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "ready" if healthy else "not_ready",
                "checks": {"store": store_status},
            },
        )

    # =========================
    # API Routers
    # =========================

    app.include_router(resolution_router, prefix="/api/v1", tags=["Resolution"])
    app.include_router(relationships_router, prefix="/api/v1", tags=["Relationships"])
    app.include_router(recommendations_router, prefix="/api/v1", tags=["Recommendations"])
    app.include_router(integrity_router, prefix="/api/v1", tags=["Integrity"])

    return app


def run() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    setup_logging()
    settings = get_settings()
    uvicorn.run(
        "campusgraph.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
