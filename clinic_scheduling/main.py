from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .database import create_db_and_tables
from .exceptions import http_exception_handler
from .middleware import ErrorHandlingMiddleware, LoggingMiddleware, SecurityMiddleware
from .routers import appointments_router, maintenance_router, reconciliation_router, recurring_templates_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    app.state.db_init_ok = True
    app.state.db_init_error = None
    try:
        create_db_and_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        # Do not crash the app; report via health endpoint
        app.state.db_init_ok = False
        app.state.db_init_error = str(e)
        logger.exception("Database initialization failed")
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url=("/docs" if settings.DOCS_ENABLED else None),
        redoc_url=("/redoc" if settings.DOCS_ENABLED else None),
        openapi_url=("/openapi.json" if settings.DOCS_ENABLED else None)
    )

    app.add_exception_handler(HTTPException, http_exception_handler)

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(SecurityMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=settings.allowed_methods_list,
        allow_headers=settings.allowed_headers_list,
    )

    app.include_router(recurring_templates_router.router, prefix="/api")
    app.include_router(appointments_router.router, prefix="/api")
    app.include_router(reconciliation_router.router, prefix="/api")
    app.include_router(maintenance_router.router, prefix="/api")

    if settings.HEALTH_CHECK_ENABLED:
        @app.get("/health")
        def health_check():
            return {
                "status": "healthy" if getattr(app.state, "db_init_ok", True) else "degraded",
                "service": settings.APP_NAME,
                "version": settings.APP_VERSION,
                "timestamp": datetime.utcnow().isoformat(),
                "timezone": settings.CLINIC_TIMEZONE,
                "database": {
                    "ok": getattr(app.state, "db_init_ok", True),
                    "error": getattr(app.state, "db_init_error", None)
                },
                "auth": {
                    "secret_key_configured": bool(settings.SECRET_KEY and settings.SECRET_KEY != "change-me-in-prod"),
                    "jwt_algorithm": settings.ALGORITHM,
                },
            }

    return app


app = create_app()
