"""
FastAPI application factory.
Creates and configures the main FastAPI application instance.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.core.api_key import ApiKeyError
from app.core.logging import setup_logging, get_logger
from app.api.routes import (
    auth_routes, account_routes, admin_routes, call_routes, webhook_routes, notification_routes,
    report_routes, marketing_routes, tracking_routes, review_routes, guarantee_routes
)
from app.db.database import init_db
from app.services.scheduler_service import scheduler_service
from app.services.review_sync_service import review_sync_service

# Set up logging
setup_logging()
logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance
    """

    app = FastAPI(
        title="SpeedAI API",
        description="Dashboard, call ingestion and customer engagement API for AI voice agents",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiKeyError)
    async def api_key_error_handler(request, exc: ApiKeyError):
        """API key failures answer ``{error, message}`` at the top level."""
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)

    @app.on_event("startup")
    async def startup_event():
        """Create tables and start background jobs."""
        try:
            logger.info("🚀 Starting database initialization...")
            await init_db()

            if settings.scheduler_enabled:
                await scheduler_service.start_scheduler()
                logger.info("✅ Scheduler started")

            logger.info("✅ Startup completed")
        except Exception as e:
            # Log error but don't prevent server startup
            logger.error(f"❌ Failed to initialize services during startup: {e}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background jobs and close HTTP sessions."""
        try:
            await scheduler_service.stop_scheduler()
            await review_sync_service.cleanup()
            logger.info("All resources cleaned up")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    @app.get("/", tags=["health"])
    async def root():
        return {"service": "SpeedAI API", "version": app.version}

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "healthy"}

    # Include routers
    app.include_router(auth_routes.router)
    app.include_router(account_routes.router)
    app.include_router(admin_routes.router)
    app.include_router(call_routes.router)
    app.include_router(webhook_routes.router)
    app.include_router(notification_routes.router)
    app.include_router(report_routes.router)
    app.include_router(marketing_routes.router)
    app.include_router(tracking_routes.router)
    app.include_router(review_routes.router)
    app.include_router(guarantee_routes.router)

    return app


# Create the application instance
app = create_app()
