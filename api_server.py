"""
FastAPI Server для TWAP buyback bot
Запускает API endpoints, WebSocket push channel и deposit monitor
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from config.config import API_RATE_LIMIT, ENVIRONMENT, PORT, WEBAPP_URL, validate_config
from config.logging import setup_logging
from config.sentry import init_sentry
from src.api.router import router as api_router
from src.api.ws import router as ws_router
from src.core.exceptions import TwapBotError
from src.database.engine import dispose_engine, init_db
from src.services.container import ServiceContainer

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager для startup/shutdown events
    """
    # Startup
    logger.info("Starting TWAP Bot API Server...")
    init_sentry()

    if not validate_config():
        logger.error("Configuration validation failed. Please check your .env file.")

    owns_services = app.state.services is None
    if owns_services:
        await init_db()
        app.state.services = ServiceContainer.create()

    services: ServiceContainer = app.state.services

    restored = await services.scheduler.restore_on_startup()
    if restored:
        logger.info(f"Stopped {restored} TWAP session(s) left active by a previous run")

    services.deposit_monitor.start()

    yield

    # Shutdown
    logger.info("Shutting down TWAP Bot API Server...")
    await services.close()
    logger.info("Deposit monitor stopped, active schedules stopped")

    if owns_services:
        await dispose_engine()
        logger.info("Database connections closed")


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the ASGI application

    Args:
        services: Pre-built service container (tests); created in lifespan if None
    """
    app = FastAPI(
        title="TWAP Buyback Bot API",
        description="TWAP execution, custodial ledger and deposits on Movement",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiter по IP адресу
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[API_RATE_LIMIT],
        storage_uri="memory://",
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # CORS: только точные домены, без wildcards
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    if WEBAPP_URL and WEBAPP_URL not in allowed_origins:
        allowed_origins.append(WEBAPP_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router)

    @app.get("/")
    async def root():
        return {
            "service": "TWAP Buyback Bot API",
            "version": "1.0.0",
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health(request: Request):
        """
        Health check endpoint (no auth)
        """
        services: ServiceContainer = request.app.state.services

        database_ok = True
        try:
            async with services.ledger.session_maker() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Health check: database unavailable: {e}")
            database_ok = False

        rpc_latency_ms = await services.chain.check_connection()

        return {
            "status": "healthy" if database_ok and rpc_latency_ms >= 0 else "degraded",
            "database": database_ok,
            "rpc_latency_ms": rpc_latency_ms,
            "wallet_configured": services.chain.is_configured(),
            "simulation": services.dex.is_simulation,
            "active_schedules": len(services.scheduler.active_wallets()),
            "subscribers": services.hub.subscriber_count(),
            "pending_ledger_postings": services.ledger.pending_postings,
        }

    # Domain errors -> uniform envelope with the error's HTTP status
    @app.exception_handler(TwapBotError)
    async def twap_error_handler(request: Request, exc: TwapBotError):
        if exc.http_status >= 500:
            logger.error(f"{exc.error_code}: {exc.message}")
        else:
            logger.warning(f"{exc.error_code}: {exc.message}")

        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, "error": exc.message},
        )

    # Error handler for HTTPException (must be before generic Exception handler)
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"HTTP {exc.status_code}: {exc.detail}")
        elif exc.status_code >= 400:
            logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")

        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"{location}: {message}" if location else message},
        )

    # Error handler for unexpected exceptions
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Validate configuration
    if not validate_config():
        logger.error("Configuration validation failed. Please check your .env file.")
        exit(1)

    logger.info("Configuration validated successfully")

    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=PORT,
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
