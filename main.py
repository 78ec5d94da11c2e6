"""Main FastAPI application for the SmartBin control plane."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from api_rate_limiter import limiter, rate_limit_handler
from config import settings
from routers import admin as admin_router
from routers import bins as bins_router
from routers import health as health_router
from routers import logs as logs_router
from dispatcher import dispatcher
from mqtt_client import mqtt_bridge
from store import bin_store

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info("Starting SmartBin backend...")

    # The store is the only fatal dependency
    bin_store.check_connection()
    logger.info("Database tables created/verified")

    dispatcher.start()

    # Connect to MQTT broker
    try:
        mqtt_bridge.connect()
        logger.info("MQTT bridge started")
    except Exception as e:
        logger.warning(f"Failed to connect to MQTT broker: {e}. Continuing without MQTT...")

    yield

    # Shutdown
    logger.info("Shutting down SmartBin backend...")
    mqtt_bridge.disconnect()
    logger.info("MQTT bridge stopped")
    dispatcher.stop()
    logger.info("Dispatcher stopped")


# Create FastAPI application
app = FastAPI(
    title="SmartBin Control Plane API",
    description="""
    Backend for RFID/proximity controlled smart bins:
    - Bin status, fill level and presence
    - Retained configuration distribution (mode, proximity threshold)
    - Manual lid commands
    - Access and event audit log
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(admin_router.router, prefix=settings.api_prefix)
app.include_router(bins_router.router, prefix=settings.api_prefix)
app.include_router(logs_router.router, prefix=settings.api_prefix)
app.include_router(health_router.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "SmartBin Control Plane",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "health": f"{settings.api_prefix}/health",
            "bins": f"{settings.api_prefix}/bins",
            "logs": f"{settings.api_prefix}/logs",
            "login": f"{settings.api_prefix}/auth/login",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=5000,
        log_level=settings.log_level.lower()
    )
