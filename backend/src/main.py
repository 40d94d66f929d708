# backend/src/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.middleware import RequestTrackingMiddleware
from src.api.monitoring import router as monitoring_router
from src.config import settings
from src.monitoring.setup import init_monitoring, shutdown_monitoring

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    await init_monitoring(settings)
    yield
    # Shutdown
    await shutdown_monitoring()


app = FastAPI(title="Voice SOP Monitoring", version=settings.app_version, lifespan=lifespan)

app.add_middleware(RequestTrackingMiddleware)

# Include routers
app.include_router(monitoring_router)


@app.get("/health")
async def health():
    return {"status": "healthy"}
