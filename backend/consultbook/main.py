# backend/consultbook/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from pathlib import Path
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.staticfiles import StaticFiles

from .core.config import settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .errors import register_error_handlers
from .routes.v1 import (
    bookings as bookings_v1,
    disputes as disputes_v1,
    payments as payments_v1,
    prometheus as prometheus_v1,
    slots as slots_v1,
)
from .services.invoice_service import INVOICE_URL_PREFIX

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(
        "Environment: %s, hold window %s minutes",
        settings.environment,
        settings.booking_hold_minutes,
    )
    yield
    logger.info(f"{BRAND_NAME} API shutting down...")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

register_error_handlers(app)

# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")

api_v1.include_router(slots_v1.router, prefix="/professionals")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(disputes_v1.router, prefix="/disputes")

app.include_router(api_v1)
app.include_router(prometheus_v1.router, prefix="/metrics")

# Generated invoices are served as plain files
_invoice_dir = Path(settings.invoice_dir)
_invoice_dir.mkdir(parents=True, exist_ok=True)
app.mount(INVOICE_URL_PREFIX, StaticFiles(directory=str(_invoice_dir)), name="invoices")


@app.get("/health", tags=["monitoring"])
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": API_TITLE}
