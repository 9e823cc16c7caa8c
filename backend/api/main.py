"""
FastAPI application for the Fabric Stock Checker.

Provides REST endpoints for:
- Service status and health checks
- Triggering an immediate stock check
- Listing configured suppliers

Started by fabric_checker.py alongside the scheduler, or directly with:
    cd backend
    uvicorn api.main:app --port 3000
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI
from pydantic import BaseModel

from fabric_checker import FabricStockChecker
from .routes import scrapers
from .services.checker import get_checker


SERVICE_NAME = "Fabric Stock Checker"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    print(f"{SERVICE_NAME} API started", flush=True)
    yield
    print(f"{SERVICE_NAME} API stopped", flush=True)


app = FastAPI(
    title="Fabric Stock Checker API",
    description="Supplier stock/ETA checks synchronized to the inventory spreadsheet",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(scrapers.router)


class RootResponse(BaseModel):
    """Service status."""
    status: str
    service: str
    lastRun: str
    lastStatus: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime


@app.get("/", response_model=RootResponse, tags=["root"])
def root(checker: FabricStockChecker = Depends(get_checker)):
    """
    Service status.

    Returns:
        Service name, running state and the time of the last completed run
    """
    return RootResponse(
        status="running",
        service=SERVICE_NAME,
        lastRun=checker.last_run_time or "Not yet run",
        lastStatus=checker.last_status,
    )


@app.get("/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """Liveness check for the hosting platform."""
    return HealthResponse(status="healthy", timestamp=datetime.now(timezone.utc))
