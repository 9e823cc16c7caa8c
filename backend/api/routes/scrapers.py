"""
Stock check routes.

Endpoints for triggering an immediate run, checking run state and listing
configured suppliers.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fabric_checker import FabricStockChecker, RunInProgressError
from suppliers import SUPPLIER_CONFIGS
from ..services.checker import get_checker


router = APIRouter(tags=["scrapers"])


class RunNowResponse(BaseModel):
    """Response after a manual run."""
    status: str
    message: str
    overallStatus: Optional[str] = None
    totalProcessed: Optional[int] = None


class RunStatusResponse(BaseModel):
    """Whether a run is in progress and how the last one went."""
    is_running: bool
    last_run: Optional[str] = None
    last_status: Optional[str] = None


class SupplierInfo(BaseModel):
    """Configured supplier."""
    key: str
    name: str
    sheet_names: List[str]
    search_method: str


@router.get("/run-now", response_model=RunNowResponse)
def run_now(checker: FabricStockChecker = Depends(get_checker)):
    """
    Run a stock check immediately and wait for it to finish.

    Raises:
        HTTPException: 409 if a run is already in progress
    """
    print("Manual run triggered via /run-now endpoint", flush=True)
    try:
        stats = checker.check_fabric_stock()
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        print(f"Manual run failed: {e}", flush=True)
        return JSONResponse(status_code=500, content={"status": "error", "message": str(e)})

    return RunNowResponse(
        status="success",
        message="Stock check completed",
        overallStatus=stats.overall_status(),
        totalProcessed=stats.total_processed,
    )


@router.get("/api/status", response_model=RunStatusResponse)
def get_run_status(checker: FabricStockChecker = Depends(get_checker)):
    """Check whether a stock check is currently running."""
    return RunStatusResponse(
        is_running=checker.is_running,
        last_run=checker.last_run_time,
        last_status=checker.last_status,
    )


@router.get("/api/suppliers", response_model=List[SupplierInfo])
def list_suppliers():
    """List suppliers the checker knows how to scrape."""
    return [
        SupplierInfo(
            key=cfg.key,
            name=cfg.name,
            sheet_names=list(cfg.sheet_names),
            search_method=cfg.search_method,
        )
        for cfg in SUPPLIER_CONFIGS.values()
    ]
