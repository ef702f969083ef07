from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Any, Optional
import logging

from fee_tracker.core.config import settings
from fee_tracker.services.models import Network
from fee_tracker.services.report import get_report_service, FeeReportService
from fee_tracker.core.errors import (
    ErrorCode, ErrorResponse, FeeTrackerError, RateLimitError, InvalidNetworkError
)

logger = logging.getLogger(__name__)
router = APIRouter()


def error_detail(e: FeeTrackerError) -> dict[str, Any]:
    """Error payload; technical details are only exposed outside production"""
    return ErrorResponse(
        error_code=e.code,
        message=e.user_msg,
        details=None if settings.is_production else e.details,
        retry_after=getattr(e, "retry_after", None),
        hint="Set ETHERSCAN_API_KEY to enable live data." if e.code == ErrorCode.MISSING_CREDENTIALS else None,
    ).model_dump(mode="json", exclude_none=True)


@router.get("/fees")
async def get_fees(
    demo: bool = Query(False, description="Serve generated demo data"),
    force_full: bool = Query(False, description="Refetch every block from scratch"),
    force_incremental: bool = Query(False, description="Bypass the report cache"),
    service: FeeReportService = Depends(get_report_service)
) -> dict[str, Any]:
    """
    Aggregated protocol fees plus the most recent fee transfers.

    The `source` field says which tier is shown: live, cached, import or demo.
    """
    try:
        report = await service.get_report(demo=demo, force_full=force_full, force_incremental=force_incremental)
        return {"status": "success", **report.model_dump(mode="json")}
    except RateLimitError as e:
        raise HTTPException(status_code=429, detail=error_detail(e))
    except FeeTrackerError as e:
        raise HTTPException(status_code=502, detail=error_detail(e))
    except Exception:
        logger.exception("Unexpected error building fee report")
        raise HTTPException(status_code=500, detail={"error_code": "UNKNOWN", "message": "An unexpected error occurred."})


@router.delete("/fees/cursor")
async def reset_cursor(
    network: Optional[str] = Query(None, description="Only reset this network"),
    service: FeeReportService = Depends(get_report_service)
) -> dict[str, Any]:
    """Forget incremental state so the next fetch starts from block 0"""
    try:
        target = service.registry.get(network).network if network else None
        await service.reset_state(target)
        networks = [target.value] if target else [n.value for n in service.registry.networks]
        return {"status": "success", "reset": networks}
    except InvalidNetworkError as e:
        raise HTTPException(status_code=400, detail=error_detail(e))


@router.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "healthy",
        "environment": settings.environment,
        "explorer_key_configured": settings.has_explorer_key,
        "price_key_configured": bool(settings.coingecko_api_key),
        "state_backend": settings.state_backend,
        "networks": [n.value for n in Network],
    }
