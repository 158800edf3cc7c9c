"""
Quota Routes
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.errors import http_error
from app.schemas.enrichment import AlertThresholdRequest, QuotaResetRequest
from app.services import QuotaManager
from app.utils import get_db
from app.utils.exceptions import EnrichmentError

router = APIRouter()


@router.get("")
async def list_quotas(db: AsyncSession = Depends(get_db)):
    """Usage, limits and error counters for every metered service"""
    quota = QuotaManager(db)
    return {
        "quotas": await quota.get_all_quotas_info(),
        "reset_in": quota.format_reset_in(),
    }


@router.post("/reset")
async def reset_quotas(
    request: QuotaResetRequest,
    db: AsyncSession = Depends(get_db),
):
    """Manual reset; the current counts are not archived"""
    quota = QuotaManager(db)
    try:
        if request.service:
            await quota.reset_quota(request.service)
        else:
            await quota.reset_all_quotas()
    except EnrichmentError as e:
        raise http_error(e)
    return {"reset": request.service or "all", "quotas": await quota.get_all_quotas_info()}


@router.get("/history")
async def quota_history(
    days: int = Query(7),
    db: AsyncSession = Depends(get_db),
):
    """Daily history plus the services currently over their alert threshold"""
    quota = QuotaManager(db)
    try:
        history = await quota.get_all_history(days)
    except EnrichmentError as e:
        raise http_error(e)

    alerts = [
        {
            "service": info["service"],
            "used": info["used"],
            "limit": info["limit"],
            "percentage": info["percentage"],
            "threshold": info["alert_threshold"],
        }
        for info in await quota.get_all_quotas_info()
        if info["limit"] > 0 and info["percentage"] >= info["alert_threshold"]
    ]
    return {"days": days, "history": history, "alerts": alerts}


@router.put("/alert-threshold")
async def set_alert_threshold(
    request: AlertThresholdRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await QuotaManager(db).set_alert_threshold(request.service, request.threshold)
    except EnrichmentError as e:
        raise http_error(e)
