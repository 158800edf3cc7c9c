"""
Enrichment Routes
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.errors import http_error
from app.schemas.enrichment import BulkEnrichRequest, BulkEnrichResponse, EnrichRequest, ReviewRequest
from app.services.enrichment_service import SERVICES, EnrichmentService
from app.utils import get_db
from app.utils.exceptions import EnrichmentError, ValidationError

router = APIRouter()


@router.post("/customers/{customer_id}/enrich")
async def enrich_customer(
    customer_id: UUID,
    request: EnrichRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Run the requested enrichment services for a customer.
    Each service reports its own success; a failing service never fails the request.
    """
    try:
        return await EnrichmentService(db).run_enrichment(
            customer_id,
            request.services,
            fields=request.fields,
            provider=request.provider,
        )
    except EnrichmentError as e:
        raise http_error(e)


@router.get("/customers/{customer_id}/enrich")
async def get_enrichment(
    customer_id: UUID,
    history_limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Latest enrichment, website analysis and enrichment history"""
    try:
        return await EnrichmentService(db).get_latest(customer_id, history_limit=history_limit)
    except EnrichmentError as e:
        raise http_error(e)


@router.patch("/customers/{customer_id}/enrich")
async def review_enrichment(
    customer_id: UUID,
    request: ReviewRequest,
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Confirm, reject or edit pending fields"""
    try:
        return await EnrichmentService(db).review(
            customer_id,
            request.action,
            request.fields,
            edited_values=request.edited_values,
            enrichment_id=request.enrichment_id,
            reviewed_by=x_user_id,
        )
    except EnrichmentError as e:
        raise http_error(e)


@router.post(
    "/enrichment/bulk",
    response_model=BulkEnrichResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def bulk_enrich(request: BulkEnrichRequest):
    """Queue enrichment for many customers; they are processed one at a time"""
    unknown = [service for service in request.services if service not in SERVICES]
    if unknown:
        raise http_error(ValidationError(f"Unknown services: {unknown}"))

    from app.workers.tasks.enrichment_tasks import enrich_customers_batch

    task_result = enrich_customers_batch.delay(
        customer_ids=[str(customer_id) for customer_id in request.customer_ids],
        services=request.services,
    )
    return BulkEnrichResponse(task_id=task_result.id, queued=len(request.customer_ids))
