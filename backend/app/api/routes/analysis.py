"""
Website Analysis Routes
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.errors import http_error
from app.models import Customer
from app.schemas.enrichment import AnalyzeRequest
from app.services import ApiKeyService, QuotaManager, WebsiteAnalysisService
from app.utils import get_db, validate_url
from app.utils.exceptions import EnrichmentError

router = APIRouter()


def _service(db: AsyncSession) -> WebsiteAnalysisService:
    return WebsiteAnalysisService(db, QuotaManager(db), ApiKeyService(db))


@router.post("/customers/{customer_id}/analyze")
async def analyze_customer_website(
    customer_id: UUID,
    request: AnalyzeRequest,
    db: AsyncSession = Depends(get_db),
):
    """Run the website probes against the customer's website"""
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    if not customer.website:
        raise HTTPException(status_code=400, detail="Customer has no website to analyze")

    validation = validate_url(customer.website)
    if not validation.valid:
        raise HTTPException(status_code=400, detail=f"Invalid website URL: {validation.error}")

    try:
        result = await _service(db).analyze_website(customer_id, validation.normalized_url, request.probes)
    except EnrichmentError as e:
        raise http_error(e)

    result["probes"] = {name: outcome.to_dict() for name, outcome in result["probes"].items()}
    return result


@router.get("/customers/{customer_id}/analyze")
async def get_website_analysis(
    customer_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    analysis = await _service(db).get_analysis(customer_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="No website analysis for this customer")
    return analysis
