"""
API Routes
"""

from fastapi import APIRouter

from .enrichment import router as enrichment_router
from .analysis import router as analysis_router
from .quotas import router as quotas_router
from .api_keys import router as api_keys_router

api_router = APIRouter()

api_router.include_router(enrichment_router, tags=["Enrichment"])
api_router.include_router(analysis_router, tags=["Website Analysis"])
api_router.include_router(quotas_router, prefix="/quotas", tags=["Quotas"])
api_router.include_router(api_keys_router, prefix="/api-keys", tags=["API Keys"])
