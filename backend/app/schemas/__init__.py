"""
Pydantic Schemas for API Request/Response validation
"""

from .enrichment import (
    EnrichRequest,
    ReviewRequest,
    BulkEnrichRequest,
    BulkEnrichResponse,
    AnalyzeRequest,
    QuotaResetRequest,
    AlertThresholdRequest,
    ApiKeyCreate,
    ApiKeyUpdate,
    ApiKeyResponse,
)

__all__ = [
    # Enrichment
    "EnrichRequest",
    "ReviewRequest",
    "BulkEnrichRequest",
    "BulkEnrichResponse",
    # Website analysis
    "AnalyzeRequest",
    # Quotas
    "QuotaResetRequest",
    "AlertThresholdRequest",
    # API keys
    "ApiKeyCreate",
    "ApiKeyUpdate",
    "ApiKeyResponse",
]
