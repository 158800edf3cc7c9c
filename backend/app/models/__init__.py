"""
Database Models for the enrichment core
"""

from .database import (
    Base,
    utcnow,
    # Enums
    EnrichmentStatus,
    EnrichmentRecordStatus,
    FieldReviewStatus,
    # Models
    Customer,
    EnrichmentRecord,
    WebsiteAnalysis,
    QuotaRecord,
    QuotaHistory,
    ApiKey,
)

__all__ = [
    "Base",
    "utcnow",
    # Enums
    "EnrichmentStatus",
    "EnrichmentRecordStatus",
    "FieldReviewStatus",
    # Models
    "Customer",
    "EnrichmentRecord",
    "WebsiteAnalysis",
    "QuotaRecord",
    "QuotaHistory",
    "ApiKey",
]
