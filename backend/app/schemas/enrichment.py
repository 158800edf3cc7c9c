"""
Enrichment, Analysis, Quota & API Key Schemas
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class EnrichRequest(BaseModel):
    """Run enrichment for one customer"""
    services: List[str] = Field(..., min_length=1)
    fields: Optional[List[str]] = None
    provider: Optional[str] = None

    @field_validator("services")
    @classmethod
    def clean_services(cls, v: List[str]) -> List[str]:
        return [service.strip() for service in v if service.strip()]


class ReviewRequest(BaseModel):
    """Confirm, reject or edit pending enrichment fields"""
    action: str
    fields: List[str] = Field(..., min_length=1)
    edited_values: Optional[Dict[str, Any]] = None
    enrichment_id: Optional[str] = None


class BulkEnrichRequest(BaseModel):
    customer_ids: List[UUID] = Field(..., min_length=1, max_length=500)
    services: List[str] = Field(..., min_length=1)


class BulkEnrichResponse(BaseModel):
    task_id: str
    queued: int
    status: str = "queued"


class AnalyzeRequest(BaseModel):
    """Website probes to run; all default probes when omitted"""
    probes: Optional[List[str]] = None


class QuotaResetRequest(BaseModel):
    """Reset one service, or every service when omitted"""
    service: Optional[str] = None


class AlertThresholdRequest(BaseModel):
    service: str
    threshold: int = Field(..., ge=1, le=100)


class ApiKeyCreate(BaseModel):
    provider: str = Field(..., min_length=1, max_length=50)
    api_key: str = Field(..., min_length=1)
    model: Optional[str] = Field(None, max_length=100)
    enabled: bool = True


class ApiKeyUpdate(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = Field(None, max_length=100)
    enabled: Optional[bool] = None


class ApiKeyResponse(BaseModel):
    """Stored key; the plaintext never leaves the server"""
    id: str
    provider: str
    masked_key: str
    model: Optional[str] = None
    enabled: bool
    category: Optional[str] = None
    last_used_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
