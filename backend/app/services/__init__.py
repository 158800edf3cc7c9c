"""
Business Logic Services
"""

from .quota_manager import QuotaManager, QuotaCheck, QuotaAlert
from .api_key_service import ApiKeyService, ApiKeyData
from .ai_service import AICompletionService, AICompletionOptions, AICompletionResult, parse_json_response
from .consensus_service import ConsensusService, EnrichmentOutput, FieldResult
from .website_analysis_service import WebsiteAnalysisService, ProbeOutcome
from .enrichment_service import EnrichmentService, REVIEWABLE_FIELDS, SERVICES

__all__ = [
    "QuotaManager",
    "QuotaCheck",
    "QuotaAlert",
    "ApiKeyService",
    "ApiKeyData",
    "AICompletionService",
    "AICompletionOptions",
    "AICompletionResult",
    "parse_json_response",
    "ConsensusService",
    "EnrichmentOutput",
    "FieldResult",
    "WebsiteAnalysisService",
    "ProbeOutcome",
    "EnrichmentService",
    "REVIEWABLE_FIELDS",
    "SERVICES",
]
