"""
Utility modules for the enrichment core
"""

from .database import (
    get_db,
    get_db_context,
    init_db,
    close_db,
)
from .security import (
    encrypt_api_key,
    decrypt_api_key,
    mask_api_key,
)
from .cache import (
    QuotaCache,
    QuotaSnapshot,
    quota_cache,
)
from .retry import with_retry, default_should_retry, calculate_delay
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerState,
    get_breaker,
    reset_all_breakers,
    breaker_snapshot,
)
from .url_validator import (
    UrlValidationResult,
    validate_url,
    extract_domain,
    sanitize_url_for_display,
)
from .exceptions import (
    EnrichmentError,
    ValidationError,
    NotFoundError,
    ConflictError,
    QuotaExceededError,
    TransientProviderError,
    CircuitOpenError,
    ParseError,
)

__all__ = [
    # Database
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
    # Security
    "encrypt_api_key",
    "decrypt_api_key",
    "mask_api_key",
    # Cache
    "QuotaCache",
    "QuotaSnapshot",
    "quota_cache",
    # Resilience
    "with_retry",
    "default_should_retry",
    "calculate_delay",
    "CircuitBreaker",
    "CircuitBreakerState",
    "get_breaker",
    "reset_all_breakers",
    "breaker_snapshot",
    # URL validation
    "UrlValidationResult",
    "validate_url",
    "extract_domain",
    "sanitize_url_for_display",
    # Exceptions
    "EnrichmentError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "QuotaExceededError",
    "TransientProviderError",
    "CircuitOpenError",
    "ParseError",
]
