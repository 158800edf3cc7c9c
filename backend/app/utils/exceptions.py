"""
Domain exceptions for the enrichment core
"""

from typing import Optional


class EnrichmentError(Exception):
    """Base exception for enrichment errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EnrichmentError):
    """Bad input: unknown service, unsafe URL, missing website"""
    pass


class NotFoundError(EnrichmentError):
    """Unknown customer or enrichment record"""
    pass


class ConflictError(EnrichmentError):
    """Record already reviewed, duplicate provider, nothing pending"""
    pass


class QuotaExceededError(EnrichmentError):
    """Daily quota for a metered service is exhausted"""

    def __init__(self, service: str, used: int, limit: int, reset_in: Optional[str] = None):
        message = f"Quota exceeded: {used}/{limit}"
        if reset_in:
            message += f". Next reset: {reset_in}"
        super().__init__(message)
        self.service = service
        self.used = used
        self.limit = limit
        self.reset_in = reset_in


class TransientProviderError(EnrichmentError):
    """Upstream failure that may succeed later"""
    pass


class CircuitOpenError(EnrichmentError):
    """Raised without calling the dependency while its breaker is open"""

    def __init__(self, name: str):
        super().__init__(f"Service unavailable (circuit breaker {name} is OPEN)")
        self.name = name


class ParseError(EnrichmentError):
    """Unparseable provider response"""
    pass
