"""
Base Provider Client
Shared protocol for every external data source used by enrichment

Order of operations for each call:
1. SSRF validation of the target URL (no quota consumed on failure)
2. Quota check for metered services
3. Circuit breaker around retry-with-backoff around the HTTP call
4. Normalization into a result dataclass
5. Quota accounting on both success and failure once a network attempt was made
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from app.config import get_settings
from app.services.quota_manager import QuotaManager
from app.utils.circuit_breaker import get_breaker
from app.utils.exceptions import CircuitOpenError, TransientProviderError
from app.utils.retry import with_retry
from app.utils.url_validator import UrlValidationResult, validate_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "CRM-Cliente-Enrichment/1.0"


@dataclass
class ProviderResult:
    """Uniform success/error shape; clients extend it with their own fields"""
    success: bool
    error: Optional[str] = None
    quota_reached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BaseProviderClient:
    """
    Base class for provider clients.

    Subclasses set ``name`` (also the circuit breaker name), ``timeout`` and,
    for metered APIs, ``quota_service``. Public methods never raise: every
    failure becomes a result with ``success=False``.
    """

    name: str = "provider"
    quota_service: Optional[str] = None
    timeout: float = 15.0
    max_retries: Optional[int] = None
    base_delay: Optional[float] = None

    def __init__(
        self,
        quota: Optional[QuotaManager] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        if self.quota_service and quota is None:
            raise ValueError(f"{type(self).__name__} needs a QuotaManager")
        self.quota = quota
        self.settings = get_settings()
        if timeout is not None:
            self.timeout = timeout
        if max_retries is not None:
            self.max_retries = max_retries
        if base_delay is not None:
            self.base_delay = base_delay
        self.breaker = get_breaker(self.name)

    # =========================================================================
    # PROTOCOL STEPS
    # =========================================================================

    def validate(self, url: Optional[str]) -> UrlValidationResult:
        result = validate_url(url)
        if not result.valid:
            logger.warning(f"{self.name}: rejected URL {url!r}: {result.error}")
        return result

    async def check_quota(self) -> Optional[str]:
        """Error message when the daily quota is exhausted, else None"""
        if not self.quota_service:
            return None
        check = await self.quota.can_make_request(self.quota_service)
        if check.allowed:
            return None
        logger.warning(f"{self.name}: quota reached ({check.used}/{check.limit})")
        return f"Quota exceeded: {check.used}/{check.limit}. Next reset: {check.reset_in}"

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through this provider's breaker and retry policy"""
        max_retries = self.max_retries if self.max_retries is not None else self.settings.RETRY_MAX_RETRIES
        base_delay = self.base_delay if self.base_delay is not None else self.settings.RETRY_BASE_DELAY
        return await self.breaker.call(
            lambda: with_retry(operation, max_retries=max_retries, base_delay=base_delay)
        )

    async def metered_call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        ``call`` plus quota accounting.

        Usage is counted after every network attempt, successful or not. An
        open circuit makes no attempt and costs nothing.
        """
        try:
            result = await self.call(operation)
        except CircuitOpenError:
            raise
        except Exception as e:
            await self._consume(error=str(e))
            raise
        await self._consume()
        return result

    async def _consume(self, error: Optional[str] = None) -> None:
        if not self.quota_service:
            return
        await self.quota.increment_usage(self.quota_service)
        if error is None:
            await self.quota.record_success(self.quota_service)
        else:
            await self.quota.record_error(self.quota_service, error)

    # =========================================================================
    # HTTP
    # =========================================================================

    async def request(
        self,
        url: str,
        method: str = "GET",
        timeout: Optional[float] = None,
        raise_for_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """One HTTP request; error statuses raise with the status in the message"""
        headers = {"User-Agent": USER_AGENT, **kwargs.pop("headers", {})}
        async with httpx.AsyncClient(
            timeout=timeout or self.timeout,
            follow_redirects=True,
        ) as client:
            response = await client.request(method, url, headers=headers, **kwargs)

        if raise_for_status and response.status_code >= 400:
            raise TransientProviderError(
                f"HTTP error: {response.status_code} {response.reason_phrase}"
            )
        return response

    async def fetch_page(self, url: str) -> httpx.Response:
        """GET an HTML page through the breaker and retry policy"""
        return await self.call(
            lambda: self.request(url, headers={"Accept": "text/html,application/xhtml+xml"})
        )

    def failure(self, result_cls, error: Exception, **fields: Any):
        """Build a failed result and log it"""
        message = str(error) or type(error).__name__
        logger.warning(f"{self.name} failed: {message}")
        return result_cls(success=False, error=message, **fields)
