"""
URL Verification Client
Checks that a website answers, preferring HTTPS and falling back to HTTP
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from .base import BaseProviderClient, ProviderResult

logger = logging.getLogger(__name__)


@dataclass
class UrlVerificationResult(ProviderResult):
    url: Optional[str] = None
    is_accessible: bool = False
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    has_ssl: bool = False
    ssl_valid: Optional[bool] = None
    redirect_url: Optional[str] = None


class UrlVerificationClient(BaseProviderClient):
    name = "url_verification"
    timeout = 10.0
    max_retries = 1

    async def probe(self, url: str) -> UrlVerificationResult:
        """Single HEAD request; an HTTP error status is a result, not an exception"""
        started = time.monotonic()
        response = await self.call(
            lambda: self.request(url, method="HEAD", raise_for_status=False)
        )
        final_url = str(response.url)
        return UrlVerificationResult(
            success=True,
            url=url,
            is_accessible=response.status_code < 400,
            status_code=response.status_code,
            response_time_ms=int((time.monotonic() - started) * 1000),
            has_ssl=final_url.startswith("https://"),
            ssl_valid=True if final_url.startswith("https://") else None,
            redirect_url=final_url if final_url.rstrip("/") != url.rstrip("/") else None,
        )

    async def verify(self, url: str) -> UrlVerificationResult:
        validation = self.validate(url)
        if not validation.valid:
            return UrlVerificationResult(success=False, url=url, error=validation.error)

        target = validation.normalized_url
        try:
            return await self.probe(target)
        except Exception as e:
            if not target.startswith("https://"):
                return self.failure(UrlVerificationResult, e, url=target)
            logger.debug(f"HTTPS probe of {target} failed ({e}), trying HTTP")

        http_url = "http://" + target[len("https://"):]
        try:
            return await self.probe(http_url)
        except Exception:
            return self.failure(
                UrlVerificationResult,
                ValueError("URL not accessible via HTTPS or HTTP"),
                url=target,
            )
