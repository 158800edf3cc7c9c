"""
Social URL Validator
Drops AI-suggested social profile links that do not resolve
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .base import BaseProviderClient, ProviderResult

logger = logging.getLogger(__name__)

KNOWN_NETWORKS = ["facebook", "instagram", "linkedin", "twitter", "x", "youtube", "tiktok", "whatsapp"]

SOCIAL_URL_TIMEOUT = 5.0


@dataclass
class SocialUrlCheck:
    url: str
    is_accessible: bool = False
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


@dataclass
class SocialValidationResult(ProviderResult):
    validated_profiles: Dict[str, str] = field(default_factory=dict)
    validation_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    accessible_count: int = 0
    total_count: int = 0


class SocialUrlValidator(BaseProviderClient):
    name = "social"
    timeout = SOCIAL_URL_TIMEOUT
    max_retries = 0

    async def _head_then_get(self, url: str):
        try:
            response = await self.request(url, method="HEAD", raise_for_status=False)
            if response.status_code < 400:
                return response
        except Exception as e:
            logger.debug(f"HEAD {url} failed: {e}")
        # many networks reject HEAD
        return await self.request(url, raise_for_status=False)

    async def check(self, url: str, network: Optional[str] = None) -> SocialUrlCheck:
        validation = self.validate(url)
        if not validation.valid:
            return SocialUrlCheck(url=url, error=validation.error or "Invalid URL format")

        target = validation.normalized_url
        started = time.monotonic()
        try:
            response = await self.call(lambda: self._head_then_get(target))
        except Exception as e:
            logger.warning(f"Social URL check failed for {network or 'unknown'}: {e}")
            return SocialUrlCheck(url=target, error=str(e) or type(e).__name__)

        result = SocialUrlCheck(
            url=str(response.url),
            is_accessible=response.status_code < 400,
            status_code=response.status_code,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )
        if not result.is_accessible:
            result.error = f"HTTP {response.status_code}"
        return result

    async def validate_profiles(self, profiles: Mapping[str, Any]) -> SocialValidationResult:
        """Probe every known-network URL concurrently; keep only the reachable ones"""
        entries = [
            (network, url.strip())
            for network, url in (profiles or {}).items()
            if network.lower() in KNOWN_NETWORKS and isinstance(url, str) and url.strip()
        ]
        if not entries:
            return SocialValidationResult(success=True)

        logger.info(f"Validating {len(entries)} social URLs: {[network for network, _ in entries]}")

        outcomes = await asyncio.gather(
            *(self.check(url, network) for network, url in entries),
            return_exceptions=True,
        )

        result = SocialValidationResult(success=True, total_count=len(entries))
        for (network, url), outcome in zip(entries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Social URL check for {network} raised: {outcome}")
                outcome = SocialUrlCheck(url=url, error=str(outcome))
            result.validation_results[network] = outcome.__dict__.copy()
            if outcome.is_accessible:
                result.validated_profiles[network] = outcome.url
                result.accessible_count += 1

        logger.info(
            f"Social URL validation complete: {result.accessible_count}/{result.total_count} accessible"
        )
        return result
