"""
PageSpeed Client
Google PageSpeed Insights performance score and Core Web Vitals
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import BaseProviderClient, ProviderResult
from app.utils.exceptions import ParseError

logger = logging.getLogger(__name__)

PAGESPEED_API_BASE = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

METRIC_AUDITS = {
    "fcp": "first-contentful-paint",
    "lcp": "largest-contentful-paint",
    "fid": "first-input-delay",
    "cls": "cumulative-layout-shift",
    "speed_index": "speed-index",
    "tti": "interactive",
}


@dataclass
class PageSpeedResult(ProviderResult):
    url: Optional[str] = None
    strategy: str = "mobile"
    score: Optional[int] = None
    metrics: Dict[str, float] = field(default_factory=dict)
    opportunities: List[Dict[str, Any]] = field(default_factory=list)


def _metric_value(audit: Optional[Dict[str, Any]]) -> float:
    if not audit:
        return 0
    for key in ("numericValue", "rawValue"):
        value = audit.get(key)
        if value is not None:
            return value
    return 0


def interpret_score(score: int) -> str:
    if score >= 90:
        return "good"
    if score >= 70:
        return "needs improvement"
    if score >= 50:
        return "poor"
    return "very poor"


class PageSpeedClient(BaseProviderClient):
    """Lighthouse performance analysis for one strategy at a time"""

    name = "pagespeed"
    quota_service = "pagespeed"
    timeout = 60.0
    max_retries = 2
    base_delay = 0.5

    @staticmethod
    def process(data: Dict[str, Any], url: str, strategy: str) -> PageSpeedResult:
        lighthouse = data.get("lighthouseResult")
        if not isinstance(lighthouse, dict):
            raise ParseError("PageSpeed response has no lighthouseResult")

        performance = (lighthouse.get("categories") or {}).get("performance") or {}
        raw_score = performance.get("score")
        score = round(raw_score * 100) if raw_score else 0

        audits = lighthouse.get("audits") or {}
        metrics = {name: _metric_value(audits.get(audit_id)) for name, audit_id in METRIC_AUDITS.items()}

        opportunities = []
        for audit_id, audit in audits.items():
            details_type = (audit.get("details") or {}).get("type")
            audit_score = audit.get("score")
            if details_type in ("opportunity", "details") and audit_score is not None and audit_score < 0.9:
                opportunities.append({
                    "id": audit_id,
                    "title": audit.get("title", audit_id),
                    "description": audit.get("description", ""),
                    "score": audit_score,
                    "display_value": audit.get("displayValue", ""),
                })

        return PageSpeedResult(
            success=True,
            url=url,
            strategy=strategy,
            score=score,
            metrics=metrics,
            opportunities=opportunities[:5],
        )

    async def analyze(self, url: str, strategy: str = "mobile") -> PageSpeedResult:
        validation = self.validate(url)
        if not validation.valid:
            return PageSpeedResult(success=False, error=validation.error, url=url, strategy=strategy)
        safe_url = validation.normalized_url

        try:
            quota_error = await self.check_quota()
            if quota_error:
                return PageSpeedResult(
                    success=False, error=quota_error, quota_reached=True, url=safe_url, strategy=strategy
                )

            async def fetch() -> Dict[str, Any]:
                response = await self.request(
                    PAGESPEED_API_BASE,
                    params={
                        "url": safe_url,
                        "strategy": strategy,
                        "category": "PERFORMANCE",
                        "locale": "es",
                    },
                    headers={"Accept": "application/json"},
                )
                return response.json()

            logger.info(f"Running PageSpeed ({strategy}) for {safe_url}")
            data = await self.metered_call(fetch)
            result = self.process(data, safe_url, strategy)
        except Exception as e:
            return self.failure(PageSpeedResult, e, url=safe_url, strategy=strategy)

        logger.info(f"PageSpeed {strategy} score for {safe_url}: {result.score}")
        return result

    async def analyze_both(self, url: str) -> Dict[str, Any]:
        mobile, desktop = await asyncio.gather(
            self.analyze(url, "mobile"),
            self.analyze(url, "desktop"),
        )
        both_succeeded = mobile.success and desktop.success
        average_score = None
        if both_succeeded and mobile.score is not None and desktop.score is not None:
            average_score = round((mobile.score + desktop.score) / 2)

        return {
            "mobile": mobile,
            "desktop": desktop,
            "both_succeeded": both_succeeded,
            "average_score": average_score,
        }
