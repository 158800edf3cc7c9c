"""
Website Analysis Service
Runs the technical website probes concurrently and stores one analysis row
per customer
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.adapters.providers import (
    AccessibilityClient,
    BuiltWithClient,
    CrawlabilityClient,
    PageSpeedClient,
    ResponsiveClient,
    ScreenshotClient,
    SecurityHeadersClient,
    SeoClient,
    ServerLocationClient,
    TechStackClient,
    UrlVerificationClient,
    UrlVerificationResult,
    WhoisClient,
)
from app.adapters.providers.whois import parse_date
from app.models.database import Customer, WebsiteAnalysis, utcnow
from app.services.api_key_service import ApiKeyService
from app.services.quota_manager import QuotaManager
from app.utils.database import session_lock
from app.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

PROBES = [
    "screenshots",
    "pagespeed",
    "ssl",
    "seo",
    "techstack",
    "security",
    "accessibility",
    "crawlability",
    "responsive",
    "server_location",
    "whois",
    "builtwith",
]

# whois needs a paid key and builtwith spends a small daily quota; both are opt-in
OPT_IN_PROBES = ("whois", "builtwith")
DEFAULT_PROBES = [probe for probe in PROBES if probe not in OPT_IN_PROBES]


@dataclass
class ProbeOutcome:
    """One probe's result plus the analysis columns it owns"""
    success: bool
    columns: Dict[str, Any] = field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    quota_reached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
        if self.quota_reached:
            payload["quota_reached"] = True
        return payload


def _naive(value: Optional[str]):
    parsed = parse_date(value)
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def _failed(result: Any) -> ProbeOutcome:
    return ProbeOutcome(
        success=False,
        error=result.error or "Unknown error",
        quota_reached=result.quota_reached,
    )


def analysis_to_dict(record: WebsiteAnalysis) -> Dict[str, Any]:
    data = {}
    for column in WebsiteAnalysis.__table__.columns:
        value = getattr(record, column.key)
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        elif isinstance(value, UUID):
            value = str(value)
        data[column.key] = value
    data["apis_used"] = data.get("apis_used") or []
    return data


class WebsiteAnalysisService:
    """
    Orchestrates the website probes for one customer.

    Accessibility of the URL is checked first; an unreachable site runs no
    probes. Each successful probe writes its whole column group, failed probes
    leave the previous values untouched.
    """

    def __init__(self, db: AsyncSession, quota: QuotaManager, api_keys: ApiKeyService):
        self.db = db
        self.verifier = UrlVerificationClient()
        self.screenshots = ScreenshotClient(quota=quota)
        self.pagespeed = PageSpeedClient(quota=quota)
        self.seo = SeoClient()
        self.tech_stack = TechStackClient()
        self.security = SecurityHeadersClient()
        self.accessibility = AccessibilityClient()
        self.crawlability = CrawlabilityClient()
        self.responsive = ResponsiveClient()
        self.server_location = ServerLocationClient()
        self.whois = WhoisClient(api_keys)
        self.builtwith = BuiltWithClient(api_keys, quota=quota)

    # =========================================================================
    # PROBES
    # =========================================================================

    async def _probe_screenshots(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        shots = await self.screenshots.take_responsive_screenshots(url)
        desktop, mobile = shots["desktop"], shots["mobile"]
        if not desktop.success and not mobile.success:
            return ProbeOutcome(
                success=False,
                error=f"Desktop: {desktop.error}, Mobile: {mobile.error}",
                quota_reached=desktop.quota_reached or mobile.quota_reached,
            )
        # each device is its own group
        columns = {}
        if desktop.success:
            columns["screenshot_desktop"] = desktop.url
        if mobile.success:
            columns["screenshot_mobile"] = mobile.url
        return ProbeOutcome(
            success=True,
            columns=columns,
            data={"desktop": desktop.to_dict(), "mobile": mobile.to_dict(), "both_succeeded": shots["both_succeeded"]},
        )

    async def _probe_pagespeed(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        both = await self.pagespeed.analyze_both(url)
        mobile, desktop = both["mobile"], both["desktop"]
        if not both["both_succeeded"]:
            return ProbeOutcome(
                success=False,
                error=f"Mobile: {mobile.error or 'OK'}, Desktop: {desktop.error or 'OK'}",
                quota_reached=mobile.quota_reached or desktop.quota_reached,
            )
        metrics = mobile.metrics
        return ProbeOutcome(
            success=True,
            columns={
                "performance_score": both["average_score"],
                "mobile_score": mobile.score,
                "desktop_score": desktop.score,
                "fcp_ms": round(metrics.get("fcp", 0)),
                "lcp_ms": round(metrics.get("lcp", 0)),
                "tti_ms": round(metrics.get("tti", 0)),
                "cls": metrics.get("cls"),
            },
            data={
                "average_score": both["average_score"],
                "mobile": mobile.to_dict(),
                "desktop": desktop.to_dict(),
            },
        )

    async def _probe_ssl(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        columns = {
            "ssl_valid": bool(verification.ssl_valid),
            "ssl_protocol": "TLS" if verification.has_ssl else None,
            "ssl_issuer": None,
            "ssl_expires_at": None,
        }
        return ProbeOutcome(success=True, columns=columns, data=dict(columns))

    async def _probe_seo(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.seo.analyze(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={
                "seo_title": result.title,
                "seo_description": result.description,
                "seo_h1_count": result.h1_count,
                "seo_has_canonical": result.has_canonical,
                "seo_indexable": result.indexable,
                "seo_score": result.score,
                "has_open_graph": result.has_open_graph,
                "open_graph_data": result.open_graph_data,
                "has_twitter_cards": result.has_twitter_cards,
                "has_json_ld": result.has_json_ld,
                "json_ld_types": result.json_ld_types,
            },
            data=result.to_dict(),
        )

    async def _probe_techstack(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.tech_stack.detect(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={"tech_stack": {"technologies": result.technologies, "categories": result.categories}},
            data=result.to_dict(),
        )

    async def _probe_security(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.security.analyze(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={
                "has_https": result.has_https,
                "hsts_enabled": result.hsts_enabled,
                "x_frame_options": result.x_frame_options,
                "has_csp": result.has_csp,
                "security_score": result.score,
            },
            data=result.to_dict(),
        )

    async def _probe_accessibility(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.accessibility.analyze(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={"accessibility_score": result.score, "accessibility_issues": result.issues},
            data=result.to_dict(),
        )

    async def _probe_crawlability(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.crawlability.analyze(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={
                "has_robots_txt": result.has_robots_txt,
                "robots_allows_index": result.robots_allows_index,
                "has_sitemap": result.has_sitemap,
                "sitemap_url": result.sitemap_url,
                "sitemap_url_count": result.sitemap_url_count,
            },
            data=result.to_dict(),
        )

    async def _probe_responsive(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.responsive.analyze(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={
                "has_viewport_meta": result.has_viewport_meta,
                "breakpoints": result.breakpoints,
                "media_queries_count": result.media_queries_count,
                "is_responsive": result.is_responsive,
                "responsive_confidence": result.confidence,
            },
            data=result.to_dict(),
        )

    async def _probe_server_location(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.server_location.locate(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={
                "server_ip": result.server_ip,
                "server_location": result.location,
                "server_country": result.country,
                "server_city": result.city,
                "server_isp": result.isp,
                "is_hosting": result.is_hosting,
            },
            data=result.to_dict(),
        )

    async def _probe_whois(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.whois.lookup(url)
        if not result.success:
            return _failed(result)
        registrant = result.registrant or {}
        return ProbeOutcome(
            success=True,
            columns={
                "domain_registrar": result.registrar_name,
                "domain_created_at": _naive(result.created_date),
                "domain_expires_at": _naive(result.expires_date),
                "domain_age_years": result.domain_age_years,
                "days_until_expiry": result.days_until_expiry,
                "whois_owner": registrant.get("organization") or registrant.get("name"),
                "whois_country": registrant.get("country"),
                "domain_trust_score": result.trust_score,
            },
            data=result.to_dict(),
        )

    async def _probe_builtwith(self, url: str, verification: UrlVerificationResult) -> ProbeOutcome:
        result = await self.builtwith.detect(url)
        if not result.success:
            return _failed(result)
        return ProbeOutcome(
            success=True,
            columns={
                "builtwith_technologies": {
                    "technologies": result.technologies,
                    "categories": result.categories,
                    "free_tier": result.free_tier,
                },
            },
            data=result.to_dict(),
        )

    def _probe(self, name: str) -> Callable[[str, UrlVerificationResult], Awaitable[ProbeOutcome]]:
        return getattr(self, f"_probe_{name}")

    # =========================================================================
    # ORCHESTRATION
    # =========================================================================

    async def analyze_website(
        self,
        customer_id: UUID,
        url: str,
        probes: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Verify, probe and persist.

        Returns ``{success, url, probes, apis_used, errors}`` where ``probes``
        maps each requested probe to its outcome.
        """
        probes = list(probes) if probes is not None else list(DEFAULT_PROBES)
        unknown = [probe for probe in probes if probe not in PROBES]
        if unknown:
            raise ValidationError(f"Unknown website probes: {unknown}")

        verification = await self.verifier.verify(url)
        if not verification.is_accessible:
            error = f"URL not accessible: {verification.error or 'HTTP ' + str(verification.status_code)}"
            logger.warning(f"Website analysis skipped for customer {customer_id}: {error}")
            return {
                "success": False,
                "url": url,
                "probes": {probe: ProbeOutcome(success=False, error=error) for probe in probes},
                "apis_used": [],
                "errors": [error],
            }

        target = verification.url
        logger.info(f"Analyzing {target} for customer {customer_id} with probes {probes}")

        settled = await asyncio.gather(
            *(self._probe(probe)(target, verification) for probe in probes),
            return_exceptions=True,
        )

        outcomes: Dict[str, ProbeOutcome] = {}
        for probe, outcome in zip(probes, settled):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Probe {probe} raised: {outcome}")
                outcome = ProbeOutcome(success=False, error=str(outcome) or type(outcome).__name__)
            outcomes[probe] = outcome

        apis_used = [probe for probe, outcome in outcomes.items() if outcome.success]
        errors = [f"{probe}: {outcome.error}" for probe, outcome in outcomes.items() if not outcome.success]

        await self._save(customer_id, target, outcomes, apis_used)

        return {
            "success": bool(apis_used) or not errors,
            "url": target,
            "probes": outcomes,
            "apis_used": apis_used,
            "errors": errors,
        }

    async def _save(
        self,
        customer_id: UUID,
        url: str,
        outcomes: Dict[str, ProbeOutcome],
        apis_used: List[str],
    ) -> None:
        async with session_lock(self.db):
            result = await self.db.execute(
                select(WebsiteAnalysis).where(WebsiteAnalysis.customer_id == customer_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = WebsiteAnalysis(customer_id=customer_id, url=url)
                self.db.add(record)

            record.url = url
            for outcome in outcomes.values():
                if outcome.success:
                    for column, value in outcome.columns.items():
                        setattr(record, column, value)
            record.apis_used = apis_used
            record.analyzed_at = utcnow()

            ssl = outcomes.get("ssl")
            if ssl is not None and ssl.success:
                customer = await self.db.get(Customer, customer_id)
                if customer is not None:
                    customer.has_ssl = ssl.columns["ssl_valid"]

            await self.db.flush()
            await self.db.commit()

        logger.info(f"Website analysis saved for customer {customer_id}: {apis_used}")

    async def get_analysis(self, customer_id: UUID) -> Optional[Dict[str, Any]]:
        async with session_lock(self.db):
            result = await self.db.execute(
                select(WebsiteAnalysis)
                .where(WebsiteAnalysis.customer_id == customer_id)
                .execution_options(populate_existing=True)
            )
            record = result.scalar_one_or_none()
        return analysis_to_dict(record) if record else None
