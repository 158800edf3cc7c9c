"""
Security Headers Client
Scores the HTTP security headers a site sends
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .base import BaseProviderClient, ProviderResult

logger = logging.getLogger(__name__)

ONE_YEAR_SECONDS = 31536000

_MAX_AGE = re.compile(r"max-age=(\d+)", re.IGNORECASE)


@dataclass
class SecurityHeadersResult(ProviderResult):
    has_https: bool = False
    hsts_enabled: bool = False
    hsts_max_age: Optional[int] = None
    hsts_include_subdomains: bool = False
    hsts_preload: bool = False
    x_frame_options: Optional[str] = None
    has_csp: bool = False
    csp_directives: List[str] = field(default_factory=list)
    x_content_type_options: Optional[str] = None
    xss_protection: Optional[str] = None
    referrer_policy: Optional[str] = None
    permissions_policy: Optional[str] = None
    score: int = 0
    issues: List[str] = field(default_factory=list)


def evaluate_headers(headers: Mapping[str, str], has_https: bool) -> SecurityHeadersResult:
    lowered = {name.lower(): value for name, value in headers.items()}
    result = SecurityHeadersResult(success=True, has_https=has_https)

    if not has_https:
        result.issues.append("Site does not use HTTPS")

    hsts = lowered.get("strict-transport-security")
    if hsts:
        result.hsts_enabled = True
        match = _MAX_AGE.search(hsts)
        result.hsts_max_age = int(match.group(1)) if match else None
        result.hsts_include_subdomains = "includesubdomains" in hsts.lower()
        result.hsts_preload = "preload" in hsts.lower()
    else:
        result.issues.append("HSTS header missing")

    result.x_frame_options = lowered.get("x-frame-options") or None
    if not result.x_frame_options:
        result.issues.append("X-Frame-Options header missing (clickjacking protection)")

    csp = lowered.get("content-security-policy")
    if csp:
        result.has_csp = True
        result.csp_directives = [
            directive.strip().split(" ")[0] for directive in csp.split(";") if directive.strip()
        ]
    else:
        result.issues.append("Content-Security-Policy header missing")

    result.x_content_type_options = lowered.get("x-content-type-options") or None
    if (result.x_content_type_options or "").lower() != "nosniff":
        result.issues.append('X-Content-Type-Options should be "nosniff"')

    result.xss_protection = lowered.get("x-xss-protection") or None

    result.referrer_policy = lowered.get("referrer-policy") or None
    if not result.referrer_policy:
        result.issues.append("Referrer-Policy header missing")

    result.permissions_policy = lowered.get("permissions-policy") or lowered.get("feature-policy") or None

    result.score = score_headers(result)
    return result


def score_headers(result: SecurityHeadersResult) -> int:
    score = 0
    if result.has_https:
        score += 25
    if result.hsts_enabled:
        score += 10
        if result.hsts_max_age and result.hsts_max_age >= ONE_YEAR_SECONDS:
            score += 5
        if result.hsts_include_subdomains:
            score += 3
        if result.hsts_preload:
            score += 2
    if result.x_frame_options:
        score += 15
    if result.has_csp:
        score += 15
    if (result.x_content_type_options or "").lower() == "nosniff":
        score += 10
    if result.referrer_policy:
        score += 10
    if result.permissions_policy:
        score += 5
    return min(score, 100)


class SecurityHeadersClient(BaseProviderClient):
    name = "security_headers"
    timeout = 10.0

    async def analyze(self, url: str) -> SecurityHeadersResult:
        validation = self.validate(url)
        if not validation.valid:
            return SecurityHeadersResult(success=False, error=validation.error)

        target = validation.normalized_url
        try:
            response = await self.call(lambda: self.request(target, method="HEAD"))
        except Exception as e:
            return self.failure(SecurityHeadersResult, e)

        has_https = target.startswith("https://") or str(response.url).startswith("https://")
        return evaluate_headers(response.headers, has_https)
