"""
Server Location Client
Geolocates the host serving a website through ip-api.com (no key, HTTP only)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import BaseProviderClient, ProviderResult
from app.utils.url_validator import extract_domain

logger = logging.getLogger(__name__)

IPAPI_BASE = "http://ip-api.com/json"

IPAPI_FIELDS = ",".join([
    "status", "message", "country", "countryCode", "region", "regionName", "city",
    "zip", "lat", "lon", "timezone", "isp", "org", "as", "asname", "mobile",
    "proxy", "hosting", "query",
])


@dataclass
class ServerLocationResult(ProviderResult):
    server_ip: Optional[str] = None
    location: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    isp: Optional[str] = None
    timezone: Optional[str] = None
    is_hosting: Optional[bool] = None
    is_proxy: Optional[bool] = None


def format_location(data: Dict[str, Any]) -> Optional[str]:
    parts = []
    if data.get("city"):
        parts.append(data["city"])
    if data.get("regionName") and data.get("regionName") != data.get("city"):
        parts.append(data["regionName"])
    if data.get("country"):
        parts.append(data["country"])
    return ", ".join(parts) or None


class ServerLocationClient(BaseProviderClient):
    name = "server_location"
    timeout = 10.0

    async def _lookup(self, host: str) -> Dict[str, Any]:
        response = await self.request(
            f"{IPAPI_BASE}/{host}",
            params={"fields": IPAPI_FIELDS},
            headers={"Accept": "application/json"},
        )
        return response.json()

    async def locate(self, url: str) -> ServerLocationResult:
        validation = self.validate(url)
        if not validation.valid:
            return ServerLocationResult(success=False, error=validation.error)

        host = extract_domain(validation.normalized_url)
        try:
            data = await self.call(lambda: self._lookup(host))
        except Exception as e:
            return self.failure(ServerLocationResult, e)

        if data.get("status") == "fail":
            return self.failure(ServerLocationResult, ValueError(data.get("message") or "Lookup failed"))

        return ServerLocationResult(
            success=True,
            server_ip=data.get("query"),
            location=format_location(data),
            country=data.get("country"),
            country_code=data.get("countryCode"),
            city=data.get("city"),
            region=data.get("regionName"),
            isp=data.get("isp") or data.get("org"),
            timezone=data.get("timezone"),
            is_hosting=data.get("hosting"),
            is_proxy=data.get("proxy"),
        )
