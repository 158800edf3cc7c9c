"""
SerpAPI Client
Google web, social and Maps searches for a company name
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import BaseProviderClient, ProviderResult
from app.services.api_key_service import ApiKeyService
from app.utils.exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

SERPAPI_BASE = "https://serpapi.com/search.json"

SOCIAL_SEARCH_SITES = ["linkedin", "facebook", "instagram", "twitter"]

PROFILE_PATTERNS = {
    "linkedin": re.compile(r"linkedin\.com/company/([^/?]+)", re.IGNORECASE),
    "facebook": re.compile(r"facebook\.com/([^/?]+)", re.IGNORECASE),
    "instagram": re.compile(r"instagram\.com/([^/?]+)", re.IGNORECASE),
    "twitter": re.compile(r"(?:twitter|x)\.com/([^/?]+)", re.IGNORECASE),
    "youtube": re.compile(r"youtube\.com/(?:user|channel|c)/([^/?]+)", re.IGNORECASE),
}

OFFICIAL_MARKERS = ("official", "oficial", "empresa")


@dataclass
class SerpSearchResult(ProviderResult):
    query: Optional[str] = None
    results: List[Dict[str, Any]] = field(default_factory=list)
    social_profiles: List[Dict[str, Any]] = field(default_factory=list)
    related_searches: List[str] = field(default_factory=list)
    total_results: Optional[int] = None


@dataclass
class LocalBusinessResult(ProviderResult):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    reviews: Optional[int] = None
    hours: Any = None
    type: Optional[str] = None
    gps_coordinates: Optional[Dict[str, float]] = None


def parse_organic_results(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {
            "position": item.get("position"),
            "title": item.get("title"),
            "link": item.get("link"),
            "snippet": item.get("snippet"),
            "displayed_link": item.get("displayed_link"),
        }
        for item in data.get("organic_results") or []
    ]


def extract_social_profiles(data: Dict[str, Any], company_name: str) -> List[Dict[str, Any]]:
    """
    First result per network whose title or snippet mentions the company,
    or that presents itself as an official page.
    """
    profiles: List[Dict[str, Any]] = []
    seen = set()
    company = company_name.lower()

    for item in data.get("organic_results") or []:
        link = item.get("link") or ""
        title = (item.get("title") or "").lower()
        snippet = (item.get("snippet") or "").lower()

        for network, pattern in PROFILE_PATTERNS.items():
            if not pattern.search(link):
                continue
            related = company in title or company in snippet or any(m in title for m in OFFICIAL_MARKERS)
            if related and network not in seen:
                seen.add(network)
                profiles.append({
                    "platform": network,
                    "url": link,
                    "title": item.get("title"),
                    "snippet": item.get("snippet"),
                })
            break

    return profiles


class SerpApiClient(BaseProviderClient):
    """Every search is metered against the ``serpapi`` quota"""

    name = "serpapi"
    quota_service = "serpapi"
    timeout = 20.0

    def __init__(self, api_keys: ApiKeyService, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_keys = api_keys

    async def _search(self, params: Dict[str, str]) -> Dict[str, Any]:
        """
        One metered search.

        Raises ValueError without a configured key and QuotaExceededError when
        the day's budget is spent; neither makes a request.
        """
        api_key = await self.api_keys.get_decrypted_key("serpapi")
        if not api_key:
            raise ValueError("SerpAPI key not configured")

        check = await self.quota.can_make_request(self.quota_service)
        if not check.allowed:
            raise QuotaExceededError(self.quota_service, check.used, check.limit, check.reset_in)

        async def fetch() -> Dict[str, Any]:
            response = await self.request(
                SERPAPI_BASE,
                params={**params, "api_key": api_key},
                headers={"Accept": "application/json"},
            )
            return response.json()

        logger.info(f"SerpAPI {params.get('engine')} search: {params.get('q')}")
        data = await self.metered_call(fetch)
        if data.get("error"):
            raise ValueError(data["error"])
        return data

    async def search_company(self, company_name: str, location: Optional[str] = None) -> SerpSearchResult:
        query = f"{company_name} {location}" if location else company_name
        try:
            data = await self._search({
                "engine": "google",
                "q": query,
                "num": "10",
                "hl": self.settings.SERPAPI_LANGUAGE,
                "gl": self.settings.SERPAPI_COUNTRY,
            })
        except QuotaExceededError as e:
            return SerpSearchResult(success=False, error=str(e), quota_reached=True, query=query)
        except Exception as e:
            return self.failure(SerpSearchResult, e, query=query)

        return SerpSearchResult(
            success=True,
            query=query,
            results=parse_organic_results(data),
            social_profiles=extract_social_profiles(data, company_name),
            related_searches=[
                item["query"] for item in data.get("related_searches") or [] if item.get("query")
            ],
            total_results=(data.get("search_information") or {}).get("total_results"),
        )

    async def search_social_profiles(self, company_name: str) -> SerpSearchResult:
        sites = " OR ".join(f"site:{site}.com" for site in SOCIAL_SEARCH_SITES)
        query = f'"{company_name}" ({sites})'
        try:
            data = await self._search({
                "engine": "google",
                "q": query,
                "num": "20",
                "hl": self.settings.SERPAPI_LANGUAGE,
            })
        except QuotaExceededError as e:
            return SerpSearchResult(success=False, error=str(e), quota_reached=True, query=query)
        except Exception as e:
            return self.failure(SerpSearchResult, e, query=query)

        return SerpSearchResult(
            success=True,
            query=query,
            results=parse_organic_results(data),
            social_profiles=extract_social_profiles(data, company_name),
        )

    async def search_local_business(self, company_name: str, location: Optional[str] = None) -> LocalBusinessResult:
        query = f"{company_name} {location}" if location else company_name
        try:
            data = await self._search({
                "engine": "google_maps",
                "q": query,
                "hl": self.settings.SERPAPI_LANGUAGE,
            })
        except QuotaExceededError as e:
            return LocalBusinessResult(success=False, error=str(e), quota_reached=True)
        except Exception as e:
            return self.failure(LocalBusinessResult, e)

        local_results = data.get("local_results") or []
        if not local_results:
            return LocalBusinessResult(success=False, error="No local results found")

        business = local_results[0]
        return LocalBusinessResult(
            success=True,
            name=business.get("title"),
            address=business.get("address"),
            phone=business.get("phone"),
            website=business.get("website"),
            rating=business.get("rating"),
            reviews=business.get("reviews"),
            hours=business.get("hours"),
            type=business.get("type"),
            gps_coordinates=business.get("gps_coordinates"),
        )
