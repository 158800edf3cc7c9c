"""
BuiltWith Client
Technology profile of a domain from the BuiltWith API

With a stored ``builtwith`` key the full v21 API is used, otherwise the
free endpoint that only reports live technology groups.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .base import BaseProviderClient, ProviderResult
from app.services.api_key_service import ApiKeyService
from app.utils.url_validator import extract_domain

logger = logging.getLogger(__name__)

BUILTWITH_API = "https://api.builtwith.com/v21/api.json"
BUILTWITH_FREE_API = "https://api.builtwith.com/free1/api.json"


@dataclass
class BuiltWithResult(ProviderResult):
    domain: Optional[str] = None
    technologies: List[Dict[str, Any]] = field(default_factory=list)
    categories: Dict[str, List[str]] = field(default_factory=dict)
    free_tier: bool = False


def lookup_domain(url: str) -> Optional[str]:
    domain = extract_domain(url)
    if domain and domain.startswith("www."):
        domain = domain[4:]
    return domain


def parse_full_response(data: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, List[str]]]:
    """Results[].Result.Paths[].Technologies[], deduplicated by name"""
    technologies: List[Dict[str, Any]] = []
    categories: Dict[str, List[str]] = {}
    seen = set()

    for result in data.get("Results") or []:
        for path in (result.get("Result") or {}).get("Paths") or []:
            for tech in path.get("Technologies") or []:
                name = tech.get("Name")
                if not name or name in seen:
                    continue
                seen.add(name)
                tag = tech.get("Tag") or "Other"
                technologies.append({
                    "name": name,
                    "description": tech.get("Description"),
                    "link": tech.get("Link"),
                    "tag": tag,
                    "categories": tech.get("Categories") or [],
                    "first_detected": tech.get("FirstDetected"),
                    "last_detected": tech.get("LastDetected"),
                })
                categories.setdefault(tag, []).append(name)

    return technologies, categories


def parse_free_response(data: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, List[str]]]:
    """groups[].categories[] with a positive ``live`` count"""
    technologies: List[Dict[str, Any]] = []
    categories: Dict[str, List[str]] = {}

    for group in data.get("groups") or []:
        group_name = group.get("name") or "Other"
        for category in group.get("categories") or []:
            if (category.get("live") or 0) > 0:
                technologies.append({"name": category.get("name"), "tag": group_name})
                categories.setdefault(group_name, []).append(category.get("name"))

    return technologies, categories


class BuiltWithClient(BaseProviderClient):
    name = "builtwith"
    quota_service = "builtwith"
    timeout = 20.0

    def __init__(self, api_keys: ApiKeyService, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_keys = api_keys

    async def detect(self, url: str) -> BuiltWithResult:
        validation = self.validate(url)
        if not validation.valid:
            return BuiltWithResult(success=False, error=validation.error)
        domain = lookup_domain(validation.normalized_url)

        try:
            quota_error = await self.check_quota()
            if quota_error:
                return BuiltWithResult(success=False, error=quota_error, quota_reached=True, domain=domain)

            api_key = await self.api_keys.get_decrypted_key("builtwith")
            endpoint = BUILTWITH_API if api_key else BUILTWITH_FREE_API

            async def fetch() -> Dict[str, Any]:
                response = await self.request(
                    endpoint,
                    params={"KEY": api_key or "free", "LOOKUP": domain},
                    headers={"Accept": "application/json"},
                )
                return response.json()

            logger.info(f"BuiltWith lookup for {domain} ({'full' if api_key else 'free'} API)")
            data = await self.metered_call(fetch)
        except Exception as e:
            return self.failure(BuiltWithResult, e, domain=domain)

        errors = data.get("Errors") or []
        if errors:
            message = errors[0].get("Message") if isinstance(errors[0], dict) else str(errors[0])
            return self.failure(BuiltWithResult, ValueError(message or "API error"), domain=domain)

        if api_key:
            technologies, categories = parse_full_response(data)
        else:
            technologies, categories = parse_free_response(data)

        return BuiltWithResult(
            success=True,
            domain=domain,
            technologies=technologies,
            categories=categories,
            free_tier=not api_key,
        )
