"""
Enrichment Post Processor
Cross-checks the AI's answer against external data APIs

Steps, each skipped when its API has no enabled key:
1. Hunter.io verifies the first emails; a verified address raises the score
2. Google Maps through SerpAPI fills a weak address, a missing phone or industry
3. Google Places does the same with higher confidence, plus website and rating
4. Safe Browsing flags the website, or rewards a clean one
5. A SerpAPI social search proposes social profiles

A failing step adds to ``errors`` and never stops the others.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.adapters.providers import (
    GooglePlacesClient,
    HunterClient,
    SafeBrowsingClient,
    SerpApiClient,
    map_types_to_industry,
)
from app.config import get_settings
from app.services.api_key_service import ApiKeyService
from app.services.consensus_service import EnrichmentOutput, FieldResult
from app.services.quota_manager import QuotaManager

logger = logging.getLogger(__name__)

VERIFIED_EMAIL_BOOST = 1.15
MAPS_ADDRESS_THRESHOLD = 0.7
MAPS_SCORE = 0.9
PLACES_THRESHOLD = 0.8
PLACES_SCORE = 0.95
INDUSTRY_SCORE = 0.85
RATING_SCORE = 0.8
UNSAFE_PENALTY = 0.3
UNSAFE_FLOOR = 0.1
SAFE_BOOST = 1.05
SOCIAL_SCORE = 0.85

DELIVERABLE_STATUSES = ("valid", "accept_all")


@dataclass
class PostProcessResult:
    external_data_used: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    social_profiles: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_data_used": self.external_data_used,
            "errors": self.errors,
            "social_profiles": self.social_profiles,
        }


def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def _value(output: EnrichmentOutput, name: str) -> Any:
    found = output.fields.get(name)
    return found.value if found else None


def _score(output: EnrichmentOutput, name: str) -> float:
    found = output.fields.get(name)
    return found.score if found else 0.0


def _providers(output: EnrichmentOutput, name: str) -> List[str]:
    found = output.fields.get(name)
    return list(found.providers) if found else []


class EnrichmentPostProcessor:
    def __init__(self, quota: QuotaManager, api_keys: ApiKeyService):
        self.settings = get_settings()
        self.api_keys = api_keys
        self.hunter = HunterClient(api_keys)
        self.serpapi = SerpApiClient(api_keys, quota=quota)
        self.places = GooglePlacesClient(api_keys)
        self.safe_browsing = SafeBrowsingClient(api_keys)

    async def configured(self) -> set:
        """External providers with an enabled key"""
        keys = await self.api_keys.get_enabled_by_category("external")
        return {key.provider for key in keys}

    async def process(
        self,
        output: EnrichmentOutput,
        company_name: str,
        location: Optional[str] = None,
        website_url: Optional[str] = None,
    ) -> PostProcessResult:
        """Apply every configured step to ``output`` in place"""
        result = PostProcessResult()
        available = await self.configured()
        if not available:
            result.errors.append("No external data APIs configured")
            return result

        logger.info(f"Post-processing enrichment of {company_name!r} with {sorted(available)}")

        if "hunter_io" in available and _value(output, "emails"):
            await self._verify_emails(output, result)
        if "serpapi" in available and company_name:
            await self._maps(output, result, company_name, location)
        if "google_places" in available and company_name:
            await self._places(output, result, company_name, location)

        website = website_url or _value(output, "website")
        if "google_safe_browsing" in available and website:
            await self._safety(output, result, website)
        if "serpapi" in available and company_name:
            await self._social_profiles(output, result, company_name)

        logger.info(f"External data used: {result.external_data_used}; errors: {len(result.errors)}")
        return result

    # =========================================================================
    # STEPS
    # =========================================================================

    async def _verify_emails(self, output: EnrichmentOutput, result: PostProcessResult) -> None:
        emails = output.fields["emails"]
        if not isinstance(emails.value, list):
            return

        limit = self.settings.EXTERNAL_MAX_EMAIL_CHECKS
        checked: List[Any] = []
        verified = 0
        for position, entry in enumerate(emails.value):
            address = entry.get("email") if isinstance(entry, dict) else entry
            item = dict(entry) if isinstance(entry, dict) else {"email": entry, "type": "unknown"}
            if position >= limit or not address:
                item["status"] = "not_checked"
                checked.append(item)
                continue

            verification = await self.hunter.verify_email(address)
            if verification.success:
                item["status"] = verification.status
                item["verified"] = verification.status in DELIVERABLE_STATUSES
                verified += item["verified"]
            else:
                item["status"] = "error"
                item["verified"] = False
                result.errors.append(f"Email {address}: {verification.error}")
            checked.append(item)

        if verified:
            emails.value = checked
            emails.score = min(emails.score * VERIFIED_EMAIL_BOOST, 1.0)
            emails.source = f"{emails.source} ({verified} verified with Hunter.io)"
            result.external_data_used.append("hunter_email_verify")

    def _add_phone(self, output: EnrichmentOutput, phone: str, score: float, source: str) -> bool:
        existing = _value(output, "phones") or []
        if any(_digits(item.get("number", "") if isinstance(item, dict) else item) == _digits(phone)
               for item in existing):
            return False
        output.fields["phones"] = FieldResult(
            value=[{"number": phone, "type": "business"}, *existing],
            score=max(_score(output, "phones"), score),
            source=source,
            providers=_providers(output, "phones"),
        )
        return True

    async def _maps(
        self, output: EnrichmentOutput, result: PostProcessResult, company_name: str, location: Optional[str]
    ) -> None:
        business = await self.serpapi.search_local_business(company_name, location)
        if not business.success:
            result.errors.append(f"SerpAPI Maps: {business.error}")
            return

        if business.address and (not _value(output, "address") or _score(output, "address") < MAPS_ADDRESS_THRESHOLD):
            output.fields["address"] = FieldResult(
                value=business.address,
                score=MAPS_SCORE,
                source="Google Maps via SerpAPI",
                providers=_providers(output, "address"),
            )
            result.external_data_used.append("serpapi_maps_address")

        if business.phone and self._add_phone(output, business.phone, MAPS_SCORE, "Google Maps via SerpAPI + AI"):
            result.external_data_used.append("serpapi_maps_phone")

        if business.type and not _value(output, "industry"):
            output.fields["industry"] = FieldResult(
                value=business.type,
                score=INDUSTRY_SCORE,
                source="Google Maps via SerpAPI",
                providers=[],
            )
            result.external_data_used.append("serpapi_maps_industry")

    async def _places(
        self, output: EnrichmentOutput, result: PostProcessResult, company_name: str, location: Optional[str]
    ) -> None:
        place = await self.places.find_business(company_name, location)
        if not place.success:
            result.errors.append(f"Google Places: {place.error}")
            return
        if not place.place_id:
            return

        if place.address and (not _value(output, "address") or _score(output, "address") < PLACES_THRESHOLD):
            output.fields["address"] = FieldResult(
                value=place.address,
                score=PLACES_SCORE,
                source="Google Places API",
                providers=_providers(output, "address"),
            )
            result.external_data_used.append("google_places_address")

        phone = place.international_phone or place.phone
        if phone and self._add_phone(output, phone, PLACES_SCORE, "Google Places API + AI"):
            result.external_data_used.append("google_places_phone")

        if place.website and (not _value(output, "website") or _score(output, "website") < PLACES_THRESHOLD):
            output.fields["website"] = FieldResult(
                value=place.website,
                score=PLACES_SCORE,
                source="Google Places API",
                providers=_providers(output, "website"),
            )
            result.external_data_used.append("google_places_website")

        industry = map_types_to_industry(place.types)
        if industry and not _value(output, "industry"):
            output.fields["industry"] = FieldResult(
                value=industry,
                score=INDUSTRY_SCORE,
                source="Google Places API",
                providers=[],
            )
            result.external_data_used.append("google_places_industry")

        if place.rating and place.user_ratings_total:
            rating = f"Rating: {place.rating}/5 ({place.user_ratings_total} Google reviews)"
            description = output.fields.get("description")
            if description and description.value:
                description.value = f"{description.value}\n{rating}"
            else:
                output.fields["description"] = FieldResult(
                    value=rating, score=RATING_SCORE, source="Google Places API", providers=[]
                )
            result.external_data_used.append("google_places_rating")

    async def _safety(self, output: EnrichmentOutput, result: PostProcessResult, website: str) -> None:
        safety = await self.safe_browsing.check_url(website)
        if not safety.success:
            result.errors.append(f"Safe Browsing: {safety.error}")
            return

        found = output.fields.get("website")
        if safety.is_safe:
            if found:
                found.score = min(1.0, found.score * SAFE_BOOST)
            result.external_data_used.append("google_safe_browsing_safe")
            return

        warning = f"SECURITY WARNING: {'. '.join(safety.descriptions)}"
        description = output.fields.get("description")
        if description and description.value:
            description.value = f"{warning}\n\n{description.value}"
        else:
            output.fields["description"] = FieldResult(
                value=warning, score=1.0, source="Google Safe Browsing", providers=[]
            )
        if found:
            found.score = max(UNSAFE_FLOOR, found.score * UNSAFE_PENALTY)
            found.source = f"{found.source} (unsafe site)"
        result.external_data_used.append("google_safe_browsing_unsafe")
        logger.warning(f"Website {website} flagged as unsafe")

    async def _social_profiles(self, output: EnrichmentOutput, result: PostProcessResult, company_name: str) -> None:
        search = await self.serpapi.search_social_profiles(company_name)
        if not search.success:
            result.errors.append(f"Social: {search.error}")
            return
        if not search.social_profiles:
            return

        result.social_profiles = search.social_profiles
        output.fields["socialProfiles"] = FieldResult(
            value={profile["platform"]: profile["url"] for profile in search.social_profiles},
            score=SOCIAL_SCORE,
            source="SerpAPI social search",
            providers=[],
        )
        result.external_data_used.append("social_media_profiles")
