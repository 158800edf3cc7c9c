"""
WHOIS Client
Domain registration data through WhoisXML, with age and trust heuristics
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base import BaseProviderClient, ProviderResult
from app.services.api_key_service import ApiKeyService
from app.utils.url_validator import extract_domain

logger = logging.getLogger(__name__)

WHOISXML_API_BASE = "https://www.whoisxmlapi.com/whoisserver/WhoisService"

CONTACT_FIELDS = {
    "name": "name",
    "organization": "organization",
    "street": "street1",
    "city": "city",
    "state": "state",
    "postal_code": "postalCode",
    "country": "country",
    "country_code": "countryCode",
    "email": "email",
    "telephone": "telephone",
}

REDACTED_MARKERS = ("redacted", "privacy", "withheld", "not disclosed", "data protected")


@dataclass
class WhoisResult(ProviderResult):
    domain_name: Optional[str] = None
    registrar_name: Optional[str] = None
    registrar_url: Optional[str] = None
    created_date: Optional[str] = None
    updated_date: Optional[str] = None
    expires_date: Optional[str] = None
    domain_age_days: Optional[int] = None
    domain_age_years: Optional[int] = None
    days_until_expiry: Optional[int] = None
    status: List[str] = field(default_factory=list)
    registrant: Optional[Dict[str, Any]] = None
    admin: Optional[Dict[str, Any]] = None
    tech: Optional[Dict[str, Any]] = None
    name_servers: List[str] = field(default_factory=list)
    trust_score: Optional[int] = None
    trust_warnings: List[str] = field(default_factory=list)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """WhoisXML dates are ISO-8601, sometimes with a trailing Z or a +0000 offset"""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_contact(contact: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not contact:
        return None
    return {key: contact.get(source) for key, source in CONTACT_FIELDS.items()}


def _is_hidden(contact: Optional[Dict[str, Any]]) -> bool:
    if not contact:
        return True
    owner = contact.get("organization") or contact.get("name")
    if not owner:
        return True
    return any(marker in owner.lower() for marker in REDACTED_MARKERS)


def trust_assessment(result: WhoisResult):
    """Start at 100 and deduct for young, expiring or anonymous domains"""
    warnings = []
    score = 100

    if result.domain_age_days is not None:
        if result.domain_age_days < 30:
            warnings.append("Domain is very new (less than 1 month)")
            score -= 30
        elif result.domain_age_days < 180:
            warnings.append("Domain is new (less than 6 months)")
            score -= 15

    if result.days_until_expiry is not None and result.days_until_expiry < 30:
        warnings.append("Domain expires soon")
        score -= 20

    if _is_hidden(result.registrant):
        warnings.append("Registrant information is hidden")
        score -= 10

    return max(0, min(100, score)), warnings


def parse_whois_record(record: Dict[str, Any], now: Optional[datetime] = None) -> WhoisResult:
    now = now or datetime.now(timezone.utc)
    registry = record.get("registryData") or {}

    created = record.get("createdDate") or registry.get("createdDate")
    updated = record.get("updatedDate") or registry.get("updatedDate")
    expires = record.get("expiresDate") or registry.get("expiresDate")

    result = WhoisResult(
        success=True,
        domain_name=record.get("domainName"),
        registrar_name=record.get("registrarName") or registry.get("registrarName"),
        registrar_url=record.get("registrarUrl"),
        created_date=created,
        updated_date=updated,
        expires_date=expires,
        registrant=parse_contact(record.get("registrant")),
        admin=parse_contact(record.get("administrativeContact")),
        tech=parse_contact(record.get("technicalContact")),
    )

    created_at = parse_date(created)
    if created_at:
        result.domain_age_days = (now - created_at).days
        result.domain_age_years = result.domain_age_days // 365
    expires_at = parse_date(expires)
    if expires_at:
        result.days_until_expiry = (expires_at - now).days

    name_servers = record.get("nameServers") or registry.get("nameServers") or {}
    result.name_servers = list(name_servers.get("hostNames") or [])

    status = record.get("status") or registry.get("status") or []
    if isinstance(status, str):
        status = status.split()
    result.status = list(status)

    result.trust_score, result.trust_warnings = trust_assessment(result)
    return result


class WhoisClient(BaseProviderClient):
    name = "whois"
    timeout = 15.0

    def __init__(self, api_keys: ApiKeyService, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_keys = api_keys

    async def _lookup(self, api_key: str, domain: str) -> Dict[str, Any]:
        response = await self.request(
            WHOISXML_API_BASE,
            params={"apiKey": api_key, "domainName": domain, "outputFormat": "JSON"},
            headers={"Accept": "application/json"},
        )
        return response.json()

    async def lookup(self, url: str) -> WhoisResult:
        validation = self.validate(url)
        if not validation.valid:
            return WhoisResult(success=False, error=validation.error)

        api_key = await self.api_keys.get_decrypted_key("whoisxml")
        if not api_key:
            return WhoisResult(success=False, error="WhoisXML API key not configured")

        domain = extract_domain(validation.normalized_url)
        if domain.startswith("www."):
            domain = domain[4:]
        logger.debug(f"WHOIS lookup for {domain}")

        try:
            data = await self.call(lambda: self._lookup(api_key, domain))
        except Exception as e:
            return self.failure(WhoisResult, e)

        if data.get("ErrorMessage"):
            return self.failure(WhoisResult, ValueError(data["ErrorMessage"].get("msg") or "API error"))
        record = data.get("WhoisRecord")
        if not record:
            return WhoisResult(success=False, error="No WHOIS data found")

        return parse_whois_record(record)
