"""
Google Safe Browsing Client
Threat lookup for a website URL

A failed or unconfigured lookup reports the site as safe so it never
penalizes a company on its own.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import BaseProviderClient, ProviderResult
from app.services.api_key_service import ApiKeyService

logger = logging.getLogger(__name__)

SAFE_BROWSING_API = "https://safebrowsing.googleapis.com/v4/threatMatches:find"

THREAT_TYPES = [
    "MALWARE",
    "SOCIAL_ENGINEERING",
    "UNWANTED_SOFTWARE",
    "POTENTIALLY_HARMFUL_APPLICATION",
]

THREAT_DESCRIPTIONS = {
    "MALWARE": "Este sitio contiene software malicioso (malware)",
    "SOCIAL_ENGINEERING": "Este sitio puede intentar engañarte (phishing)",
    "UNWANTED_SOFTWARE": "Este sitio distribuye software no deseado",
    "POTENTIALLY_HARMFUL_APPLICATION": "Este sitio puede contener aplicaciones dañinas",
    "THREAT_TYPE_UNSPECIFIED": "Este sitio presenta riesgos de seguridad",
}


def describe_threats(threats: List[Dict[str, Any]]) -> List[str]:
    types = dict.fromkeys(threat.get("threatType") for threat in threats)
    return [THREAT_DESCRIPTIONS.get(t, "Este sitio puede no ser seguro") for t in types]


@dataclass
class SafeBrowsingResult(ProviderResult):
    is_safe: bool = True
    checked_url: Optional[str] = None
    threats: List[Dict[str, Any]] = field(default_factory=list)
    descriptions: List[str] = field(default_factory=list)


class SafeBrowsingClient(BaseProviderClient):
    name = "google_safe_browsing"
    timeout = 10.0

    def __init__(self, api_keys: ApiKeyService, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_keys = api_keys

    async def _find(self, api_key: str, url: str) -> Dict[str, Any]:
        body = {
            "client": {"clientId": "crm-clientes", "clientVersion": "1.0.0"},
            "threatInfo": {
                "threatTypes": THREAT_TYPES,
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }
        response = await self.request(SAFE_BROWSING_API, method="POST", params={"key": api_key}, json=body)
        return response.json()

    async def check_url(self, url: str) -> SafeBrowsingResult:
        validation = self.validate(url)
        if not validation.valid:
            return SafeBrowsingResult(success=False, error=validation.error)

        api_key = await self.api_keys.get_decrypted_key("google_safe_browsing")
        if not api_key:
            return SafeBrowsingResult(success=False, error="Google Safe Browsing API key not configured")

        checked = validation.normalized_url
        try:
            data = await self.call(lambda: self._find(api_key, checked))
        except Exception as e:
            return self.failure(SafeBrowsingResult, e, checked_url=checked)

        threats = data.get("matches") or []
        if threats:
            logger.warning(f"Safe Browsing flagged {checked}: {len(threats)} threat(s)")
        return SafeBrowsingResult(
            success=True,
            is_safe=not threats,
            checked_url=checked,
            threats=threats,
            descriptions=describe_threats(threats),
        )
