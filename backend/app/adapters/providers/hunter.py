"""
Hunter.io Client
Deliverability check for a single email address
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import BaseProviderClient, ProviderResult
from app.services.api_key_service import ApiKeyService

logger = logging.getLogger(__name__)

HUNTER_API_BASE = "https://api.hunter.io/v2"


@dataclass
class EmailVerificationResult(ProviderResult):
    email: Optional[str] = None
    status: Optional[str] = None  # valid, invalid, accept_all, webmail, disposable, unknown
    score: Optional[int] = None
    disposable: Optional[bool] = None
    webmail: Optional[bool] = None
    mx_records: Optional[bool] = None
    smtp_check: Optional[bool] = None
    accept_all: Optional[bool] = None

    @property
    def is_valid(self) -> bool:
        return self.success and self.status == "valid"


class HunterClient(BaseProviderClient):
    name = "hunter_io"
    timeout = 15.0

    def __init__(self, api_keys: ApiKeyService, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_keys = api_keys

    async def _verify(self, api_key: str, email: str) -> Dict[str, Any]:
        response = await self.request(
            f"{HUNTER_API_BASE}/email-verifier",
            params={"email": email, "api_key": api_key},
            headers={"Accept": "application/json"},
        )
        return response.json()

    async def verify_email(self, email: str) -> EmailVerificationResult:
        api_key = await self.api_keys.get_decrypted_key("hunter_io")
        if not api_key:
            return EmailVerificationResult(success=False, error="Hunter.io API key not configured", email=email)

        try:
            data = await self.call(lambda: self._verify(api_key, email))
        except Exception as e:
            return self.failure(EmailVerificationResult, e, email=email)

        errors = data.get("errors") or []
        if errors:
            return self.failure(
                EmailVerificationResult, ValueError(errors[0].get("details") or "API error"), email=email
            )

        verified = data.get("data") or {}
        logger.debug(f"Hunter.io: {email} is {verified.get('status')}")
        return EmailVerificationResult(
            success=True,
            email=verified.get("email") or email,
            status=verified.get("status"),
            score=verified.get("score"),
            disposable=verified.get("disposable"),
            webmail=verified.get("webmail"),
            mx_records=verified.get("mx_records"),
            smtp_check=verified.get("smtp_check"),
            accept_all=verified.get("accept_all"),
        )
