"""
API Key Service
Encrypted provider credentials with a read-only environment fallback
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.database import ApiKey, utcnow
from app.utils.database import session_lock
from app.utils.exceptions import ConflictError, NotFoundError, ValidationError
from app.utils.security import encrypt_api_key, decrypt_api_key, mask_api_key

logger = logging.getLogger(__name__)


AI_PROVIDERS = ["openai", "gemini", "grok", "deepseek"]
EXTERNAL_PROVIDERS = [
    "hunter_io",
    "builtwith",
    "serpapi",
    "google_places",
    "google_safe_browsing",
    "whoisxml",
]

PROVIDER_CATEGORIES: Dict[str, str] = {
    **{provider: "ai" for provider in AI_PROVIDERS},
    **{provider: "external" for provider in EXTERNAL_PROVIDERS},
}

ENV_KEY_PREFIX = "env-"


@dataclass
class ApiKeyData:
    """Decrypted key, only for server-side use"""
    id: str
    provider: str
    api_key: str
    model: Optional[str]
    enabled: bool
    last_used_at: Optional[datetime] = None

    @property
    def is_env(self) -> bool:
        return self.id.startswith(ENV_KEY_PREFIX)


def _masked(key: ApiKey, plaintext: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": str(key.id),
        "provider": key.provider,
        "masked_key": mask_api_key(plaintext if plaintext is not None else decrypt_api_key(key.api_key)),
        "model": key.model,
        "enabled": key.enabled,
        "category": PROVIDER_CATEGORIES.get(key.provider),
        "last_used_at": key.last_used_at.isoformat() if key.last_used_at else None,
        "created_at": key.created_at.isoformat() if key.created_at else None,
        "updated_at": key.updated_at.isoformat() if key.updated_at else None,
    }


def _validate_provider(provider: str) -> None:
    if provider not in PROVIDER_CATEGORIES:
        raise ValidationError(
            f"Unknown provider: {provider}. Must be one of {sorted(PROVIDER_CATEGORIES)}"
        )


class ApiKeyService:
    """
    Two-tier key resolution: database records first, then environment keys.
    Environment records are synthesized on read and can never be written.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    def get_env_keys(self) -> List[ApiKeyData]:
        default_models = {
            "openai": self.settings.OPENAI_DEFAULT_MODEL,
            "gemini": self.settings.GEMINI_DEFAULT_MODEL,
            "grok": self.settings.GROK_DEFAULT_MODEL,
            "deepseek": self.settings.DEEPSEEK_DEFAULT_MODEL,
        }
        keys = []
        for provider, value in self.settings.ai_env_keys.items():
            if value:
                keys.append(ApiKeyData(
                    id=f"{ENV_KEY_PREFIX}{provider}",
                    provider=provider,
                    api_key=value,
                    model=default_models[provider],
                    enabled=True,
                ))
        return keys

    @staticmethod
    def _decrypted(key: ApiKey) -> ApiKeyData:
        return ApiKeyData(
            id=str(key.id),
            provider=key.provider,
            api_key=decrypt_api_key(key.api_key),
            model=key.model,
            enabled=key.enabled,
            last_used_at=key.last_used_at,
        )

    async def _get_record(self, key_id: str) -> ApiKey:
        if key_id.startswith(ENV_KEY_PREFIX):
            raise ValidationError("Environment keys are read-only")
        try:
            uuid = UUID(key_id)
        except ValueError:
            raise NotFoundError("API key not found")

        result = await self.db.execute(select(ApiKey).where(ApiKey.id == uuid))
        key = result.scalar_one_or_none()
        if key is None:
            raise NotFoundError("API key not found")
        return key

    # =========================================================================
    # READS
    # =========================================================================

    async def get_all(self) -> List[Dict[str, Any]]:
        """All stored keys, masked, enabled first"""
        result = await self.db.execute(
            select(ApiKey).order_by(ApiKey.enabled.desc(), ApiKey.provider.asc())
        )
        return [_masked(key) for key in result.scalars().all()]

    async def get_by_id(self, key_id: str) -> Optional[Dict[str, Any]]:
        try:
            key = await self._get_record(key_id)
        except NotFoundError:
            return None
        return _masked(key)

    async def get_by_provider(self, provider: str) -> Optional[ApiKeyData]:
        """Decrypted key for a provider, falling back to the environment"""
        async with session_lock(self.db):
            result = await self.db.execute(
                select(ApiKey)
                .where(ApiKey.provider == provider)
                .execution_options(populate_existing=True)
            )
            key = result.scalar_one_or_none()

        if key is not None:
            return self._decrypted(key)

        for env_key in self.get_env_keys():
            if env_key.provider == provider:
                return env_key
        return None

    async def get_enabled_by_category(self, category: str) -> List[ApiKeyData]:
        async with session_lock(self.db):
            result = await self.db.execute(select(ApiKey).where(ApiKey.enabled.is_(True)))
            keys = result.scalars().all()

        found = [
            self._decrypted(key)
            for key in keys
            if PROVIDER_CATEGORIES.get(key.provider) == category
        ]

        if not found and category == "ai":
            return self.get_env_keys()
        return found

    async def exists_in_database(self, provider: str) -> bool:
        result = await self.db.execute(select(ApiKey.id).where(ApiKey.provider == provider))
        return result.scalar_one_or_none() is not None

    async def get_decrypted_key(self, provider: str) -> Optional[str]:
        """Plaintext key of an enabled database record; marks it used"""
        async with session_lock(self.db):
            result = await self.db.execute(
                select(ApiKey).where(ApiKey.provider == provider, ApiKey.enabled.is_(True))
            )
            key = result.scalar_one_or_none()
        if key is None:
            return None

        await self.mark_used(provider)
        return decrypt_api_key(key.api_key)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(
        self,
        provider: str,
        api_key: str,
        model: Optional[str] = None,
        enabled: bool = True,
    ) -> Dict[str, Any]:
        _validate_provider(provider)
        if not api_key or not api_key.strip():
            raise ValidationError("API key is required")
        if await self.exists_in_database(provider):
            raise ConflictError(f"An API key for {provider} already exists")

        key = ApiKey(
            provider=provider,
            api_key=encrypt_api_key(api_key.strip()),
            model=model,
            enabled=enabled,
        )
        self.db.add(key)
        await self.db.flush()
        logger.info(f"Stored API key for {provider}")
        return _masked(key, api_key.strip())

    async def update(
        self,
        key_id: str,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Dict[str, Any]:
        key = await self._get_record(key_id)

        if api_key is not None:
            if not api_key.strip():
                raise ValidationError("API key cannot be empty")
            key.api_key = encrypt_api_key(api_key.strip())
        if model is not None:
            key.model = model
        if enabled is not None:
            key.enabled = enabled

        await self.db.flush()
        return _masked(key)

    async def delete(self, key_id: str) -> None:
        key = await self._get_record(key_id)
        await self.db.delete(key)
        await self.db.flush()
        logger.info(f"Deleted API key for {key.provider}")

    async def mark_used(self, provider: str) -> None:
        """Touch last_used_at; environment keys have no row and are skipped"""
        async with session_lock(self.db):
            await self.db.execute(
                update(ApiKey)
                .where(ApiKey.provider == provider)
                .values(last_used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
