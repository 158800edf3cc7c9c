"""
Security utilities - API key encryption and masking
"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet

from app.config import get_settings

# Encryption for API keys
_fernet: Optional[Fernet] = None


def get_fernet() -> Fernet:
    """Get Fernet instance for encryption"""
    global _fernet
    if _fernet is None:
        key = get_settings().ENCRYPTION_KEY.encode()
        # Ensure key is valid Fernet key (32 url-safe base64 encoded bytes)
        if len(key) != 44:
            # If not valid, derive a key from the provided secret
            derived_key = hashlib.sha256(key).digest()
            key = base64.urlsafe_b64encode(derived_key)
        _fernet = Fernet(key)
    return _fernet


def encrypt_api_key(api_key: str) -> str:
    """Encrypt an API key for storage"""
    fernet = get_fernet()
    return fernet.encrypt(api_key.encode()).decode()


def decrypt_api_key(encrypted_key: str) -> str:
    """Decrypt an API key from storage"""
    fernet = get_fernet()
    return fernet.decrypt(encrypted_key.encode()).decode()


def mask_api_key(api_key: str) -> str:
    """Mask an API key for display (e.g., sk-...abc123)"""
    if len(api_key) <= 8:
        return "***"
    return f"{api_key[:3]}...{api_key[-6:]}"
