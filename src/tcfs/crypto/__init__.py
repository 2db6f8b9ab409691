"""
Crypto module for TCFS.

This module provides the crypto provider interface and its backends.

Backends:
    - aes-gcm: AES-256-GCM, PBKDF2-HMAC-SHA256, Argon2id (production)
    - mock-insecure: deterministic XOR stand-in for tests (never for real data)

Architecture:
    - CryptoProvider: Abstract base class defining the capability set
    - CryptoKey: Owned secret buffer, zeroed on release
    - EncryptedData: Ciphertext with its IV and tag
    - ProviderRegistry: Chooses a backend by name at runtime
"""

from tcfs.crypto.aesgcm import AesGcmProvider
from tcfs.crypto.base import (
    AES_256_KEY_SIZE,
    AES_GCM_IV_SIZE,
    AES_GCM_TAG_SIZE,
    SALT_SIZE,
    SHA256_DIGEST_SIZE,
    CryptoKey,
    CryptoProvider,
    EncryptedData,
)
from tcfs.crypto.mock import MockCryptoProvider
from tcfs.crypto.registry import (
    DEFAULT_BACKEND,
    ProviderRegistry,
    create_crypto_provider,
    default_registry,
)

__all__ = [
    "AES_256_KEY_SIZE",
    "AES_GCM_IV_SIZE",
    "AES_GCM_TAG_SIZE",
    "SALT_SIZE",
    "SHA256_DIGEST_SIZE",
    "AesGcmProvider",
    "CryptoKey",
    "CryptoProvider",
    "DEFAULT_BACKEND",
    "EncryptedData",
    "MockCryptoProvider",
    "ProviderRegistry",
    "create_crypto_provider",
    "default_registry",
]
