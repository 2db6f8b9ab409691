"""
Production crypto backend.

AES-256-GCM with a 96-bit nonce and 128-bit tag via cryptography.hazmat,
PBKDF2-HMAC-SHA256 for the iterative KDF, and Argon2id via argon2-cffi for
the memory-hard KDF.

The GCM tag is split off the end of the cryptography output so that it can
be stored in metadata next to (not inside) the ciphertext artifact.
"""

import os

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from tcfs.crypto.base import (
    AES_256_KEY_SIZE,
    AES_GCM_TAG_SIZE,
    CryptoKey,
    CryptoProvider,
    EncryptedData,
)
from tcfs.errors import ErrorCode, Result
from tcfs.schema import KdfParams, KdfType


class AesGcmProvider(CryptoProvider):
    """
    AES-256-GCM provider backed by the cryptography package.

    Usage:
        provider = AesGcmProvider()
        key = provider.generate_key().value
        iv = provider.generate_iv().value
        sealed = provider.encrypt(b"secret", key, iv).value
        assert provider.decrypt(sealed, key, iv).value == b"secret"
    """

    @property
    def name(self) -> str:
        return "aes-gcm"

    @property
    def is_secure(self) -> bool:
        return True

    def _random_bytes(self, size: int) -> bytes:
        return os.urandom(size)

    def derive_key(
        self,
        password: str,
        salt: bytes,
        params: KdfParams | None = None,
    ) -> Result[CryptoKey]:
        """
        Derive a 32-byte key from a password.

        Args:
            password: The passphrase
            salt: Non-empty salt (16 random bytes from generate_salt)
            params: KDF choice and work factors (defaults to PBKDF2, 600k)

        Returns:
            Result with the derived key, or INVALID_ARGUMENT / CRYPTO_ERROR
        """
        params = params or KdfParams()
        checked = self._check_kdf_inputs(salt, params)
        if not checked:
            return Result.fail(checked.error_code, checked.error_message)

        secret = password.encode("utf-8")

        if params.kdf == KdfType.PBKDF2:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=AES_256_KEY_SIZE,
                salt=bytes(salt),
                iterations=params.iterations,
            )
            return Result.ok(CryptoKey.from_bytes(kdf.derive(secret)))

        try:
            raw = hash_secret_raw(
                secret=secret,
                salt=bytes(salt),
                time_cost=params.time_cost,
                memory_cost=params.memory_kb,
                parallelism=params.parallelism,
                hash_len=AES_256_KEY_SIZE,
                type=Type.ID,
            )
        except HashingError as e:
            return Result.fail(ErrorCode.CRYPTO_ERROR, f"Argon2id derivation failed: {e}")
        return Result.ok(CryptoKey.from_bytes(raw))

    def encrypt(self, plaintext: bytes, key: CryptoKey, iv: bytes) -> Result[EncryptedData]:
        """
        Encrypt with AES-256-GCM.

        The ciphertext has the plaintext's length; the 16-byte tag is
        returned separately.
        """
        checked = self._check_key_iv(key, iv)
        if not checked:
            return Result.fail(checked.error_code, checked.error_message)

        try:
            sealed = AESGCM(key.data).encrypt(bytes(iv), bytes(plaintext), None)
        except (ValueError, OverflowError) as e:
            return Result.fail(ErrorCode.ENCRYPTION_FAILED, f"Encryption failed: {e}")

        return Result.ok(
            EncryptedData(
                ciphertext=sealed[:-AES_GCM_TAG_SIZE],
                iv=bytes(iv),
                tag=sealed[-AES_GCM_TAG_SIZE:],
            )
        )

    def decrypt(self, encrypted: EncryptedData, key: CryptoKey, iv: bytes) -> Result[bytes]:
        """
        Verify and decrypt. Any change to ciphertext, IV, tag, or key fails.

        Returns:
            Result with the plaintext, or DECRYPTION_FAILED on a tag mismatch
        """
        checked = self._check_key_iv(key, iv)
        if not checked:
            return Result.fail(checked.error_code, checked.error_message)

        if len(encrypted.tag) != AES_GCM_TAG_SIZE:
            return Result.fail(
                ErrorCode.DECRYPTION_FAILED,
                f"Authentication tag must be {AES_GCM_TAG_SIZE} bytes, got {len(encrypted.tag)}",
            )

        try:
            plaintext = AESGCM(key.data).decrypt(
                bytes(iv),
                bytes(encrypted.ciphertext) + bytes(encrypted.tag),
                None,
            )
        except InvalidTag:
            return Result.fail(
                ErrorCode.DECRYPTION_FAILED,
                "Authentication failed - wrong key or corrupted data",
            )
        return Result.ok(plaintext)

    def sha256(self, data: bytes) -> bytes:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(bytes(data))
        return digest.finalize()
