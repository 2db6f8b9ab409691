"""
Insecure, deterministic crypto backend for tests and demos.

NOT FOR REAL DATA. Keys, IVs, and salts come from a seeded PRNG, the
"cipher" is a repeating XOR of key and IV, and the KDF is a single SHA-256.
The tag is a truncated SHA-256 over key, IV, and ciphertext, so tampering is
still detected and decryption stays all-or-nothing.

Capsules written with this backend record crypto_backend="mock-insecure"
in their metadata and cannot be opened with the production backend.
"""

import hmac
import random

from tcfs.crypto.base import (
    AES_256_KEY_SIZE,
    AES_GCM_TAG_SIZE,
    CryptoKey,
    CryptoProvider,
    EncryptedData,
    sha256_digest,
)
from tcfs.errors import ErrorCode, Result
from tcfs.schema import KdfParams, KdfType

_TAG_DOMAIN = b"tcfs-mock-tag"
_KDF_DOMAIN = b"tcfs-mock-kdf"


class MockCryptoProvider(CryptoProvider):
    """
    Deterministic stand-in for AesGcmProvider.

    Two instances built with the same seed produce the same keys, IVs, and
    salts in the same order.
    """

    def __init__(self, seed: int = 0) -> None:
        self._rng = random.Random(seed)

    @property
    def name(self) -> str:
        return "mock-insecure"

    @property
    def is_secure(self) -> bool:
        return False

    def _random_bytes(self, size: int) -> bytes:
        return self._rng.randbytes(size)

    def derive_key(
        self,
        password: str,
        salt: bytes,
        params: KdfParams | None = None,
    ) -> Result[CryptoKey]:
        params = params or KdfParams()
        checked = self._check_kdf_inputs(salt, params)
        if not checked:
            return Result.fail(checked.error_code, checked.error_message)
        if params.kdf == KdfType.ARGON2ID:
            return Result.fail(
                ErrorCode.NOT_IMPLEMENTED,
                "Argon2id is not available in the mock backend",
            )

        material = b"|".join([
            _KDF_DOMAIN,
            password.encode("utf-8"),
            bytes(salt),
            str(params.iterations).encode("ascii"),
        ])
        return Result.ok(CryptoKey.from_bytes(sha256_digest(material)[:AES_256_KEY_SIZE]))

    def encrypt(self, plaintext: bytes, key: CryptoKey, iv: bytes) -> Result[EncryptedData]:
        checked = self._check_key_iv(key, iv)
        if not checked:
            return Result.fail(checked.error_code, checked.error_message)

        ciphertext = self._xor(bytes(plaintext), key, iv)
        return Result.ok(
            EncryptedData(ciphertext=ciphertext, iv=bytes(iv), tag=self._tag(ciphertext, key, iv))
        )

    def decrypt(self, encrypted: EncryptedData, key: CryptoKey, iv: bytes) -> Result[bytes]:
        checked = self._check_key_iv(key, iv)
        if not checked:
            return Result.fail(checked.error_code, checked.error_message)

        expected = self._tag(bytes(encrypted.ciphertext), key, iv)
        if not hmac.compare_digest(expected, bytes(encrypted.tag)):
            return Result.fail(
                ErrorCode.DECRYPTION_FAILED,
                "Authentication failed - wrong key or corrupted data",
            )
        return Result.ok(self._xor(bytes(encrypted.ciphertext), key, iv))

    def sha256(self, data: bytes) -> bytes:
        return sha256_digest(data)

    @staticmethod
    def _xor(data: bytes, key: CryptoKey, iv: bytes) -> bytes:
        key_bytes = key.data
        return bytes(
            b ^ key_bytes[i % len(key_bytes)] ^ iv[i % len(iv)]
            for i, b in enumerate(data)
        )

    @staticmethod
    def _tag(ciphertext: bytes, key: CryptoKey, iv: bytes) -> bytes:
        return sha256_digest(_TAG_DOMAIN + bytes(key.data) + bytes(iv) + ciphertext)[:AES_GCM_TAG_SIZE]
