"""
Base classes for the crypto provider interface.

This module defines the core abstractions for cryptography in TCFS:
- CryptoProvider: Abstract base class every backend implements
- CryptoKey: Owned secret buffer that is zeroed when released
- EncryptedData: Ciphertext plus the IV and tag that travel with it

Design Principles:
    - Providers are stateless - all inputs come in as arguments
    - Fallible operations return Result - never raise for expected failures
    - All randomness lives in generate_*; encrypt is deterministic for a
      given (plaintext, key, iv)
    - Key material lives in a bytearray so it can be overwritten

Usage:
    provider = create_crypto_provider("aes-gcm")
    with provider.generate_key().value as key:
        iv = provider.generate_iv().value
        encrypted = provider.encrypt(b"data", key, iv).value
    # key bytes are zero here
"""

import base64
import binascii
import hashlib
import hmac
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from tcfs.errors import ErrorCode, Result
from tcfs.schema import KdfParams

AES_256_KEY_SIZE = 32
AES_GCM_IV_SIZE = 12
AES_GCM_TAG_SIZE = 16
SALT_SIZE = 16
SHA256_DIGEST_SIZE = 32

_HEX_RE = re.compile(r"[0-9A-Fa-f]*")


class CryptoKey:
    """
    Fixed-length secret key held in a mutable buffer.

    The buffer is overwritten with zeros by wipe(), on leaving a with-block,
    and when the object is garbage collected. Copies are refused so that
    exactly one buffer holds the secret.

    Usage:
        with CryptoKey.from_bytes(raw) as key:
            provider.decrypt(data, key, iv)
    """

    __slots__ = ("_buffer",)

    def __init__(self, size: int = AES_256_KEY_SIZE) -> None:
        """
        Allocate a zero-filled key.

        Args:
            size: Key length in bytes
        """
        self._buffer = bytearray(size)

    @classmethod
    def from_bytes(cls, data: bytes | bytearray | memoryview) -> "CryptoKey":
        """Create a key holding a copy of data."""
        key = cls(0)
        key._buffer = bytearray(data)
        return key

    @property
    def data(self) -> bytearray:
        """The live key buffer. Do not keep references past wipe()."""
        return self._buffer

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def empty(self) -> bool:
        """Whether the key holds no bytes (never filled, or wiped)."""
        return len(self._buffer) == 0

    def wipe(self) -> None:
        """Overwrite the buffer with zeros, then release it."""
        buffer = self._buffer
        for i in range(len(buffer)):
            buffer[i] = 0
        buffer.clear()

    def __enter__(self) -> "CryptoKey":
        return self

    def __exit__(self, *args: Any) -> None:
        self.wipe()

    def __del__(self) -> None:
        buffer = getattr(self, "_buffer", None)
        if buffer is not None:
            self.wipe()

    def __copy__(self) -> "CryptoKey":
        raise TypeError("CryptoKey cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> "CryptoKey":
        raise TypeError("CryptoKey cannot be copied")

    def __reduce__(self) -> Any:
        raise TypeError("CryptoKey cannot be pickled")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CryptoKey):
            return NotImplemented
        return hmac.compare_digest(bytes(self._buffer), bytes(other._buffer))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<CryptoKey size={len(self._buffer)} [redacted]>"


@dataclass(frozen=True)
class EncryptedData:
    """
    AEAD output. The IV and tag travel with the ciphertext, not inside it.

    Attributes:
        ciphertext: Encrypted bytes, same length as the plaintext
        iv: Nonce used for this encryption
        tag: Authentication tag
    """

    ciphertext: bytes
    iv: bytes
    tag: bytes


class CryptoProvider(ABC):
    """
    Abstract base class for all TCFS crypto backends.

    Subclasses must implement:
    - name property: Backend identifier recorded in capsule metadata
    - is_secure property: False for test/mock backends
    - _random_bytes(): Source of key, IV, and salt material
    - derive_key(), encrypt(), decrypt(), sha256()

    The encodings (hex, base64) are shared by every backend.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier, e.g. "aes-gcm"."""
        ...

    @property
    @abstractmethod
    def is_secure(self) -> bool:
        """Whether output from this backend is safe for real data."""
        ...

    @abstractmethod
    def _random_bytes(self, size: int) -> bytes:
        """Return size bytes from the backend's random source."""
        ...

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_key(self) -> Result[CryptoKey]:
        """Random 32-byte data key."""
        raw = self._generate(AES_256_KEY_SIZE, "Key")
        if not raw:
            return Result.fail(raw.error_code, raw.error_message)
        return Result.ok(CryptoKey.from_bytes(raw.value))

    def generate_iv(self) -> Result[bytes]:
        """Random 12-byte GCM nonce."""
        return self._generate(AES_GCM_IV_SIZE, "IV")

    def generate_salt(self) -> Result[bytes]:
        """Random 16-byte KDF salt."""
        return self._generate(SALT_SIZE, "Salt")

    def _generate(self, size: int, what: str) -> Result[bytes]:
        try:
            data = self._random_bytes(size)
        except (OSError, NotImplementedError) as e:
            return Result.fail(ErrorCode.CRYPTO_INIT_FAILED, f"{what} generation failed: {e}")
        if len(data) != size:
            return Result.fail(
                ErrorCode.CRYPTO_INIT_FAILED,
                f"{what} generation returned {len(data)} bytes, expected {size}",
            )
        return Result.ok(data)

    # =========================================================================
    # Key derivation and AEAD
    # =========================================================================

    @abstractmethod
    def derive_key(
        self,
        password: str,
        salt: bytes,
        params: KdfParams | None = None,
    ) -> Result[CryptoKey]:
        """Derive a 32-byte key; same inputs always give the same key."""
        ...

    @abstractmethod
    def encrypt(self, plaintext: bytes, key: CryptoKey, iv: bytes) -> Result[EncryptedData]:
        """Authenticated encryption without padding."""
        ...

    @abstractmethod
    def decrypt(self, encrypted: EncryptedData, key: CryptoKey, iv: bytes) -> Result[bytes]:
        """Verify the tag and decrypt; all-or-nothing."""
        ...

    @abstractmethod
    def sha256(self, data: bytes) -> bytes:
        """32-byte digest."""
        ...

    def sha256_hex(self, data: bytes) -> str:
        """Uppercase hex digest."""
        return self.to_hex(self.sha256(data))

    # =========================================================================
    # Encodings
    # =========================================================================

    def to_hex(self, data: bytes) -> str:
        """Uppercase hex."""
        return bytes(data).hex().upper()

    def from_hex(self, text: str) -> Result[bytes]:
        """Parse hex text of even length (either case)."""
        if len(text) % 2 != 0:
            return Result.fail(ErrorCode.INVALID_ARGUMENT, "Hex string has odd length")
        if _HEX_RE.fullmatch(text) is None:
            return Result.fail(ErrorCode.INVALID_ARGUMENT, "Invalid hex string")
        return Result.ok(bytes.fromhex(text))

    def to_base64(self, data: bytes) -> str:
        """Standard base64 with padding, no newlines."""
        return base64.b64encode(bytes(data)).decode("ascii")

    def from_base64(self, text: str) -> Result[bytes]:
        """Strictly decode standard base64."""
        try:
            return Result.ok(base64.b64decode(text, validate=True))
        except (binascii.Error, ValueError) as e:
            return Result.fail(ErrorCode.INVALID_ARGUMENT, f"Invalid base64 string: {e}")

    # =========================================================================
    # Shared argument checks
    # =========================================================================

    def _check_key_iv(self, key: CryptoKey, iv: bytes) -> Result[None]:
        """Validate key and IV lengths before touching the cipher."""
        if not isinstance(key, CryptoKey):
            return Result.fail(ErrorCode.INVALID_KEY, "Key must be a CryptoKey")
        if len(key) != AES_256_KEY_SIZE:
            return Result.fail(
                ErrorCode.INVALID_KEY,
                f"Key must be {AES_256_KEY_SIZE} bytes, got {len(key)}",
            )
        if len(iv) != AES_GCM_IV_SIZE:
            return Result.fail(
                ErrorCode.INVALID_IV,
                f"IV must be {AES_GCM_IV_SIZE} bytes, got {len(iv)}",
            )
        return Result.ok()

    def _check_kdf_inputs(self, salt: bytes, params: KdfParams) -> Result[None]:
        """Validate salt and work factors."""
        if not salt:
            return Result.fail(ErrorCode.INVALID_ARGUMENT, "Salt must not be empty")
        return params.check()

    def __repr__(self) -> str:
        return f"<CryptoProvider: {self.name}>"


def sha256_digest(data: bytes) -> bytes:
    """Plain SHA-256, shared by backends that have no faster path."""
    return hashlib.sha256(bytes(data)).digest()
