"""
Capsule store for TCFS.

A capsule is a pair of files in the store directory:
    <name>.tcfs        raw ciphertext, same length as the plaintext
    <name>.tcfs.meta   JSON metadata (policy, IV, tag, data key, ...)

Design Principles:
    - Metadata is authoritative: a capsule exists only once its .meta
      file has been written
    - Gate first: the time gate is checked before any key unwrapping or
      decryption, on every unlock
    - Status reads metadata only and never touches the ciphertext
    - Source deletion happens last, and its failure is a warning

Trust boundary:
    Without a passphrase, data_key_encrypted holds the raw data key.
    Anyone who can read the .meta file can decrypt the capsule regardless
    of the time gate. With a passphrase, the data key is wrapped with a
    key derived from it and key_protection records how.
"""

import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tcfs import __version__
from tcfs.crypto import AES_256_KEY_SIZE, AES_GCM_IV_SIZE, AES_GCM_TAG_SIZE, DEFAULT_BACKEND
from tcfs.crypto.base import CryptoKey, CryptoProvider, EncryptedData
from tcfs.errors import ErrorCode, FileError, MetadataError, Result, TcfsError
from tcfs.schema import (
    CapsuleMetadata,
    GateState,
    KdfParams,
    KdfType,
    KeyProtection,
    Policy,
    _first_error,
)
from tcfs.store.files import read_bytes, remove_quietly, secure_delete, write_atomic
from tcfs.timeutil import Clock, format_rfc3339, utcnow

logger = logging.getLogger(__name__)

CAPSULE_SUFFIX = ".tcfs"
METADATA_SUFFIX = ".meta"


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class CapsulePaths:
    """Locations of a capsule's two artifacts."""

    name: str
    ciphertext: Path
    metadata: Path

    def exists(self) -> bool:
        """Whether either artifact is present."""
        return self.ciphertext.exists() or self.metadata.exists()


@dataclass(frozen=True)
class CapsuleStatus:
    """
    What the metadata says about a capsule at a given instant.

    Attributes:
        name: Capsule name (original filename unless renamed)
        paths: Artifact locations
        policy: The parsed policy
        checked_at: The instant the gate was evaluated
        seconds_remaining: Whole seconds until the gate opens
        gate_state: Gate classification at checked_at
        created_at: RFC 3339 lock time
        original_filename: Name of the locked file
        tool_version: TCFS version that wrote the capsule
        crypto_backend: Provider that produced the ciphertext
        protected: Whether a passphrase wraps the data key
    """

    name: str
    paths: CapsulePaths
    policy: Policy
    checked_at: datetime
    seconds_remaining: int
    gate_state: GateState
    created_at: str
    original_filename: str
    tool_version: str
    crypto_backend: str
    protected: bool

    @property
    def can_unlock(self) -> bool:
        return self.gate_state == GateState.UNLOCKABLE

    @property
    def owner(self) -> str:
        return self.policy.owner

    @property
    def label(self) -> str:
        return self.policy.label

    @property
    def unlock_at(self) -> datetime:
        return self.policy.unlock_at

    @property
    def effective_unlock_at(self) -> datetime:
        return self.policy.effective_unlock_time()


@dataclass
class LockOutcome:
    """
    Result of locking a file.

    Attributes:
        paths: Artifact locations
        metadata: The metadata document as written
        policy: The policy the capsule was locked with
        source_deleted: Whether the plaintext source is gone
        warnings: Non-fatal problems (e.g. source deletion failed)
    """

    paths: CapsulePaths
    metadata: CapsuleMetadata
    policy: Policy
    source_deleted: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class UnlockOutcome:
    """
    Result of an unlock attempt.

    unlocked=False means the gate is closed; plaintext is then None and
    nothing was decrypted.
    """

    unlocked: bool
    status: CapsuleStatus
    plaintext: bytes | None = None
    output_path: Path | None = None

    @property
    def seconds_remaining(self) -> int:
        return self.status.seconds_remaining


@dataclass(frozen=True)
class CapsuleListing:
    """One entry of list_capsules(); status is None when the entry is unreadable."""

    name: str
    status: CapsuleStatus | None = None
    error: str | None = None


# =============================================================================
# Store
# =============================================================================


class CapsuleStore:
    """
    Lock, inspect, and unlock capsules in one store directory.

    Usage:
        store = CapsuleStore(Path("~/.tcfs").expanduser(), AesGcmProvider())
        locked = store.lock(Path("letter.txt"), policy)
        status = store.status("letter.txt").value
        opened = store.unlock("letter.txt")

    Attributes:
        root: Store directory
        provider: Crypto backend used for new and opened capsules
    """

    def __init__(
        self,
        root: Path,
        provider: CryptoProvider,
        clock: Clock = utcnow,
    ) -> None:
        """
        Initialize the store.

        Args:
            root: Store directory (created on first lock)
            provider: Crypto backend
            clock: Source of the current time
        """
        self.root = Path(root)
        self.provider = provider
        self._clock = clock

    def __repr__(self) -> str:
        return f"CapsuleStore(root={str(self.root)!r}, provider={self.provider.name!r})"

    # -------------------------------------------------------------------------
    # Naming
    # -------------------------------------------------------------------------

    def paths_for(self, name: str) -> Result[CapsulePaths]:
        """
        Resolve a capsule name to its artifact paths.

        Accepts "name" or "name.tcfs". Names are plain file names; anything
        with a directory component is rejected.
        """
        base = name[: -len(CAPSULE_SUFFIX)] if name.endswith(CAPSULE_SUFFIX) else name
        if not base or base in (".", "..") or Path(base).name != base or "\\" in base:
            return Result.fail(
                ErrorCode.INVALID_ARGUMENT,
                f"Invalid capsule name: {name!r}",
                suggestion="Use a plain file name without directories",
            )

        ciphertext = self.root / f"{base}{CAPSULE_SUFFIX}"
        metadata = self.root / f"{base}{CAPSULE_SUFFIX}{METADATA_SUFFIX}"
        return Result.ok(CapsulePaths(name=base, ciphertext=ciphertext, metadata=metadata))

    # -------------------------------------------------------------------------
    # Lock
    # -------------------------------------------------------------------------

    def lock(
        self,
        source: Path,
        policy: Policy,
        name: str | None = None,
        passphrase: str | None = None,
        kdf_params: KdfParams | None = None,
        delete_source: bool = True,
    ) -> Result[LockOutcome]:
        """
        Encrypt a file into a new capsule, then securely delete the source.

        Args:
            source: File to lock
            policy: Gate for the capsule; must pass creation-time validation
            name: Capsule name (default: the source's file name)
            passphrase: Wrap the data key with a key derived from this
            kdf_params: KDF work factors for the passphrase
            delete_source: Securely delete source after the capsule exists

        Returns:
            Result[LockOutcome]. A failed source deletion is a warning on
            the outcome, not a failure.
        """
        source = Path(source)
        if not source.is_file():
            if source.exists():
                return Result.fail(ErrorCode.INVALID_ARGUMENT, f"Not a regular file: {source}")
            return Result.fail(ErrorCode.FILE_NOT_FOUND, f"File not found: {source}")

        plaintext = read_bytes(source)
        if not plaintext:
            return _forward(plaintext)

        sealed = self.seal(
            plaintext.value,
            policy,
            original_filename=source.name,
            name=name,
            passphrase=passphrase,
            kdf_params=kdf_params,
        )
        if not sealed or not delete_source:
            return sealed

        outcome = sealed.value
        deleted = secure_delete(source)
        if deleted:
            outcome.source_deleted = True
        else:
            warning = f"Capsule created but the source was not deleted: {deleted.error_message}"
            logger.warning(warning)
            outcome.warnings.append(warning)
        return sealed

    def seal(
        self,
        plaintext: bytes,
        policy: Policy,
        original_filename: str,
        name: str | None = None,
        passphrase: str | None = None,
        kdf_params: KdfParams | None = None,
    ) -> Result[LockOutcome]:
        """
        Encrypt bytes into a new capsule.

        Ciphertext is written first and metadata second. If the metadata
        write fails the ciphertext is removed and the capsule does not exist.
        """
        now = self._clock()
        valid = policy.validate_policy(now)
        if not valid:
            return _forward(valid)

        if not original_filename or Path(original_filename).name != original_filename:
            return Result.fail(
                ErrorCode.INVALID_ARGUMENT,
                f"Invalid original filename: {original_filename!r}",
            )

        resolved = self.paths_for(name or original_filename)
        if not resolved:
            return _forward(resolved)
        paths = resolved.value

        if paths.exists():
            return Result.fail(
                ErrorCode.FILE_ACCESS_DENIED,
                f"Capsule already exists: {paths.name}",
                suggestion="Choose another capsule name with --name",
            )

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Permission denied: {self.root}")
        except OSError as e:
            return Result.fail(ErrorCode.FILE_WRITE_FAILED, f"Cannot create store {self.root}: {e}")

        key_result = self.provider.generate_key()
        if not key_result:
            return _forward(key_result)

        with key_result.value as key:
            iv = self.provider.generate_iv()
            if not iv:
                return _forward(iv)

            encrypted = self.provider.encrypt(plaintext, key, iv.value)
            if not encrypted:
                return _forward(encrypted)

            protection: KeyProtection | None = None
            if passphrase is not None:
                wrapped = self._wrap_key(key, passphrase, kdf_params or KdfParams(kdf=policy.kdf))
                if not wrapped:
                    return _forward(wrapped)
                stored_key, protection = wrapped.value
            else:
                stored_key = bytes(key.data)

        metadata = CapsuleMetadata(
            policy=policy.to_json(),
            iv=self.provider.to_base64(encrypted.value.iv),
            tag=self.provider.to_base64(encrypted.value.tag),
            data_key_encrypted=self.provider.to_base64(stored_key),
            created_at=format_rfc3339(now),
            original_filename=original_filename,
            tool_version=__version__,
            crypto_backend=self.provider.name,
            key_protection=protection,
        )
        document = json.dumps(metadata.to_json_dict(), indent=2).encode("utf-8")

        written = write_atomic(paths.ciphertext, encrypted.value.ciphertext)
        if not written:
            return _forward(written)

        written = write_atomic(paths.metadata, document)
        if not written:
            if not remove_quietly(paths.ciphertext):
                logger.warning("Orphaned ciphertext left at %s", paths.ciphertext)
            return _forward(written)

        logger.info(
            "Locked %s until %s (%d bytes, backend=%s)",
            paths.name,
            format_rfc3339(policy.unlock_at),
            len(plaintext),
            self.provider.name,
        )
        return Result.ok(LockOutcome(paths=paths, metadata=metadata, policy=policy))

    def _wrap_key(
        self,
        key: CryptoKey,
        passphrase: str,
        params: KdfParams,
    ) -> Result[tuple[bytes, KeyProtection]]:
        """Encrypt the data key under a passphrase-derived key."""
        if not passphrase:
            return Result.fail(ErrorCode.INVALID_ARGUMENT, "Passphrase cannot be empty")

        salt = self.provider.generate_salt()
        if not salt:
            return _forward(salt)
        iv = self.provider.generate_iv()
        if not iv:
            return _forward(iv)

        kek = self.provider.derive_key(passphrase, salt.value, params)
        if not kek:
            return _forward(kek)

        with kek.value as wrapping_key:
            wrapped = self.provider.encrypt(bytes(key.data), wrapping_key, iv.value)
        if not wrapped:
            return _forward(wrapped)

        factors: dict[str, Any]
        if params.kdf == KdfType.PBKDF2:
            factors = {"iterations": params.iterations}
        else:
            factors = {
                "time_cost": params.time_cost,
                "memory_kb": params.memory_kb,
                "parallelism": params.parallelism,
            }

        protection = KeyProtection(
            kdf=params.kdf,
            salt=self.provider.to_base64(salt.value),
            iv=self.provider.to_base64(iv.value),
            tag=self.provider.to_base64(wrapped.value.tag),
            **factors,
        )
        return Result.ok((wrapped.value.ciphertext, protection))

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self, name: str) -> Result[CapsuleStatus]:
        """
        Report a capsule's gate from its metadata alone.

        The ciphertext artifact is never read.
        """
        resolved = self.paths_for(name)
        if not resolved:
            return _forward(resolved)

        try:
            metadata, policy = self._load_metadata(resolved.value)
        except TcfsError as e:
            return Result.from_error(e)

        return Result.ok(self._status_of(resolved.value, metadata, policy, self._clock()))

    def _status_of(
        self,
        paths: CapsulePaths,
        metadata: CapsuleMetadata,
        policy: Policy,
        now: datetime,
    ) -> CapsuleStatus:
        return CapsuleStatus(
            name=paths.name,
            paths=paths,
            policy=policy,
            checked_at=now,
            seconds_remaining=policy.time_remaining(now),
            gate_state=policy.gate_state(now),
            created_at=metadata.created_at,
            original_filename=metadata.original_filename,
            tool_version=metadata.tool_version,
            crypto_backend=metadata.crypto_backend or DEFAULT_BACKEND,
            protected=metadata.key_protection is not None,
        )

    def _load_metadata(self, paths: CapsulePaths) -> tuple[CapsuleMetadata, Policy]:
        """
        Read and parse a .meta file.

        Raises:
            FileError: If the capsule does not exist or cannot be read
            MetadataError: If the document is malformed
        """
        if not paths.metadata.exists():
            raise FileError(
                message=f"Capsule not found: {paths.name}",
                code=ErrorCode.FILE_NOT_FOUND,
                suggestion="Run 'tcfs list' to see stored capsules",
                path=str(paths.metadata),
            )

        raw = read_bytes(paths.metadata)
        if not raw:
            raise FileError(message=raw.error_message, code=raw.error_code, path=str(paths.metadata))

        try:
            document = json.loads(raw.value.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MetadataError(message=f"Metadata is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise MetadataError(message="Metadata must be a JSON object")

        try:
            metadata = CapsuleMetadata.model_validate(document)
        except ValidationError as e:
            raise MetadataError(message=f"Invalid metadata: {_first_error(e)}") from e

        policy = Policy.from_json(metadata.policy, skip_time_validation=True)
        if not policy:
            raise MetadataError(message=f"Invalid policy in metadata: {policy.error_message}")

        return metadata, policy.value

    # -------------------------------------------------------------------------
    # Unlock
    # -------------------------------------------------------------------------

    def open(self, name: str, passphrase: str | None = None) -> Result[UnlockOutcome]:
        """
        Decrypt a capsule in memory if its gate is open.

        Returns:
            Result[UnlockOutcome] with unlocked=False while the gate is
            closed, or a failure with DECRYPTION_FAILED when the data fails
            authentication
        """
        resolved = self.paths_for(name)
        if not resolved:
            return _forward(resolved)
        paths = resolved.value

        try:
            metadata, policy = self._load_metadata(paths)
        except TcfsError as e:
            return Result.from_error(e)

        ciphertext = read_bytes(paths.ciphertext)
        if not ciphertext:
            return Result.fail(
                ciphertext.error_code,
                f"Capsule ciphertext missing or unreadable: {ciphertext.error_message}",
            )

        now = self._clock()
        status = self._status_of(paths, metadata, policy, now)
        if not policy.is_unlockable(now):
            logger.info("Capsule %s is locked for %d more seconds", paths.name, status.seconds_remaining)
            return Result.ok(UnlockOutcome(unlocked=False, status=status))

        if status.crypto_backend != self.provider.name:
            return Result.fail(
                ErrorCode.INVALID_METADATA,
                f"Capsule was written by backend '{status.crypto_backend}', "
                f"not '{self.provider.name}'",
                suggestion=f"Retry with --backend {status.crypto_backend}",
            )

        try:
            iv = self._decode_field(metadata.iv, "iv", AES_GCM_IV_SIZE)
            tag = self._decode_field(metadata.tag, "tag", AES_GCM_TAG_SIZE)
            stored_key = self._decode_field(metadata.data_key_encrypted, "data_key_encrypted", AES_256_KEY_SIZE)
        except TcfsError as e:
            return Result.from_error(e)

        if metadata.key_protection is not None:
            data_key = self._unwrap_key(stored_key, metadata.key_protection, passphrase)
            if not data_key:
                return _forward(data_key)
            key = data_key.value
        else:
            key = CryptoKey.from_bytes(stored_key)

        with key:
            plaintext = self.provider.decrypt(
                EncryptedData(ciphertext=ciphertext.value, iv=iv, tag=tag),
                key,
                iv,
            )
        if not plaintext:
            logger.warning("Authentication failed for capsule %s", paths.name)
            return Result.fail(
                ErrorCode.DECRYPTION_FAILED,
                f"Capsule {paths.name} failed authentication - wrong key or corrupted data",
                suggestion="The capsule or its metadata has been modified",
            )

        logger.info("Opened capsule %s (%d bytes)", paths.name, len(plaintext.value))
        return Result.ok(UnlockOutcome(unlocked=True, status=status, plaintext=plaintext.value))

    def unlock(
        self,
        name: str,
        output: Path | None = None,
        passphrase: str | None = None,
        overwrite: bool = False,
    ) -> Result[UnlockOutcome]:
        """
        Decrypt a capsule to a file if its gate is open.

        The capsule stays in the store.

        Args:
            name: Capsule name
            output: Destination (default: original filename in the cwd)
            passphrase: Needed when the data key is passphrase-protected
            overwrite: Replace an existing output file
        """
        opened = self.open(name, passphrase)
        if not opened or not opened.value.unlocked:
            return opened

        outcome = opened.value
        target = Path(output) if output is not None else Path.cwd() / outcome.status.original_filename
        if target.exists() and not overwrite:
            return Result.fail(
                ErrorCode.FILE_ACCESS_DENIED,
                f"Output file already exists: {target}",
                suggestion="Pass --force to overwrite it, or choose another path with -o",
            )

        written = write_atomic(target, outcome.plaintext or b"", overwrite=overwrite)
        if not written:
            return _forward(written)

        outcome.output_path = target
        logger.info("Unlocked %s to %s", outcome.status.name, target)
        return Result.ok(outcome)

    def _unwrap_key(
        self,
        wrapped: bytes,
        protection: KeyProtection,
        passphrase: str | None,
    ) -> Result[CryptoKey]:
        """Recover the data key from its passphrase wrapping."""
        if not passphrase:
            return Result.fail(
                ErrorCode.INVALID_ARGUMENT,
                "This capsule is protected by a passphrase",
                suggestion="Pass --passphrase",
            )

        try:
            salt = self._decode_field(protection.salt, "key_protection.salt")
            iv = self._decode_field(protection.iv, "key_protection.iv", AES_GCM_IV_SIZE)
            tag = self._decode_field(protection.tag, "key_protection.tag", AES_GCM_TAG_SIZE)
        except TcfsError as e:
            return Result.from_error(e)

        kek = self.provider.derive_key(passphrase, salt, protection.kdf_params())
        if not kek:
            return _forward(kek)

        with kek.value as wrapping_key:
            raw = self.provider.decrypt(EncryptedData(ciphertext=wrapped, iv=iv, tag=tag), wrapping_key, iv)
        if not raw:
            return Result.fail(
                ErrorCode.DECRYPTION_FAILED,
                "Wrong passphrase or corrupted key protection",
            )
        return Result.ok(CryptoKey.from_bytes(raw.value))

    def _decode_field(self, text: str, field_name: str, size: int | None = None) -> bytes:
        """
        Decode a base64 metadata field and check its length.

        Raises:
            MetadataError: With CORRUPTED_DATA if the field is not valid
        """
        decoded = self.provider.from_base64(text)
        if not decoded:
            raise MetadataError(
                message=f"Field {field_name} is not valid base64",
                code=ErrorCode.CORRUPTED_DATA,
            )
        if size is not None and len(decoded.value) != size:
            raise MetadataError(
                message=f"Field {field_name} must decode to {size} bytes, got {len(decoded.value)}",
                code=ErrorCode.CORRUPTED_DATA,
            )
        if not decoded.value:
            raise MetadataError(message=f"Field {field_name} is empty", code=ErrorCode.CORRUPTED_DATA)
        return decoded.value

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list_capsules(self) -> list[CapsuleListing]:
        """Every *.tcfs artifact in the store, paired with its metadata."""
        if not self.root.is_dir():
            return []

        listings = []
        for ciphertext in sorted(self.root.glob(f"*{CAPSULE_SUFFIX}")):
            name = ciphertext.name[: -len(CAPSULE_SUFFIX)]
            status = self.status(name)
            if status:
                listings.append(CapsuleListing(name=name, status=status.value))
            else:
                listings.append(CapsuleListing(name=name, error=status.error_message))
        return listings


def _forward(result: Result[Any]) -> Result[Any]:
    """Re-type a failed result for the caller's signature."""
    return Result.fail(result.error_code, result.error_message, result.suggestion)
