"""
Schema definitions for TCFS.

This module defines the Pydantic models used throughout TCFS:
- Policy: the time gate attached to every capsule
- KdfParams: key-derivation work factors
- CapsuleMetadata / KeyProtection: the on-disk .meta document
- StoreConfig: the store's config.yaml

Design Decisions:
    - Models are immutable (frozen=True)
    - Unknown fields are rejected (extra="forbid")
    - All datetimes are aware and normalized to UTC
    - Policy deserialization goes through Policy.from_json, which returns a
      Result instead of raising
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tcfs.errors import ErrorCode, Result
from tcfs.timeutil import ensure_utc, format_rfc3339, parse_rfc3339, utcnow

MAX_GRACE_SECONDS = 2**32 - 1
DEFAULT_OWNER = "user@example.com"
EARLIEST_TIME = datetime.min.replace(tzinfo=UTC)


# =============================================================================
# Enums
# =============================================================================


class CryptoAlgorithm(str, Enum):
    """AEAD cipher used for the capsule payload."""

    AES_256_GCM = "AES-256-GCM"


class KdfType(str, Enum):
    """Password-based key derivation function."""

    PBKDF2 = "pbkdf2"
    ARGON2ID = "argon2id"


class GateState(str, Enum):
    """
    Where a policy stands relative to the current time.

    UNVALIDATED: would fail creation-time validation (owner or time)
    VALID: passes validation, gate still closed
    EXPIRED_BUT_GATED: unlock_at has passed but the effective gate is closed
    UNLOCKABLE: the gate is open
    """

    UNVALIDATED = "unvalidated"
    VALID = "valid"
    EXPIRED_BUT_GATED = "expired_but_gated"
    UNLOCKABLE = "unlockable"


# =============================================================================
# Key Derivation
# =============================================================================


class KdfParams(BaseModel):
    """
    Work factors for key derivation.

    Attributes:
        kdf: Which KDF to run
        iterations: PBKDF2 iteration count
        time_cost: Argon2id passes
        memory_kb: Argon2id memory in KiB
        parallelism: Argon2id lanes
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kdf: KdfType = Field(default=KdfType.PBKDF2, description="KDF to run")
    iterations: int = Field(default=600_000, description="PBKDF2 iterations")
    time_cost: int = Field(default=3, description="Argon2id passes")
    memory_kb: int = Field(default=65_536, description="Argon2id memory in KiB")
    parallelism: int = Field(default=4, description="Argon2id lanes")

    def check(self) -> Result[None]:
        """Check that the factors used by the selected KDF are positive."""
        if self.kdf == KdfType.PBKDF2:
            factors = {"iterations": self.iterations}
        else:
            factors = {
                "time_cost": self.time_cost,
                "memory_kb": self.memory_kb,
                "parallelism": self.parallelism,
            }
        for name, value in factors.items():
            if value <= 0:
                return Result.fail(
                    ErrorCode.INVALID_ARGUMENT,
                    f"{self.kdf.value} {name} must be positive, got {value}",
                )
        return Result.ok()


# =============================================================================
# Policy
# =============================================================================


class Policy(BaseModel):
    """
    The time gate attached to a capsule.

    The gate opens at unlock_at minus grace_seconds. Whether it is open is
    recomputed from the clock on every query; nothing about it is stored.

    Attributes:
        unlock_at: Nominal unlock instant (aware, UTC)
        owner: Who locked the capsule (required at creation)
        label: Short free-form label
        notes: Free-form notes
        grace_seconds: Tolerance that opens the gate earlier, never later
        algorithm: Payload cipher
        kdf: KDF used when a passphrase protects the data key
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    unlock_at: datetime = Field(..., description="Nominal unlock instant (UTC)")
    owner: str = Field(default="", description="Capsule owner")
    label: str = Field(default="", description="Short label")
    notes: str = Field(default="", description="Free-form notes")
    grace_seconds: int = Field(
        default=0,
        description="Seconds the gate opens early",
        ge=0,
        le=MAX_GRACE_SECONDS,
    )
    algorithm: CryptoAlgorithm = Field(default=CryptoAlgorithm.AES_256_GCM)
    kdf: KdfType = Field(default=KdfType.PBKDF2)

    @field_validator("unlock_at")
    @classmethod
    def validate_unlock_at(cls, v: datetime) -> datetime:
        """Require an aware datetime and normalize it to UTC."""
        return ensure_utc(v)

    @classmethod
    def create(cls, now: datetime | None = None, **fields: Any) -> Result["Policy"]:
        """Build a policy and run creation-time validation."""
        try:
            policy = cls(**fields)
        except ValidationError as e:
            return Result.fail(ErrorCode.INVALID_POLICY, _first_error(e))
        validation = policy.validate_policy(now)
        if not validation:
            return Result.fail(validation.error_code, validation.error_message)
        return Result.ok(policy)

    # -------------------------------------------------------------------------
    # Gate arithmetic
    # -------------------------------------------------------------------------

    def effective_unlock_time(self) -> datetime:
        """unlock_at minus the grace period, clamped at the earliest datetime."""
        try:
            return self.unlock_at - timedelta(seconds=self.grace_seconds)
        except OverflowError:
            return EARLIEST_TIME

    def is_unlockable(self, now: datetime | None = None) -> bool:
        """Whether the gate is open at now."""
        now = utcnow() if now is None else ensure_utc(now)
        return now >= self.effective_unlock_time()

    def time_remaining(self, now: datetime | None = None) -> int:
        """Whole seconds until the gate opens, 0 if already open."""
        now = utcnow() if now is None else ensure_utc(now)
        remaining = (self.effective_unlock_time() - now).total_seconds()
        if remaining <= 0:
            return 0
        return int(remaining)

    def gate_state(self, now: datetime | None = None) -> GateState:
        """Classify the policy against now."""
        now = utcnow() if now is None else ensure_utc(now)
        if self.is_unlockable(now):
            return GateState.UNLOCKABLE
        if now >= self.unlock_at:
            return GateState.EXPIRED_BUT_GATED
        if self.validate_policy(now):
            return GateState.VALID
        return GateState.UNVALIDATED

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_policy(self, now: datetime | None = None) -> Result[None]:
        """
        Creation-time check: owner present and unlock_at strictly in the future.

        The grace period plays no part here.
        """
        if not self.owner:
            return Result.fail(ErrorCode.INVALID_POLICY, "Owner cannot be empty")

        now = utcnow() if now is None else ensure_utc(now)
        if self.unlock_at <= now:
            return Result.fail(
                ErrorCode.INVALID_POLICY,
                f"Unlock time must be in the future (got {format_rfc3339(self.unlock_at)})",
            )
        return Result.ok()

    def is_valid(self, now: datetime | None = None) -> bool:
        """Shorthand for validate_policy(now).success."""
        return self.validate_policy(now).success

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_json(self) -> dict[str, Any]:
        """Canonical JSON-ready dict; unlock_at at one-second resolution."""
        return {
            "unlock_at": format_rfc3339(self.unlock_at),
            "owner": self.owner,
            "label": self.label,
            "notes": self.notes,
            "grace_seconds": self.grace_seconds,
            "algorithm": self.algorithm.value,
            "kdf": self.kdf.value,
        }

    @classmethod
    def from_json(
        cls,
        data: dict[str, Any] | str,
        skip_time_validation: bool = False,
        now: datetime | None = None,
    ) -> Result["Policy"]:
        """
        Parse a policy from its JSON form.

        unlock_at is required. Other fields are optional and keep their
        defaults when missing or of the wrong type. Unknown algorithm or kdf
        names are rejected.

        Args:
            data: Dict or JSON text
            skip_time_validation: Accept any stored policy (unlock path)
            now: Clock override for validation

        Returns:
            Result with the Policy, or INVALID_POLICY / INVALID_TIME_FORMAT
        """
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                return Result.fail(ErrorCode.INVALID_POLICY, f"JSON parsing error: {e}")

        if not isinstance(data, dict):
            return Result.fail(ErrorCode.INVALID_POLICY, "Policy must be a JSON object")

        unlock_text = data.get("unlock_at")
        if not isinstance(unlock_text, str):
            return Result.fail(ErrorCode.INVALID_POLICY, "Missing or invalid unlock_at field")

        unlock_at = parse_rfc3339(unlock_text)
        if not unlock_at:
            return Result.fail(unlock_at.error_code, unlock_at.error_message)

        fields: dict[str, Any] = {"unlock_at": unlock_at.value}
        for name in ("owner", "label", "notes"):
            if isinstance(data.get(name), str):
                fields[name] = data[name]

        grace = data.get("grace_seconds")
        if isinstance(grace, int) and not isinstance(grace, bool) and 0 <= grace <= MAX_GRACE_SECONDS:
            fields["grace_seconds"] = grace

        if isinstance(data.get("algorithm"), str):
            try:
                fields["algorithm"] = CryptoAlgorithm(data["algorithm"])
            except ValueError:
                return Result.fail(
                    ErrorCode.INVALID_POLICY,
                    f"Unknown crypto algorithm: {data['algorithm']}",
                )

        if isinstance(data.get("kdf"), str):
            try:
                fields["kdf"] = KdfType(data["kdf"])
            except ValueError:
                return Result.fail(ErrorCode.INVALID_POLICY, f"Unknown KDF type: {data['kdf']}")

        policy = cls(**fields)

        if not skip_time_validation:
            validation = policy.validate_policy(now)
            if not validation:
                return Result.fail(validation.error_code, validation.error_message)

        return Result.ok(policy)

    def describe(self) -> str:
        """One-line summary for display."""
        return (
            f"Policy{{unlock_at={format_rfc3339(self.unlock_at)}, "
            f"owner={self.owner}, label={self.label}, "
            f"algorithm={self.algorithm.value}, kdf={self.kdf.value}}}"
        )


# =============================================================================
# Capsule Metadata
# =============================================================================


class KeyProtection(BaseModel):
    """
    How the data key was wrapped when a passphrase was supplied.

    All byte fields are base64 text.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kdf: KdfType = Field(..., description="KDF that produced the wrapping key")
    salt: str = Field(..., description="KDF salt (base64)")
    iv: str = Field(..., description="IV used to wrap the data key (base64)")
    tag: str = Field(..., description="Tag from wrapping the data key (base64)")
    iterations: int | None = Field(default=None, description="PBKDF2 iterations")
    time_cost: int | None = Field(default=None, description="Argon2id passes")
    memory_kb: int | None = Field(default=None, description="Argon2id memory in KiB")
    parallelism: int | None = Field(default=None, description="Argon2id lanes")

    def kdf_params(self) -> KdfParams:
        """Rebuild the KdfParams used at lock time."""
        fields: dict[str, Any] = {"kdf": self.kdf}
        for name in ("iterations", "time_cost", "memory_kb", "parallelism"):
            value = getattr(self, name)
            if value is not None:
                fields[name] = value
        return KdfParams(**fields)


class CapsuleMetadata(BaseModel):
    """
    The .meta document written next to every ciphertext artifact.

    The policy is kept as its raw JSON dict so that it is always parsed
    through Policy.from_json with the caller's validation choice.

    Attributes:
        policy: Policy.to_json() output
        iv: Payload IV (base64, 12 bytes)
        tag: Payload authentication tag (base64, 16 bytes)
        data_key_encrypted: Data key (base64, 32 bytes); raw unless
            key_protection is present
        created_at: RFC 3339 creation time
        original_filename: Name of the locked file
        tool_version: TCFS version that wrote the capsule
        crypto_backend: Provider name that produced the ciphertext
        key_protection: Passphrase wrapping parameters, if any
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: dict[str, Any] = Field(..., description="Serialized policy")
    iv: str = Field(..., description="Payload IV (base64)")
    tag: str = Field(..., description="Payload tag (base64)")
    data_key_encrypted: str = Field(..., description="Data key (base64)")
    created_at: str = Field(..., description="RFC 3339 creation time")
    original_filename: str = Field(..., min_length=1, description="Locked file name")
    tool_version: str = Field(..., description="TCFS version")
    crypto_backend: str | None = Field(default=None, description="Provider name")
    key_protection: KeyProtection | None = Field(default=None)

    def to_json_dict(self) -> dict[str, Any]:
        """Dict for writing, omitting absent optional fields."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# Store Configuration
# =============================================================================


class StoreConfig(BaseModel):
    """
    Contents of <store>/config.yaml.

    Attributes:
        version: TCFS version that initialized the store
        owner: Default owner for new capsules
        kdf: Default KDF for passphrase-protected capsules
        crypto_backend: Default provider name
        created_at: RFC 3339 initialization time
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(default="0.1.0")
    owner: str = Field(..., min_length=1)
    kdf: KdfType = Field(default=KdfType.PBKDF2)
    crypto_backend: str = Field(default="aes-gcm")
    created_at: str = Field(default="")


def _first_error(error: ValidationError) -> str:
    """Condense a pydantic ValidationError to its first message."""
    errors = error.errors()
    if not errors:
        return str(error)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {first.get('msg', '')}"
    return str(first.get("msg", ""))
