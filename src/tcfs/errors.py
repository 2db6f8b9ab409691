"""
Error model for TCFS.

Every fallible public operation returns a Result carrying either a value or
an (ErrorCode, message) pair. Exceptions are kept for two jobs:

    - TcfsError and its subclasses describe a failure in a form that can be
      raised, rendered, or serialized (Result.to_error / Result.raise_for_error)
    - ResultAccessError is raised when code reads .value from a failed
      Result. That is a programming bug, not a runtime condition.

Error Categories:
    - 1xxx crypto: backend init, encrypt/decrypt/authentication, bad key or IV
    - 2xxx time: malformed timestamps, gate not open
    - 3xxx file: missing artifacts, permission problems, failed writes
    - 4xxx metadata: unparseable or incomplete capsule metadata
    - 5xxx policy: invalid policy at creation time
    - 6xxx argument: bad caller input
    - 9xxx internal: invariant violations, unimplemented features
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(IntEnum):
    """Closed set of failure kinds."""

    SUCCESS = 0

    # Crypto errors: 1xxx
    CRYPTO_ERROR = 1001
    CRYPTO_INIT_FAILED = 1002
    ENCRYPTION_FAILED = 1003
    DECRYPTION_FAILED = 1004
    INVALID_KEY = 1005
    INVALID_IV = 1006

    # Time errors: 2xxx
    INVALID_TIME_FORMAT = 2001
    TIME_NOT_REACHED = 2002

    # File errors: 3xxx
    FILE_NOT_FOUND = 3001
    FILE_ACCESS_DENIED = 3002
    FILE_WRITE_FAILED = 3003

    # Metadata errors: 4xxx
    INVALID_METADATA = 4001
    CORRUPTED_DATA = 4002

    # Policy errors: 5xxx
    INVALID_POLICY = 5001

    # Argument errors: 6xxx
    INVALID_ARGUMENT = 6001

    # Internal errors: 9xxx
    INTERNAL_ERROR = 9001
    NOT_IMPLEMENTED = 9002

    @property
    def category(self) -> str:
        """Category name derived from the code's thousands digit."""
        return _CATEGORIES.get(self.value // 1000, "success")


_CATEGORIES = {
    1: "crypto",
    2: "time",
    3: "file",
    4: "metadata",
    5: "policy",
    6: "argument",
    9: "internal",
}

_DESCRIPTIONS = {
    ErrorCode.SUCCESS: "Success",
    ErrorCode.CRYPTO_ERROR: "Cryptographic operation failed",
    ErrorCode.CRYPTO_INIT_FAILED: "Cryptographic initialization failed",
    ErrorCode.ENCRYPTION_FAILED: "Encryption operation failed",
    ErrorCode.DECRYPTION_FAILED: "Decryption operation failed",
    ErrorCode.INVALID_KEY: "Invalid cryptographic key",
    ErrorCode.INVALID_IV: "Invalid initialization vector",
    ErrorCode.INVALID_TIME_FORMAT: "Invalid time format",
    ErrorCode.TIME_NOT_REACHED: "Unlock time has not been reached",
    ErrorCode.FILE_NOT_FOUND: "File not found",
    ErrorCode.FILE_ACCESS_DENIED: "File access denied",
    ErrorCode.FILE_WRITE_FAILED: "File write failed",
    ErrorCode.INVALID_METADATA: "Invalid metadata",
    ErrorCode.CORRUPTED_DATA: "Data corruption detected",
    ErrorCode.INVALID_POLICY: "Invalid policy configuration",
    ErrorCode.INVALID_ARGUMENT: "Invalid argument",
    ErrorCode.INTERNAL_ERROR: "Internal error",
    ErrorCode.NOT_IMPLEMENTED: "Feature not implemented",
}


def describe(code: ErrorCode) -> str:
    """Return the fixed human description of an error code."""
    return _DESCRIPTIONS[code]


# =============================================================================
# Exceptions
# =============================================================================


@dataclass
class TcfsError(Exception):
    """
    Base exception for all TCFS errors.

    Attributes:
        message: Human-readable error description
        code: ErrorCode for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Default the message to the code's description."""
        if not self.message:
            self.message = describe(self.code)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code.value}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code.name}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code.value,
            "code_name": self.code.name,
            "category": self.code.category,
            "suggestion": self.suggestion,
            "context": self.context,
        }


@dataclass
class CryptoError(TcfsError):
    """Raised for backend, key, IV, and authentication failures."""

    code: ErrorCode = ErrorCode.CRYPTO_ERROR


@dataclass
class TimeFormatError(TcfsError):
    """Raised when a timestamp cannot be parsed or the gate is closed."""

    code: ErrorCode = ErrorCode.INVALID_TIME_FORMAT


@dataclass
class FileError(TcfsError):
    """Raised for missing or inaccessible capsule artifacts."""

    code: ErrorCode = ErrorCode.FILE_NOT_FOUND
    path: str = ""

    def __post_init__(self) -> None:
        """Record the path in context."""
        super().__post_init__()
        if self.path:
            self.context["path"] = self.path


@dataclass
class MetadataError(TcfsError):
    """Raised when capsule metadata is unreadable or incomplete."""

    code: ErrorCode = ErrorCode.INVALID_METADATA

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        super().__post_init__()
        if not self.suggestion and self.code == ErrorCode.INVALID_METADATA:
            self.suggestion = "The .meta file may be damaged. Restore it from a backup."


@dataclass
class PolicyError(TcfsError):
    """Raised when a policy fails creation-time validation."""

    code: ErrorCode = ErrorCode.INVALID_POLICY


@dataclass
class ArgumentError(TcfsError):
    """Raised for invalid caller input."""

    code: ErrorCode = ErrorCode.INVALID_ARGUMENT


@dataclass
class InternalError(TcfsError):
    """Raised for violated invariants and unimplemented features."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR


@dataclass
class ResultAccessError(InternalError):
    """
    Raised when .value is read from a failed Result.

    Attributes:
        failed_code: The code carried by the failed result
    """

    failed_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        super().__post_init__()
        self.context["failed_code"] = self.failed_code.name


_ERROR_CLASSES: dict[str, type[TcfsError]] = {
    "crypto": CryptoError,
    "time": TimeFormatError,
    "file": FileError,
    "metadata": MetadataError,
    "policy": PolicyError,
    "argument": ArgumentError,
    "internal": InternalError,
}


def error_for_code(
    code: ErrorCode,
    message: str = "",
    suggestion: str | None = None,
) -> TcfsError:
    """Build the TcfsError subclass matching the code's category."""
    cls = _ERROR_CLASSES.get(code.category, TcfsError)
    return cls(message=message, code=code, suggestion=suggestion)


# =============================================================================
# Result
# =============================================================================


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either a value or an (ErrorCode, message) pair.

    Usage:
        result = provider.decrypt(data, key, iv)
        if not result:
            print(result.error_message)
        plaintext = result.value

    Reading .value from a failed result raises ResultAccessError.
    Result[None] is the no-payload case: Result.ok() with no argument.
    """

    _value: T | None = None
    error_code: ErrorCode = ErrorCode.SUCCESS
    error_message: str = ""
    suggestion: str | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> "Result[T]":
        """Create a successful result."""
        return cls(_value=value)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str = "",
        suggestion: str | None = None,
    ) -> "Result[T]":
        """Create a failed result."""
        if code == ErrorCode.SUCCESS:
            raise InternalError(message="A failed Result needs a non-SUCCESS code")
        return cls(
            error_code=code,
            error_message=message or describe(code),
            suggestion=suggestion,
        )

    @classmethod
    def from_error(cls, error: TcfsError) -> "Result[T]":
        """Create a failed result from a raised TcfsError."""
        return cls.fail(error.code, error.message, error.suggestion)

    @property
    def success(self) -> bool:
        """Whether this result carries a value."""
        return self.error_code == ErrorCode.SUCCESS

    @property
    def is_error(self) -> bool:
        """Whether this result carries an error."""
        return not self.success

    def __bool__(self) -> bool:
        return self.success

    @property
    def value(self) -> T:
        """The payload. Raises ResultAccessError on a failed result."""
        if not self.success:
            raise ResultAccessError(
                message=f"Accessed value of failed result: {self.error_message}",
                failed_code=self.error_code,
            )
        return self._value  # type: ignore[return-value]

    def value_or(self, default: T) -> T:
        """The payload, or default on failure."""
        return self._value if self.success else default  # type: ignore[return-value]

    def to_error(self) -> TcfsError:
        """Build the exception describing this failure."""
        if self.success:
            raise InternalError(message="Result has a value, not an error")
        return error_for_code(self.error_code, self.error_message, self.suggestion)

    def raise_for_error(self) -> None:
        """Raise the matching TcfsError if this result failed."""
        if not self.success:
            raise self.to_error()

    def __repr__(self) -> str:
        if self.success:
            return f"Result.ok({self._value!r})"
        return f"Result.fail({self.error_code.name}, {self.error_message!r})"
