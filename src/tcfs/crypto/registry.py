"""
Crypto provider registry for TCFS.

Backends are chosen by name at runtime, from configuration, rather than
being fixed when the package is built. The production backend is the
default; the mock backend must be asked for explicitly.

Usage:
    from tcfs.crypto import create_crypto_provider

    provider = create_crypto_provider("aes-gcm")
    mock = create_crypto_provider("mock")
"""

from typing import Callable, Iterator

from tcfs.crypto.aesgcm import AesGcmProvider
from tcfs.crypto.base import CryptoProvider
from tcfs.crypto.mock import MockCryptoProvider
from tcfs.errors import ErrorCode, Result

DEFAULT_BACKEND = "aes-gcm"

ProviderFactory = Callable[[], CryptoProvider]


class ProviderRegistry:
    """
    Registry mapping backend names to provider factories.

    A backend may be registered under several names (aliases). Lookups are
    case-insensitive.

    Attributes:
        _factories: Internal mapping of names to factories
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory, *aliases: str) -> None:
        """
        Register a provider factory.

        Args:
            name: Canonical backend name
            factory: Zero-argument callable returning a CryptoProvider
            aliases: Additional names for the same backend

        Raises:
            ValueError: If name is empty
        """
        if not name:
            msg = "Backend must have a non-empty name"
            raise ValueError(msg)

        for key in (name, *aliases):
            self._factories[key.lower()] = factory

    def create(self, name: str) -> Result[CryptoProvider]:
        """
        Build a provider by name.

        Returns:
            Result with a fresh provider, or INVALID_ARGUMENT for unknown names
        """
        factory = self._factories.get(name.lower())
        if factory is None:
            known = ", ".join(sorted(self._factories))
            return Result.fail(
                ErrorCode.INVALID_ARGUMENT,
                f"Unknown crypto backend: {name}",
                suggestion=f"Choose one of: {known}",
            )
        return Result.ok(factory())

    def has(self, name: str) -> bool:
        """Check if a backend name is registered."""
        return name.lower() in self._factories

    def names(self) -> list[str]:
        """All registered names, aliases included."""
        return sorted(self._factories)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._factories)


default_registry = ProviderRegistry()
default_registry.register("aes-gcm", AesGcmProvider, "openssl", "production")
default_registry.register("mock-insecure", MockCryptoProvider, "mock")


def create_crypto_provider(name: str = DEFAULT_BACKEND) -> Result[CryptoProvider]:
    """Build a provider from the default registry."""
    return default_registry.create(name)
