"""
Pytest configuration and fixtures for TCFS tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

from tcfs.crypto import AesGcmProvider, MockCryptoProvider
from tcfs.schema import Policy
from tcfs.store import CapsuleStore

EPOCH = datetime(2030, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at 2030-01-01T12:00:00Z."""
    return FakeClock()


@pytest.fixture
def provider() -> AesGcmProvider:
    """The production crypto backend."""
    return AesGcmProvider()


@pytest.fixture
def mock_provider() -> MockCryptoProvider:
    """The deterministic insecure backend."""
    return MockCryptoProvider(seed=42)


@pytest.fixture
def store_dir(temp_dir: Path) -> Path:
    """Store directory inside the temp dir (not yet created)."""
    return temp_dir / "store"


@pytest.fixture
def store(store_dir: Path, provider: AesGcmProvider, clock: FakeClock) -> CapsuleStore:
    """A capsule store driven by the fake clock."""
    return CapsuleStore(store_dir, provider, clock=clock)


@pytest.fixture
def hour_policy(clock: FakeClock) -> Policy:
    """A policy that opens one hour after the fake clock's start."""
    return Policy.create(
        now=clock(),
        unlock_at=clock() + timedelta(hours=1),
        owner="alice@example.com",
        label="birthday",
        notes="open on the day",
    ).value


@pytest.fixture
def source_file(temp_dir: Path) -> Path:
    """A 100-byte file to lock."""
    path = temp_dir / "letter.txt"
    path.write_bytes(bytes(range(100)))
    return path
