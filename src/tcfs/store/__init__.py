"""
Storage module for TCFS.

Provides the capsule store (lock, status, unlock, list) and the durable
file primitives it is built on.
"""

from tcfs.store.capsule import (
    CAPSULE_SUFFIX,
    METADATA_SUFFIX,
    CapsuleListing,
    CapsulePaths,
    CapsuleStatus,
    CapsuleStore,
    LockOutcome,
    UnlockOutcome,
)
from tcfs.store.files import read_bytes, remove_quietly, secure_delete, write_atomic

__all__ = [
    "CAPSULE_SUFFIX",
    "METADATA_SUFFIX",
    "CapsuleListing",
    "CapsulePaths",
    "CapsuleStatus",
    "CapsuleStore",
    "LockOutcome",
    "UnlockOutcome",
    "read_bytes",
    "remove_quietly",
    "secure_delete",
    "write_atomic",
]
