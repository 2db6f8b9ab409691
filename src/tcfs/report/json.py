"""
JSON output for TCFS.

Builds the documents printed by the CLI when --json is given.

Design Principles:
    - Consistent schema: every document has a "report_version" and "kind"
    - Human-readable keys: descriptive snake_case names
    - RFC 3339 timestamps, the same text stored in capsule metadata
    - Never includes key material or plaintext
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from tcfs.errors import TcfsError
from tcfs.schema import StoreConfig
from tcfs.store import CapsuleListing, CapsuleStatus, LockOutcome, UnlockOutcome
from tcfs.timeutil import format_rfc3339

REPORT_VERSION = "1.0"


def to_json(document: dict[str, Any], indent: int = 2) -> str:
    """Serialize a report document."""
    return json.dumps(document, indent=indent, default=_json_serializer)


def _envelope(kind: str, **body: Any) -> dict[str, Any]:
    return {"report_version": REPORT_VERSION, "kind": kind, **body}


def status_dict(status: CapsuleStatus) -> dict[str, Any]:
    """Serialize a capsule status."""
    return {
        "name": status.name,
        "ciphertext_path": str(status.paths.ciphertext),
        "metadata_path": str(status.paths.metadata),
        "policy": status.policy.to_json(),
        "effective_unlock_at": format_rfc3339(status.effective_unlock_at),
        "checked_at": format_rfc3339(status.checked_at),
        "seconds_remaining": status.seconds_remaining,
        "gate_state": status.gate_state.value,
        "can_unlock": status.can_unlock,
        "created_at": status.created_at,
        "original_filename": status.original_filename,
        "tool_version": status.tool_version,
        "crypto_backend": status.crypto_backend,
        "protected": status.protected,
    }


def build_status_report(status: CapsuleStatus) -> dict[str, Any]:
    return _envelope("status", capsule=status_dict(status))


def build_lock_report(outcome: LockOutcome) -> dict[str, Any]:
    """Serialize a lock outcome. The data key field is left out."""
    return _envelope(
        "lock",
        capsule={
            "name": outcome.paths.name,
            "ciphertext_path": str(outcome.paths.ciphertext),
            "metadata_path": str(outcome.paths.metadata),
            "policy": outcome.policy.to_json(),
            "created_at": outcome.metadata.created_at,
            "original_filename": outcome.metadata.original_filename,
            "crypto_backend": outcome.metadata.crypto_backend,
            "protected": outcome.metadata.key_protection is not None,
        },
        source_deleted=outcome.source_deleted,
        warnings=list(outcome.warnings),
    )


def build_unlock_report(outcome: UnlockOutcome) -> dict[str, Any]:
    """Serialize an unlock outcome, locked or not."""
    return _envelope(
        "unlock",
        unlocked=outcome.unlocked,
        seconds_remaining=outcome.seconds_remaining,
        output_path=str(outcome.output_path) if outcome.output_path else None,
        bytes_written=len(outcome.plaintext) if outcome.output_path and outcome.plaintext is not None else 0,
        capsule=status_dict(outcome.status),
    )


def build_list_report(store: Path, listings: list[CapsuleListing]) -> dict[str, Any]:
    """Serialize a store listing."""
    entries = []
    for listing in listings:
        if listing.status is not None:
            entries.append(status_dict(listing.status))
        else:
            entries.append({"name": listing.name, "error": listing.error})
    return _envelope("list", store=str(store), count=len(entries), capsules=entries)


def build_config_report(store: Path, config: StoreConfig) -> dict[str, Any]:
    return _envelope("init", store=str(store), config=config.model_dump(mode="json"))


def build_error_report(error: TcfsError) -> dict[str, Any]:
    return _envelope("error", error=error.to_dict())


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return format_rfc3339(obj)
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
