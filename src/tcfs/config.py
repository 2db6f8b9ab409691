"""
Store location and configuration for TCFS.

The store path and crypto backend are resolved once, by the CLI, and
passed down. Precedence for each setting:

    store path:  --store > $TCFS_STORE > $HOME/.tcfs > $USERPROFILE/.tcfs > ./.tcfs
    backend:     --backend > $TCFS_CRYPTO_BACKEND > config.yaml > aes-gcm
    owner:       --owner > config.yaml > user@example.com

config.yaml example:
    version: 0.1.0
    owner: alice@example.com
    kdf: pbkdf2
    crypto_backend: aes-gcm
    created_at: '2026-01-01T00:00:00Z'
"""

import logging
import os
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from tcfs import __version__
from tcfs.crypto import DEFAULT_BACKEND, default_registry
from tcfs.errors import ErrorCode, Result
from tcfs.schema import DEFAULT_OWNER, KdfType, StoreConfig, _first_error
from tcfs.store.files import read_bytes, write_atomic
from tcfs.timeutil import Clock, format_rfc3339, utcnow

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
STORE_DIRNAME = ".tcfs"
STORE_ENV = "TCFS_STORE"
BACKEND_ENV = "TCFS_CRYPTO_BACKEND"


def default_store_path(env: Mapping[str, str] | None = None) -> Path:
    """
    Store directory from the environment.

    Args:
        env: Environment mapping (default: os.environ)
    """
    env = os.environ if env is None else env

    if env.get(STORE_ENV):
        return Path(env[STORE_ENV]).expanduser()
    for var in ("HOME", "USERPROFILE"):
        if env.get(var):
            return Path(env[var]) / STORE_DIRNAME
    return Path(STORE_DIRNAME)


def resolve_store_path(option: Path | None, env: Mapping[str, str] | None = None) -> Path:
    """The --store option if given, otherwise default_store_path()."""
    if option is not None:
        return Path(option).expanduser()
    return default_store_path(env)


def config_path(store: Path) -> Path:
    return Path(store) / CONFIG_FILENAME


def load_config(store: Path) -> Result[StoreConfig | None]:
    """
    Load <store>/config.yaml.

    Returns:
        Result with the config, None if the store has no config file, or
        INVALID_METADATA if the file cannot be parsed
    """
    path = config_path(store)
    if not path.exists():
        return Result.ok(None)

    raw = read_bytes(path)
    if not raw:
        return Result.fail(raw.error_code, raw.error_message)

    try:
        data = yaml.safe_load(raw.value)
    except yaml.YAMLError as e:
        return Result.fail(ErrorCode.INVALID_METADATA, f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        return Result.fail(ErrorCode.INVALID_METADATA, f"Config must be a mapping: {path}")

    try:
        return Result.ok(StoreConfig.model_validate(data))
    except ValidationError as e:
        return Result.fail(ErrorCode.INVALID_METADATA, f"Invalid config {path}: {_first_error(e)}")


def init_store(
    store: Path,
    owner: str,
    kdf: KdfType = KdfType.PBKDF2,
    backend: str = DEFAULT_BACKEND,
    clock: Clock = utcnow,
) -> Result[StoreConfig]:
    """
    Create the store directory and write its config.yaml.

    Running it again replaces the config; capsules are left alone.
    """
    if not owner:
        return Result.fail(ErrorCode.INVALID_ARGUMENT, "Owner cannot be empty")
    if not default_registry.has(backend):
        return Result.fail(
            ErrorCode.INVALID_ARGUMENT,
            f"Unknown crypto backend: {backend}",
            suggestion=f"Choose one of: {', '.join(default_registry.names())}",
        )

    store = Path(store)
    try:
        store.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Permission denied: {store}")
    except OSError as e:
        return Result.fail(ErrorCode.FILE_WRITE_FAILED, f"Cannot create store {store}: {e}")

    config = StoreConfig(
        version=__version__,
        owner=owner,
        kdf=kdf,
        crypto_backend=backend,
        created_at=format_rfc3339(clock()),
    )
    document = yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False)

    written = write_atomic(config_path(store), document.encode("utf-8"), overwrite=True)
    if not written:
        return Result.fail(written.error_code, written.error_message)

    logger.info("Initialized store at %s for %s", store, owner)
    return Result.ok(config)


def resolve_owner(option: str | None, config: StoreConfig | None) -> str:
    """--owner, then the config's owner, then the default."""
    if option:
        return option
    if config is not None:
        return config.owner
    return DEFAULT_OWNER


def resolve_backend(
    option: str | None,
    config: StoreConfig | None,
    env: Mapping[str, str] | None = None,
) -> str:
    """--backend, then $TCFS_CRYPTO_BACKEND, then the config, then aes-gcm."""
    env = os.environ if env is None else env
    if option:
        return option
    if env.get(BACKEND_ENV):
        return env[BACKEND_ENV]
    if config is not None:
        return config.crypto_backend
    return DEFAULT_BACKEND
