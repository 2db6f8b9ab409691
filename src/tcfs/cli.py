"""
CLI entry point for TCFS.

This module provides the Typer-based command-line interface for TCFS.
All user interactions flow through these commands.

Commands:
    init        Create the store and its config.yaml
    lock        Encrypt a file into a time capsule
    unlock      Decrypt a capsule once its unlock time has passed
    status      Show a capsule's policy and time remaining
    list        List all capsules in the store
    doctor      Check the environment and crypto backends

Global options (before the command):
    --store PATH, --backend NAME, --json, --verbose, --debug, --version

Exit codes:
    0  success, including "not yet unlockable"
    1  any failure
    2  usage error

Architecture Note:
    The CLI is thin - it resolves configuration, builds a CapsuleStore, and
    renders outcomes. The store can be used programmatically without it.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Iterator, NoReturn, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from tcfs import __version__
from tcfs.config import config_path, init_store, load_config, resolve_backend, resolve_owner, resolve_store_path
from tcfs.crypto import CryptoProvider, EncryptedData, create_crypto_provider
from tcfs.errors import ErrorCode, InternalError, Result, TcfsError
from tcfs.report import (
    build_config_report,
    build_error_report,
    build_list_report,
    build_lock_report,
    build_status_report,
    build_unlock_report,
    print_listing,
    print_lock_outcome,
    print_status,
    print_unlock_outcome,
    to_json,
)
from tcfs.schema import KdfParams, KdfType, Policy, StoreConfig
from tcfs.store import CapsuleStore
from tcfs.timeutil import parse_rfc3339

T = TypeVar("T")

# Initialize Typer app with metadata
app = typer.Typer(
    name="tcfs",
    help="Lock files until a chosen moment.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich consoles for formatted output
console = Console()
err_console = Console(stderr=True)


@dataclass
class CliState:
    """Options shared by every command, resolved once in the callback."""

    store: Path
    backend: Optional[str] = None
    json_output: bool = False
    debug: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]tcfs[/bold] version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Route the tcfs logger through Rich on stderr."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logger = logging.getLogger("tcfs")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=err_console, show_path=debug, rich_tracebacks=debug))
    logger.setLevel(level)


@app.callback()
def main(
    ctx: typer.Context,
    store: Annotated[
        Optional[Path],
        typer.Option(
            "--store",
            "-s",
            help="Store directory. Defaults to $TCFS_STORE, then ~/.tcfs.",
        ),
    ] = None,
    backend: Annotated[
        Optional[str],
        typer.Option(
            "--backend",
            help="Crypto backend (aes-gcm, mock). Defaults to $TCFS_CRYPTO_BACKEND, then config.",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Enable verbose output.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    TCFS - Time Capsule File System.

    Encrypt files with AES-256-GCM and keep them locked until their unlock
    time has passed.
    """
    _configure_logging(verbose, debug)
    ctx.obj = CliState(
        store=resolve_store_path(store),
        backend=backend,
        json_output=json_output,
        debug=debug,
    )


# =============================================================================
# Helpers
# =============================================================================


def _state(ctx: typer.Context) -> CliState:
    if not isinstance(ctx.obj, CliState):
        ctx.obj = CliState(store=resolve_store_path(None))
    return ctx.obj


def _fail(state: CliState, error: TcfsError) -> NoReturn:
    """Report an error and exit with code 1."""
    if state.json_output:
        document = build_error_report(error)
        if state.debug and sys.exc_info()[0] is not None:
            document["traceback"] = traceback.format_exc()
        print(to_json(document))
    else:
        err_console.print(f"[red]Error:[/red] {escape(str(error))}")
        if state.debug and sys.exc_info()[0] is not None:
            err_console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
    raise typer.Exit(code=1)


def _check(state: CliState, result: Result[T]) -> T:
    """Return a result's value or exit with its error."""
    if not result:
        _fail(state, result.to_error())
    return result.value


@contextmanager
def _command_errors(state: CliState) -> Iterator[None]:
    """Turn errors escaping a command into a reported exit code 1."""
    try:
        yield
    except typer.Exit:
        raise
    except TcfsError as e:
        _fail(state, e)
    except Exception as e:
        _fail(state, InternalError(message=f"Unexpected error: {e}"))


def _load_config_or_warn(state: CliState) -> Optional[StoreConfig]:
    """The store config, or None with a warning if it cannot be read."""
    loaded = load_config(state.store)
    if not loaded:
        logging.getLogger("tcfs.cli").warning("Ignoring config: %s", loaded.error_message)
        return None
    return loaded.value


def _open_store(state: CliState, config: Optional[StoreConfig]) -> CapsuleStore:
    provider = _check(state, create_crypto_provider(resolve_backend(state.backend, config)))
    _warn_if_insecure(state, provider)
    return CapsuleStore(state.store, provider)


def _warn_if_insecure(state: CliState, provider: CryptoProvider) -> None:
    if not provider.is_secure and not state.json_output:
        err_console.print(
            f"[bold yellow]Warning:[/bold yellow] crypto backend '{provider.name}' is insecure. "
            "Do not use it for real data."
        )


# =============================================================================
# Commands
# =============================================================================


@app.command()
def init(
    ctx: typer.Context,
    owner: Annotated[
        str,
        typer.Option(
            "--owner",
            help="Default owner for new capsules (e.g. an email address).",
        ),
    ],
    kdf: Annotated[
        KdfType,
        typer.Option(
            "--kdf",
            help="Key derivation function for passphrase-protected capsules.",
        ),
    ] = KdfType.PBKDF2,
    backend: Annotated[
        Optional[str],
        typer.Option(
            "--backend",
            help="Default crypto backend recorded in the config.",
        ),
    ] = None,
) -> None:
    """
    Initialize the TCFS store.

    Example:
        $ tcfs init --owner alice@example.com --kdf argon2id
    """
    state = _state(ctx)
    with _command_errors(state):
        chosen = resolve_backend(backend or state.backend, None)
        config = _check(state, init_store(state.store, owner, kdf=kdf, backend=chosen))

        if state.json_output:
            print(to_json(build_config_report(state.store, config)))
            return

        console.print(f"[green]✓[/green] Initialized store at {escape(str(state.store))}")
        console.print(f"  [dim]Owner:[/dim]   {escape(config.owner)}")
        console.print(f"  [dim]KDF:[/dim]     {config.kdf.value}")
        console.print(f"  [dim]Backend:[/dim] {escape(config.crypto_backend)}")
        console.print(f"  [dim]Config:[/dim]  {escape(str(config_path(state.store)))}")


@app.command()
def lock(
    ctx: typer.Context,
    input_file: Annotated[
        Path,
        typer.Argument(help="File to lock. It is securely deleted afterwards."),
    ],
    unlock_at: Annotated[
        str,
        typer.Option(
            "--unlock-at",
            "-t",
            help="Unlock time, RFC 3339 UTC (e.g. 2030-01-01T00:00:00Z).",
        ),
    ],
    label: Annotated[str, typer.Option("--label", "-l", help="Short label.")] = "",
    notes: Annotated[str, typer.Option("--notes", "-n", help="Free-form notes.")] = "",
    grace: Annotated[
        int,
        typer.Option("--grace", min=0, help="Grace period in seconds; opens the capsule early."),
    ] = 0,
    owner: Annotated[
        Optional[str],
        typer.Option("--owner", help="Owner. Defaults to the config's owner."),
    ] = None,
    name: Annotated[
        Optional[str],
        typer.Option("--name", help="Capsule name. Defaults to the file name."),
    ] = None,
    passphrase: Annotated[
        Optional[str],
        typer.Option("--passphrase", help="Protect the data key with a passphrase."),
    ] = None,
    keep_source: Annotated[
        bool,
        typer.Option("--keep-source", help="Do not delete the original file."),
    ] = False,
) -> None:
    """
    Lock a file until its unlock time.

    Example:
        $ tcfs lock letter.txt --unlock-at 2030-01-01T00:00:00Z --label "for later"
    """
    state = _state(ctx)
    with _command_errors(state):
        config = _load_config_or_warn(state)
        when = _check(state, parse_rfc3339(unlock_at))
        kdf = config.kdf if config is not None else KdfType.PBKDF2

        policy = _check(
            state,
            Policy.create(
                unlock_at=when,
                owner=resolve_owner(owner, config),
                label=label,
                notes=notes,
                grace_seconds=grace,
                kdf=kdf,
            ),
        )

        store = _open_store(state, config)
        outcome = _check(
            state,
            store.lock(
                input_file,
                policy,
                name=name,
                passphrase=passphrase,
                kdf_params=KdfParams(kdf=kdf),
                delete_source=not keep_source,
            ),
        )

        if state.json_output:
            print(to_json(build_lock_report(outcome)))
        else:
            print_lock_outcome(console, outcome)


@app.command()
def unlock(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Capsule name (with or without .tcfs).")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Where to write the file. Defaults to its original name."),
    ] = None,
    passphrase: Annotated[
        Optional[str],
        typer.Option("--passphrase", help="Passphrase for a protected capsule."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing output file."),
    ] = False,
) -> None:
    """
    Unlock a capsule if its unlock time has passed.

    A capsule that is still locked is reported with its remaining time and
    exits with code 0.

    Example:
        $ tcfs unlock letter.txt -o recovered.txt
    """
    state = _state(ctx)
    with _command_errors(state):
        store = _open_store(state, _load_config_or_warn(state))
        outcome = _check(state, store.unlock(name, output=output, passphrase=passphrase, overwrite=force))

        if state.json_output:
            print(to_json(build_unlock_report(outcome)))
        else:
            print_unlock_outcome(console, outcome)


@app.command()
def status(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Capsule name (with or without .tcfs).")],
) -> None:
    """
    Show a capsule's policy and time remaining.

    Reads only the metadata file.

    Example:
        $ tcfs status letter.txt
    """
    state = _state(ctx)
    with _command_errors(state):
        store = _open_store(state, _load_config_or_warn(state))
        capsule = _check(state, store.status(name))

        if state.json_output:
            print(to_json(build_status_report(capsule)))
        else:
            print_status(console, capsule)


@app.command("list")
def list_capsules(ctx: typer.Context) -> None:
    """
    List all capsules in the store.

    Example:
        $ tcfs list
    """
    state = _state(ctx)
    with _command_errors(state):
        if not state.store.is_dir():
            if state.json_output:
                print(to_json(build_list_report(state.store, [])))
            else:
                console.print(f"Store directory does not exist: {escape(str(state.store))}")
                console.print("Run 'tcfs init' first.")
            return

        store = _open_store(state, _load_config_or_warn(state))
        listings = store.list_capsules()

        if state.json_output:
            print(to_json(build_list_report(state.store, listings)))
        else:
            print_listing(console, state.store, listings)


@app.command()
def doctor(ctx: typer.Context) -> None:
    """
    Check the environment, crypto backends, and store.

    Verifies:
    - Python version (3.11+)
    - AES-256-GCM encrypt/decrypt self-test
    - Argon2id availability
    - Store directory and config

    Example:
        $ tcfs doctor
    """
    state = _state(ctx)
    checks = []

    # Check 1: Python version
    py_version = sys.version_info
    py_ok = py_version >= (3, 11)
    checks.append({
        "name": "Python version",
        "ok": py_ok,
        "value": f"{py_version.major}.{py_version.minor}.{py_version.micro}",
        "message": "OK" if py_ok else "Requires Python 3.11+",
    })

    # Check 2: AES-GCM round trip
    provider = create_crypto_provider("aes-gcm").value
    aes_ok, aes_message = _self_test(provider)
    checks.append({"name": "AES-256-GCM", "ok": aes_ok, "value": provider.name, "message": aes_message})

    # Check 3: Argon2id
    argon = provider.derive_key(
        "doctor",
        b"0123456789abcdef",
        KdfParams(kdf=KdfType.ARGON2ID, time_cost=1, memory_kb=8, parallelism=1),
    )
    checks.append({
        "name": "Argon2id",
        "ok": argon.success,
        "value": "argon2-cffi",
        "message": "OK" if argon else argon.error_message,
    })
    if argon:
        argon.value.wipe()

    # Check 4: Store
    if state.store.is_dir():
        loaded = load_config(state.store)
        if not loaded:
            store_ok, store_message = False, loaded.error_message
        elif loaded.value is None:
            store_ok, store_message = True, "No config.yaml (run 'tcfs init')"
        else:
            store_ok, store_message = True, f"Owner {loaded.value.owner}"
    elif state.store.exists():
        store_ok, store_message = False, "Exists but is not a directory"
    else:
        store_ok, store_message = True, "Not found (will be created on first lock)"
    checks.append({"name": "Store", "ok": store_ok, "value": str(state.store), "message": store_message})

    all_ok = all(check["ok"] for check in checks)

    # Output results
    if state.json_output:
        print(json.dumps({"ok": all_ok, "version": __version__, "checks": checks}, indent=2))
    else:
        console.print(f"[bold]TCFS Doctor[/bold] v{__version__}")
        console.print()

        for check in checks:
            icon = "[green]✓[/green]" if check["ok"] else "[red]✗[/red]"
            if check["ok"]:
                console.print(f"{icon} {check['name']}: [dim]{escape(check['value'])}[/dim] - {escape(check['message'])}")
            else:
                console.print(f"{icon} {check['name']}: [dim]{escape(check['value'])}[/dim]")
                console.print(f"    [red]{escape(check['message'])}[/red]")

        console.print()
        if all_ok:
            console.print("[green]All checks passed![/green]")
        else:
            console.print("[yellow]Some checks failed. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


def _self_test(provider: CryptoProvider) -> tuple[bool, str]:
    """Encrypt and decrypt a known message; tampering must be detected."""
    key = provider.generate_key()
    if not key:
        return False, key.error_message

    with key.value as k:
        iv = provider.generate_iv()
        if not iv:
            return False, iv.error_message

        sealed = provider.encrypt(b"tcfs doctor", k, iv.value)
        if not sealed:
            return False, sealed.error_message
        opened = provider.decrypt(sealed.value, k, iv.value)
        if not opened or opened.value != b"tcfs doctor":
            return False, "Round trip failed"

        tampered = sealed.value.tag[:-1] + bytes([sealed.value.tag[-1] ^ 1])
        forged = provider.decrypt(
            EncryptedData(ciphertext=sealed.value.ciphertext, iv=iv.value, tag=tampered),
            k,
            iv.value,
        )
        if forged.error_code != ErrorCode.DECRYPTION_FAILED:
            return False, "Tampering was not detected"

    return True, "OK"


if __name__ == "__main__":
    app()
