"""
Integration tests for the tcfs command line.

Tests cover:
- init / lock / status / unlock / list / doctor
- JSON output
- Exit codes for failures
"""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from tcfs.cli import _self_test, app
from tcfs.crypto import AesGcmProvider
from tcfs.errors import ErrorCode, Result
from tcfs.schema import Policy
from tcfs.store import CapsuleStore

runner = CliRunner()

FAR_FUTURE = "2099-01-01T00:00:00Z"


@pytest.fixture
def store_args(store_dir: Path) -> list[str]:
    """Global options pointing the CLI at the temp store."""
    return ["--store", str(store_dir)]


@pytest.fixture
def past_capsule(store_dir: Path) -> str:
    """A capsule whose unlock time is already behind the real clock."""
    start = datetime(2020, 1, 1, tzinfo=UTC)
    store = CapsuleStore(store_dir, AesGcmProvider(), clock=lambda: start)
    policy = Policy.create(now=start, unlock_at=start + timedelta(days=1), owner="alice").value
    store.seal(b"from the past", policy, original_filename="old.txt")
    return "old.txt"


class TestVersion:
    """Tests for --version."""

    def test_version(self) -> None:
        """--version prints the version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestInitCommand:
    """Tests for 'tcfs init'."""

    def test_init(self, store_args: list[str], store_dir: Path) -> None:
        """init writes config.yaml."""
        result = runner.invoke(app, [*store_args, "init", "--owner", "alice@example.com"])
        assert result.exit_code == 0
        assert "Initialized" in result.output
        config = yaml.safe_load((store_dir / "config.yaml").read_text())
        assert config["owner"] == "alice@example.com"
        assert config["kdf"] == "pbkdf2"

    def test_init_json(self, store_args: list[str]) -> None:
        """init --json reports the written config."""
        result = runner.invoke(
            app, [*store_args, "--json", "init", "--owner", "bob", "--kdf", "argon2id"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["kind"] == "init"
        assert data["config"]["kdf"] == "argon2id"

    def test_init_requires_owner(self, store_args: list[str]) -> None:
        """--owner is required."""
        result = runner.invoke(app, [*store_args, "init"])
        assert result.exit_code == 2


class TestLockCommand:
    """Tests for 'tcfs lock'."""

    def test_lock(self, store_args: list[str], store_dir: Path, source_file: Path) -> None:
        """lock creates the capsule and removes the source."""
        result = runner.invoke(app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE])
        assert result.exit_code == 0
        assert "Locked" in result.output
        assert (store_dir / "letter.txt.tcfs").exists()
        assert (store_dir / "letter.txt.tcfs.meta").exists()
        assert not source_file.exists()

    def test_lock_uses_config_owner(
        self, store_args: list[str], store_dir: Path, source_file: Path
    ) -> None:
        """Without --owner, the config's owner is used."""
        runner.invoke(app, [*store_args, "init", "--owner", "carol@example.com"])
        runner.invoke(app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE])
        metadata = json.loads((store_dir / "letter.txt.tcfs.meta").read_text())
        assert metadata["policy"]["owner"] == "carol@example.com"

    def test_lock_json(self, store_args: list[str], source_file: Path) -> None:
        """lock --json reports the capsule without key material."""
        result = runner.invoke(
            app,
            [*store_args, "--json", "lock", str(source_file), "-t", FAR_FUTURE, "--label", "later"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["kind"] == "lock"
        assert data["capsule"]["policy"]["label"] == "later"
        assert data["source_deleted"] is True
        assert "data_key_encrypted" not in result.stdout

    def test_keep_source(self, store_args: list[str], source_file: Path) -> None:
        """--keep-source leaves the input."""
        result = runner.invoke(
            app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE, "--keep-source"]
        )
        assert result.exit_code == 0
        assert source_file.exists()

    def test_bad_time_format(self, store_args: list[str], source_file: Path) -> None:
        """A malformed unlock time exits 1 with INVALID_TIME_FORMAT."""
        result = runner.invoke(
            app, [*store_args, "--json", "lock", str(source_file), "-t", "tomorrow"]
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["kind"] == "error"
        assert data["error"]["code"] == 2001
        assert source_file.exists()

    def test_past_time(self, store_args: list[str], source_file: Path) -> None:
        """An unlock time in the past exits 1."""
        result = runner.invoke(
            app, [*store_args, "lock", str(source_file), "-t", "2000-01-01T00:00:00Z"]
        )
        assert result.exit_code == 1
        assert "E5001" in result.output
        assert source_file.exists()

    def test_missing_input(self, store_args: list[str], temp_dir: Path) -> None:
        """A missing input file exits 1."""
        result = runner.invoke(
            app, [*store_args, "lock", str(temp_dir / "ghost"), "-t", FAR_FUTURE]
        )
        assert result.exit_code == 1
        assert "E3001" in result.output

    def test_negative_grace_is_usage_error(self, store_args: list[str], source_file: Path) -> None:
        """--grace below zero is rejected by the parser."""
        result = runner.invoke(
            app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE, "--grace", "-5"]
        )
        assert result.exit_code == 2

    def test_mock_backend_warns(self, store_args: list[str], source_file: Path) -> None:
        """The insecure backend prints a warning."""
        result = runner.invoke(
            app, [*store_args, "--backend", "mock", "lock", str(source_file), "-t", FAR_FUTURE]
        )
        assert result.exit_code == 0
        assert "insecure" in result.output


class TestStatusCommand:
    """Tests for 'tcfs status'."""

    def test_status(self, store_args: list[str], source_file: Path) -> None:
        """status shows the owner and whether it can unlock."""
        runner.invoke(
            app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE, "--owner", "dave"]
        )
        result = runner.invoke(app, [*store_args, "status", "letter.txt"])
        assert result.exit_code == 0
        assert "dave" in result.output
        assert "No" in result.output

    def test_status_json(self, store_args: list[str], source_file: Path) -> None:
        """status --json reports remaining seconds."""
        runner.invoke(app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE])
        result = runner.invoke(app, [*store_args, "--json", "status", "letter.txt.tcfs"])
        assert result.exit_code == 0
        capsule = json.loads(result.stdout)["capsule"]
        assert capsule["seconds_remaining"] > 0
        assert capsule["can_unlock"] is False
        assert capsule["gate_state"] == "valid"
        assert capsule["policy"]["unlock_at"] == FAR_FUTURE

    def test_status_bracketed_label(self, store_args: list[str], source_file: Path) -> None:
        """A label that looks like markup is shown as typed by status and list."""
        locked = runner.invoke(
            app,
            [*store_args, "lock", str(source_file), "-t", FAR_FUTURE, "--label", "v[/b]", "--owner", "[red]x"],
        )
        assert locked.exit_code == 0
        status = runner.invoke(app, [*store_args, "status", "letter.txt"])
        assert status.exit_code == 0
        assert "v[/b]" in status.output
        assert "[red]x" in status.output
        listing = runner.invoke(app, [*store_args, "list"])
        assert listing.exit_code == 0

    def test_status_unknown(self, store_args: list[str]) -> None:
        """An unknown capsule exits 1."""
        result = runner.invoke(app, [*store_args, "status", "nothing"])
        assert result.exit_code == 1
        assert "E3001" in result.output


class TestUnlockCommand:
    """Tests for 'tcfs unlock'."""

    def test_locked(self, store_args: list[str], source_file: Path, temp_dir: Path) -> None:
        """A closed gate exits 0 and writes nothing."""
        runner.invoke(app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE])
        output = temp_dir / "out.txt"
        result = runner.invoke(app, [*store_args, "unlock", "letter.txt", "-o", str(output)])
        assert result.exit_code == 0
        assert "Cannot unlock yet" in result.output
        assert not output.exists()

    def test_locked_json(self, store_args: list[str], source_file: Path) -> None:
        """unlock --json reports unlocked=false."""
        runner.invoke(app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE])
        result = runner.invoke(app, [*store_args, "--json", "unlock", "letter.txt"])
        data = json.loads(result.stdout)
        assert data["unlocked"] is False
        assert data["seconds_remaining"] > 0
        assert data["output_path"] is None

    def test_unlock(self, store_args: list[str], past_capsule: str, temp_dir: Path) -> None:
        """An open gate writes the plaintext."""
        output = temp_dir / "restored.txt"
        result = runner.invoke(app, [*store_args, "unlock", past_capsule, "-o", str(output)])
        assert result.exit_code == 0
        assert "Unlocked" in result.output
        assert output.read_bytes() == b"from the past"

    def test_unlock_json(self, store_args: list[str], past_capsule: str, temp_dir: Path) -> None:
        """unlock --json reports the bytes written."""
        output = temp_dir / "restored.txt"
        result = runner.invoke(
            app, [*store_args, "--json", "unlock", past_capsule, "-o", str(output)]
        )
        data = json.loads(result.stdout)
        assert data["unlocked"] is True
        assert data["bytes_written"] == len(b"from the past")
        assert data["output_path"] == str(output)

    def test_force(self, store_args: list[str], past_capsule: str, temp_dir: Path) -> None:
        """An existing output needs --force."""
        output = temp_dir / "restored.txt"
        output.write_text("existing")
        result = runner.invoke(app, [*store_args, "unlock", past_capsule, "-o", str(output)])
        assert result.exit_code == 1
        assert output.read_text() == "existing"

        result = runner.invoke(
            app, [*store_args, "unlock", past_capsule, "-o", str(output), "--force"]
        )
        assert result.exit_code == 0
        assert output.read_bytes() == b"from the past"

    def test_tampered(self, store_args: list[str], past_capsule: str, store_dir: Path, temp_dir: Path) -> None:
        """A modified ciphertext exits 1 with DECRYPTION_FAILED."""
        ciphertext = store_dir / "old.txt.tcfs"
        data = bytearray(ciphertext.read_bytes())
        data[0] ^= 0xFF
        ciphertext.write_bytes(bytes(data))

        output = temp_dir / "restored.txt"
        result = runner.invoke(app, [*store_args, "unlock", past_capsule, "-o", str(output)])
        assert result.exit_code == 1
        assert "E1004" in result.output
        assert not output.exists()


class TestListCommand:
    """Tests for 'tcfs list'."""

    def test_no_store(self, store_args: list[str]) -> None:
        """A missing store is reported, not an error."""
        result = runner.invoke(app, [*store_args, "list"])
        assert result.exit_code == 0
        assert "tcfs init" in result.output

    def test_no_store_json(self, store_args: list[str]) -> None:
        """A missing store lists nothing in JSON."""
        result = runner.invoke(app, [*store_args, "--json", "list"])
        data = json.loads(result.stdout)
        assert data["count"] == 0
        assert data["capsules"] == []

    def test_list(self, store_args: list[str], source_file: Path, past_capsule: str) -> None:
        """Every capsule is listed."""
        runner.invoke(app, [*store_args, "lock", str(source_file), "-t", FAR_FUTURE])
        result = runner.invoke(app, [*store_args, "--json", "list"])
        data = json.loads(result.stdout)
        assert data["count"] == 2
        by_name = {entry["name"]: entry for entry in data["capsules"]}
        assert by_name["old.txt"]["can_unlock"] is True
        assert by_name["letter.txt"]["can_unlock"] is False


class TestDoctorCommand:
    """Tests for 'tcfs doctor'."""

    def test_doctor(self, store_args: list[str]) -> None:
        """doctor passes in a healthy environment."""
        result = runner.invoke(app, [*store_args, "doctor"])
        assert result.exit_code == 0
        assert "All checks passed" in result.output

    def test_doctor_json(self, store_args: list[str]) -> None:
        """doctor --json lists each check."""
        result = runner.invoke(app, [*store_args, "--json", "doctor"])
        data = json.loads(result.stdout)
        assert data["ok"] is True
        names = [check["name"] for check in data["checks"]]
        assert "AES-256-GCM" in names
        assert "Argon2id" in names

    def test_doctor_bad_config(self, store_args: list[str], store_dir: Path) -> None:
        """A broken config.yaml fails the store check."""
        store_dir.mkdir()
        (store_dir / "config.yaml").write_text("owner: [")
        result = runner.invoke(app, [*store_args, "--json", "doctor"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        store_check = next(check for check in data["checks"] if check["name"] == "Store")
        assert store_check["ok"] is False

    def test_self_test_wipes_key_when_iv_fails(self) -> None:
        """The self-test key is wiped even if IV generation fails."""
        provider = AesGcmProvider()
        real_generate_key = provider.generate_key
        keys = []

        def capture_key():
            result = real_generate_key()
            keys.append(result.value)
            return result

        failed_iv = Result.fail(ErrorCode.CRYPTO_INIT_FAILED, "IV generation failed: no entropy")
        with patch.object(provider, "generate_key", side_effect=capture_key):
            with patch.object(provider, "generate_iv", return_value=failed_iv):
                ok, message = _self_test(provider)
        assert not ok
        assert "no entropy" in message
        assert keys[0].empty
