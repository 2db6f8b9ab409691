"""
Unit tests for the Policy time gate.

Tests cover:
- Gate arithmetic (effective time, unlockable, time remaining)
- Creation-time validation
- Gate state classification
- JSON round trip and lenient parsing
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from tcfs.errors import ErrorCode
from tcfs.schema import EARLIEST_TIME, MAX_GRACE_SECONDS, CryptoAlgorithm, GateState, KdfType, Policy

NOW = datetime(2030, 1, 1, 12, 0, 0, tzinfo=UTC)


def make_policy(offset_seconds: float, grace: int = 0, owner: str = "alice@example.com") -> Policy:
    return Policy(
        unlock_at=NOW + timedelta(seconds=offset_seconds),
        owner=owner,
        grace_seconds=grace,
    )


class TestGate:
    """Tests for gate arithmetic."""

    def test_past_unlock_is_open(self) -> None:
        """unlock_at an hour ago opens the gate."""
        policy = make_policy(-3600)
        assert policy.is_unlockable(NOW)
        assert policy.time_remaining(NOW) == 0

    def test_future_unlock_is_closed(self) -> None:
        """unlock_at an hour ahead keeps the gate closed."""
        policy = make_policy(3600)
        assert not policy.is_unlockable(NOW)
        assert policy.time_remaining(NOW) == 3600

    def test_exact_instant_is_open(self) -> None:
        """The gate opens at exactly the effective time."""
        assert make_policy(0).is_unlockable(NOW)

    def test_grace_opens_early(self) -> None:
        """A 1800s grace pulls a +1500s unlock into the past."""
        policy = make_policy(1500, grace=1800)
        assert policy.is_unlockable(NOW)
        assert policy.time_remaining(NOW) == 0

    def test_grace_shortens_remaining(self) -> None:
        """Grace reduces time remaining, never increases it."""
        policy = make_policy(3600, grace=600)
        assert policy.time_remaining(NOW) == 3000
        assert policy.effective_unlock_time() == NOW + timedelta(seconds=3000)

    def test_remaining_is_whole_seconds(self) -> None:
        """time_remaining truncates to an int."""
        policy = make_policy(10.7)
        assert policy.time_remaining(NOW) == 10
        assert isinstance(policy.time_remaining(NOW), int)

    def test_grace_before_earliest_time(self) -> None:
        """A grace reaching before year 1 clamps instead of overflowing."""
        policy = Policy(
            unlock_at=datetime(1, 1, 1, tzinfo=UTC),
            owner="x",
            grace_seconds=60,
        )
        assert policy.effective_unlock_time() == EARLIEST_TIME
        assert policy.is_unlockable(NOW)
        assert policy.time_remaining(NOW) == 0
        assert policy.gate_state(NOW) == GateState.UNLOCKABLE

    def test_default_clock(self) -> None:
        """Without now, the real clock is used."""
        policy = Policy(unlock_at=datetime(2000, 1, 1, tzinfo=UTC), owner="x")
        assert policy.is_unlockable()


class TestValidation:
    """Tests for creation-time validation."""

    def test_valid_policy(self) -> None:
        """Owner plus future unlock passes."""
        assert make_policy(60).validate_policy(NOW).success
        assert make_policy(60).is_valid(NOW)

    def test_empty_owner_rejected(self) -> None:
        """An empty owner fails."""
        result = make_policy(60, owner="").validate_policy(NOW)
        assert result.error_code == ErrorCode.INVALID_POLICY
        assert "Owner" in result.error_message

    def test_past_unlock_rejected(self) -> None:
        """unlock_at in the past fails."""
        assert make_policy(-1).validate_policy(NOW).error_code == ErrorCode.INVALID_POLICY

    def test_now_unlock_rejected(self) -> None:
        """unlock_at equal to now fails (strict future)."""
        assert not make_policy(0).is_valid(NOW)

    def test_grace_ignored_by_validation(self) -> None:
        """A grace period does not rescue a past unlock, nor break a future one."""
        assert not make_policy(-10, grace=3600).is_valid(NOW)
        assert make_policy(10, grace=3600).is_valid(NOW)

    def test_create_validates(self) -> None:
        """Policy.create runs validation."""
        ok = Policy.create(now=NOW, unlock_at=NOW + timedelta(hours=1), owner="bob")
        assert ok.success
        bad = Policy.create(now=NOW, unlock_at=NOW - timedelta(hours=1), owner="bob")
        assert bad.error_code == ErrorCode.INVALID_POLICY

    def test_create_reports_field_errors(self) -> None:
        """Out-of-range fields are INVALID_POLICY, not exceptions."""
        result = Policy.create(
            now=NOW,
            unlock_at=NOW + timedelta(hours=1),
            owner="bob",
            grace_seconds=MAX_GRACE_SECONDS + 1,
        )
        assert result.error_code == ErrorCode.INVALID_POLICY
        assert "grace_seconds" in result.error_message

    def test_naive_datetime_rejected(self) -> None:
        """unlock_at must be timezone-aware."""
        with pytest.raises(ValidationError):
            Policy(unlock_at=datetime(2030, 1, 1), owner="x")

    def test_negative_grace_rejected(self) -> None:
        """grace_seconds cannot be negative."""
        with pytest.raises(ValidationError):
            Policy(unlock_at=NOW, owner="x", grace_seconds=-1)

    def test_frozen(self) -> None:
        """Policies are immutable."""
        policy = make_policy(60)
        with pytest.raises(ValidationError):
            policy.owner = "mallory"  # type: ignore[misc]


class TestGateState:
    """Tests for gate_state classification."""

    def test_unlockable(self) -> None:
        """Open gate is UNLOCKABLE."""
        assert make_policy(-5).gate_state(NOW) == GateState.UNLOCKABLE

    def test_valid(self) -> None:
        """Closed gate with owner and future time is VALID."""
        assert make_policy(5).gate_state(NOW) == GateState.VALID

    def test_unvalidated(self) -> None:
        """Closed gate without owner is UNVALIDATED."""
        assert make_policy(5, owner="").gate_state(NOW) == GateState.UNVALIDATED


class TestSerialization:
    """Tests for to_json / from_json."""

    def test_to_json_shape(self) -> None:
        """to_json emits every field with RFC 3339 time."""
        data = Policy(
            unlock_at=NOW,
            owner="alice",
            label="l",
            notes="n",
            grace_seconds=7,
        ).to_json()
        assert data == {
            "unlock_at": "2030-01-01T12:00:00Z",
            "owner": "alice",
            "label": "l",
            "notes": "n",
            "grace_seconds": 7,
            "algorithm": "AES-256-GCM",
            "kdf": "pbkdf2",
        }

    def test_round_trip(self) -> None:
        """Fields survive; unlock_at survives to the second."""
        original = Policy(
            unlock_at=NOW + timedelta(hours=2, microseconds=123_456),
            owner="alice",
            label="label",
            notes="notes",
            grace_seconds=30,
            kdf=KdfType.ARGON2ID,
        )
        restored = Policy.from_json(original.to_json(), now=NOW).value
        assert restored.unlock_at == original.unlock_at.replace(microsecond=0)
        assert restored.owner == original.owner
        assert restored.label == original.label
        assert restored.notes == original.notes
        assert restored.grace_seconds == original.grace_seconds
        assert restored.algorithm == CryptoAlgorithm.AES_256_GCM
        assert restored.kdf == KdfType.ARGON2ID

    def test_from_json_string(self) -> None:
        """JSON text is accepted."""
        text = json.dumps({"unlock_at": "2031-01-01T00:00:00Z", "owner": "a"})
        assert Policy.from_json(text, now=NOW).success

    def test_from_json_bad_text(self) -> None:
        """Unparseable JSON is INVALID_POLICY."""
        assert Policy.from_json("{not json", now=NOW).error_code == ErrorCode.INVALID_POLICY

    def test_from_json_requires_unlock_at(self) -> None:
        """unlock_at is mandatory."""
        assert Policy.from_json({"owner": "a"}, now=NOW).error_code == ErrorCode.INVALID_POLICY
        assert Policy.from_json({"unlock_at": 5, "owner": "a"}, now=NOW).error_code == ErrorCode.INVALID_POLICY

    def test_from_json_bad_time(self) -> None:
        """A malformed unlock_at is INVALID_TIME_FORMAT."""
        result = Policy.from_json({"unlock_at": "tomorrow", "owner": "a"}, now=NOW)
        assert result.error_code == ErrorCode.INVALID_TIME_FORMAT

    def test_from_json_ignores_ill_typed_optionals(self) -> None:
        """Wrongly typed optional fields keep their defaults."""
        result = Policy.from_json(
            {
                "unlock_at": "2031-01-01T00:00:00Z",
                "owner": "a",
                "label": 12,
                "grace_seconds": "ten",
            },
            now=NOW,
        )
        assert result.value.label == ""
        assert result.value.grace_seconds == 0

    def test_from_json_unknown_algorithm(self) -> None:
        """Unknown algorithm names are rejected."""
        result = Policy.from_json(
            {"unlock_at": "2031-01-01T00:00:00Z", "owner": "a", "algorithm": "ROT13"},
            now=NOW,
        )
        assert result.error_code == ErrorCode.INVALID_POLICY

    def test_from_json_unknown_kdf(self) -> None:
        """Unknown KDF names are rejected."""
        result = Policy.from_json(
            {"unlock_at": "2031-01-01T00:00:00Z", "owner": "a", "kdf": "md5"},
            now=NOW,
        )
        assert result.error_code == ErrorCode.INVALID_POLICY

    def test_from_json_validates_by_default(self) -> None:
        """A past unlock fails strict parsing."""
        data = {"unlock_at": "2020-01-01T00:00:00Z", "owner": "a"}
        assert Policy.from_json(data, now=NOW).error_code == ErrorCode.INVALID_POLICY

    def test_from_json_skip_validation(self) -> None:
        """The unlock path accepts past times and empty owners."""
        data = {"unlock_at": "2020-01-01T00:00:00Z"}
        result = Policy.from_json(data, skip_time_validation=True, now=NOW)
        assert result.success
        assert result.value.is_unlockable(NOW)

    def test_describe(self) -> None:
        """describe() is a one-line summary."""
        text = make_policy(0).describe()
        assert text.startswith("Policy{unlock_at=2030-01-01T12:00:00Z")
        assert "owner=alice@example.com" in text
        assert "algorithm=AES-256-GCM" in text
