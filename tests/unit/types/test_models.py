"""Unit tests for notification data models and status dispositions."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta

import pytest

from apns_resend.types.models import (
    DEVICE_TOKEN_SIZE,
    MAX_UINT32,
    Disposition,
    ErrorStatus,
    Failure,
    Notification,
    next_notification_id,
)

TOKEN_HEX = "ab" * DEVICE_TOKEN_SIZE


@pytest.mark.unit
class TestErrorStatus:
    """Test status codes and their dispositions."""

    @pytest.mark.parametrize(
        "status",
        [
            ErrorStatus.MISSING_DEVICE_TOKEN,
            ErrorStatus.MISSING_TOPIC,
            ErrorStatus.MISSING_PAYLOAD,
            ErrorStatus.INVALID_TOKEN_SIZE,
            ErrorStatus.INVALID_TOPIC_SIZE,
            ErrorStatus.INVALID_PAYLOAD_SIZE,
            ErrorStatus.INVALID_TOKEN,
        ],
    )
    def test_permanent_statuses(self, status: ErrorStatus) -> None:
        """Test rejections that resending cannot fix are permanent."""
        assert status.disposition is Disposition.PERMANENT

    @pytest.mark.parametrize(
        "status",
        [ErrorStatus.NO_ERROR, ErrorStatus.PROCESSING_ERROR, ErrorStatus.UNKNOWN],
    )
    def test_transient_statuses(self, status: ErrorStatus) -> None:
        """Test retryable statuses are transient."""
        assert status.disposition is Disposition.TRANSIENT

    def test_shutdown_marks_notification_delivered(self) -> None:
        """Test SHUTDOWN references the last processed notification."""
        assert ErrorStatus.SHUTDOWN.disposition is Disposition.DELIVERED

    def test_unrecognised_code_maps_to_unknown(self) -> None:
        """Test codes outside the table decode to UNKNOWN."""
        assert ErrorStatus(42) is ErrorStatus.UNKNOWN
        assert ErrorStatus(9) is ErrorStatus.UNKNOWN


@pytest.mark.unit
class TestNotification:
    """Test Notification validation and construction."""

    def test_create_from_hex_and_mapping(self) -> None:
        """Test hex tokens and JSON mappings are converted."""
        notification = Notification.create(
            f"<{TOKEN_HEX[:8]} {TOKEN_HEX[8:]}>",
            {"aps": {"alert": "hi"}},
            expiry=1700000000,
            notification_id=7,
        )

        assert notification.device_token == bytes.fromhex(TOKEN_HEX)
        assert notification.payload == b'{"aps":{"alert":"hi"}}'
        assert notification.expiry == 1700000000
        assert notification.id == 7

    def test_create_defaults_expiry_to_one_day(self) -> None:
        """Test a missing expiry defaults to roughly one day from now."""
        before = int(datetime.now().timestamp())
        notification = Notification.create(TOKEN_HEX, "{}")
        after = int(datetime.now().timestamp())

        assert before + 86400 <= notification.expiry <= after + 86400

    def test_create_accepts_datetime_expiry(self) -> None:
        """Test datetime expiries are converted to timestamps."""
        moment = datetime.now() + timedelta(hours=1)
        notification = Notification.create(TOKEN_HEX, b"{}", expiry=moment)

        assert notification.expiry == int(moment.timestamp())

    def test_generated_ids_increase(self) -> None:
        """Test notifications without explicit ids get increasing ids."""
        first = Notification.create(TOKEN_HEX, b"{}")
        second = Notification.create(TOKEN_HEX, b"{}")

        assert second.id > first.id

    def test_wrong_token_size_rejected(self) -> None:
        """Test device tokens must be exactly 32 bytes."""
        with pytest.raises(ValueError, match="32 bytes"):
            _ = Notification(device_token=b"\x00" * 31, payload=b"{}")

    def test_oversized_payload_rejected(self) -> None:
        """Test payloads must fit the 16-bit length field."""
        with pytest.raises(ValueError, match="exceeds"):
            _ = Notification(device_token=b"\x00" * 32, payload=b"x" * 0x10000)

    def test_id_out_of_range_rejected(self) -> None:
        """Test ids must fit in an unsigned 32-bit field."""
        with pytest.raises(ValueError, match="id out of range"):
            _ = Notification(device_token=b"\x00" * 32, payload=b"{}", id=MAX_UINT32 + 1)

    def test_notification_is_immutable(self) -> None:
        """Test notifications cannot be modified after creation."""
        notification = Notification(device_token=b"\x00" * 32, payload=b"{}", id=1)

        with pytest.raises(dataclasses.FrozenInstanceError):
            notification.id = 2  # type: ignore[misc]

    def test_repr_hides_token_and_payload(self) -> None:
        """Test the token never appears in the repr."""
        notification = Notification(device_token=b"\xab" * 32, payload=b"secret", id=1)

        assert "ab" * 4 not in repr(notification)
        assert "secret" not in repr(notification)


@pytest.mark.unit
class TestIdentifiers:
    """Test process-wide identifier generation."""

    def test_ids_are_positive_and_increasing(self) -> None:
        """Test consecutive ids increase."""
        ids = [next_notification_id() for _ in range(5)]

        assert all(i > 0 for i in ids)
        assert ids == sorted(ids)
        assert len(set(ids)) == 5


@pytest.mark.unit
class TestFailure:
    """Test Failure helpers."""

    def test_unknown_failure(self) -> None:
        """Test failures without an id are unknown."""
        assert Failure(None, ErrorStatus.UNKNOWN, 1).is_unknown
        assert not Failure(3, ErrorStatus.PROCESSING_ERROR, 1).is_unknown
