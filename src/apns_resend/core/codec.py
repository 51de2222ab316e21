"""Binary framing for the enhanced notification protocol.

Outbound frame::

    command=1 | id (u32) | expiry (u32) | token length=32 (u16) | token | payload length (u16) | payload

Inbound error frame::

    command=8 | status (u8) | id (u32)

All integers are big-endian.
"""

import struct
from typing import Final

from apns_resend.core.exceptions import ProtocolError
from apns_resend.types.models import DEVICE_TOKEN_SIZE, ErrorStatus, Notification

ENHANCED_COMMAND: Final[int] = 1
ERROR_COMMAND: Final[int] = 8
ERROR_FRAME_SIZE: Final[int] = 6

_HEADER: Final[struct.Struct] = struct.Struct(">BIIH")
_PAYLOAD_LENGTH: Final[struct.Struct] = struct.Struct(">H")
_ERROR_FRAME: Final[struct.Struct] = struct.Struct(">BBI")


def encode_notification(notification: Notification) -> bytes:
    """Encode a notification as an enhanced frame.

    Args:
        notification: Notification to encode

    Returns:
        Frame bytes ready to write to the gateway
    """
    return b"".join(
        (
            _HEADER.pack(
                ENHANCED_COMMAND,
                notification.id,
                notification.expiry,
                DEVICE_TOKEN_SIZE,
            ),
            notification.device_token,
            _PAYLOAD_LENGTH.pack(len(notification.payload)),
            notification.payload,
        )
    )


def decode_notification(frame: bytes) -> tuple[Notification, int]:
    """Decode one enhanced frame from the start of ``frame``.

    Used by gateway-side tooling and tests; the client only encodes.

    Args:
        frame: Buffer starting with an enhanced frame

    Returns:
        Decoded notification and the number of bytes consumed

    Raises:
        ProtocolError: If the buffer does not start with a complete, valid frame
    """
    header_end = _HEADER.size
    if len(frame) < header_end:
        msg = f"Truncated notification header: {len(frame)} bytes"
        raise ProtocolError(msg)

    command, notification_id, expiry, token_length = _HEADER.unpack_from(frame)
    if command != ENHANCED_COMMAND:
        msg = f"Unexpected command byte {command}"
        raise ProtocolError(msg)

    token_end = header_end + token_length
    payload_start = token_end + _PAYLOAD_LENGTH.size
    if len(frame) < payload_start:
        msg = "Truncated notification token"
        raise ProtocolError(msg)

    (payload_length,) = _PAYLOAD_LENGTH.unpack_from(frame, token_end)
    end = payload_start + payload_length
    if len(frame) < end:
        msg = "Truncated notification payload"
        raise ProtocolError(msg)

    try:
        notification = Notification(
            device_token=bytes(frame[header_end:token_end]),
            payload=bytes(frame[payload_start:end]),
            expiry=expiry,
            id=notification_id,
        )
    except ValueError as exc:
        raise ProtocolError(str(exc)) from exc
    return notification, end


def encode_error_frame(status: ErrorStatus, notification_id: int) -> bytes:
    """Encode a gateway error frame."""
    return _ERROR_FRAME.pack(ERROR_COMMAND, int(status), notification_id)


def decode_error_frame(frame: bytes) -> tuple[ErrorStatus, int]:
    """Decode a gateway error frame.

    Args:
        frame: Exactly ``ERROR_FRAME_SIZE`` bytes

    Returns:
        Status and the referenced notification id. Unrecognised status
        codes decode to ``ErrorStatus.UNKNOWN``.

    Raises:
        ProtocolError: If the frame has the wrong size or command byte
    """
    if len(frame) != ERROR_FRAME_SIZE:
        msg = f"Error frame must be {ERROR_FRAME_SIZE} bytes, got {len(frame)}"
        raise ProtocolError(msg)

    command, status, notification_id = _ERROR_FRAME.unpack(frame)
    if command != ERROR_COMMAND:
        msg = f"Unexpected command byte {command} in error frame"
        raise ProtocolError(msg)
    return ErrorStatus(status), notification_id
