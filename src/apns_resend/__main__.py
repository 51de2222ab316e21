"""Command-line entry point for apns-resend.

Loads the configuration, connects to the gateway, pushes one payload to every
given device token and shuts down once outstanding notifications are settled.
Any notification the gateway rejects makes the run fail.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import NoReturn, override

from apns_resend.core.client import PushClient
from apns_resend.core.config import (
    ConfigurationError,
    EnvironmentVariableError,
    load_main_config,
)
from apns_resend.core.exceptions import GatewayRejection, PushClientError
from apns_resend.types.models import ErrorStatus, Notification
from apns_resend.types.protocols import PushDelegate
from apns_resend.utils.formatting import format_notification
from apns_resend.utils.logging import configure_logging

__all__ = ["main"]

DEFAULT_CONFIG_PATH: Path = Path("config/apns-resend.yaml")

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 1


class CommandLineDelegate(PushDelegate):
    """Logs delivery callbacks and remembers rejected notifications."""

    def __init__(self) -> None:
        self.sent: int = 0
        self.failed: list[GatewayRejection] = []
        self._logger: logging.Logger = logging.getLogger(__name__)

    @override
    def on_sent(self, notification: Notification) -> None:
        self.sent += 1
        self._logger.info("Delivered %s", format_notification(notification))

    @override
    def on_failed(self, notification: Notification, status: ErrorStatus) -> None:
        rejection = GatewayRejection(status, notification.id)
        self.failed.append(rejection)
        self._logger.error("%s (%s)", rejection, format_notification(notification))

    @override
    def on_notifications_resent(self, count: int) -> None:
        self._logger.info("Resent %d notifications", count)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list, defaults to ``sys.argv[1:]``

    Returns:
        Parsed arguments namespace

    CLI Arguments:
        --config, -c: Path to main configuration file
        --token, -t: Hex device token, repeatable
        --payload, -p: JSON payload sent to every token
        --expiry: Seconds from now until the gateway may discard the notification
        --log-level: Override log level from config
        --no-syslog: Disable syslog integration
    """
    parser = argparse.ArgumentParser(
        prog="apns-resend",
        description="Push a notification payload to devices with guaranteed delivery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  apns-resend -t 3b5e...c1 -p '{"aps": {"alert": "Hello"}}'
  apns-resend --config /etc/apns-resend.yaml -t TOKEN1 -t TOKEN2 -p '{"aps": {"badge": 1}}'
  apns-resend --log-level DEBUG --no-syslog -t TOKEN -p '{"aps": {}}'
        """,
    )

    _ = parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to main configuration file (default: {DEFAULT_CONFIG_PATH})",
        metavar="PATH",
    )

    _ = parser.add_argument(
        "--token",
        "-t",
        action="append",
        required=True,
        help="Hex encoded device token (repeat for several devices)",
        metavar="HEX",
    )

    _ = parser.add_argument(
        "--payload",
        "-p",
        required=True,
        help="JSON payload, for example '{\"aps\": {\"alert\": \"Hello\"}}'",
        metavar="JSON",
    )

    _ = parser.add_argument(
        "--expiry",
        type=int,
        help="Seconds from now until the notification expires (default: one day)",
        metavar="SECONDS",
    )

    _ = parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
        metavar="LEVEL",
    )

    _ = parser.add_argument(
        "--no-syslog",
        action="store_true",
        help="Disable syslog integration (useful for development)",
    )

    return parser.parse_args(argv)


def build_notifications(
    tokens: list[str],
    payload: str,
    expiry_seconds: int | None = None,
) -> list[Notification]:
    """Create one notification per device token.

    Args:
        tokens: Hex encoded device tokens
        payload: JSON document sent to every device
        expiry_seconds: Lifetime relative to now, None for the default

    Returns:
        Notifications in token order

    Raises:
        ValueError: If the payload is not valid JSON or a token is malformed
    """
    try:
        document: object = json.loads(payload)
    except json.JSONDecodeError as exc:
        msg = f"Payload is not valid JSON: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(document, dict):
        msg = "Payload must be a JSON object"
        raise ValueError(msg)

    body = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    expiry = int(time.time()) + expiry_seconds if expiry_seconds is not None else None
    return [Notification.create(token, body, expiry=expiry) for token in tokens]


async def async_main(
    *,
    config_path: Path,
    tokens: list[str],
    payload: str,
    expiry_seconds: int | None = None,
    log_level: str | None = None,
    enable_syslog: bool = True,
) -> None:
    """Push the payload to every token and settle all notifications.

    Args:
        config_path: Path to main configuration file
        tokens: Hex encoded device tokens
        payload: JSON payload
        expiry_seconds: Lifetime of each notification relative to now
        log_level: Override log level from config
        enable_syslog: Enable syslog integration

    Raises:
        ConfigurationError: If configuration is invalid
        EnvironmentVariableError: If required environment variable is missing
        RuntimeError: If delivery failed or a notification was rejected
    """
    logger = logging.getLogger(__name__)
    logger.info("Loading configuration", extra={"config_path": str(config_path)})

    config = load_main_config(config_path)
    if log_level is not None:
        config.application.log_level = log_level

    configure_logging(
        log_level=config.application.log_level,
        enable_syslog=enable_syslog and config.application.syslog_enabled,
        enable_console=True,
    )

    try:
        notifications = build_notifications(tokens, payload, expiry_seconds)
    except ValueError as exc:
        raise RuntimeError(str(exc)) from exc

    delegate = CommandLineDelegate()
    client = PushClient.from_config(config, delegate)

    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        _ = loop.add_signal_handler(sig, interrupted.set)

    try:
        logger.info(
            "Pushing notifications",
            extra={"count": len(notifications), "host": config.gateway.effective_host},
        )
        try:
            async with client:
                for notification in notifications:
                    if interrupted.is_set():
                        logger.warning("Interrupted, skipping remaining notifications")
                        break
                    _ = await client.push(notification)
        except PushClientError as exc:
            raise RuntimeError(f"Delivery failed: {exc}") from exc
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            _ = loop.remove_signal_handler(sig)

    logger.info(
        "Push complete",
        extra={"delivered": delegate.sent, "failed": len(delegate.failed)},
    )
    if delegate.failed:
        details = "; ".join(str(rejection) for rejection in delegate.failed)
        msg = f"{len(delegate.failed)} of {len(notifications)} notifications failed: {details}"
        raise RuntimeError(msg)


def main() -> NoReturn:
    """Main entry point for the apns-resend command.

    Exit Codes:
        0: Every notification was delivered
        1: Configuration error, delivery failure or rejected notification
    """
    args = parse_arguments()

    config_path_arg: Path = args.config  # pyright: ignore[reportAny]  # argparse boundary
    tokens_arg: list[str] = args.token  # pyright: ignore[reportAny]  # argparse boundary
    payload_arg: str = args.payload  # pyright: ignore[reportAny]  # argparse boundary
    expiry_arg: int | None = args.expiry  # pyright: ignore[reportAny]  # argparse boundary
    log_level_arg: str | None = args.log_level  # pyright: ignore[reportAny]  # argparse boundary
    no_syslog_arg: bool = args.no_syslog  # pyright: ignore[reportAny]  # argparse boundary

    try:
        asyncio.run(
            async_main(
                config_path=config_path_arg,
                tokens=tokens_arg,
                payload=payload_arg,
                expiry_seconds=expiry_arg,
                log_level=log_level_arg,
                enable_syslog=not no_syslog_arg,
            )
        )

    except ConfigurationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except EnvironmentVariableError as exc:
        print(f"Environment variable error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except RuntimeError as exc:
        print(f"Runtime error: {exc}", file=sys.stderr)
        sys.exit(EXIT_RUNTIME_ERROR)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(EXIT_RUNTIME_ERROR)

    except Exception as exc:
        print(f"Unexpected error: {exc}", file=sys.stderr)
        logging.exception("Unexpected error during push")
        sys.exit(EXIT_RUNTIME_ERROR)

    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
