"""Configuration system for the apns-resend push client.

This module implements the configuration schema using Pydantic for
validation, with support for environment variable resolution and fail-fast
validation with actionable error messages.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Final

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

# Matches ${VARIABLE_NAME} where VARIABLE_NAME contains letters, digits and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")

PRODUCTION_GATEWAY_HOST: Final[str] = "gateway.push.apple.com"
SANDBOX_GATEWAY_HOST: Final[str] = "gateway.sandbox.push.apple.com"
GATEWAY_PORT: Final[int] = 2195


class _Section(BaseModel):
    model_config: ConfigDict = ConfigDict(  # pyright: ignore[reportIncompatibleVariableOverride]
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
    )


class TLSConfig(_Section):
    """Client certificate and verification settings for the gateway session."""

    enabled: Annotated[bool, Field(description="Wrap the connection in TLS")] = True
    certfile: Annotated[
        Path | None,
        Field(description="PEM file holding the client certificate (and key)"),
    ] = None
    keyfile: Annotated[
        Path | None,
        Field(description="PEM file holding the private key, if separate"),
    ] = None
    password: Annotated[
        str | None,
        Field(description="Password for the private key", repr=False),
    ] = None
    cafile: Annotated[
        Path | None,
        Field(description="CA bundle used to verify the gateway"),
    ] = None
    verify: Annotated[bool, Field(description="Verify the gateway certificate")] = True

    @field_validator("certfile", "keyfile", "cafile", mode="after")
    @classmethod
    def validate_file_exists(cls, v: Path | None) -> Path | None:
        """Validate that referenced certificate files exist.

        Raises:
            ValueError: If the file does not exist
        """
        if v is not None and not v.is_file():
            msg = f"File does not exist: {v}"
            raise ValueError(msg)
        return v


class GatewayConfig(_Section):
    """Gateway endpoint settings."""

    host: Annotated[str | None, Field(description="Gateway host name")] = None
    port: Annotated[int, Field(gt=0, lt=65536, description="Gateway port")] = GATEWAY_PORT
    sandbox: Annotated[
        bool,
        Field(description="Use the sandbox gateway when no host is given"),
    ] = False
    tls: Annotated[TLSConfig, Field(description="TLS session settings")] = TLSConfig()

    @property
    def effective_host(self) -> str:
        """Configured host, or the default production/sandbox gateway."""
        if self.host:
            return self.host
        return SANDBOX_GATEWAY_HOST if self.sandbox else PRODUCTION_GATEWAY_HOST


class DeliveryConfig(_Section):
    """Resend cache and buffering behaviour."""

    cache_capacity: Annotated[
        int,
        Field(gt=0, description="Number of sent notifications kept for resending"),
    ] = 100
    pending_limit: Annotated[
        int,
        Field(gt=0, description="Maximum notifications buffered while recovering"),
    ] = 1000
    write_timeout: Annotated[
        float,
        Field(gt=0, description="Seconds a single frame write may take"),
    ] = 10.0
    shutdown_linger: Annotated[
        float,
        Field(ge=0, description="Seconds to wait for late error frames on shutdown"),
    ] = 0.0


class ReconnectConfig(_Section):
    """Connection rebuild retry budget."""

    max_attempts: Annotated[
        int,
        Field(ge=1, le=100, description="Rebuild attempts before giving up"),
    ] = 3
    base_delay: Annotated[
        float,
        Field(ge=0, description="Delay in seconds after the first failed attempt"),
    ] = 0.5
    backoff_factor: Annotated[
        float,
        Field(ge=1.0, le=10.0, description="Multiplier for exponential backoff"),
    ] = 2.0
    max_delay: Annotated[
        float,
        Field(ge=0, description="Upper bound for a single backoff delay"),
    ] = 30.0
    jitter: Annotated[bool, Field(description="Randomise backoff delays")] = True
    connect_timeout: Annotated[
        float,
        Field(gt=0, description="Seconds to establish a connection"),
    ] = 10.0
    stable_after: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds a connection must stay up before its loss no longer counts against the budget",
        ),
    ] = 30.0

    @model_validator(mode="after")
    def validate_delays(self) -> "ReconnectConfig":
        """Validate that the base delay does not exceed the maximum delay."""
        if self.base_delay > self.max_delay:
            msg = f"base_delay ({self.base_delay}) must not exceed max_delay ({self.max_delay})"
            raise ValueError(msg)
        return self


class ApplicationConfig(_Section):
    """Application-level settings."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    syslog_enabled: Annotated[bool, Field(description="Enable syslog integration")] = False


class MainConfig(_Section):
    """Top-level configuration container.

    Sections:
    - gateway: endpoint and TLS settings
    - delivery: resend cache and buffering
    - reconnect: rebuild retry budget
    - application: logging settings
    """

    gateway: Annotated[GatewayConfig, Field(description="Gateway endpoint")] = GatewayConfig()
    delivery: Annotated[DeliveryConfig, Field(description="Delivery behaviour")] = DeliveryConfig()
    reconnect: Annotated[ReconnectConfig, Field(description="Reconnect policy")] = ReconnectConfig()
    application: Annotated[
        ApplicationConfig, Field(description="Application-level configuration")
    ] = ApplicationConfig()


class EnvironmentVariableError(Exception):
    """Exception raised when environment variable resolution fails.

    The message names the missing variable but never includes values.
    """


class ConfigurationError(Exception):
    """Exception raised when configuration loading or validation fails."""


def resolve_env_var(value: str) -> str:
    """Resolve ``${VARIABLE_NAME}`` references in a string value.

    Args:
        value: String potentially containing environment variable references

    Returns:
        String with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced variable is not set

    Examples:
        >>> os.environ["APNS_CERT"] = "/etc/apns/cert.pem"
        >>> resolve_env_var("${APNS_CERT}")
        '/etc/apns/cert.pem'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Please set this variable before starting the application."
            )
            raise EnvironmentVariableError(msg)
        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def resolve_env_vars(data: object) -> object:
    """Recursively resolve environment variables in YAML data.

    Strings are resolved, mappings and lists are traversed, every other
    value is returned unchanged.

    Raises:
        EnvironmentVariableError: If a referenced variable is not set
    """
    if isinstance(data, str):
        return resolve_env_var(data)
    if isinstance(data, Mapping):
        return {str(key): resolve_env_vars(value) for key, value in data.items()}  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
    return data


def format_validation_error(error: ValidationError, config_path: Path) -> str:
    """Render pydantic validation errors as an actionable message."""
    error_lines = ["Configuration validation failed:", ""]
    for item in error.errors():
        field_path = " -> ".join(str(loc) for loc in item["loc"])
        error_lines.append(f"  Field: {field_path}")
        error_lines.append(f"  Error: {item['msg']}")
        error_lines.append(f"  Type: {item['type']}")
        error_lines.append("")

    error_lines.append(f"Configuration file: {config_path}")
    error_lines.append("Please fix the above errors and try again.")
    return "\n".join(error_lines)


def load_main_config(config_path: Path) -> MainConfig:
    """Load and validate the client configuration from a YAML file.

    Args:
        config_path: Path to the configuration YAML file

    Returns:
        Validated MainConfig instance

    Raises:
        ConfigurationError: If the file cannot be loaded, references a
            missing environment variable, or is invalid
    """
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Please create a configuration file at this location."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Please check the file for syntax errors."
        )
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg) from e

    if raw_data is None:
        raw_data = {}

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}"
        )
        raise ConfigurationError(msg)

    try:
        resolved_data = resolve_env_vars(raw_data)
    except EnvironmentVariableError as e:
        msg = (
            f"Environment variable resolution failed in: {config_path}\n"
            f"{e}"
        )
        raise ConfigurationError(msg) from e

    try:
        return MainConfig.model_validate(resolved_data)
    except ValidationError as e:
        raise ConfigurationError(format_validation_error(e, config_path)) from e
