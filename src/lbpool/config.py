"""Configuration management with validation.

All settings come from the environment and are validated when the Config
is constructed, so a bad value fails the process before any remote call.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_OPERATION_TIMEOUT_SECONDS = 600
MIN_OPERATION_TIMEOUT_SECONDS = 1
MAX_OPERATION_TIMEOUT_SECONDS = 7200

DEFAULT_POLL_INTERVAL_SECONDS = 2
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 60

DEFAULT_RETRY_BACKOFF_BASE_SECONDS = 1
DEFAULT_RETRY_BACKOFF_MAX_SECONDS = 10

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file

VALID_ENDPOINT_PATTERN = r"^https?://[^\s/]+(/\S*)?$"


@dataclass(frozen=True)
class Config:
    """Reconciler configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    endpoint: str
    auth_token: str

    region: str | None = None

    # Timing
    create_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS
    update_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS
    delete_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    retry_backoff_base_seconds: int = DEFAULT_RETRY_BACKOFF_BASE_SECONDS
    retry_backoff_max_seconds: int = DEFAULT_RETRY_BACKOFF_MAX_SECONDS
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.endpoint:
            errors.append("OCTAVIA_ENDPOINT is required")
        elif not re.match(VALID_ENDPOINT_PATTERN, self.endpoint):
            errors.append(f"OCTAVIA_ENDPOINT must be an http(s) URL: {self.endpoint}")

        if not self.auth_token:
            errors.append("OS_AUTH_TOKEN is required")

        for name, value in (
            ("CREATE_TIMEOUT", self.create_timeout_seconds),
            ("UPDATE_TIMEOUT", self.update_timeout_seconds),
            ("DELETE_TIMEOUT", self.delete_timeout_seconds),
        ):
            if not (MIN_OPERATION_TIMEOUT_SECONDS <= value <= MAX_OPERATION_TIMEOUT_SECONDS):
                errors.append(
                    f"{name} must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                    f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
                )

        if not (MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if self.retry_backoff_base_seconds < 1:
            errors.append("RETRY_BACKOFF_BASE must be at least 1 second")
        if self.retry_backoff_max_seconds < self.retry_backoff_base_seconds:
            errors.append("RETRY_BACKOFF_MAX must not be smaller than RETRY_BACKOFF_BASE")

        if self.request_timeout_seconds < 1:
            errors.append("REQUEST_TIMEOUT must be at least 1 second")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            OCTAVIA_ENDPOINT: Load-balancer API endpoint (required)
            OS_AUTH_TOKEN: Keystone token for the API (required)
            OS_REGION_NAME: Region, for logging only
            CREATE_TIMEOUT: Create timeout in seconds (default: 600)
            UPDATE_TIMEOUT: Update timeout in seconds (default: 600)
            DELETE_TIMEOUT: Delete timeout in seconds (default: 600)
            POLL_INTERVAL: Seconds between status polls (default: 2)
            RETRY_BACKOFF_BASE: First retry backoff in seconds (default: 1)
            RETRY_BACKOFF_MAX: Maximum retry backoff in seconds (default: 10)
            REQUEST_TIMEOUT: Per-request read timeout in seconds (default: 30)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        return cls(
            endpoint=os.environ.get("OCTAVIA_ENDPOINT", ""),
            auth_token=os.environ.get("OS_AUTH_TOKEN", ""),
            region=os.environ.get("OS_REGION_NAME") or None,
            create_timeout_seconds=get_int("CREATE_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS),
            update_timeout_seconds=get_int("UPDATE_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS),
            delete_timeout_seconds=get_int("DELETE_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS),
            poll_interval_seconds=get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            retry_backoff_base_seconds=get_int(
                "RETRY_BACKOFF_BASE", DEFAULT_RETRY_BACKOFF_BASE_SECONDS
            ),
            retry_backoff_max_seconds=get_int(
                "RETRY_BACKOFF_MAX", DEFAULT_RETRY_BACKOFF_MAX_SECONDS
            ),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
        )
