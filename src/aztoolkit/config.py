"""Configuration management with validation.

All settings are validated at load time so a misconfigured run fails
before the first Azure call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum


class CredentialMode(str, Enum):
    """Supported ways of picking up an existing Azure session."""

    CLI = "cli"
    DEFAULT = "default"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 5
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 300

# Polling bounds (0 disables the bound)
DEFAULT_MAX_POLL_ATTEMPTS = 360
DEFAULT_POLL_TIMEOUT_SECONDS = 1800

DEFAULT_BATCH_SIZE = 1000
MAX_BATCH_SIZE = 100_000

DEFAULT_ARM_ENDPOINT = "https://management.azure.com"
ARM_SCOPE = "https://management.azure.com/.default"

# Resource Graph limits
MAX_GRAPH_QUERY_RESULTS = 1000
MAX_GRAPH_QUERY_PAGES = 50

MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max manifest file

VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


@dataclass(frozen=True)
class ToolkitConfig:
    """Toolkit configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    subscription_id: str | None = None

    # Polling
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    poll_timeout_seconds: int = DEFAULT_POLL_TIMEOUT_SECONDS

    # Export
    batch_size: int = DEFAULT_BATCH_SIZE

    # Session
    credential_mode: CredentialMode = CredentialMode.CLI
    arm_endpoint: str = DEFAULT_ARM_ENDPOINT

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.subscription_id and not re.match(
            VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()
        ):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not (
            MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS
        ):
            errors.append(
                f"AZT_POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if self.max_poll_attempts < 0:
            errors.append("AZT_MAX_POLL_ATTEMPTS cannot be negative (0 disables the bound)")

        if self.poll_timeout_seconds < 0:
            errors.append("AZT_POLL_TIMEOUT cannot be negative (0 disables the bound)")

        if not (1 <= self.batch_size <= MAX_BATCH_SIZE):
            errors.append(f"AZT_BATCH_SIZE must be between 1 and {MAX_BATCH_SIZE}")

        if not self.arm_endpoint.startswith("https://"):
            errors.append(f"AZT_ARM_ENDPOINT must be an https URL: {self.arm_endpoint}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def require_subscription(self) -> str:
        """Return the subscription ID or fail if none is configured."""
        if not self.subscription_id:
            raise ConfigurationError(
                "AZURE_SUBSCRIPTION_ID is required for this command (or pass --subscription)"
            )
        return self.subscription_id

    @classmethod
    def from_env(cls) -> ToolkitConfig:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription used for ARM and graph calls
            AZT_POLL_INTERVAL: Seconds between status checks (default: 5)
            AZT_MAX_POLL_ATTEMPTS: Status checks before giving up (default: 360, 0 = unbounded)
            AZT_POLL_TIMEOUT: Wall-clock polling limit in seconds (default: 1800, 0 = unbounded)
            AZT_BATCH_SIZE: Rows buffered per export flush (default: 1000)
            AZT_CREDENTIAL: "cli" (az login session) or "default" (DefaultAzureCredential)
            AZT_ARM_ENDPOINT: ARM base URL (default: https://management.azure.com)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_credential_mode(value: str | None) -> CredentialMode:
            if not value:
                return CredentialMode.CLI
            try:
                return CredentialMode(value.lower())
            except ValueError as e:
                valid = [m.value for m in CredentialMode]
                raise ConfigurationError(f"AZT_CREDENTIAL must be one of {valid}: {value}") from e

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID") or None,
            poll_interval_seconds=get_int("AZT_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            max_poll_attempts=get_int("AZT_MAX_POLL_ATTEMPTS", DEFAULT_MAX_POLL_ATTEMPTS),
            poll_timeout_seconds=get_int("AZT_POLL_TIMEOUT", DEFAULT_POLL_TIMEOUT_SECONDS),
            batch_size=get_int("AZT_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            credential_mode=get_credential_mode(os.environ.get("AZT_CREDENTIAL")),
            arm_endpoint=os.environ.get("AZT_ARM_ENDPOINT", DEFAULT_ARM_ENDPOINT).rstrip("/"),
        )
