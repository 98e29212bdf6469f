"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from aztoolkit.config import (
    DEFAULT_ARM_ENDPOINT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    ConfigurationError,
    CredentialMode,
    ToolkitConfig,
)

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


class TestToolkitConfig:
    """Tests for ToolkitConfig class."""

    def test_defaults(self) -> None:
        """Test that a bare config is valid and uses documented defaults."""
        config = ToolkitConfig()

        assert config.subscription_id is None
        assert config.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
        assert config.max_poll_attempts == DEFAULT_MAX_POLL_ATTEMPTS
        assert config.batch_size == DEFAULT_BATCH_SIZE
        assert config.credential_mode == CredentialMode.CLI
        assert config.arm_endpoint == DEFAULT_ARM_ENDPOINT

    def test_invalid_subscription_id(self) -> None:
        """Test that a non-GUID subscription raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ToolkitConfig(subscription_id="not-a-guid")

        assert "AZURE_SUBSCRIPTION_ID" in str(exc_info.value)

    def test_uppercase_subscription_id_accepted(self) -> None:
        """Test that GUID casing does not matter."""
        config = ToolkitConfig(subscription_id="ABCDEF12-1234-1234-1234-1234567890AB")
        assert config.subscription_id == "ABCDEF12-1234-1234-1234-1234567890AB"

    def test_invalid_poll_interval(self) -> None:
        """Test that out-of-range poll interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ToolkitConfig(poll_interval_seconds=0)

        assert "AZT_POLL_INTERVAL" in str(exc_info.value)

    def test_zero_bounds_allowed(self) -> None:
        """Test that 0 disables polling bounds rather than failing."""
        config = ToolkitConfig(max_poll_attempts=0, poll_timeout_seconds=0)

        assert config.max_poll_attempts == 0
        assert config.poll_timeout_seconds == 0

    def test_negative_bounds_rejected(self) -> None:
        """Test that negative bounds are reported together."""
        with pytest.raises(ConfigurationError) as exc_info:
            ToolkitConfig(max_poll_attempts=-1, poll_timeout_seconds=-1)

        message = str(exc_info.value)
        assert "AZT_MAX_POLL_ATTEMPTS" in message
        assert "AZT_POLL_TIMEOUT" in message

    def test_invalid_batch_size(self) -> None:
        """Test that batch size must be positive."""
        with pytest.raises(ConfigurationError) as exc_info:
            ToolkitConfig(batch_size=0)

        assert "AZT_BATCH_SIZE" in str(exc_info.value)

    def test_arm_endpoint_must_be_https(self) -> None:
        """Test that plain-http endpoints are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ToolkitConfig(arm_endpoint="http://management.azure.com")

        assert "AZT_ARM_ENDPOINT" in str(exc_info.value)

    def test_require_subscription(self) -> None:
        """Test that commands needing a subscription fail clearly without one."""
        with pytest.raises(ConfigurationError) as exc_info:
            ToolkitConfig().require_subscription()

        assert "AZURE_SUBSCRIPTION_ID" in str(exc_info.value)
        assert ToolkitConfig(subscription_id=SUBSCRIPTION_ID).require_subscription() == (
            SUBSCRIPTION_ID
        )

    def test_from_env(self) -> None:
        """Test loading configuration from environment."""
        env = {
            "AZURE_SUBSCRIPTION_ID": SUBSCRIPTION_ID,
            "AZT_POLL_INTERVAL": "10",
            "AZT_MAX_POLL_ATTEMPTS": "0",
            "AZT_POLL_TIMEOUT": "600",
            "AZT_BATCH_SIZE": "250",
            "AZT_CREDENTIAL": "DEFAULT",
            "AZT_ARM_ENDPOINT": "https://management.usgovcloudapi.net/",
        }

        with patch.dict(os.environ, env, clear=True):
            config = ToolkitConfig.from_env()

        assert config.subscription_id == SUBSCRIPTION_ID
        assert config.poll_interval_seconds == 10
        assert config.max_poll_attempts == 0
        assert config.poll_timeout_seconds == 600
        assert config.batch_size == 250
        assert config.credential_mode == CredentialMode.DEFAULT
        assert config.arm_endpoint == "https://management.usgovcloudapi.net"

    def test_from_env_empty(self) -> None:
        """Test that an empty environment yields defaults."""
        with patch.dict(os.environ, {}, clear=True):
            config = ToolkitConfig.from_env()

        assert config == ToolkitConfig()

    def test_from_env_non_integer(self) -> None:
        """Test that non-numeric values name the offending variable."""
        with patch.dict(os.environ, {"AZT_BATCH_SIZE": "lots"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                ToolkitConfig.from_env()

        assert "AZT_BATCH_SIZE" in str(exc_info.value)

    def test_from_env_unknown_credential(self) -> None:
        """Test that unknown credential modes are rejected."""
        with patch.dict(os.environ, {"AZT_CREDENTIAL": "certificate"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                ToolkitConfig.from_env()

        assert "AZT_CREDENTIAL" in str(exc_info.value)
