"""Tests for Azure session handling."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from azure_mock import MockTransport, create_mock_credential

from aztoolkit.config import ARM_SCOPE, ConfigurationError, CredentialMode, ToolkitConfig
from aztoolkit.session import AzureSession, SessionError, get_credential


class TestGetCredential:
    """Tests for credential selection."""

    def test_cli_mode(self) -> None:
        with patch("aztoolkit.session.AzureCliCredential") as mock_cli:
            credential = get_credential(CredentialMode.CLI)

        assert credential is mock_cli.return_value

    def test_default_mode(self) -> None:
        with patch("aztoolkit.session.DefaultAzureCredential") as mock_default:
            credential = get_credential(CredentialMode.DEFAULT)

        assert credential is mock_default.return_value


class TestAzureSession:
    """Tests for AzureSession."""

    def test_from_config_uses_mode(self) -> None:
        config = ToolkitConfig(credential_mode=CredentialMode.DEFAULT)

        with patch("aztoolkit.session.DefaultAzureCredential") as mock_default:
            session = AzureSession.from_config(config)

        assert session.credential is mock_default.return_value
        assert session.config is config

    def test_verify_requests_arm_token(self, config: ToolkitConfig) -> None:
        credential = create_mock_credential()

        AzureSession(config, credential).verify()

        assert credential.scopes_requested == [(ARM_SCOPE,)]

    def test_verify_without_login(self, config: ToolkitConfig) -> None:
        """Test that a missing login is reported as a SessionError."""
        credential = create_mock_credential()
        credential.set_failure(True)

        with pytest.raises(SessionError, match="az login"):
            AzureSession(config, credential).verify()

    def test_subscription_required(self) -> None:
        session = AzureSession(ToolkitConfig(), create_mock_credential())

        with pytest.raises(ConfigurationError):
            _ = session.subscription_id

    def test_resource_client_cached(self, config: ToolkitConfig) -> None:
        """Test that the ARM client is built once with session settings."""
        credential = create_mock_credential()
        session = AzureSession(config, credential)

        with patch("aztoolkit.session.ResourceManagementClient") as mock_client:
            first = session.resource_client()
            second = session.resource_client()

        assert first is second
        mock_client.assert_called_once_with(
            credential=credential,
            subscription_id=config.subscription_id,
            base_url=config.arm_endpoint,
        )

    def test_poller_uses_config(self, config: ToolkitConfig) -> None:
        session = AzureSession(config, create_mock_credential())
        transport = MockTransport()

        poller = session.poller(transport)

        assert poller._client is transport
        assert poller._interval == config.poll_interval_seconds
        assert poller._max_attempts == config.max_poll_attempts
