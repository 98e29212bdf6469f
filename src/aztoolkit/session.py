"""Azure session handling.

Commands never log in themselves: they pick up a session that already
exists (``az login`` or the DefaultAzureCredential chain) and carry it as
an explicit AzureSession object into every component that talks to Azure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import AzureCliCredential, DefaultAzureCredential
from azure.mgmt.resource import ResourceManagementClient

from .config import ARM_SCOPE, CredentialMode, ToolkitConfig
from .operations import AsyncOperationPoller

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Raised when no usable Azure session is available."""

    pass


def get_credential(mode: CredentialMode) -> TokenCredential:
    """Return a credential backed by an existing login.

    Args:
        mode: CLI uses the ``az login`` token cache, DEFAULT walks the
              DefaultAzureCredential chain (env, managed identity, CLI...).
    """
    if mode == CredentialMode.DEFAULT:
        logger.info("Using DefaultAzureCredential chain")
        return DefaultAzureCredential()

    logger.info("Using Azure CLI session")
    return AzureCliCredential()


@dataclass
class AzureSession:
    """Authenticated context passed into toolkit components.

    Attributes:
        config: Validated toolkit configuration.
        credential: Token credential for every client built from the session.
    """

    config: ToolkitConfig
    credential: TokenCredential
    _resource_client: ResourceManagementClient | None = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: ToolkitConfig) -> AzureSession:
        """Build a session from configuration."""
        return cls(config=config, credential=get_credential(config.credential_mode))

    @property
    def subscription_id(self) -> str:
        """Subscription the session operates on."""
        return self.config.require_subscription()

    def verify(self) -> None:
        """Check that the credential can obtain an ARM token.

        Raises:
            SessionError: If no login is available.
        """
        try:
            self.credential.get_token(ARM_SCOPE)
        except ClientAuthenticationError as e:
            logger.error("No Azure session available", extra={"error": str(e)})
            raise SessionError(
                "Not logged in to Azure. Run 'az login' (or configure a credential) first."
            ) from e

        logger.info(
            "Azure session verified",
            extra={"credential_type": type(self.credential).__name__},
        )

    def resource_client(self) -> ResourceManagementClient:
        """Lazily create the ARM client for this session."""
        if self._resource_client is None:
            self._resource_client = ResourceManagementClient(
                credential=self.credential,
                subscription_id=self.subscription_id,
                base_url=self.config.arm_endpoint,
            )
        return self._resource_client

    def poller(self, client: Any | None = None) -> AsyncOperationPoller:
        """Create a poller bound to a client (ARM by default)."""
        return AsyncOperationPoller.from_config(
            client if client is not None else self.resource_client(),
            self.config,
        )
