"""Copy Synapse workspace artifacts between workspaces.

Artifacts are read from the source workspace's development endpoint and
PUT onto the target workspace in dependency order: linked services and
the credentials they authenticate with come before the datasets that use
them, datasets before data flows and pipelines, pipelines before the
triggers that start them. Every PUT is answered with
``202 Accepted`` plus a Location header, so each one runs through the
operation poller.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.pipeline.policies import BearerTokenCredentialPolicy, HeadersPolicy
from azure.core.rest import HttpRequest

from .operations import (
    AsyncOperationPoller,
    OperationFailed,
    SubmissionError,
    SupportsSendRequest,
)

logger = logging.getLogger(__name__)

SYNAPSE_API_VERSION = "2020-12-01"
SYNAPSE_SCOPE = "https://dev.azuresynapse.net/.default"
SYNAPSE_ENDPOINT_TEMPLATE = "https://{workspace}.dev.azuresynapse.net"

VALID_WORKSPACE_PATTERN = r"^[a-z0-9][a-z0-9-]{0,48}[a-z0-9]$"

# Linked services and credentials every workspace creates for itself
WORKSPACE_DEFAULT_SUFFIXES: tuple[str, ...] = (
    "WorkspaceDefaultStorage",
    "WorkspaceDefaultSqlServer",
)
WORKSPACE_DEFAULT_CREDENTIALS: frozenset[str] = frozenset({"WorkspaceSystemIdentity"})


class ArtifactKind(str, Enum):
    """Synapse artifact collections, named as in the REST paths."""

    LINKED_SERVICE = "linkedservices"
    CREDENTIAL = "credentials"
    DATASET = "datasets"
    DATA_FLOW = "dataflows"
    NOTEBOOK = "notebooks"
    SQL_SCRIPT = "sqlScripts"
    PIPELINE = "pipelines"
    TRIGGER = "triggers"


DEFAULT_KIND_ORDER: tuple[ArtifactKind, ...] = (
    ArtifactKind.LINKED_SERVICE,
    ArtifactKind.CREDENTIAL,
    ArtifactKind.DATASET,
    ArtifactKind.DATA_FLOW,
    ArtifactKind.NOTEBOOK,
    ArtifactKind.SQL_SCRIPT,
    ArtifactKind.PIPELINE,
    ArtifactKind.TRIGGER,
)


class CopyStatus(str, Enum):
    COPIED = "Copied"
    SKIPPED = "Skipped"
    FAILED = "Failed"


@dataclass
class ArtifactCopyResult:
    """Outcome of copying one artifact."""

    kind: ArtifactKind
    name: str
    status: CopyStatus
    error: str | None = None


def create_workspace_client(workspace: str, credential: TokenCredential) -> PipelineClient:
    """Build a data-plane client for a workspace's development endpoint."""
    if not re.match(VALID_WORKSPACE_PATTERN, workspace):
        raise ValueError(f"Invalid Synapse workspace name: {workspace}")

    return PipelineClient(
        base_url=SYNAPSE_ENDPOINT_TEMPLATE.format(workspace=workspace),
        policies=[
            HeadersPolicy({"Accept": "application/json"}),
            BearerTokenCredentialPolicy(credential, SYNAPSE_SCOPE),
        ],
    )


@dataclass
class SynapseWorkspace:
    """A workspace name and the client that talks to it."""

    name: str
    client: SupportsSendRequest

    @property
    def endpoint(self) -> str:
        return SYNAPSE_ENDPOINT_TEMPLATE.format(workspace=self.name)

    def artifact_url(self, kind: ArtifactKind, name: str | None = None) -> str:
        path = f"{self.endpoint}/{kind.value}"
        if name is not None:
            path = f"{path}/{name}"
        return f"{path}?api-version={SYNAPSE_API_VERSION}"


def is_workspace_default(kind: ArtifactKind, name: str) -> bool:
    if kind == ArtifactKind.CREDENTIAL:
        return name in WORKSPACE_DEFAULT_CREDENTIALS
    return kind == ArtifactKind.LINKED_SERVICE and name.endswith(WORKSPACE_DEFAULT_SUFFIXES)


class ArtifactCopier:
    """Copies artifacts from a source workspace onto a target workspace."""

    def __init__(
        self,
        source: SynapseWorkspace,
        target: SynapseWorkspace,
        poller: AsyncOperationPoller,
    ) -> None:
        """Initialize the copier.

        Args:
            source: Workspace to read from.
            target: Workspace to write to.
            poller: Poller bound to the target workspace's client.
        """
        self._source = source
        self._target = target
        self._poller = poller

    def list_artifacts(self, kind: ArtifactKind) -> Iterator[dict[str, Any]]:
        """Yield every artifact of a kind from the source, following nextLink.

        Raises:
            HttpResponseError: If a list call fails.
        """
        url: str | None = self._source.artifact_url(kind)
        while url:
            response = self._source.client.send_request(HttpRequest("GET", url))
            response.raise_for_status()
            body = response.json() or {}
            yield from body.get("value", [])
            url = body.get("nextLink")

    def copy(
        self,
        kinds: Iterable[ArtifactKind] = DEFAULT_KIND_ORDER,
        names: Iterable[str] | None = None,
        continue_on_error: bool = False,
    ) -> list[ArtifactCopyResult]:
        """Copy artifacts, kind by kind, in the given order.

        Args:
            kinds: Artifact kinds to copy; copied in the order given.
            names: Optional allowlist of artifact names.
            continue_on_error: Record rejected or failed artifacts and keep
                going instead of raising.

        Raises:
            SubmissionError, OperationFailed: When continue_on_error is off.
            PollError: Always propagated.
        """
        allowed = set(names) if names is not None else None
        results: list[ArtifactCopyResult] = []

        for kind in kinds:
            for artifact in self.list_artifacts(kind):
                name = artifact.get("name", "")
                if allowed is not None and name not in allowed:
                    continue
                results.append(self._copy_one(kind, artifact, continue_on_error))

        copied = sum(1 for r in results if r.status == CopyStatus.COPIED)
        failed = sum(1 for r in results if r.status == CopyStatus.FAILED)
        logger.info(
            "Artifact copy complete",
            extra={
                "source": self._source.name,
                "target": self._target.name,
                "copied": copied,
                "failed": failed,
                "skipped": len(results) - copied - failed,
            },
        )
        return results

    def _copy_one(
        self, kind: ArtifactKind, artifact: dict[str, Any], continue_on_error: bool
    ) -> ArtifactCopyResult:
        name = artifact.get("name", "")
        if is_workspace_default(kind, name):
            logger.debug("Skipping workspace default", extra={"kind": kind.value, "artifact": name})
            return ArtifactCopyResult(kind, name, CopyStatus.SKIPPED)

        payload = {"name": name, "properties": artifact.get("properties", {})}
        try:
            self._poller.execute(self._target.artifact_url(kind, name), payload)
        except (SubmissionError, OperationFailed) as e:
            if not continue_on_error:
                raise
            logger.warning(
                "Artifact copy failed, continuing",
                extra={"kind": kind.value, "artifact": name, "error": str(e)},
            )
            return ArtifactCopyResult(kind, name, CopyStatus.FAILED, str(e))

        logger.info("Artifact copied", extra={"kind": kind.value, "artifact": name})
        return ArtifactCopyResult(kind, name, CopyStatus.COPIED)
