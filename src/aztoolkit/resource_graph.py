"""Azure Resource Graph queries for catalogs and audit reports.

This module provides Resource Graph queries for:
1. Catalog snapshots (VMs, NICs, NSGs, subnets, disks, public IPs)
2. Resources missing required tags
3. Storage accounts open to the public
4. Storage accounts accepting TLS below a minimum version

Reference fields are projected explicitly per resource kind and turned
into CatalogEntry reference maps at load time. Ids are lower-cased since
ARM is inconsistent about id casing across resource types.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import (
    QueryRequest,
    QueryRequestOptions,
    ResultFormat,
)

from .catalog import Catalog, CatalogEntry, ResourceKind
from .config import MAX_GRAPH_QUERY_PAGES, MAX_GRAPH_QUERY_RESULTS, ToolkitConfig

logger = logging.getLogger(__name__)

TLS_VERSION_ORDER: tuple[str, ...] = ("TLS1_0", "TLS1_1", "TLS1_2", "TLS1_3")

# Storage accounts created before the property existed report no value
DEFAULT_STORAGE_TLS_VERSION = "TLS1_0"


# Per-kind projection of reference columns (column name -> reference field)
CATALOG_QUERIES: dict[ResourceKind, tuple[str, tuple[str, ...]]] = {
    ResourceKind.VIRTUAL_MACHINE: (
        """
        Resources
        | where type =~ 'microsoft.compute/virtualmachines'
        | project id, name, resourceGroup
        """,
        (),
    ),
    ResourceKind.NETWORK_INTERFACE: (
        """
        Resources
        | where type =~ 'microsoft.network/networkinterfaces'
        | project id, name, resourceGroup,
            virtualMachine = tostring(properties.virtualMachine.id)
        """,
        ("virtualMachine",),
    ),
    ResourceKind.NETWORK_SECURITY_GROUP: (
        """
        Resources
        | where type =~ 'microsoft.network/networksecuritygroups'
        | project id, name, resourceGroup,
            networkInterfaces = properties.networkInterfaces,
            subnets = properties.subnets
        """,
        ("networkInterfaces", "subnets"),
    ),
    ResourceKind.SUBNET: (
        """
        Resources
        | where type =~ 'microsoft.network/virtualnetworks'
        | mv-expand subnet = properties.subnets
        | project id = tostring(subnet.id), name = tostring(subnet.name), resourceGroup
        """,
        (),
    ),
    ResourceKind.DISK: (
        """
        Resources
        | where type =~ 'microsoft.compute/disks'
        | project id, name, resourceGroup, managedBy = tostring(managedBy)
        """,
        ("managedBy",),
    ),
    ResourceKind.PUBLIC_IP: (
        """
        Resources
        | where type =~ 'microsoft.network/publicipaddresses'
        | project id, name, resourceGroup,
            ipConfiguration = tostring(properties.ipConfiguration.id),
            natGateway = tostring(properties.natGateway.id)
        """,
        ("ipConfiguration", "natGateway"),
    ),
}


@dataclass
class TagFinding:
    """A resource missing one or more required tags."""

    resource_id: str
    name: str
    type: str
    resource_group: str
    missing: list[str]

    def as_row(self) -> tuple[str, str, str, str, str]:
        return (self.type, self.name, self.resource_group, self.resource_id, ";".join(self.missing))


TAG_REPORT_HEADER = ("type", "name", "resourceGroup", "id", "missingTags")


@dataclass
class StorageFinding:
    """A storage account flagged by an audit query."""

    resource_id: str
    name: str
    resource_group: str
    minimum_tls_version: str
    allow_blob_public_access: bool
    public_network_access: str
    reason: str

    def as_row(self) -> tuple[str, str, str, str, str, str, str]:
        return (
            self.name,
            self.resource_group,
            self.resource_id,
            self.minimum_tls_version,
            str(self.allow_blob_public_access).lower(),
            self.public_network_access,
            self.reason,
        )


STORAGE_REPORT_HEADER = (
    "name",
    "resourceGroup",
    "id",
    "minimumTlsVersion",
    "allowBlobPublicAccess",
    "publicNetworkAccess",
    "reason",
)


def parent_resource_id(resource_id: str) -> str:
    """Strip child segments such as ``/ipConfigurations/x`` off an ARM id.

    /subscriptions/s/resourceGroups/rg/providers/ns/type/name/child/c
    -> /subscriptions/s/resourceGroups/rg/providers/ns/type/name
    """
    segments = resource_id.strip("/").split("/")
    if len(segments) <= 8:
        return resource_id
    return "/" + "/".join(segments[:8])


def _ids(value: Any) -> tuple[str, ...]:
    """Normalize a projected reference column into lower-cased ids."""
    if not value:
        return ()
    if isinstance(value, str):
        return (value.lower(),)
    if isinstance(value, dict):
        ref = value.get("id")
        return (ref.lower(),) if ref else ()
    if isinstance(value, list | tuple):
        ids: list[str] = []
        for item in value:
            ids.extend(_ids(item))
        return tuple(ids)
    return ()


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() == "true"
    return False


class CatalogQuerier:
    """Resource Graph client scoped to the configured subscription."""

    def __init__(self, credential: TokenCredential, config: ToolkitConfig) -> None:
        """Initialize Resource Graph client.

        Args:
            credential: Azure credential.
            config: Toolkit configuration (subscription is required).
        """
        self._config = config
        self._subscription_id = config.require_subscription()
        self._client = ResourceGraphClient(credential=credential)

    def load_catalog(self, kinds: Iterable[ResourceKind] | None = None) -> Catalog:
        """Load a catalog snapshot.

        References to resources that were not enumerated (a public IP's
        load balancer, say) are kept as EXTERNAL entries so the snapshot
        stays closed over its own ids.
        """
        selected = list(kinds) if kinds is not None else list(CATALOG_QUERIES)
        entries: list[CatalogEntry] = []

        for kind in selected:
            query, reference_columns = CATALOG_QUERIES[kind]
            rows = self._execute_query(query)
            for row in rows:
                entry_id = (row.get("id") or "").lower()
                if not entry_id:
                    continue
                references = {column: _ids(row.get(column)) for column in reference_columns}
                if kind == ResourceKind.PUBLIC_IP:
                    references["ipConfiguration"] = tuple(
                        parent_resource_id(ref) for ref in references["ipConfiguration"]
                    )
                entries.append(
                    CatalogEntry(
                        id=entry_id,
                        kind=kind,
                        name=row.get("name", ""),
                        references=references,
                        resource_group=row.get("resourceGroup", ""),
                    )
                )

        known = {entry.id for entry in entries}
        external: dict[str, CatalogEntry] = {}
        for entry in entries:
            for ref in entry.attachments:
                if ref not in known and ref not in external:
                    external[ref] = CatalogEntry(
                        id=ref, kind=ResourceKind.EXTERNAL, name=ref.rsplit("/", 1)[-1]
                    )

        logger.info(
            "Catalog loaded",
            extra={
                "subscription_id": self._subscription_id,
                "entries": len(entries),
                "external_references": len(external),
            },
        )
        return Catalog([*entries, *external.values()], strict=False)

    def find_missing_tags(self, required: Iterable[str]) -> list[TagFinding]:
        """Find resources that lack any of the required tag keys.

        Tag names are compared case-insensitively, as ARM does.
        """
        required_keys = [key for key in required if key]
        if not required_keys:
            return []

        query = """
        Resources
        | project id, name, type, resourceGroup, tags
        """
        findings: list[TagFinding] = []
        for row in self._execute_query(query):
            present = {key.lower() for key in (row.get("tags") or {})}
            missing = [key for key in required_keys if key.lower() not in present]
            if missing:
                findings.append(
                    TagFinding(
                        resource_id=row.get("id", ""),
                        name=row.get("name", ""),
                        type=row.get("type", ""),
                        resource_group=row.get("resourceGroup", ""),
                        missing=missing,
                    )
                )

        logger.info(
            "Missing tag scan complete",
            extra={"required_tags": required_keys, "findings": len(findings)},
        )
        return findings

    def find_public_storage(self) -> list[StorageFinding]:
        """Storage accounts allowing anonymous blob access or open networks."""

        def check(row: dict[str, Any]) -> str | None:
            if _as_bool(row.get("allowBlobPublicAccess")):
                return "Anonymous blob access allowed"
            network_access = (row.get("publicNetworkAccess") or "Enabled").lower()
            default_action = (row.get("defaultAction") or "Allow").lower()
            if network_access != "disabled" and default_action == "allow":
                return "Public network access without firewall rules"
            return None

        return self._storage_findings(check)

    def find_weak_tls(self, minimum: str = "TLS1_2") -> list[StorageFinding]:
        """Storage accounts accepting a TLS version below ``minimum``."""
        if minimum not in TLS_VERSION_ORDER:
            raise ValueError(f"minimum must be one of {TLS_VERSION_ORDER}: {minimum}")
        floor = TLS_VERSION_ORDER.index(minimum)

        def check(row: dict[str, Any]) -> str | None:
            version = row.get("minimumTlsVersion") or DEFAULT_STORAGE_TLS_VERSION
            if version in TLS_VERSION_ORDER and TLS_VERSION_ORDER.index(version) < floor:
                return f"Minimum TLS version {version} is below {minimum}"
            return None

        return self._storage_findings(check)

    def _storage_findings(
        self, check: Callable[[dict[str, Any]], str | None]
    ) -> list[StorageFinding]:
        query = """
        Resources
        | where type =~ 'microsoft.storage/storageaccounts'
        | project id, name, resourceGroup,
            allowBlobPublicAccess = properties.allowBlobPublicAccess,
            publicNetworkAccess = tostring(properties.publicNetworkAccess),
            defaultAction = tostring(properties.networkAcls.defaultAction),
            minimumTlsVersion = tostring(properties.minimumTlsVersion)
        """
        findings = []
        for row in self._execute_query(query):
            reason = check(row)
            if reason is None:
                continue
            findings.append(
                StorageFinding(
                    resource_id=row.get("id", ""),
                    name=row.get("name", ""),
                    resource_group=row.get("resourceGroup", ""),
                    minimum_tls_version=row.get("minimumTlsVersion") or DEFAULT_STORAGE_TLS_VERSION,
                    allow_blob_public_access=_as_bool(row.get("allowBlobPublicAccess")),
                    public_network_access=row.get("publicNetworkAccess") or "Enabled",
                    reason=reason,
                )
            )
        return findings

    def _execute_query(self, query: str) -> list[dict[str, Any]]:
        """Execute a Resource Graph query, following skip tokens.

        Raises:
            AzureError: If the query fails.
        """
        query = query.strip()
        rows: list[dict[str, Any]] = []
        skip_token: str | None = None

        for page in range(MAX_GRAPH_QUERY_PAGES):
            request = QueryRequest(
                subscriptions=[self._subscription_id],
                query=query,
                options=QueryRequestOptions(
                    result_format=ResultFormat.OBJECT_ARRAY,
                    top=MAX_GRAPH_QUERY_RESULTS,
                    skip_token=skip_token,
                ),
            )

            try:
                response = self._client.resources(request)
            except AzureError as e:
                logger.error(
                    "Resource Graph query failed",
                    extra={"subscription_id": self._subscription_id, "error": str(e)},
                )
                raise

            if isinstance(response.data, list):
                rows.extend(response.data)

            skip_token = response.skip_token
            if not skip_token:
                return rows

            logger.debug("Fetching next Resource Graph page", extra={"page": page + 1})

        logger.warning(
            "Resource Graph result truncated",
            extra={"max_pages": MAX_GRAPH_QUERY_PAGES, "rows": len(rows)},
        )
        return rows
